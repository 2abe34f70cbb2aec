"""Configuration models for the document server and chat relay."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

_ENV_PREFIX = "DOCRELAY_"


class DocsConfig(BaseModel):
    """Configures where documents live and how they are gated."""

    docs_dir: Path = Field(default=Path("docs"))
    access_file: str = ".access.json"
    access_fail_open: bool = True
    image_extensions: tuple[str, ...] = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")
    asset_max_age: int = Field(default=3600, ge=0)

    @property
    def access_path(self) -> Path:
        return self.docs_dir / self.access_file


class ChatConfig(BaseModel):
    """Configures admission and authentication for the live chat socket."""

    secret: str | None = None
    allowed_origins: list[str] = Field(default_factory=list)
    max_connections: int = Field(default=1, ge=1)
    auth_failure_code: int = Field(default=4001, ge=4000, le=4999)

    @property
    def enabled(self) -> bool:
        return bool(self.secret)


class AgentConfig(BaseModel):
    """Configures the upstream agent each turn is relayed to."""

    model: str | None = "claude-sonnet-4-5-20250929"
    allowed_tools: list[str] = Field(
        default_factory=lambda: ["Read", "Edit", "Glob", "Grep", "Bash", "WebSearch"]
    )
    permission_mode: str = "acceptEdits"
    include_partial_messages: bool = True
    max_budget_usd: float | None = Field(default=None, gt=0.0)
    cwd: Path | None = None


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=3000, ge=1, le=65535)


class Settings(BaseModel):
    """Aggregate settings for one running service."""

    docs: DocsConfig = Field(default_factory=DocsConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from `DOCRELAY_*` variables, keeping defaults for unset ones."""

        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for key, raw in env.items():
            if key.startswith(_ENV_PREFIX) and raw.strip():
                values[key[len(_ENV_PREFIX) :]] = raw.strip()

        docs: dict[str, Any] = {}
        if "DOCS_DIR" in values:
            docs["docs_dir"] = Path(values["DOCS_DIR"])
        if "ACCESS_FILE" in values:
            docs["access_file"] = values["ACCESS_FILE"]
        if "ACCESS_FAIL_OPEN" in values:
            docs["access_fail_open"] = _parse_bool(values["ACCESS_FAIL_OPEN"])

        chat: dict[str, Any] = {"secret": values.get("CHAT_SECRET")}
        if "ALLOWED_ORIGINS" in values:
            chat["allowed_origins"] = [
                origin.strip() for origin in values["ALLOWED_ORIGINS"].split(",") if origin.strip()
            ]
        if "MAX_CONNECTIONS" in values:
            chat["max_connections"] = int(values["MAX_CONNECTIONS"])

        agent: dict[str, Any] = {}
        if "MODEL" in values:
            agent["model"] = values["MODEL"]
        if "MAX_BUDGET_USD" in values:
            agent["max_budget_usd"] = float(values["MAX_BUDGET_USD"])
        if "AGENT_CWD" in values:
            agent["cwd"] = Path(values["AGENT_CWD"])

        server: dict[str, Any] = {}
        if "HOST" in values:
            server["host"] = values["HOST"]
        if "PORT" in values:
            server["port"] = int(values["PORT"])

        return cls(
            docs=DocsConfig(**docs),
            chat=ChatConfig(**chat),
            agent=AgentConfig(**agent),
            server=ServerConfig(**server),
        )


def _parse_bool(raw: str) -> bool:
    return raw.lower() not in {"0", "false", "no", "off"}
