"""Upstream agent sources consumed by the turn relay."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any, Protocol

from claude_agent_sdk import ClaudeAgentOptions, query

from docrelay.config import AgentConfig


class AgentSource(Protocol):
    """Opaque upstream agent: one call per turn, yielding SDK messages."""

    def stream(self, prompt: str, *, resume: str | None = None) -> AsyncIterator[Any]:
        """Start or continue a session and stream its messages."""


class ClaudeAgentSource:
    """Runs each turn through `claude_agent_sdk.query`."""

    def __init__(self, config: AgentConfig | None = None) -> None:
        self.config = config or AgentConfig()

    def build_options(self, resume: str | None = None) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            model=self.config.model,
            allowed_tools=list(self.config.allowed_tools),
            permission_mode=self.config.permission_mode,
            include_partial_messages=self.config.include_partial_messages,
            max_budget_usd=self.config.max_budget_usd,
            cwd=str(self.config.cwd) if self.config.cwd is not None else None,
            resume=resume,
        )

    async def stream(self, prompt: str, *, resume: str | None = None) -> AsyncIterator[Any]:
        messages = query(prompt=prompt, options=self.build_options(resume))
        async with aclosing(messages):
            async for message in messages:
                yield message
