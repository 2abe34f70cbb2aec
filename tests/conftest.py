from __future__ import annotations

import os
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest
from claude_agent_sdk.types import AssistantMessage, ResultMessage, StreamEvent, ToolUseBlock


def text_event(text: str, session_id: str = "s1") -> StreamEvent:
    return StreamEvent(
        uuid=f"evt-{text}",
        session_id=session_id,
        event={"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}},
    )


def tool_message(*calls: tuple[str, dict[str, Any]]) -> AssistantMessage:
    return AssistantMessage(
        content=[
            ToolUseBlock(id=f"toolu_{idx}", name=name, input=payload)
            for idx, (name, payload) in enumerate(calls)
        ],
        model="claude-sonnet-4-5-20250929",
    )


def result_message(
    session_id: str = "s1",
    *,
    subtype: str = "success",
    cost: float | None = 0.01,
    turns: int = 1,
    result: str | None = None,
    errors: list[str] | None = None,
) -> ResultMessage:
    extra: dict[str, Any] = {}
    if errors is not None:
        extra["errors"] = errors
    return ResultMessage(
        subtype=subtype,
        duration_ms=12,
        duration_api_ms=10,
        is_error=subtype != "success",
        num_turns=turns,
        session_id=session_id,
        total_cost_usd=cost,
        result=result,
        **extra,
    )


class FakeAgentSource:
    """Plays scripted turns and records `(prompt, resume)` for every call.

    Each script is a list of upstream messages; an exception instance in the
    list is raised at that point in the stream.
    """

    def __init__(self, *scripts: list[Any]) -> None:
        self._scripts = list(scripts)
        self.calls: list[tuple[str, str | None]] = []
        self.closed = 0

    async def stream(self, prompt: str, *, resume: str | None = None) -> AsyncIterator[Any]:
        self.calls.append((prompt, resume))
        script = self._scripts.pop(0) if self._scripts else [result_message()]
        try:
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                if callable(item):
                    await item()
                    continue
                yield item
        finally:
            self.closed += 1


@pytest.fixture
def docs_root(tmp_path: Path) -> Path:
    root = tmp_path / "docs"
    root.mkdir()
    return root


@pytest.fixture
def write_doc(docs_root: Path) -> Callable[..., Path]:
    def _write(name: str, text: str = "# Title\n", *, mtime: float | None = None) -> Path:
        path = docs_root / name
        path.write_text(text, encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _write
