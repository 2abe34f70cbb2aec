"""Turn relay: upstream agent messages in, public chat events out."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import aclosing
from typing import Any

from claude_agent_sdk.types import AssistantMessage, ResultMessage, StreamEvent, ToolUseBlock
from pydantic import BaseModel

from docrelay.chat.upstream import AgentSource
from docrelay.obs.tracing import Timer, TraceStore, TurnStats
from docrelay.protocol import TERMINAL_EVENTS, Done, Error, TextDelta, ToolUse

logger = logging.getLogger(__name__)


def project(message: Any) -> Iterator[BaseModel]:
    """Map one upstream message to zero or more chat events, in order."""

    if isinstance(message, StreamEvent):
        event = message.event
        if event.get("type") != "content_block_delta":
            return
        delta = event.get("delta") or {}
        if delta.get("type") == "text_delta":
            yield TextDelta(delta=delta.get("text", ""))
        return

    if isinstance(message, AssistantMessage):
        for block in message.content:
            if isinstance(block, ToolUseBlock):
                yield ToolUse(name=block.name, input=block.input)
        return

    if isinstance(message, ResultMessage):
        if message.subtype == "success" and not message.is_error:
            yield Done(
                cost=message.total_cost_usd or 0.0,
                turns=message.num_turns,
                session_id=message.session_id,
            )
        else:
            errors = getattr(message, "errors", None) or []
            text = errors[0] if errors else (message.result or message.subtype)
            yield Error(message=text, recoverable=False)


class TurnRelay:
    """Drives one turn at a time against an upstream agent source.

    Every turn yields exactly one terminal event (`Done` or `Error`) as its
    last item. Upstream failures are converted into an `Error` instead of
    propagating, so the connection can carry on with the next prompt.
    """

    def __init__(self, source: AgentSource, *, trace_store: TraceStore | None = None) -> None:
        self.source = source
        self.trace_store = trace_store

    async def run_turn(
        self,
        prompt: str,
        session_handle: str | None = None,
    ) -> AsyncIterator[BaseModel]:
        stats = TurnStats()
        stream = self.source.stream(prompt, resume=session_handle)
        timer = Timer()
        recorded = False
        try:
            with timer:
                async with aclosing(self._relay(stream)) as events:
                    async for event in events:
                        _observe(stats, event)
                        if isinstance(event, TERMINAL_EVENTS):
                            # Record before the client can see the turn end.
                            self._record(session_handle, stats, timer.lap_ms())
                            recorded = True
                        yield event
        finally:
            await _close_stream(stream)
            if not recorded:
                self._record(session_handle, stats, timer.elapsed_ms)

    def _record(self, resumed_from: str | None, stats: TurnStats, latency_ms: float) -> None:
        if self.trace_store is not None:
            self.trace_store.create_record(
                resumed_from=resumed_from,
                stats=stats,
                latency_ms=latency_ms,
            )

    async def _relay(self, stream: AsyncIterator[Any]) -> AsyncIterator[BaseModel]:
        try:
            async for message in stream:
                for event in project(message):
                    yield event
                    if isinstance(event, TERMINAL_EVENTS):
                        return
        except Exception as exc:
            logger.exception("Upstream agent failed mid-turn")
            yield Error(message=f"Upstream agent failed: {type(exc).__name__}", recoverable=False)
            return

        logger.warning("Upstream agent ended the turn without a result")
        yield Error(message="Upstream agent ended without a result", recoverable=False)


def _observe(stats: TurnStats, event: BaseModel) -> None:
    if isinstance(event, TextDelta):
        stats.text_chars += len(event.delta)
    elif isinstance(event, ToolUse):
        stats.tool_calls.append(event.name)
    elif isinstance(event, Done):
        stats.outcome = "done"
        stats.session_id = event.session_id
        stats.cost_usd = event.cost
        stats.num_turns = event.turns
    elif isinstance(event, Error):
        stats.outcome = "error"


async def _close_stream(stream: AsyncIterator[Any]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:
        logger.warning("Closing the upstream stream failed", exc_info=True)
