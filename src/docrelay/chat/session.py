"""Chat socket lifecycle: admission, handshake, then one turn per prompt."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from docrelay.chat.gate import ConnectionGate, Refusal, check_admission
from docrelay.chat.handshake import AuthHandshake
from docrelay.chat.relay import TurnRelay
from docrelay.config import ChatConfig
from docrelay.protocol import AuthOk, Done, encode_event
from docrelay.types import ConnectionState

logger = logging.getLogger(__name__)

_DENIAL_EXTENSION = "websocket.http.response"


class ChatService:
    """Owns the connection gate and runs every accepted chat socket.

    Prompts arriving while a turn is in flight are queued, so at most one
    turn runs per connection. A client that disappears mid-turn cancels the
    turn, which closes the upstream stream.
    """

    def __init__(
        self,
        config: ChatConfig,
        relay: TurnRelay,
        *,
        gate: ConnectionGate | None = None,
    ) -> None:
        self.config = config
        self.relay = relay
        self.gate = gate or ConnectionGate(config.max_connections)

    async def serve(self, websocket: WebSocket, *, resume: str | None = None) -> None:
        refusal = check_admission(self.config, websocket.headers.get("origin"), self.gate)
        if refusal is not None:
            logger.info("ws: refused (%s)", refusal.reason)
            await _refuse(websocket, refusal)
            return

        state = ConnectionState(session_handle=resume)
        try:
            await websocket.accept()
            logger.info("ws: connected%s", f" (resuming {resume})" if resume else "")
            await self._run(websocket, state)
        except (WebSocketDisconnect, OSError):
            logger.info("ws: connection dropped")
        finally:
            self.gate.release()
            suffix = f" (session {state.session_handle})" if state.session_handle else ""
            logger.info("ws: disconnected%s", suffix)

    async def _run(self, websocket: WebSocket, state: ConnectionState) -> None:
        first = await _receive_text(websocket)
        if first is None:
            return

        handshake = AuthHandshake(self.config.secret or "")
        if not handshake.authenticate(state, first):
            logger.warning("ws: authentication failed")
            await websocket.close(code=self.config.auth_failure_code, reason="Authentication failed")
            return

        await websocket.send_text(encode_event(AuthOk()))
        await self._converse(websocket, state)

    async def _converse(self, websocket: WebSocket, state: ConnectionState) -> None:
        inbox: asyncio.Queue[str | None] = asyncio.Queue()
        reader = asyncio.create_task(_pump(websocket, inbox))
        turn: asyncio.Task[bool] | None = None
        try:
            while True:
                prompt = await inbox.get()
                if prompt is None:
                    return
                turn = asyncio.create_task(self._forward_turn(websocket, state, prompt))
                await asyncio.wait({turn, reader}, return_when=asyncio.FIRST_COMPLETED)
                if not turn.done():
                    logger.info("ws: client left mid-turn, abandoning it")
                    turn.cancel()
                    await asyncio.gather(turn, return_exceptions=True)
                    return
                if not turn.result():
                    return
        finally:
            if turn is not None and not turn.done():
                turn.cancel()
            reader.cancel()
            if reader.done() and not reader.cancelled() and reader.exception() is not None:
                logger.warning("ws: reader failed: %r", reader.exception())

    async def _forward_turn(self, websocket: WebSocket, state: ConnectionState, prompt: str) -> bool:
        """Stream one turn to the client; `False` when the client went away."""

        if not state.authenticated:
            raise RuntimeError("prompt received on an unauthenticated connection")

        async with aclosing(self.relay.run_turn(prompt, state.session_handle)) as events:
            async for event in events:
                if isinstance(event, Done):
                    state.record_session(event.session_id)
                try:
                    await websocket.send_text(encode_event(event))
                except (WebSocketDisconnect, RuntimeError, OSError):
                    logger.info("ws: client went away mid-turn")
                    return False
        return True


async def _pump(websocket: WebSocket, inbox: asyncio.Queue[str | None]) -> None:
    try:
        while True:
            text = await _receive_text(websocket)
            if text is None:
                return
            inbox.put_nowait(text)
    finally:
        inbox.put_nowait(None)


async def _receive_text(websocket: WebSocket) -> str | None:
    """Next frame as text, or `None` once the client has disconnected."""

    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        return None
    text = message.get("text")
    if text is None:
        text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
    return text


async def _refuse(websocket: WebSocket, refusal: Refusal) -> None:
    if _DENIAL_EXTENSION in (websocket.scope.get("extensions") or {}):
        await websocket.send_denial_response(
            PlainTextResponse(refusal.reason, status_code=refusal.status_code)
        )
    else:
        await websocket.close(code=refusal.close_code, reason=refusal.reason)
