"""Wire protocol for the chat socket.

Server frames are JSON objects discriminated by `type`; every turn ends with
exactly one `done` or `error`. The first client frame is an `auth` request,
later client frames are raw prompt text.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, StrictStr, TypeAdapter, ValidationError


class AuthRequest(BaseModel):
    """First client frame on every connection."""

    type: Literal["auth"]
    token: StrictStr


class AuthOk(BaseModel):
    type: Literal["auth-ok"] = "auth-ok"


class TextDelta(BaseModel):
    """Incremental assistant output; concatenate in arrival order."""

    type: Literal["text-delta"] = "text-delta"
    delta: str


class ToolUse(BaseModel):
    type: Literal["tool-use"] = "tool-use"
    name: str
    input: Any = None


class ToolResult(BaseModel):
    type: Literal["tool-result"] = "tool-result"
    name: str
    output: str


class Done(BaseModel):
    """Successful end of a turn, carrying the handle for the next one."""

    type: Literal["done"] = "done"
    cost: float
    turns: int
    session_id: str


class Error(BaseModel):
    """Failed end of a turn."""

    type: Literal["error"] = "error"
    message: str
    recoverable: bool = False


ChatEvent = Annotated[
    Union[AuthOk, TextDelta, ToolUse, ToolResult, Done, Error],
    Field(discriminator="type"),
]

TERMINAL_EVENTS = (Done, Error)

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(ChatEvent)
_KNOWN_TAGS = frozenset({"auth-ok", "text-delta", "tool-use", "tool-result", "done", "error"})


def encode_event(event: BaseModel) -> str:
    return event.model_dump_json()


def parse_event(raw: str | bytes) -> BaseModel | None:
    """Decode one server frame; unknown tags yield `None` instead of failing.

    Raises:
        ValueError: if the frame is not JSON or a known tag has a bad payload.
    """

    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError("Chat event must be a JSON object")
    if payload.get("type") not in _KNOWN_TAGS:
        return None
    try:
        return _EVENT_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


def parse_auth_request(raw: str) -> AuthRequest | None:
    try:
        return AuthRequest.model_validate_json(raw)
    except ValidationError:
        return None
