"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True, frozen=True)
class DocumentEntry:
    """A listed document, derived from the document root on each request."""

    slug: str
    name: str
    mtime: datetime


@dataclass(slots=True)
class ConnectionState:
    """Per-connection state for the chat socket.

    Only the message-handling path of the owning connection touches this
    record. `authenticated` flips to true once and never back.
    """

    authenticated: bool = False
    session_handle: str | None = None

    def mark_authenticated(self) -> None:
        self.authenticated = True

    def record_session(self, handle: str) -> None:
        self.session_handle = handle
