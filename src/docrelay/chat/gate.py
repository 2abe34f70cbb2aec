"""Admission control for the chat socket."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from docrelay.config import ChatConfig


class ConnectionGate:
    """Process-wide connection counter, touched only via `admit`/`release`.

    The capacity check and the increment happen under one lock, so two racing
    upgrades can never both take the last slot.
    """

    def __init__(self, capacity: int = 1) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._active = 0
        self._lock = threading.Lock()

    @property
    def active(self) -> int:
        with self._lock:
            return self._active

    def admit(self) -> bool:
        with self._lock:
            if self._active >= self._capacity:
                return False
            self._active += 1
            return True

    def release(self) -> None:
        with self._lock:
            if self._active == 0:
                raise RuntimeError("release() without a matching admit()")
            self._active -= 1


@dataclass(slots=True, frozen=True)
class Refusal:
    """Why an upgrade was refused, in HTTP terms plus a pre-accept close code."""

    status_code: int
    reason: str
    close_code: int


SERVICE_UNAVAILABLE = Refusal(503, "Chat is not configured", 1013)
ORIGIN_FORBIDDEN = Refusal(403, "Origin not allowed", 1008)
TOO_MANY_CONNECTIONS = Refusal(429, "Too many connections", 1013)


def check_admission(config: ChatConfig, origin: str | None, gate: ConnectionGate) -> Refusal | None:
    """Run the admission checks in order and take a slot on success.

    A `None` result means the caller now holds a slot and must call
    `gate.release()` exactly once when the connection ends.
    """

    if not config.enabled:
        return SERVICE_UNAVAILABLE
    if config.allowed_origins and origin is not None and origin not in config.allowed_origins:
        return ORIGIN_FORBIDDEN
    if not gate.admit():
        return TOO_MANY_CONNECTIONS
    return None
