"""First-frame shared-secret authentication."""

from __future__ import annotations

import hmac

from docrelay.protocol import parse_auth_request
from docrelay.types import ConnectionState


class AuthHandshake:
    """Unauthenticated -> Authenticated, decided by the first frame only.

    There is no retry: any first frame that is not a well-formed `auth`
    request carrying the configured secret fails the handshake.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("secret must be non-empty")
        self._secret = secret.encode("utf-8")

    def verify(self, raw: str) -> bool:
        request = parse_auth_request(raw)
        if request is None:
            return False
        return hmac.compare_digest(request.token.encode("utf-8"), self._secret)

    def authenticate(self, state: ConnectionState, raw: str) -> bool:
        if state.authenticated:
            raise RuntimeError("connection is already authenticated")
        if not self.verify(raw):
            return False
        state.mark_authenticated()
        return True
