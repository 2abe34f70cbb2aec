"""Slug-to-token access policy backed by a JSON file in the document root."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

_RULES_ADAPTER = TypeAdapter(dict[str, list[str]])
_BEARER_PATTERN = re.compile(r"^Bearer\s+", flags=re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class AccessRules:
    """Slug -> allowed tokens. Unlisted slugs fall back to `default_allow`."""

    tokens: Mapping[str, frozenset[str]] = field(default_factory=dict)
    default_allow: bool = True


class AccessPolicy:
    """Loads access rules fresh on every call.

    A missing file means no rules, so everything is public. An unreadable or
    malformed file means no rules when `fail_open` is set, and deny-all
    otherwise.
    """

    def __init__(self, path: Path, *, fail_open: bool = True) -> None:
        self.path = path
        self.fail_open = fail_open

    def load(self) -> AccessRules:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return AccessRules()
        except OSError as exc:
            return self._on_load_failure(exc)

        try:
            parsed = _RULES_ADAPTER.validate_json(raw)
        except ValidationError as exc:
            return self._on_load_failure(exc)

        return AccessRules(
            tokens={slug: frozenset(tokens) for slug, tokens in parsed.items()},
        )

    def _on_load_failure(self, exc: Exception) -> AccessRules:
        if self.fail_open:
            logger.warning("Access file %s unusable, serving all documents: %s", self.path, exc)
            return AccessRules()
        logger.warning("Access file %s unusable, denying all documents: %s", self.path, exc)
        return AccessRules(default_allow=False)


def can_access(slug: str, token: str | None, rules: AccessRules) -> bool:
    """Exact-match membership check; unlisted slugs use the rules' default."""

    allowed = rules.tokens.get(slug)
    if allowed is None:
        return rules.default_allow
    return token is not None and token in allowed


def extract_token(query_token: str | None, authorization: str | None) -> str | None:
    """Query parameter first, then an `Authorization: Bearer` header."""

    if query_token:
        return query_token
    if authorization:
        token = _BEARER_PATTERN.sub("", authorization).strip()
        return token or None
    return None
