"""Confined path resolution for documents and image assets."""

from __future__ import annotations

import os
import stat
from datetime import datetime, timezone
from pathlib import Path

from docrelay.types import DocumentEntry

DOCUMENT_EXTENSION = ".md"

_CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
}

_FORBIDDEN_CHARS = ("/", "\\", "\0")


def is_safe_name(name: str) -> bool:
    """Reject names that could address anything but a direct child of the root."""

    if not name or name in {".", ".."}:
        return False
    if os.sep in name or (os.altsep and os.altsep in name):
        return False
    return not any(char in name for char in _FORBIDDEN_CHARS)


class DocumentResolver:
    """Maps slugs and asset names to real files strictly inside `root`.

    Symlinks are followed, but the final target must still live below the
    resolved root. Every failure, including traversal attempts, is reported
    as `None` so callers cannot tell them apart from missing files.
    """

    def __init__(
        self,
        root: Path,
        *,
        image_extensions: tuple[str, ...] = tuple(_CONTENT_TYPES),
    ) -> None:
        self.root = root
        self.image_extensions = tuple(ext.lower() for ext in image_extensions)

    def is_asset_name(self, name: str) -> bool:
        return Path(name).suffix.lower() in self.image_extensions

    def resolve_document(self, slug: str) -> Path | None:
        if not is_safe_name(slug):
            return None
        return self._resolve(slug + DOCUMENT_EXTENSION)

    def resolve_asset(self, name: str) -> Path | None:
        if not is_safe_name(name) or not self.is_asset_name(name):
            return None
        return self._resolve(name)

    def content_type(self, path: Path) -> str:
        return _CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")

    def list_documents(self) -> list[DocumentEntry]:
        """Documents below the root, newest first; ties ordered by slug."""

        try:
            names = sorted(os.listdir(self.root))
        except OSError:
            return []

        entries: list[DocumentEntry] = []
        for name in names:
            if not name.endswith(DOCUMENT_EXTENSION):
                continue
            slug = name[: -len(DOCUMENT_EXTENSION)]
            resolved = self.resolve_document(slug)
            if resolved is None:
                continue
            try:
                mtime = resolved.stat().st_mtime
            except OSError:
                continue
            entries.append(
                DocumentEntry(
                    slug=slug,
                    name=slug,
                    mtime=datetime.fromtimestamp(mtime, tz=timezone.utc),
                )
            )

        entries.sort(key=lambda entry: (-entry.mtime.timestamp(), entry.slug))
        return entries

    def _resolve(self, name: str) -> Path | None:
        try:
            real_root = self.root.resolve(strict=True)
            candidate = (self.root / name).resolve(strict=True)
            mode = candidate.stat().st_mode
        except (OSError, RuntimeError, ValueError):
            # RuntimeError covers symlink loops on older interpreters.
            return None

        if candidate == real_root or not candidate.is_relative_to(real_root):
            return None
        if not stat.S_ISREG(mode):
            return None
        return candidate
