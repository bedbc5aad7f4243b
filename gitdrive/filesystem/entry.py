"""Virtual tree entries and slash-delimited path helpers.

The backend addresses every blob by a flat path such as ``photos/2024/a.jpg``.
The drive root is the empty string.  Paths are case-sensitive and never carry
leading or trailing slashes once normalized.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

_FORBIDDEN_SEGMENTS = frozenset({"", ".", ".."})


class EntryKind(enum.StrEnum):
    FILE = "file"
    DIRECTORY = "dir"


@dataclass(frozen=True)
class Entry:
    """One node of the virtual tree as reported by a directory listing."""

    path: str
    name: str
    kind: EntryKind
    content_id: str | None = None
    size: int = 0
    modified_at: datetime | None = None
    download_url: str | None = None

    @property
    def is_dir(self) -> bool:
        return self.kind is EntryKind.DIRECTORY

    @property
    def is_file(self) -> bool:
        return self.kind is EntryKind.FILE

    @property
    def parent(self) -> str:
        return parent_path(self.path)


def normalize_path(path: str) -> str:
    """Normalize a user-supplied path.

    Strips surrounding whitespace and slashes and rejects empty, ``.`` and
    ``..`` segments.  Returns ``""`` for the root.
    """
    stripped = path.strip().strip("/")
    if not stripped:
        return ""
    segments = stripped.split("/")
    for segment in segments:
        if segment in _FORBIDDEN_SEGMENTS:
            raise ValueError(f"Invalid path segment {segment!r} in path: {path}")
    return "/".join(segments)


def validate_name(name: str) -> str:
    """Validate a single entry name and return it stripped."""
    cleaned = name.strip()
    if cleaned in _FORBIDDEN_SEGMENTS:
        raise ValueError(f"Invalid name: {name!r}")
    if "/" in cleaned:
        raise ValueError(f"Name must not contain '/': {name}")
    return cleaned


def join_path(directory: str, name: str) -> str:
    """Join a normalized directory path and a single name."""
    return f"{directory}/{name}" if directory else name


def parent_path(path: str) -> str:
    """Return the parent directory of a normalized path (root for top-level entries)."""
    head, _, _ = path.rpartition("/")
    return head


def base_name(path: str) -> str:
    """Return the last segment of a normalized path."""
    return path.rpartition("/")[2]


def ancestors(path: str) -> list[str]:
    """Return every ancestor of ``path``, nearest first, ending with the root."""
    result: list[str] = []
    current = path
    while current:
        current = parent_path(current)
        result.append(current)
    return result
