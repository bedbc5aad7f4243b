"""Directory emulation over a backend that only stores blobs.

A folder exists while at least one blob lives under its prefix.  An empty
folder is kept alive by a sentinel marker blob that never appears in any
user-facing listing.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

from gitdrive.exceptions import AlreadyExistsError, NotFoundError
from gitdrive.filesystem.entry import (
    Entry,
    EntryKind,
    base_name,
    join_path,
    normalize_path,
    parent_path,
)

if TYPE_CHECKING:
    from gitdrive.storage.session import DriveSession

logger = logging.getLogger(__name__)


class FileCategory(enum.StrEnum):
    IMAGE = "image"
    PDF = "pdf"
    DOCUMENT = "document"
    CODE = "code"
    TEXT = "text"
    OTHER = "other"


_CATEGORY_BY_EXTENSION: dict[str, FileCategory] = {
    **dict.fromkeys(
        ("jpg", "jpeg", "png", "gif", "webp", "bmp", "svg", "ico"), FileCategory.IMAGE
    ),
    "pdf": FileCategory.PDF,
    **dict.fromkeys(("doc", "docx", "rtf", "odt"), FileCategory.DOCUMENT),
    **dict.fromkeys(("txt", "md", "csv"), FileCategory.TEXT),
    **dict.fromkeys(
        ("js", "html", "css", "json", "xml", "py", "java", "cpp", "c", "php", "rb", "go"),
        FileCategory.CODE,
    ),
}


def resolve_file_type(name: str) -> FileCategory:
    """Classify a file name by extension; unknown extensions are ``other``."""
    stem, dot, extension = name.rpartition(".")
    if not dot or not stem:
        return FileCategory.OTHER
    return _CATEGORY_BY_EXTENSION.get(extension.lower(), FileCategory.OTHER)


def is_sentinel(entry: Entry, sentinel_name: str) -> bool:
    return entry.kind is EntryKind.FILE and entry.name == sentinel_name


async def list_directory(session: DriveSession, path: str) -> tuple[Entry, ...]:
    """List the visible immediate children of ``path``.

    A directory that was never populated cannot be told apart from an empty
    one, so ``NotFoundError`` yields an empty listing.  Every other backend
    error propagates.
    """
    directory = normalize_path(path)
    cached = session.cache.get(directory)
    if cached is not None:
        return cached

    try:
        raw = await session.store.list(directory)
    except NotFoundError:
        logger.debug("Listing %r not found, treating as empty", directory)
        raw = []

    sentinel = session.settings.sentinel_name
    seen: set[str] = set()
    visible: list[Entry] = []
    for entry in raw:
        if is_sentinel(entry, sentinel) or entry.path in seen:
            continue
        seen.add(entry.path)
        visible.append(entry)

    listing = tuple(visible)
    session.cache.put(directory, listing)
    return listing


async def find_entry(session: DriveSession, path: str) -> Entry | None:
    """Look up one entry by path through its parent's listing."""
    normalized = normalize_path(path)
    if not normalized:
        return None
    listing = await list_directory(session, parent_path(normalized))
    for entry in listing:
        if entry.path == normalized:
            return entry
    return None


async def create_directory(session: DriveSession, path: str) -> Entry:
    """Create a directory by writing an empty sentinel marker inside it."""
    directory = normalize_path(path)
    if not directory:
        raise AlreadyExistsError(directory, "The drive root always exists")

    existing = await find_entry(session, directory)
    if existing is not None:
        raise AlreadyExistsError(directory)

    marker = join_path(directory, session.settings.sentinel_name)
    await session.store.put(marker, b"", f"Create directory: {directory}")
    session.cache.invalidate(directory)
    logger.info("Created directory %s", directory)
    return Entry(
        path=directory,
        name=base_name(directory),
        kind=EntryKind.DIRECTORY,
    )
