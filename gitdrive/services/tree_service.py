"""Tree cache and view state for the currently displayed directory."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from gitdrive.exceptions import AlreadyExistsError, DriveError
from gitdrive.filesystem.directory import FileCategory, list_directory, resolve_file_type
from gitdrive.filesystem.entry import (
    Entry,
    EntryKind,
    join_path,
    normalize_path,
    validate_name,
)
from gitdrive.services.datetime_service import is_recent, now_utc

if TYPE_CHECKING:
    from collections.abc import Iterable

    from gitdrive.storage.session import DriveSession

logger = logging.getLogger(__name__)

ROOT_LABEL = "My Drive"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ViewState(enum.StrEnum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class ViewFilter(enum.StrEnum):
    ALL = "all"
    FOLDERS = "folders"
    IMAGES = "images"
    DOCUMENTS = "documents"
    RECENT = "recent"


class SortKey(enum.StrEnum):
    NAME = "name"
    NAME_DESC = "name_desc"
    DATE = "date"
    DATE_OLD = "date_old"
    SIZE = "size"
    SIZE_SMALL = "size_small"


_DOCUMENT_CATEGORIES = frozenset({FileCategory.PDF, FileCategory.DOCUMENT, FileCategory.TEXT})


@dataclass(frozen=True)
class DirectoryStats:
    folders: int = 0
    files: int = 0
    images: int = 0
    pdfs: int = 0
    total_size: int = 0


@dataclass(frozen=True)
class StorageUsage:
    used_bytes: int
    quota_bytes: int

    @property
    def percent(self) -> float:
        return min(self.used_bytes / self.quota_bytes * 100.0, 100.0)


@dataclass(frozen=True)
class SelectionResolution:
    """Selected paths resolved against the current snapshot."""

    entries: tuple[Entry, ...]
    missing: tuple[str, ...]


def filter_entries(
    entries: Iterable[Entry],
    view_filter: ViewFilter,
    *,
    recent_days: int = 7,
    now: datetime | None = None,
) -> list[Entry]:
    if view_filter is ViewFilter.FOLDERS:
        return [e for e in entries if e.is_dir]
    if view_filter is ViewFilter.IMAGES:
        return [e for e in entries if e.is_file and resolve_file_type(e.name) is FileCategory.IMAGE]
    if view_filter is ViewFilter.DOCUMENTS:
        return [
            e for e in entries if e.is_file and resolve_file_type(e.name) in _DOCUMENT_CATEGORIES
        ]
    if view_filter is ViewFilter.RECENT:
        reference = now or now_utc()
        return [e for e in entries if is_recent(e.modified_at, recent_days, reference)]
    return list(entries)


def search_entries(entries: Iterable[Entry], query: str) -> list[Entry]:
    """Case-insensitive substring match on entry names; blank query matches all."""
    term = query.strip().casefold()
    if not term:
        return list(entries)
    return [e for e in entries if term in e.name.casefold()]


def sort_entries(entries: Iterable[Entry], sort_key: SortKey) -> list[Entry]:
    """Return a sorted copy; ties fall back to the name so the order is stable."""
    by_name = sorted(entries, key=lambda e: (e.name.casefold(), e.name))
    if sort_key is SortKey.NAME:
        return by_name
    if sort_key is SortKey.NAME_DESC:
        return by_name[::-1]
    if sort_key is SortKey.DATE:
        return sorted(by_name, key=lambda e: e.modified_at or _EPOCH, reverse=True)
    if sort_key is SortKey.DATE_OLD:
        return sorted(by_name, key=lambda e: e.modified_at or _EPOCH)
    if sort_key is SortKey.SIZE:
        return sorted(by_name, key=lambda e: e.size, reverse=True)
    return sorted(by_name, key=lambda e: e.size)


def compute_stats(entries: Iterable[Entry]) -> DirectoryStats:
    folders = files = images = pdfs = total_size = 0
    for entry in entries:
        if entry.is_dir:
            folders += 1
            continue
        files += 1
        total_size += entry.size
        category = resolve_file_type(entry.name)
        if category is FileCategory.IMAGE:
            images += 1
        elif category is FileCategory.PDF:
            pdfs += 1
    return DirectoryStats(folders, files, images, pdfs, total_size)


def breadcrumbs(path: str) -> list[tuple[str, str]]:
    """Return ``(label, path)`` pairs from the drive root down to ``path``."""
    crumbs = [(ROOT_LABEL, "")]
    normalized = normalize_path(path)
    if not normalized:
        return crumbs
    current = ""
    for part in normalized.split("/"):
        current = join_path(current, part)
        crumbs.append((part, current))
    return crumbs


class TreeView:
    """Volatile per-directory snapshot with filter, sort, search and selection.

    State machine: ``EMPTY -> LOADING -> READY | ERROR``.  The snapshot is
    rebuilt wholesale on every load and never patched.  Filter, sort and
    search are projections that never touch the snapshot itself.

    Selection is tracked by path together with the content identifier seen at
    selection time; identifiers are re-resolved against the snapshot when a
    batch runs, so a rename elsewhere never silently changes what is selected.
    """

    def __init__(self, session: DriveSession) -> None:
        self.session = session
        self.path = ""
        self.state = ViewState.EMPTY
        self.error: Exception | None = None
        self.view_filter = ViewFilter.ALL
        self.sort_key = SortKey.NAME
        self.search = ""
        self._snapshot: tuple[Entry, ...] = ()
        self._visible: tuple[Entry, ...] = ()
        self._selection: dict[str, str | None] = {}

    @property
    def snapshot(self) -> tuple[Entry, ...]:
        return self._snapshot

    @property
    def visible(self) -> tuple[Entry, ...]:
        return self._visible

    def _reproject(self) -> None:
        filtered = filter_entries(
            self._snapshot,
            self.view_filter,
            recent_days=self.session.settings.recent_days,
        )
        searched = search_entries(filtered, self.search)
        self._visible = tuple(sort_entries(searched, self.sort_key))

    async def navigate(self, path: str) -> tuple[Entry, ...]:
        directory = normalize_path(path)
        if directory != self.path:
            self._selection.clear()
        self.path = directory
        return await self.refresh()

    async def refresh(self) -> tuple[Entry, ...]:
        """Re-list the current directory from the backend."""
        self.state = ViewState.LOADING
        try:
            listing = await list_directory(self.session, self.path)
        except (DriveError, NotADirectoryError) as exc:
            self.state = ViewState.ERROR
            self.error = exc
            self._snapshot = ()
            self._visible = ()
            logger.error("Failed to load %s: %s", self.path or "/", exc)
            raise
        self.state = ViewState.READY
        self.error = None
        self._snapshot = listing
        self._reproject()
        return self._visible

    def set_filter(self, view_filter: ViewFilter) -> None:
        self.view_filter = view_filter
        self._reproject()

    def set_sort(self, sort_key: SortKey) -> None:
        self.sort_key = sort_key
        self._reproject()

    def set_search(self, query: str) -> None:
        self.search = query
        self._reproject()

    def find(self, name_or_path: str) -> Entry | None:
        for entry in self._snapshot:
            if name_or_path in (entry.name, entry.path):
                return entry
        return None

    def _require_ready(self) -> None:
        if self.state is not ViewState.READY:
            raise RuntimeError(f"View of {self.path or '/'} is not ready ({self.state})")

    def validate_new_name(self, name: str) -> str:
        """Reject names that are invalid or already taken in this directory."""
        self._require_ready()
        cleaned = validate_name(name)
        if cleaned == self.session.settings.sentinel_name:
            raise ValueError(f"{cleaned} is reserved for directory markers")
        if self.find(cleaned) is not None:
            raise AlreadyExistsError(join_path(self.path, cleaned))
        return cleaned

    def stats(self) -> DirectoryStats:
        return compute_stats(self._snapshot)

    def storage_usage(self, quota_bytes: int | None = None) -> StorageUsage:
        quota = quota_bytes or self.session.settings.storage_quota_bytes
        return StorageUsage(used_bytes=self.stats().total_size, quota_bytes=quota)

    def breadcrumbs(self) -> list[tuple[str, str]]:
        return breadcrumbs(self.path)

    # Selection

    @property
    def selected_paths(self) -> list[str]:
        return list(self._selection)

    def select(self, entry: Entry) -> int:
        self._require_ready()
        if entry.path not in {e.path for e in self._snapshot}:
            raise ValueError(f"Not in the current directory: {entry.path}")
        self._selection[entry.path] = entry.content_id
        return len(self._selection)

    def deselect(self, path: str) -> int:
        self._selection.pop(path, None)
        return len(self._selection)

    def clear_selection(self) -> None:
        self._selection.clear()

    def resolve_selection(self) -> SelectionResolution:
        """Map selected paths to the entries currently in the snapshot."""
        by_path = {entry.path: entry for entry in self._snapshot}
        entries: list[Entry] = []
        missing: list[str] = []
        for path, selected_id in self._selection.items():
            entry = by_path.get(path)
            if entry is None:
                missing.append(path)
                continue
            if entry.kind is EntryKind.FILE and entry.content_id != selected_id:
                logger.info("Selected %s changed since selection, using current version", path)
            entries.append(entry)
        return SelectionResolution(tuple(entries), tuple(missing))
