"""Batch coordinator: sequential per-item uploads, downloads and deletes with isolated failures."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, TypeVar

from gitdrive.exceptions import DriveError, NotFoundError, SelectionTooLargeError
from gitdrive.filesystem.entry import EntryKind, join_path, normalize_path
from gitdrive.services.mutation_service import (
    MutationOutcome,
    MutationStatus,
    delete_directory,
    delete_file,
    download_file,
    upload_file,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from gitdrive.filesystem.entry import Entry
    from gitdrive.services.tree_service import TreeView
    from gitdrive.storage.session import DriveSession

    ProgressCallback = Callable[[int, int, "BatchItemResult"], None]

logger = logging.getLogger(__name__)

# Errors isolated to the item that raised them.
_ITEM_ERRORS = (DriveError, ValueError, IsADirectoryError, NotADirectoryError)


class _PathItem(Protocol):
    @property
    def path(self) -> str: ...


_ItemT = TypeVar("_ItemT", bound=_PathItem)


@dataclass(frozen=True)
class BatchItemResult:
    """Outcome of one item of a batch."""

    path: str
    ok: bool
    error_kind: str | None = None
    error_message: str | None = None
    content: bytes | None = None
    outcome: MutationOutcome | None = None

    @classmethod
    def failure(cls, path: str, exc: Exception) -> BatchItemResult:
        if isinstance(exc, DriveError):
            return cls(path=path, ok=False, error_kind=exc.kind, error_message=str(exc))
        if isinstance(exc, IsADirectoryError):
            return cls(path=path, ok=False, error_kind="is_directory", error_message=str(exc))
        if isinstance(exc, NotADirectoryError):
            return cls(path=path, ok=False, error_kind="not_a_directory", error_message=str(exc))
        return cls(path=path, ok=False, error_kind="invalid", error_message=str(exc))


@dataclass(frozen=True)
class UploadItem:
    """One payload to upload, addressed by its target path."""

    path: str
    name: str
    content: bytes


@dataclass(frozen=True)
class BatchResult:
    operation: str
    items: tuple[BatchItemResult, ...]

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.ok)

    @property
    def failed(self) -> int:
        return len(self.items) - self.succeeded


def check_selection_size(session: DriveSession, directory: str, count: int) -> None:
    """Reject an oversized selection before any backend call."""
    limit = session.settings.max_selection
    if count > limit:
        raise SelectionTooLargeError(directory, count, limit)


async def _run_items(
    operation: str,
    entries: Sequence[_ItemT],
    missing: Sequence[str],
    action: Callable[[_ItemT], Awaitable[BatchItemResult]],
    *,
    progress: ProgressCallback | None,
    delay: float = 0.0,
) -> BatchResult:
    total = len(entries) + len(missing)
    results: list[BatchItemResult] = []

    def report(item: BatchItemResult) -> None:
        results.append(item)
        if progress is not None:
            progress(len(results), total, item)

    for index, entry in enumerate(entries):
        if index and delay:
            await asyncio.sleep(delay)
        try:
            item = await action(entry)
        except _ITEM_ERRORS as exc:
            logger.warning("%s of %s failed: %s", operation, entry.path, exc)
            item = BatchItemResult.failure(entry.path, exc)
        report(item)
    for path in missing:
        report(BatchItemResult.failure(path, NotFoundError(path, "No longer in this directory")))

    result = BatchResult(operation=operation, items=tuple(results))
    logger.info(
        "Batch %s finished: %d succeeded, %d failed", operation, result.succeeded, result.failed
    )
    return result


async def delete_entries(
    session: DriveSession,
    entries: Sequence[Entry],
    *,
    missing: Sequence[str] = (),
    directory: str = "",
    progress: ProgressCallback | None = None,
) -> BatchResult:
    """Delete each entry in turn; directories use the non-recursive delete."""
    check_selection_size(session, directory, len(entries) + len(missing))

    async def delete_one(entry: Entry) -> BatchItemResult:
        if entry.kind is EntryKind.DIRECTORY:
            outcome = await delete_directory(session, entry)
        else:
            outcome = await delete_file(session, entry)
        ok = outcome.status is MutationStatus.SUCCEEDED
        error = outcome.error
        return BatchItemResult(
            path=entry.path,
            ok=ok,
            error_kind=None if ok or error is None else error.kind,
            error_message=None if ok or error is None else str(error),
            outcome=outcome,
        )

    return await _run_items("delete", entries, missing, delete_one, progress=progress)


async def download_entries(
    session: DriveSession,
    entries: Sequence[Entry],
    *,
    missing: Sequence[str] = (),
    directory: str = "",
    progress: ProgressCallback | None = None,
) -> BatchResult:
    """Download each file in turn, pausing between consecutive downloads."""
    check_selection_size(session, directory, len(entries) + len(missing))

    async def download_one(entry: Entry) -> BatchItemResult:
        if entry.kind is EntryKind.DIRECTORY:
            return BatchItemResult(
                path=entry.path,
                ok=False,
                error_kind="is_directory",
                error_message=f"Directories cannot be downloaded: {entry.path}",
            )
        content = await download_file(session, entry.path)
        return BatchItemResult(path=entry.path, ok=True, content=content)

    return await _run_items(
        "download",
        entries,
        missing,
        download_one,
        progress=progress,
        delay=session.settings.download_delay_seconds,
    )


async def delete_selection(
    view: TreeView, *, progress: ProgressCallback | None = None
) -> BatchResult:
    """Delete the view's selection, then clear it and re-list the directory."""
    resolution = view.resolve_selection()
    result = await delete_entries(
        view.session,
        resolution.entries,
        missing=resolution.missing,
        directory=view.path,
        progress=progress,
    )
    view.clear_selection()
    await view.refresh()
    return result


async def download_selection(
    view: TreeView, *, progress: ProgressCallback | None = None
) -> BatchResult:
    """Download the view's selection, then clear it."""
    resolution = view.resolve_selection()
    result = await download_entries(
        view.session,
        resolution.entries,
        missing=resolution.missing,
        directory=view.path,
        progress=progress,
    )
    view.clear_selection()
    return result


async def upload_entries(
    session: DriveSession,
    files: Sequence[tuple[str, bytes]],
    *,
    directory: str = "",
    overwrite: bool = False,
    progress: ProgressCallback | None = None,
) -> BatchResult:
    """Upload ``(name, content)`` pairs into ``directory`` one at a time.

    Each file is checked against the size ceiling before its own write, so an
    oversized file fails alone without a backend call.
    """
    target = normalize_path(directory)
    items = [
        UploadItem(path=join_path(target, name), name=name, content=content)
        for name, content in files
    ]

    async def upload_one(item: UploadItem) -> BatchItemResult:
        outcome = await upload_file(
            session, target, item.name, item.content, overwrite=overwrite
        )
        return BatchItemResult(path=outcome.path, ok=True, outcome=outcome)

    return await _run_items("upload", items, (), upload_one, progress=progress)
