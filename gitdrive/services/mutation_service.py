"""Mutation planner: one logical drive operation -> ordered single-blob calls.

The backend commits every blob change independently, so a rename is a read,
a write and a delete with no transaction around them.  Each operation is
tracked as a ``PendingMutation`` whose steps record what has already happened
at the backend.

Failure policy:
- A failure before anything was written raises a typed error and leaves the
  tree untouched (``MutationFailedError`` for failed steps, ``ConflictError``
  for a stale content identifier).
- A failure after something was written returns a ``PARTIAL`` outcome.  For a
  rename this means both the old and the new path exist.
"""

from __future__ import annotations

import enum
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gitdrive.exceptions import (
    AlreadyExistsError,
    ConflictError,
    DriveError,
    MutationFailedError,
    NotFoundError,
    TooLargeError,
)
from gitdrive.filesystem.directory import find_entry, is_sentinel
from gitdrive.filesystem.entry import (
    Entry,
    EntryKind,
    base_name,
    join_path,
    normalize_path,
    parent_path,
    validate_name,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from gitdrive.storage.session import DriveSession

logger = logging.getLogger(__name__)


class StepAction(enum.StrEnum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


class StepState(enum.StrEnum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class MutationStatus(enum.StrEnum):
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class MutationStep:
    action: StepAction
    path: str
    state: StepState = StepState.PENDING
    error: DriveError | None = None
    note: str | None = None

    def done(self) -> None:
        self.state = StepState.DONE

    def fail(self, error: DriveError) -> None:
        self.state = StepState.FAILED
        self.error = error

    def skip(self, note: str) -> None:
        self.state = StepState.SKIPPED
        self.note = note


@dataclass
class PendingMutation:
    """An operation in flight with the completion state of each sub-step."""

    operation: str
    path: str
    target: str | None = None
    steps: list[MutationStep] = field(default_factory=list)

    def add_step(self, action: StepAction, path: str) -> MutationStep:
        step = MutationStep(action=action, path=path)
        self.steps.append(step)
        return step

    @property
    def completed_steps(self) -> list[MutationStep]:
        return [step for step in self.steps if step.state is StepState.DONE]

    @property
    def failed_steps(self) -> list[MutationStep]:
        return [step for step in self.steps if step.state is StepState.FAILED]

    @property
    def changed_backend(self) -> bool:
        """True once any write or delete has reached the backend."""
        return any(step.action is not StepAction.READ for step in self.completed_steps)

    @property
    def status(self) -> MutationStatus:
        if not self.failed_steps:
            return MutationStatus.SUCCEEDED
        if self.changed_backend:
            return MutationStatus.PARTIAL
        return MutationStatus.FAILED

    def outcome(self) -> MutationOutcome:
        failed = self.failed_steps
        return MutationOutcome(
            operation=self.operation,
            status=self.status,
            path=self.path,
            target=self.target,
            steps=tuple(self.steps),
            error=failed[0].error if failed else None,
        )


@dataclass(frozen=True)
class MutationOutcome:
    """Final report of a mutation, including every step's state."""

    operation: str
    status: MutationStatus
    path: str
    target: str | None
    steps: tuple[MutationStep, ...]
    error: DriveError | None = None

    @property
    def ok(self) -> bool:
        return self.status is MutationStatus.SUCCEEDED

    @property
    def completed(self) -> list[MutationStep]:
        return [step for step in self.steps if step.state is StepState.DONE]

    @property
    def skipped(self) -> list[MutationStep]:
        return [step for step in self.steps if step.state is StepState.SKIPPED]


@asynccontextmanager
async def _directory_locks(session: DriveSession, *directories: str) -> AsyncIterator[None]:
    """Hold the mutation locks of several directories, acquired in sorted order."""
    async with AsyncExitStack() as stack:
        for directory in sorted(set(directories)):
            await stack.enter_async_context(session.directory_lock(directory))
        yield


def _require_file(entry: Entry) -> str:
    if entry.kind is not EntryKind.FILE:
        raise IsADirectoryError(f"Expected a file, got a directory: {entry.path}")
    if not entry.content_id:
        raise ValueError(f"A content identifier is required to modify {entry.path}")
    return normalize_path(entry.path)


async def rename_file(session: DriveSession, entry: Entry, new_name: str) -> MutationOutcome:
    """Rename a file within its directory."""
    name = validate_name(new_name)
    target = join_path(parent_path(normalize_path(entry.path)), name)
    return await move_file(session, entry, target, operation="rename")


async def move_file(
    session: DriveSession,
    entry: Entry,
    new_path: str,
    *,
    operation: str = "move",
) -> MutationOutcome:
    """Move a file by copying it to ``new_path`` and deleting the original.

    Steps: read the current blob, write it at the new path, delete the old
    path guarded by its content identifier.  A failed delete leaves both paths
    in place and yields a ``PARTIAL`` outcome.
    """
    source = _require_file(entry)
    target = normalize_path(new_path)
    if not target:
        raise ValueError("Target path must not be the drive root")
    mutation = PendingMutation(operation=operation, path=source, target=target)
    if target == source:
        return mutation.outcome()

    async with _directory_locks(session, parent_path(source), parent_path(target)):
        if await find_entry(session, target) is not None:
            raise AlreadyExistsError(target)

        read = mutation.add_step(StepAction.READ, source)
        try:
            blob = await session.store.get(source)
        except DriveError as exc:
            read.fail(exc)
            raise MutationFailedError(mutation, exc) from exc
        if blob.content_id != entry.content_id:
            conflict = ConflictError(source, "Content changed since it was listed")
            read.fail(conflict)
            raise conflict
        read.done()

        write = mutation.add_step(StepAction.WRITE, target)
        message = f"Rename: {base_name(source)} → {base_name(target)}"
        if operation == "move":
            message = f"Move: {source} → {target}"
        try:
            await session.store.put(target, blob.content, message)
        except DriveError as exc:
            write.fail(exc)
            raise MutationFailedError(mutation, exc) from exc
        write.done()
        session.cache.invalidate(target)

        delete = mutation.add_step(StepAction.DELETE, source)
        try:
            await session.store.delete(source, blob.content_id, "Delete old file after rename")
        except DriveError as exc:
            delete.fail(exc)
            logger.warning(
                "%s of %s left a duplicate at %s: %s", operation, source, target, exc
            )
        else:
            delete.done()
        session.cache.invalidate(source)

    logger.info("%s %s -> %s: %s", operation, source, target, mutation.status)
    return mutation.outcome()


async def delete_file(session: DriveSession, entry: Entry) -> MutationOutcome:
    """Delete one file guarded by its content identifier.

    A stale identifier raises ``ConflictError`` and a vanished path raises
    ``NotFoundError`` so callers can tell "refresh and retry" from "already gone".
    """
    path = _require_file(entry)
    mutation = PendingMutation(operation="delete", path=path)
    async with _directory_locks(session, parent_path(path)):
        step = mutation.add_step(StepAction.DELETE, path)
        try:
            await session.store.delete(path, entry.content_id or "", f"Delete {entry.name}")
        except DriveError as exc:
            step.fail(exc)
            raise
        finally:
            session.cache.invalidate(path)
        step.done()
    logger.info("Deleted %s", path)
    return mutation.outcome()


async def delete_directory(session: DriveSession, entry: Entry) -> MutationOutcome:
    """Delete the files directly inside a directory.

    The backend has no recursive delete and this operation does not emulate
    one: subdirectories are recorded as skipped steps and left in place.  The
    sentinel marker is deleted last.  Individual failures do not stop the
    remaining deletes; the outcome is ``PARTIAL`` if some succeeded.
    """
    if entry.kind is not EntryKind.DIRECTORY:
        raise NotADirectoryError(f"Expected a directory, got a file: {entry.path}")
    directory = normalize_path(entry.path)
    if not directory:
        raise ValueError("The drive root cannot be deleted")
    mutation = PendingMutation(operation="delete_directory", path=directory)

    async with _directory_locks(session, directory, parent_path(directory)):
        children = await session.store.list(directory)
        sentinel = session.settings.sentinel_name
        ordered = sorted(children, key=lambda child: is_sentinel(child, sentinel))
        for child in ordered:
            step = mutation.add_step(StepAction.DELETE, child.path)
            if child.kind is EntryKind.DIRECTORY:
                step.skip("subdirectory not deleted, directory delete is not recursive")
                continue
            try:
                await session.store.delete(
                    child.path, child.content_id or "", f"Delete {child.name}"
                )
            except DriveError as exc:
                step.fail(exc)
                logger.warning("Failed to delete %s in %s: %s", child.path, directory, exc)
            else:
                step.done()
        session.cache.invalidate(directory)

    skipped = [step.path for step in mutation.steps if step.state is StepState.SKIPPED]
    if skipped:
        logger.warning(
            "Directory delete of %s is not recursive; left %d subdirectories: %s",
            directory,
            len(skipped),
            ", ".join(skipped),
        )
    return mutation.outcome()


async def upload_file(
    session: DriveSession,
    directory: str,
    name: str,
    content: bytes,
    *,
    overwrite: bool = False,
) -> MutationOutcome:
    """Create (or with ``overwrite`` update) one file in ``directory``.

    The size ceiling is checked locally before any backend call.
    """
    filename = validate_name(name)
    path = join_path(normalize_path(directory), filename)
    limit = session.settings.max_blob_bytes
    if len(content) > limit:
        raise TooLargeError(path, len(content), limit)
    if filename == session.settings.sentinel_name:
        raise ValueError(f"{filename} is reserved for directory markers")

    mutation = PendingMutation(operation="upload", path=path)
    async with _directory_locks(session, parent_path(path)):
        expected_content_id: str | None = None
        existing = await find_entry(session, path)
        if existing is not None:
            if existing.kind is EntryKind.DIRECTORY or not overwrite:
                raise AlreadyExistsError(path)
            expected_content_id = existing.content_id

        verb = "Update" if expected_content_id else "Upload"
        step = mutation.add_step(StepAction.WRITE, path)
        try:
            await session.store.put(path, content, f"{verb} {filename}", expected_content_id)
        except DriveError as exc:
            step.fail(exc)
            raise
        finally:
            session.cache.invalidate(path)
        step.done()
    logger.info("%s %s (%d bytes)", verb, path, len(content))
    return mutation.outcome()


async def download_file(session: DriveSession, path: str) -> bytes:
    """Read the whole content of one file."""
    normalized = normalize_path(path)
    if not normalized:
        raise NotFoundError(normalized)
    blob = await session.store.get(normalized)
    return blob.content
