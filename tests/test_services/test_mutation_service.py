"""Tests for the mutation planner: rename, move, delete, upload and download."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import pytest

from gitdrive.exceptions import (
    AlreadyExistsError,
    BackendUnavailableError,
    ConflictError,
    MutationFailedError,
    NotFoundError,
    TooLargeError,
)
from gitdrive.filesystem.directory import list_directory
from gitdrive.services.mutation_service import (
    MutationStatus,
    PendingMutation,
    StepAction,
    StepState,
    delete_directory,
    delete_file,
    download_file,
    move_file,
    rename_file,
    upload_file,
)
from gitdrive.storage.session import DriveSession
from tests.conftest import dir_entry, file_entry

if TYPE_CHECKING:
    from gitdrive.config import Settings
    from tests.conftest import FakeBlobStore


class TestPendingMutation:
    def test_status_transitions(self) -> None:
        mutation = PendingMutation(operation="rename", path="a.txt", target="b.txt")
        read = mutation.add_step(StepAction.READ, "a.txt")
        read.done()
        assert mutation.status is MutationStatus.SUCCEEDED
        write = mutation.add_step(StepAction.WRITE, "b.txt")
        write.fail(BackendUnavailableError("b.txt"))
        assert not mutation.changed_backend
        assert mutation.status is MutationStatus.FAILED

    def test_partial_once_backend_changed(self) -> None:
        mutation = PendingMutation(operation="rename", path="a.txt", target="b.txt")
        mutation.add_step(StepAction.WRITE, "b.txt").done()
        mutation.add_step(StepAction.DELETE, "a.txt").fail(BackendUnavailableError("a.txt"))
        outcome = mutation.outcome()
        assert outcome.status is MutationStatus.PARTIAL
        assert isinstance(outcome.error, BackendUnavailableError)
        assert [step.path for step in outcome.completed] == ["b.txt"]


class TestRenameFile:
    async def test_rename_success(self, session: DriveSession, store: FakeBlobStore) -> None:
        store.seed("docs/x.txt", b"payload")
        outcome = await rename_file(session, file_entry(store, "docs/x.txt"), "y.txt")

        assert outcome.status is MutationStatus.SUCCEEDED
        assert outcome.target == "docs/y.txt"
        assert "docs/x.txt" not in store.blobs
        assert store.blobs["docs/y.txt"] == b"payload"
        assert [step.action for step in outcome.steps] == [
            StepAction.READ,
            StepAction.WRITE,
            StepAction.DELETE,
        ]
        assert store.messages == ["Rename: x.txt → y.txt", "Delete old file after rename"]

    async def test_failed_delete_leaves_both_paths(
        self, session: DriveSession, store: FakeBlobStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        store.seed("x.txt", b"payload")
        store.fail("delete", "x.txt", BackendUnavailableError("x.txt"))

        with caplog.at_level(logging.WARNING, logger="gitdrive.services.mutation_service"):
            outcome = await rename_file(session, file_entry(store, "x.txt"), "y.txt")

        assert outcome.status is MutationStatus.PARTIAL
        assert not outcome.ok
        assert outcome.steps[2].state is StepState.FAILED
        names = {entry.name for entry in await list_directory(session, "")}
        assert names == {"x.txt", "y.txt"}
        assert "left a duplicate" in caplog.text

    async def test_stale_content_id_is_conflict_before_any_write(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("x.txt", b"old")
        entry = file_entry(store, "x.txt")
        store.seed("x.txt", b"changed elsewhere")

        with pytest.raises(ConflictError):
            await rename_file(session, entry, "y.txt")
        assert store.writes == []
        assert store.deletes == []
        assert "y.txt" not in store.blobs

    async def test_failed_write_raises_with_step_states(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("x.txt", b"payload")
        store.fail("put", "y.txt", BackendUnavailableError("y.txt"))

        with pytest.raises(MutationFailedError) as exc_info:
            await rename_file(session, file_entry(store, "x.txt"), "y.txt")

        error = exc_info.value
        assert isinstance(error.cause, BackendUnavailableError)
        states = [(step.action, step.state) for step in error.mutation.steps]
        assert states == [(StepAction.READ, StepState.DONE), (StepAction.WRITE, StepState.FAILED)]
        assert store.deletes == []
        assert store.blobs == {"x.txt": b"payload"}

    async def test_failed_read_raises(self, session: DriveSession, store: FakeBlobStore) -> None:
        store.seed("x.txt", b"payload")
        entry = file_entry(store, "x.txt")
        del store.blobs["x.txt"]

        with pytest.raises(MutationFailedError) as exc_info:
            await rename_file(session, entry, "y.txt")
        assert isinstance(exc_info.value.cause, NotFoundError)
        assert store.writes == []

    async def test_existing_target_rejected(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("x.txt", b"1")
        store.seed("y.txt", b"2")
        with pytest.raises(AlreadyExistsError):
            await rename_file(session, file_entry(store, "x.txt"), "y.txt")
        assert store.writes == []

    async def test_same_name_is_a_no_op(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("x.txt", b"1")
        outcome = await rename_file(session, file_entry(store, "x.txt"), " x.txt ")
        assert outcome.ok
        assert outcome.steps == ()
        assert store.calls == []

    @pytest.mark.parametrize("name", ["", "..", "a/b"])
    async def test_invalid_name(
        self, session: DriveSession, store: FakeBlobStore, name: str
    ) -> None:
        store.seed("x.txt", b"1")
        with pytest.raises(ValueError):
            await rename_file(session, file_entry(store, "x.txt"), name)
        assert store.calls == []

    async def test_directory_rename_unsupported(self, session: DriveSession) -> None:
        with pytest.raises(IsADirectoryError):
            await rename_file(session, dir_entry("photos"), "pictures")


class TestMoveFile:
    async def test_move_across_directories(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("inbox/a.txt", b"a")
        outcome = await move_file(session, file_entry(store, "inbox/a.txt"), "archive/a.txt")
        assert outcome.ok
        assert outcome.operation == "move"
        assert store.blobs == {"archive/a.txt": b"a"}
        assert store.messages[0] == "Move: inbox/a.txt → archive/a.txt"

    async def test_root_target_rejected(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("a.txt", b"a")
        with pytest.raises(ValueError, match="root"):
            await move_file(session, file_entry(store, "a.txt"), "/")

    async def test_concurrent_moves_into_one_directory_serialize(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("a/one.txt", b"1")
        store.seed("b/two.txt", b"2")
        first = move_file(session, file_entry(store, "a/one.txt"), "c/one.txt")
        second = move_file(session, file_entry(store, "b/two.txt"), "c/two.txt")
        outcomes = await asyncio.gather(first, second)
        assert all(outcome.ok for outcome in outcomes)
        assert sorted(store.blobs) == ["c/one.txt", "c/two.txt"]

    async def test_target_checked_after_taking_the_lock(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("a.txt", b"a")
        entry = file_entry(store, "a.txt")
        async with session.directory_lock(""):
            task = asyncio.create_task(move_file(session, entry, "b.txt"))
            await asyncio.sleep(0)
            store.seed("b.txt", b"arrived first")
        with pytest.raises(AlreadyExistsError):
            await task
        assert store.writes == []
        assert store.blobs["a.txt"] == b"a"


class TestDeleteFile:
    async def test_delete(self, session: DriveSession, store: FakeBlobStore) -> None:
        store.seed("a.txt", b"a")
        outcome = await delete_file(session, file_entry(store, "a.txt"))
        assert outcome.ok
        assert store.blobs == {}
        assert store.messages == ["Delete a.txt"]

    async def test_stale_id_is_conflict(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("a.txt", b"a")
        entry = file_entry(store, "a.txt")
        store.seed("a.txt", b"b")
        with pytest.raises(ConflictError):
            await delete_file(session, entry)
        assert store.blobs == {"a.txt": b"b"}

    async def test_vanished_path_is_not_found(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("a.txt", b"a")
        entry = file_entry(store, "a.txt")
        del store.blobs["a.txt"]
        with pytest.raises(NotFoundError):
            await delete_file(session, entry)

    async def test_last_file_takes_folder_with_it(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("docs/only.txt", b"a")
        await delete_file(session, file_entry(store, "docs/only.txt"))
        assert await list_directory(session, "") == ()


class TestDeleteDirectory:
    async def test_deletes_files_and_sentinel_last(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("docs/.gitkeep")
        store.seed("docs/a.txt", b"a")
        store.seed("docs/b.txt", b"b")
        outcome = await delete_directory(session, dir_entry("docs"))
        assert outcome.ok
        assert store.deletes == ["docs/a.txt", "docs/b.txt", "docs/.gitkeep"]
        assert store.blobs == {}

    async def test_not_recursive(
        self, session: DriveSession, store: FakeBlobStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        store.seed("docs/a.txt", b"a")
        store.seed("docs/sub/b.txt", b"b")
        with caplog.at_level(logging.WARNING):
            outcome = await delete_directory(session, dir_entry("docs"))
        assert outcome.ok
        assert [step.path for step in outcome.skipped] == ["docs/sub"]
        assert store.blobs == {"docs/sub/b.txt": b"b"}
        assert "not recursive" in caplog.text

    async def test_failure_isolated_to_one_child(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("docs/a.txt", b"a")
        store.seed("docs/b.txt", b"b")
        store.fail("delete", "docs/a.txt", BackendUnavailableError("docs/a.txt"))
        outcome = await delete_directory(session, dir_entry("docs"))
        assert outcome.status is MutationStatus.PARTIAL
        assert store.blobs == {"docs/a.txt": b"a"}

    async def test_root_rejected(self, session: DriveSession, store: FakeBlobStore) -> None:
        store.seed("keep.txt", b"k")
        with pytest.raises(ValueError, match="root"):
            await delete_directory(session, dir_entry(""))
        assert store.calls == []
        assert store.blobs == {"keep.txt": b"k"}

    async def test_every_child_failing_is_failed(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("docs/a.txt", b"a")
        store.fail("delete", "docs/a.txt", ConflictError("docs/a.txt"))
        outcome = await delete_directory(session, dir_entry("docs"))
        assert outcome.status is MutationStatus.FAILED
        assert isinstance(outcome.error, ConflictError)

    async def test_missing_directory(self, session: DriveSession) -> None:
        with pytest.raises(NotFoundError):
            await delete_directory(session, dir_entry("nope"))

    async def test_file_rejected(self, session: DriveSession, store: FakeBlobStore) -> None:
        store.seed("a.txt", b"a")
        with pytest.raises(NotADirectoryError):
            await delete_directory(session, file_entry(store, "a.txt"))


class TestUploadFile:
    async def test_upload_new_file(self, session: DriveSession, store: FakeBlobStore) -> None:
        outcome = await upload_file(session, "docs", "a.txt", b"hello")
        assert outcome.ok
        assert outcome.path == "docs/a.txt"
        assert store.blobs["docs/a.txt"] == b"hello"
        assert store.messages == ["Upload a.txt"]

    async def test_too_large_makes_no_backend_call(
        self, store: FakeBlobStore, test_settings: Settings
    ) -> None:
        settings = test_settings.model_copy(update={"max_blob_bytes": 8})
        session = DriveSession(store=store, settings=settings)
        with pytest.raises(TooLargeError) as exc_info:
            await upload_file(session, "", "big.bin", b"\0" * 9)
        assert exc_info.value.size == 9
        assert exc_info.value.limit == 8
        assert store.calls == []
        # Exactly at the ceiling is accepted.
        assert (await upload_file(session, "", "ok.bin", b"\0" * 8)).ok

    async def test_existing_file_needs_overwrite(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("a.txt", b"v1")
        with pytest.raises(AlreadyExistsError):
            await upload_file(session, "", "a.txt", b"v2")
        outcome = await upload_file(session, "", "a.txt", b"v2", overwrite=True)
        assert outcome.ok
        assert store.blobs["a.txt"] == b"v2"
        assert store.messages == ["Update a.txt"]

    async def test_directory_name_taken(
        self, session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("docs/a.txt", b"a")
        with pytest.raises(AlreadyExistsError):
            await upload_file(session, "", "docs", b"x", overwrite=True)

    async def test_sentinel_name_reserved(self, session: DriveSession) -> None:
        with pytest.raises(ValueError, match="reserved"):
            await upload_file(session, "docs", ".gitkeep", b"")


class TestDownloadFile:
    async def test_download(self, session: DriveSession, store: FakeBlobStore) -> None:
        store.seed("docs/a.txt", b"hello")
        assert await download_file(session, "/docs/a.txt") == b"hello"

    async def test_missing(self, session: DriveSession) -> None:
        with pytest.raises(NotFoundError):
            await download_file(session, "nope.txt")
        with pytest.raises(NotFoundError):
            await download_file(session, "")


class TestListingInvalidation:
    @pytest.fixture
    def cached_session(self, store: FakeBlobStore, test_settings: Settings) -> DriveSession:
        settings = test_settings.model_copy(update={"listing_cache_ttl_seconds": 60.0})
        return DriveSession(store=store, settings=settings)

    async def _names(self, session: DriveSession, path: str) -> list[str]:
        return [entry.name for entry in await list_directory(session, path)]

    async def test_rename_visible_immediately(
        self, cached_session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("docs/a.txt", b"a")
        assert await self._names(cached_session, "docs") == ["a.txt"]
        await rename_file(cached_session, file_entry(store, "docs/a.txt"), "b.txt")
        assert await self._names(cached_session, "docs") == ["b.txt"]

    async def test_move_visible_in_both_directories(
        self, cached_session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("a/x.txt", b"x")
        store.seed("b/y.txt", b"y")
        assert await self._names(cached_session, "a") == ["x.txt"]
        assert await self._names(cached_session, "b") == ["y.txt"]
        await move_file(cached_session, file_entry(store, "a/x.txt"), "b/x.txt")
        assert await self._names(cached_session, "b") == ["x.txt", "y.txt"]
        assert await self._names(cached_session, "") == ["b"]

    async def test_delete_visible_immediately(
        self, cached_session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("docs/a.txt", b"a")
        store.seed("docs/b.txt", b"b")
        assert await self._names(cached_session, "docs") == ["a.txt", "b.txt"]
        await delete_file(cached_session, file_entry(store, "docs/a.txt"))
        assert await self._names(cached_session, "docs") == ["b.txt"]

    async def test_upload_visible_immediately(
        self, cached_session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("docs/a.txt", b"a")
        assert await self._names(cached_session, "docs") == ["a.txt"]
        await upload_file(cached_session, "docs", "new.txt", b"n")
        assert await self._names(cached_session, "docs") == ["a.txt", "new.txt"]

    async def test_directory_delete_visible_in_parent(
        self, cached_session: DriveSession, store: FakeBlobStore
    ) -> None:
        store.seed("keep.txt", b"k")
        store.seed("docs/a.txt", b"a")
        store.seed("docs/.gitkeep")
        assert await self._names(cached_session, "") == ["docs", "keep.txt"]
        assert await self._names(cached_session, "docs") == ["a.txt"]
        await delete_directory(cached_session, dir_entry("docs"))
        assert await self._names(cached_session, "docs") == []
        assert await self._names(cached_session, "") == ["keep.txt"]
