"""Shared test fixtures for GitDrive."""

from __future__ import annotations

import hashlib
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from gitdrive.api.deps import get_drive_session
from gitdrive.config import Settings
from gitdrive.exceptions import AlreadyExistsError, ConflictError, NotFoundError
from gitdrive.filesystem.entry import Entry, EntryKind, base_name, join_path
from gitdrive.main import create_app
from gitdrive.storage.blob_client import Blob
from gitdrive.storage.session import DriveSession

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

TEST_TOKEN = "ghp_test-token"
MODIFIED_AT = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def blob_sha(content: bytes) -> str:
    """Content identifier computed the way git hashes blobs."""
    header = f"blob {len(content)}\0".encode()
    return hashlib.sha1(header + content).hexdigest()


class FakeBlobStore:
    """In-memory blob store with call recording and fault injection.

    ``failures`` maps ``(method, path)`` to the error the next matching call
    raises.  Injected failures are one-shot unless ``sticky`` is set.
    """

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.modified: dict[str, datetime] = {}
        self.calls: list[tuple[str, str]] = []
        self.messages: list[str] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self.sticky = False

    def seed(self, path: str, content: bytes = b"", modified_at: datetime | None = None) -> str:
        self.blobs[path] = content
        self.modified[path] = modified_at or MODIFIED_AT
        return blob_sha(content)

    def sha(self, path: str) -> str:
        return blob_sha(self.blobs[path])

    def fail(self, method: str, path: str, error: Exception) -> None:
        self.failures[(method, path)] = error

    def _maybe_fail(self, method: str, path: str) -> None:
        self.calls.append((method, path))
        key = (method, path)
        error = self.failures.get(key)
        if error is None:
            return
        if not self.sticky:
            del self.failures[key]
        raise error

    def _calls_of(self, method: str) -> list[str]:
        return [path for m, path in self.calls if m == method]

    @property
    def writes(self) -> list[str]:
        return self._calls_of("put")

    @property
    def deletes(self) -> list[str]:
        return self._calls_of("delete")

    async def list(self, path: str) -> list[Entry]:
        self._maybe_fail("list", path)
        prefix = f"{path}/" if path else ""
        children: dict[str, Entry] = {}
        for blob_path, content in sorted(self.blobs.items()):
            if not blob_path.startswith(prefix):
                continue
            rest = blob_path[len(prefix) :]
            head, sep, _ = rest.partition("/")
            child_path = join_path(path, head)
            if sep:
                children.setdefault(
                    child_path,
                    Entry(path=child_path, name=head, kind=EntryKind.DIRECTORY),
                )
            else:
                children[child_path] = Entry(
                    path=child_path,
                    name=head,
                    kind=EntryKind.FILE,
                    content_id=blob_sha(content),
                    size=len(content),
                    modified_at=self.modified.get(blob_path),
                )
        if path and not children:
            raise NotFoundError(path)
        return list(children.values())

    async def get(self, path: str) -> Blob:
        self._maybe_fail("get", path)
        if path not in self.blobs:
            raise NotFoundError(path)
        content = self.blobs[path]
        return Blob(path=path, content=content, content_id=blob_sha(content), size=len(content))

    async def put(
        self,
        path: str,
        content: bytes,
        message: str,
        expected_content_id: str | None = None,
    ) -> str:
        self._maybe_fail("put", path)
        current = self.blobs.get(path)
        if current is not None and expected_content_id is None:
            raise AlreadyExistsError(path)
        if expected_content_id is not None and (
            current is None or blob_sha(current) != expected_content_id
        ):
            raise ConflictError(path)
        self.messages.append(message)
        return self.seed(path, content)

    async def delete(self, path: str, expected_content_id: str, message: str) -> None:
        self._maybe_fail("delete", path)
        current = self.blobs.get(path)
        if current is None:
            raise NotFoundError(path)
        if blob_sha(current) != expected_content_id:
            raise ConflictError(path)
        self.messages.append(message)
        del self.blobs[path]
        self.modified.pop(path, None)


def file_entry(store: FakeBlobStore, path: str) -> Entry:
    """Entry for a seeded file as a listing would report it."""
    return Entry(
        path=path,
        name=base_name(path),
        kind=EntryKind.FILE,
        content_id=store.sha(path),
        size=len(store.blobs[path]),
    )


def dir_entry(path: str) -> Entry:
    return Entry(path=path, name=base_name(path), kind=EntryKind.DIRECTORY)


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    store: FakeBlobStore | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client for the app.

    With a ``store`` every request uses one drive session over it; without
    one the real credential and session dependencies run.
    """
    app = create_app(settings)
    settings.validate_runtime_settings()
    app.state.http_client = AsyncClient(base_url=settings.github_api_url)

    if store is not None:
        session = DriveSession(store=store, settings=settings)
        app.dependency_overrides[get_drive_session] = lambda: session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await app.state.http_client.aclose()


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings that never touch the network or sleep."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        debug=True,
        repo_owner="alice",
        repo_name="drive",
        github_token=None,
        download_delay_seconds=0,
    )


@pytest.fixture
def store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def session(store: FakeBlobStore, test_settings: Settings) -> DriveSession:
    return DriveSession(store=store, settings=test_settings)


@pytest.fixture
def populated_store(store: FakeBlobStore) -> FakeBlobStore:
    """Store with a small tree: files at the root, a photo folder, an empty folder."""
    store.seed("notes.txt", b"hello")
    store.seed("report.pdf", b"%PDF-1.4" + b"x" * 92)
    store.seed("photos/cat.jpg", b"\xff\xd8cat")
    store.seed("photos/2024/dog.png", b"\x89PNGdog")
    store.seed("empty/.gitkeep", b"")
    return store