"""Explicit per-user drive session passed into every core operation."""

from __future__ import annotations

import asyncio
import hashlib
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gitdrive.filesystem.listing_cache import ListingCache

if TYPE_CHECKING:
    from collections.abc import Callable

    from gitdrive.config import Settings
    from gitdrive.storage.blob_client import BlobStore


@dataclass
class DriveSession:
    """One authenticated view of one backend repository.

    Holds the blob store, the settings that bound its operations, the
    short-term listing cache and the per-directory mutation locks.
    """

    store: BlobStore
    settings: Settings
    cache: ListingCache = field(init=False)
    _locks: dict[str, asyncio.Lock] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self.cache = ListingCache(self.settings.listing_cache_ttl_seconds)

    def directory_lock(self, path: str) -> asyncio.Lock:
        """Return the lock that serializes mutations inside directory ``path``."""
        lock = self._locks.get(path)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[path] = lock
        return lock


class SessionRegistry:
    """Keep one drive session per credential so locks and caches are shared.

    Sessions idle for longer than ``ttl_seconds`` are dropped; when the
    registry is full the least recently used session is evicted.
    """

    def __init__(self, ttl_seconds: int = 3600, max_entries: int = 100) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._entries: dict[str, tuple[DriveSession, float]] = {}

    @staticmethod
    def _key(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def get_or_create(self, token: str, factory: Callable[[], DriveSession]) -> DriveSession:
        self.cleanup()
        key = self._key(token)
        entry = self._entries.get(key)
        if entry is not None:
            session = entry[0]
        else:
            if len(self._entries) >= self._max_entries:
                oldest_key = min(self._entries, key=lambda k: self._entries[k][1])
                del self._entries[oldest_key]
            session = factory()
        self._entries[key] = (session, time.monotonic())
        return session

    def cleanup(self) -> None:
        """Remove idle sessions."""
        now = time.monotonic()
        expired = [k for k, (_, t) in self._entries.items() if now - t > self._ttl]
        for k in expired:
            del self._entries[k]

    def __len__(self) -> int:
        return len(self._entries)
