"""In-memory short-term cache of directory listings. State is lost on restart."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from gitdrive.filesystem.entry import ancestors

if TYPE_CHECKING:
    from gitdrive.filesystem.entry import Entry


class ListingCache:
    """Cache listings keyed by normalized directory path for ``ttl_seconds``.

    A TTL of zero disables caching entirely.  Safe under asyncio's
    single-threaded cooperative model: lookups and invalidations never await.
    """

    def __init__(self, ttl_seconds: float) -> None:
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[float, tuple[Entry, ...]]] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, path: str) -> tuple[Entry, ...] | None:
        cached = self._entries.get(path)
        if cached is None:
            return None
        stored_at, listing = cached
        if time.monotonic() - stored_at >= self.ttl_seconds:
            del self._entries[path]
            return None
        return listing

    def put(self, path: str, listing: tuple[Entry, ...]) -> None:
        if self.enabled:
            self._entries[path] = (time.monotonic(), listing)

    def invalidate(self, path: str) -> None:
        """Drop ``path``, everything beneath it and every ancestor listing."""
        prefix = f"{path}/" if path else ""
        stale = [key for key in self._entries if key == path or key.startswith(prefix)]
        stale.extend(ancestors(path))
        for key in stale:
            self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
