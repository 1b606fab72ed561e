"""On-disk TTL cache in front of the feed fetcher.

Each feed is stored as ``<md5(url)>.ics`` under the cache directory. A file
modified within the TTL is served without network access. A stale file is
refreshed, and kept as the fallback when the refresh fails.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .exceptions import FeedFetchError
from .fetcher import FeedFetcher

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 20 * 60


def cache_key(url: str) -> str:
    return hashlib.md5(url.encode("utf-8"), usedforsecurity=False).hexdigest()


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class FeedCache:
    """Serves feed text from disk when fresh, from the network otherwise."""

    def __init__(
        self,
        fetcher: FeedFetcher,
        cache_dir: os.PathLike[str] | str = "cache",
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.fetcher = fetcher
        self.cache_dir = Path(cache_dir)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._locks: dict[str, _KeyLock] = {}

    def path_for(self, url: str) -> Path:
        return self.cache_dir / f"{cache_key(url)}.ics"

    def is_fresh(self, path: Path) -> bool:
        try:
            age = self._clock() - path.stat().st_mtime
        except FileNotFoundError:
            return False
        return age < self.ttl_seconds

    def _read(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            logger.warning("Unreadable cache file %s", path, exc_info=True)
            return None

    def _write(self, path: Path, text: str) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(text, encoding="utf-8")
            tmp_path.replace(path)
        except OSError:
            # A failed write only costs a refetch next time
            logger.warning("Failed to write feed cache %s", path, exc_info=True)

    async def fetch(self, url: str) -> str:
        """Return feed text for ``url``.

        Raises:
            FeedFetchError: the network fetch failed and no cached copy exists
        """
        key = cache_key(url)
        # Entries live only while a fetch for the key is running or waiting
        entry = self._locks.setdefault(key, _KeyLock())
        entry.users += 1
        try:
            async with entry.lock:
                return await self._fetch_locked(url)
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    async def _fetch_locked(self, url: str) -> str:
        path = self.path_for(url)
        if self.is_fresh(path):
            cached = self._read(path)
            if cached is not None:
                logger.debug("Serving %s from cache", url)
                return cached

        try:
            text = await self.fetcher.fetch(url)
        except FeedFetchError:
            stale = self._read(path)
            if stale is None:
                raise
            logger.warning("Fetch failed for %s; serving stale cache", url)
            return stale

        self._write(path, text)
        return text

    def clear(self) -> int:
        """Remove all cached feeds; returns the number of files deleted."""
        removed = 0
        if not self.cache_dir.exists():
            return removed
        for path in self.cache_dir.glob("*.ics"):
            try:
                path.unlink()
                removed += 1
            except OSError:
                logger.warning("Failed to remove cache file %s", path, exc_info=True)
        return removed
