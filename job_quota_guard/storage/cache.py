"""
Response cache for upstream search results.

Stores provider payloads together with the usage headers captured when
they were fetched, so hits can replay them.
"""

import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

import diskcache

from job_quota_guard.core.errors import StoreUnavailableError
from job_quota_guard.core.usage import CreditUsageWindow

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = "data/cache/job_search"
DEFAULT_TTL_SECONDS = 3600
# Outside the user:/anon: namespaces used by response keys
USAGE_WINDOW_KEY = "meta:usage_window"

_STORE_ERRORS = (sqlite3.Error, OSError, diskcache.Timeout)


@dataclass(frozen=True)
class CachedResponse:
    """A live cache entry as seen by a reader."""
    payload: Any
    usage_headers: Dict[str, str]
    written_at: float
    age: float


@dataclass(frozen=True)
class CacheStats:
    size: int
    volume_bytes: int
    ttl_seconds: int
    directory: str


class ResponseCache:
    """TTL cache of provider responses backed by ``diskcache``.

    Each entry is written with a single ``set`` so readers see either the
    whole entry or nothing. Overwrites are allowed; the last writer wins.
    """

    def __init__(
        self,
        cache_dir: str = DEFAULT_CACHE_DIR,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        path = Path(cache_dir)
        path.mkdir(parents=True, exist_ok=True)
        self.directory = str(path)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache = diskcache.Cache(self.directory)

    def get(self, key: str) -> Optional[CachedResponse]:
        """Return the entry for ``key`` while it is younger than the TTL.

        Expired or unreadable entries count as a miss and are left for
        the next writer to overwrite.

        Raises:
            StoreUnavailableError: If the cache store fails
        """
        try:
            entry = self._cache.get(key)
        except _STORE_ERRORS as e:
            raise StoreUnavailableError(str(e)) from e

        if not isinstance(entry, dict) or "payload" not in entry:
            return None

        age = self._clock() - entry["written_at"]
        if age >= entry.get("ttl", self.ttl_seconds):
            logger.debug("Cache entry %s expired (age %.0fs)", key, age)
            return None

        return CachedResponse(
            payload=entry["payload"],
            usage_headers=dict(entry.get("usage_headers") or {}),
            written_at=entry["written_at"],
            age=max(0.0, age)
        )

    def put(
        self,
        key: str,
        normalized_params: Mapping[str, Any],
        payload: Any,
        usage_headers: Optional[Mapping[str, str]] = None
    ) -> None:
        """Store a payload with its usage header snapshot.

        Raises:
            StoreUnavailableError: If the cache store fails
        """
        entry = {
            "key": key,
            "normalized_params": dict(normalized_params),
            "payload": payload,
            "usage_headers": dict(usage_headers or {}),
            "written_at": self._clock(),
            "ttl": self.ttl_seconds,
        }
        try:
            self._cache.set(key, entry, expire=self.ttl_seconds)
        except _STORE_ERRORS as e:
            raise StoreUnavailableError(str(e)) from e
        logger.info("Cached response for %s", key)

    def load_usage_window(self) -> Optional[CreditUsageWindow]:
        """Last credit usage window saved by any process, if one exists.

        Raises:
            StoreUnavailableError: If the cache store fails
        """
        try:
            window = self._cache.get(USAGE_WINDOW_KEY)
        except _STORE_ERRORS as e:
            raise StoreUnavailableError(str(e)) from e
        return window if isinstance(window, CreditUsageWindow) else None

    def save_usage_window(self, window: CreditUsageWindow) -> None:
        """Persist the usage window so later runs start from it.

        Raises:
            StoreUnavailableError: If the cache store fails
        """
        try:
            self._cache.set(USAGE_WINDOW_KEY, window)
        except _STORE_ERRORS as e:
            raise StoreUnavailableError(str(e)) from e

    def stats(self) -> CacheStats:
        size = len(self._cache)
        if USAGE_WINDOW_KEY in self._cache:
            size -= 1
        return CacheStats(
            size=size,
            volume_bytes=self._cache.volume(),
            ttl_seconds=self.ttl_seconds,
            directory=self.directory
        )

    def clear(self) -> int:
        """Remove every cached response, returning how many were dropped.

        The saved usage window survives.
        """
        window = self.load_usage_window()
        removed = self._cache.clear()
        if window is not None:
            self.save_usage_window(window)
            removed -= 1
        logger.info("Response cache cleared (%d entries)", removed)
        return removed

    def close(self) -> None:
        self._cache.close()
