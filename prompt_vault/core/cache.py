"""Read-through query cache with prefix invalidation."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from functools import lru_cache
from typing import Any, TypeVar

import structlog

from prompt_vault.config import get_settings

logger = structlog.get_logger()

T = TypeVar("T")

CacheKey = tuple[Any, ...]

DEFAULT_TTL_SECONDS = 30.0
DEFAULT_MAX_ENTRIES = 1024


class QueryCache:
    """Caches read results under tuple keys such as ``("tags", owner)``.

    Mutations call ``invalidate`` with a key prefix; every entry whose key starts
    with that prefix is dropped and refetched on the next read. Entries also
    expire ``ttl_seconds`` after they were fetched, so writes made by another
    process show up eventually. Past ``max_entries`` the least recently read
    entry is evicted.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[CacheKey, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    def _live(self, key: CacheKey) -> bool:
        """Caller holds the lock. Drops the entry when it has expired."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry[0] <= self._clock():
            del self._entries[key]
            return False
        return True

    def get_or_fetch(self, key: CacheKey, fetch: Callable[[], T]) -> T:
        with self._lock:
            if self._live(key):
                self._entries.move_to_end(key)
                return self._entries[key][1]
        value = fetch()
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return value

    def invalidate(self, *prefix: Any) -> int:
        """Drop entries whose key starts with ``prefix``. Returns how many were dropped."""
        n = len(prefix)
        with self._lock:
            stale = [key for key in self._entries if key[:n] == prefix]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug("cache.invalidated", prefix=prefix, entries=len(stale))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return self._live(key)

    def __len__(self) -> int:
        return len(self._entries)


@lru_cache
def get_query_cache() -> QueryCache:
    """Get the process-wide query cache."""
    settings = get_settings()
    return QueryCache(settings.cache_ttl, settings.cache_max_entries)
