"""In-memory TTL cache backing rate limit counters.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state, so ``increment`` is atomic
  within the process.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from throttle.adapters.cache.base import AbstractCache
from throttle.core.logging import hash_key

logger = logging.getLogger(__name__)


@dataclass
class CacheItem:
    """Container for cached values with expiration metadata."""

    value: Any
    expires_at: float | None


class InMemoryCache(AbstractCache):
    """Thread-safe, in-memory TTL cache with LRU eviction.

    Attributes:
        max_entries: Maximum number of cached items (None for unlimited).
    """

    def __init__(
        self,
        max_entries: int | None = 100_000,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, CacheItem] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryCache(max_entries={self._max_entries}, size={len(self._store)}, "
            f"hits={self._hits}, misses={self._misses}, evictions={self._evictions})"
        )

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            item = self._live_item_locked(key)
            if item is None:
                self._misses += 1
                return default

            self._hits += 1
            self._store.move_to_end(key)
            return item.value

    def put(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Store a value with TTL, evicting as needed.

        Args:
            key: Cache key.
            value: Any Python value; stored as-is.
            ttl_seconds: Lifetime in seconds (<= 0 means no expiry).

        Returns:
            Always True.
        """

        with self._lock:
            expires_at = self._clock() + ttl_seconds if ttl_seconds > 0 else None
            self._store[key] = CacheItem(value=value, expires_at=expires_at)
            self._store.move_to_end(key)
            self._evict_if_over_capacity_locked()

            logger.debug(
                "cache.set",
                extra={
                    "key_hash": hash_key(key),
                    "size": len(self._store),
                    "ttl_s": ttl_seconds,
                },
            )
            return True

    def increment(self, key: str, by: int = 1, ttl_seconds: int | None = None) -> int:
        with self._lock:
            item = self._live_item_locked(key)
            if item is None:
                expires_at = None
                if ttl_seconds is not None and ttl_seconds > 0:
                    expires_at = self._clock() + ttl_seconds
                item = CacheItem(value=0, expires_at=expires_at)
                self._store[key] = item
            item.value = int(item.value) + by
            self._store.move_to_end(key)
            self._evict_if_over_capacity_locked()
            return item.value

    def decrement(self, key: str, by: int = 1) -> int:
        return self.increment(key, -by)

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live_item_locked(key) is not None

    def forget(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def flush(self) -> bool:
        """Remove all cached entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            return True

    def stats(self) -> dict[str, int | None]:
        """Return lightweight cache metrics without exposing values."""

        with self._lock:
            return {
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def _live_item_locked(self, key: str) -> CacheItem | None:
        item = self._store.get(key)
        if item is None:
            return None
        if item.expires_at is not None and self._clock() >= item.expires_at:
            self._store.pop(key, None)
            self._evictions += 1
            return None
        return item

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            # popitem(last=False) removes the least recently used entry
            self._store.popitem(last=False)
            self._evictions += 1
