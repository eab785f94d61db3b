"""Sliding-window (timestamp log) rate limiting strategy.

Each key keeps an ordered list of request timestamps. Entries older than
``now - window`` are pruned on every read, so the count always covers the
interval ending now and there is no burst at window boundaries.

Notes:
- The stored list is capped at ``max_timestamps``. Once capped, the oldest
  entries are dropped even if they are still inside the window, so under
  sustained overload this is an approximation of an exact sliding log.
- The list is read, modified and written back without compare-and-swap.
  Concurrent workers can over-admit by at most (concurrency - 1) requests.
"""

from __future__ import annotations

import math
from typing import Any

from throttle.adapters.cache.base import AbstractCache
from throttle.adapters.rate_limit.base import RateLimitResult, RateLimitStrategy


class SlidingWindowStrategy(RateLimitStrategy):
    """Count requests per key within a continuously moving window."""

    name = "sliding"

    def get_default_config(self) -> dict[str, Any]:
        return {
            **super().get_default_config(),
            "max_timestamps": 1000,
        }

    def check_limit(
        self,
        cache: AbstractCache,
        key: str,
        limit: int,
        window: int,
    ) -> RateLimitResult:
        now = self._clock()
        cache_key = self._cache_key(key, window)
        timestamps = self._prune(self._get_timestamps(cache, cache_key), now, window)

        if len(timestamps) >= limit:
            oldest = timestamps[0] if timestamps else now
            reset_time = oldest + window
            return RateLimitResult.exceeded_result(
                limit=limit,
                reset_time=int(math.ceil(reset_time)),
                retry_after=max(1, int(math.ceil(reset_time - now))),
                key=key,
                strategy=self.name,
            )

        timestamps.append(now)
        timestamps = self._store_timestamps(cache, cache_key, timestamps, limit, window)

        return RateLimitResult.allowed_result(
            limit=limit,
            remaining=limit - len(timestamps),
            reset_time=int(math.ceil(timestamps[0] + window)),
            key=key,
            strategy=self.name,
        )

    def _get_timestamps(self, cache: AbstractCache, cache_key: str) -> list[float]:
        data = cache.get(cache_key, [])
        if not isinstance(data, list):
            return []
        return sorted(float(ts) for ts in data if isinstance(ts, (int, float)))

    def _prune(self, timestamps: list[float], now: float, window: int) -> list[float]:
        window_start = now - window
        return [ts for ts in timestamps if ts >= window_start]

    def _store_timestamps(
        self,
        cache: AbstractCache,
        cache_key: str,
        timestamps: list[float],
        limit: int,
        window: int,
    ) -> list[float]:
        cap = max(1, int(self._config["max_timestamps"]))
        if len(timestamps) > cap:
            timestamps = timestamps[-cap:]

        cache.put(cache_key, timestamps, window + int(self._config["ttl_buffer"]))
        return timestamps

    def get_window_info(self, window: int) -> dict[str, Any]:
        now = self._clock()
        return {
            "start": int(now - window),
            "end": int(now),
            "current": int(now),
            "window_size_seconds": window,
        }

    def get_usage(self, cache: AbstractCache, key: str, window: int) -> dict[str, Any]:
        now = self._clock()
        stored = self._get_timestamps(cache, self._cache_key(key, window))
        valid = self._prune(stored, now, window)
        return {
            "current_count": len(valid),
            "window_start": int(now - window),
            "window_end": int(now),
            "oldest_request": valid[0] if valid else None,
            "newest_request": valid[-1] if valid else None,
            "total_stored_timestamps": len(stored),
        }

    def clear_limit(self, cache: AbstractCache, key: str, window: int) -> bool:
        return cache.forget(self._cache_key(key, window))
