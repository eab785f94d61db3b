"""Fixed-window rate limiting strategy.

Windows are aligned to wall-clock multiples of the window length, so every key
shares the same boundaries. Each window has its own counter key, which expires
shortly after the window closes.

The counter is created and bumped by a single atomic cache increment, so
concurrent workers never over-admit. Bursts of up to ``2 * limit`` are
possible across a window boundary; that is inherent to the algorithm.
"""

from __future__ import annotations

import math
from typing import Any

from throttle.adapters.cache.base import AbstractCache
from throttle.adapters.rate_limit.base import RateLimitResult, RateLimitStrategy


class FixedWindowStrategy(RateLimitStrategy):
    """Count requests per key inside aligned, non-overlapping windows."""

    name = "fixed"

    def _get_window_bounds(self, now: float, window: int) -> tuple[int, int]:
        """Compute fixed-window boundaries for a given timestamp.

        Returns:
            Tuple of (window_start_epoch_seconds, window_end_epoch_seconds).
        """
        window_start = int(now // window) * window
        return window_start, window_start + window

    def _window_key(self, key: str, window: int, window_start: int) -> str:
        return self._cache_key(key, window, window_start)

    def check_limit(
        self,
        cache: AbstractCache,
        key: str,
        limit: int,
        window: int,
    ) -> RateLimitResult:
        now = self._clock()
        window_start, window_end = self._get_window_bounds(now, window)
        counter_key = self._window_key(key, window, window_start)

        count = cache.increment(
            counter_key, 1, ttl_seconds=window + int(self._config["ttl_buffer"])
        )

        if count > limit:
            retry_after = max(1, int(math.ceil(window_end - now)))
            return RateLimitResult.exceeded_result(
                limit=limit,
                reset_time=window_end,
                retry_after=retry_after,
                key=key,
                strategy=self.name,
            )

        return RateLimitResult.allowed_result(
            limit=limit,
            remaining=limit - count,
            reset_time=window_end,
            key=key,
            strategy=self.name,
        )

    def get_window_info(self, window: int) -> dict[str, Any]:
        now = self._clock()
        window_start, window_end = self._get_window_bounds(now, window)
        return {
            "start": window_start,
            "end": window_end,
            "current": int(now),
            "remaining_seconds": int(math.ceil(window_end - now)),
        }

    def get_usage(self, cache: AbstractCache, key: str, window: int) -> dict[str, Any]:
        info = self.get_window_info(window)
        count = int(cache.get(self._window_key(key, window, info["start"]), 0) or 0)
        return {
            "current_count": count,
            "window_start": info["start"],
            "window_end": info["end"],
            "remaining_seconds": info["remaining_seconds"],
        }

    def clear_limit(self, cache: AbstractCache, key: str, window: int) -> bool:
        info = self.get_window_info(window)
        return cache.forget(self._window_key(key, window, info["start"]))
