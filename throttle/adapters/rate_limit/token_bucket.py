"""Token bucket rate limiting strategy.

The bucket holds up to ``limit`` tokens and refills continuously at
``limit / window`` tokens per second. Each admitted request consumes one token,
so short bursts are allowed while the long-run rate stays bounded.

A bucket seen for the first time starts EMPTY unless ``initial_tokens`` is
configured: the first request against a fresh key is rejected and tokens
accrue from that moment on. Callers that want N requests available
immediately must set ``initial_tokens=N``.

The bucket state is read, refilled and written back without compare-and-swap,
so concurrent workers can over-admit by at most (concurrency - 1) requests.
"""

from __future__ import annotations

import math
from typing import Any

from throttle.adapters.cache.base import AbstractCache
from throttle.adapters.rate_limit.base import RateLimitResult, RateLimitStrategy


class TokenBucketStrategy(RateLimitStrategy):
    """Allow bursts up to the bucket capacity with a steady refill rate."""

    name = "token_bucket"

    def get_default_config(self) -> dict[str, Any]:
        return {
            **super().get_default_config(),
            "ttl_buffer": 300,
            "initial_tokens": None,
        }

    def check_limit(
        self,
        cache: AbstractCache,
        key: str,
        limit: int,
        window: int,
    ) -> RateLimitResult:
        now = self._clock()

        if limit <= 0:
            return RateLimitResult.exceeded_result(
                limit=0,
                reset_time=int(now + window),
                retry_after=max(1, window),
                key=key,
                strategy=self.name,
            )

        cache_key = self._cache_key(key, window)
        state = self._get_bucket_state(cache, cache_key, limit, now)
        tokens = self._refill(state, now, limit, window)

        if tokens < 1:
            retry_after = max(1, int(math.ceil((1 - tokens) * window / limit)))
            self._store_bucket_state(cache, cache_key, tokens, now, limit, window)
            return RateLimitResult.exceeded_result(
                limit=limit,
                reset_time=int(now) + retry_after,
                retry_after=retry_after,
                key=key,
                strategy=self.name,
            )

        tokens -= 1
        self._store_bucket_state(cache, cache_key, tokens, now, limit, window)
        time_to_full = (limit - tokens) * window / limit

        return RateLimitResult.allowed_result(
            limit=limit,
            remaining=int(math.floor(tokens)),
            reset_time=int(now) + int(math.ceil(time_to_full)),
            key=key,
            strategy=self.name,
        )

    def _get_bucket_state(
        self,
        cache: AbstractCache,
        cache_key: str,
        capacity: int,
        now: float,
    ) -> dict[str, float]:
        state = cache.get(cache_key)
        if isinstance(state, dict) and "tokens" in state and "last_refill" in state:
            return {
                "tokens": float(state["tokens"]),
                "last_refill": float(state["last_refill"]),
            }

        initial = self._config.get("initial_tokens") or 0
        return {
            "tokens": float(min(initial, capacity)),
            "last_refill": now,
        }

    def _refill(self, state: dict[str, float], now: float, capacity: int, window: int) -> float:
        elapsed = now - state["last_refill"]
        if elapsed <= 0:
            return min(float(capacity), state["tokens"])
        return min(float(capacity), state["tokens"] + elapsed * (capacity / window))

    def _store_bucket_state(
        self,
        cache: AbstractCache,
        cache_key: str,
        tokens: float,
        now: float,
        capacity: int,
        window: int,
    ) -> None:
        ttl = window * 2 + int(self._config["ttl_buffer"])
        cache.put(
            cache_key,
            {"tokens": tokens, "last_refill": now, "capacity": capacity},
            ttl,
        )

    def reset_bucket(self, cache: AbstractCache, key: str, capacity: int, window: int) -> bool:
        """Force-fill the bucket for ``key`` to ``capacity`` (administrative override)."""

        self._store_bucket_state(cache, self._cache_key(key, window), float(capacity), self._clock(), capacity, window)
        return True

    def get_window_info(self, window: int) -> dict[str, Any]:
        return {
            "refill_period": window,
            "current_time": int(self._clock()),
            "tokens_per_second": 1.0 / window,
        }

    def get_usage(
        self,
        cache: AbstractCache,
        key: str,
        window: int,
        capacity: int | None = None,
    ) -> dict[str, Any]:
        """Describe the bucket for ``key``.

        ``capacity`` defaults to the capacity recorded with the bucket state
        (or the window length for a bucket that was never written).
        """
        now = self._clock()
        cache_key = self._cache_key(key, window)
        stored = cache.get(cache_key)
        if capacity is None:
            capacity = int(stored.get("capacity", window)) if isinstance(stored, dict) else window

        state = self._get_bucket_state(cache, cache_key, capacity, now)
        tokens = self._refill(state, now, capacity, window) if capacity > 0 else 0.0
        refill_rate = capacity / window

        return {
            "current_tokens": tokens,
            "bucket_capacity": capacity,
            "refill_rate": refill_rate,
            "last_refill": state["last_refill"],
            "time_to_full_bucket": (capacity - tokens) / refill_rate if refill_rate else 0.0,
            "next_token_in_seconds": (1 - tokens) / refill_rate if tokens < 1 and refill_rate else 0.0,
        }

    def clear_limit(self, cache: AbstractCache, key: str, window: int) -> bool:
        return cache.forget(self._cache_key(key, window))
