"""Rate limiting strategy interface and result type.

Strategies keep all of their per-key state in the cache they are handed, so a
single strategy instance can serve any number of keys, limits and workers.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from throttle.adapters.cache.base import AbstractCache


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a single rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Quota for this check.
        remaining: Units left in the current window/bucket (0 when blocked).
        reset_time: UNIX epoch seconds when the window/bucket fully resets.
        retry_after: Seconds until at least one unit is available when blocked.
        key: Resolved rate limit key, for diagnostics.
        strategy: Name of the algorithm that produced the result.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_time: int
    retry_after: int | None = None
    key: str | None = None
    strategy: str | None = None

    def __post_init__(self) -> None:
        clamped = min(max(0, self.remaining), max(0, self.limit))
        if clamped != self.remaining:
            object.__setattr__(self, "remaining", clamped)

    @property
    def exceeded(self) -> bool:
        return not self.allowed

    @classmethod
    def allowed_result(
        cls,
        *,
        limit: int,
        remaining: int,
        reset_time: int,
        key: str | None = None,
        strategy: str | None = None,
    ) -> "RateLimitResult":
        return cls(
            allowed=True,
            limit=limit,
            remaining=remaining,
            reset_time=int(reset_time),
            retry_after=None,
            key=key,
            strategy=strategy,
        )

    @classmethod
    def exceeded_result(
        cls,
        *,
        limit: int,
        reset_time: int,
        retry_after: int,
        key: str | None = None,
        strategy: str | None = None,
    ) -> "RateLimitResult":
        return cls(
            allowed=False,
            limit=limit,
            remaining=0,
            reset_time=int(reset_time),
            retry_after=int(retry_after),
            key=key,
            strategy=strategy,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_time": self.reset_time,
            "retry_after": self.retry_after,
            "key": self.key,
            "strategy": self.strategy,
        }


class RateLimitStrategy(ABC):
    """Interface for rate limiting algorithms.

    Subclasses set ``name`` and implement the counting logic. Configuration is
    a plain dict merged over ``get_default_config()``; every strategy
    understands ``cache_prefix`` and ``ttl_buffer``.
    """

    name: str = ""

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the strategy.

        Args:
            config: Overrides merged over the strategy defaults.
            clock: Time source function returning UNIX time in seconds.
        """
        self._config: dict[str, Any] = {**self.get_default_config(), **(config or {})}
        self._clock = clock

    @abstractmethod
    def check_limit(
        self,
        cache: AbstractCache,
        key: str,
        limit: int,
        window: int,
    ) -> RateLimitResult:
        """Consume one unit for ``key`` and report whether it was allowed.

        Args:
            cache: Store holding the per-key state.
            key: Resolved rate limit key (e.g. ``ip:203.0.113.7``).
            limit: Quota per window (bucket capacity for token bucket).
            window: Window length (refill period for token bucket) in seconds.
        """
        raise NotImplementedError

    @abstractmethod
    def get_usage(self, cache: AbstractCache, key: str, window: int) -> dict[str, Any]:
        """Describe the current state for ``key`` without consuming anything."""
        raise NotImplementedError

    @abstractmethod
    def clear_limit(self, cache: AbstractCache, key: str, window: int) -> bool:
        """Forget all state for ``key``."""
        raise NotImplementedError

    @abstractmethod
    def get_window_info(self, window: int) -> dict[str, Any]:
        """Return the window/refill boundaries computed for the current time."""
        raise NotImplementedError

    def get_default_config(self) -> dict[str, Any]:
        return {
            "cache_prefix": "rate_limit",
            "ttl_buffer": 60,
        }

    def set_config(self, config: dict[str, Any]) -> None:
        self._config = {**self._config, **config}

    def get_config(self) -> dict[str, Any]:
        return dict(self._config)

    def _cache_key(self, key: str, *scope: object) -> str:
        """Build ``{cache_prefix}:{strategy}:{key}[:{scope}...]``.

        Strategies add the window (or window start) as scope so stacked rules
        on the same key never share state.
        """
        return ":".join([self._config["cache_prefix"], self.name, key, *(str(s) for s in scope)])
