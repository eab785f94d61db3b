"""Cache interface consumed by the rate limiting strategies.

Strategies only rely on the operations below. No compare-and-swap is assumed,
so compound read-modify-write updates are best-effort under concurrency.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class AbstractCache(ABC):
    """Key/value store with per-key TTL and atomic counters."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value, or ``default`` when missing/expired."""
        raise NotImplementedError

    @abstractmethod
    def put(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Store ``value`` for ``ttl_seconds`` seconds."""
        raise NotImplementedError

    @abstractmethod
    def increment(self, key: str, by: int = 1, ttl_seconds: int | None = None) -> int:
        """Atomically add ``by`` to an integer value and return the result.

        Missing keys count as zero and, when ``ttl_seconds`` is given, are
        created with that TTL in the same atomic step. An existing TTL is
        preserved.
        """
        raise NotImplementedError

    @abstractmethod
    def decrement(self, key: str, by: int = 1) -> int:
        """Atomically subtract ``by`` from an integer value and return the result."""
        raise NotImplementedError

    @abstractmethod
    def has(self, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def forget(self, key: str) -> bool:
        """Delete ``key``. Returns True when something was removed."""
        raise NotImplementedError

    @abstractmethod
    def flush(self) -> bool:
        raise NotImplementedError
