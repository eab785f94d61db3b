"""Cache stores holding rate limit state.

Stores are addressed by name (``default``, ``memory``, ``redis``) so rule
configuration can pick one with ``cache_store`` without importing backends.
"""

from __future__ import annotations

import threading
from typing import Callable

from throttle.adapters.cache.base import AbstractCache
from throttle.adapters.cache.in_memory import InMemoryCache
from throttle.adapters.cache.redis_cache import RedisCache
from throttle.core.config import settings
from throttle.core.errors import ConfigurationAppError

CacheFactory = Callable[[], AbstractCache]


def _build_memory_store() -> AbstractCache:
    return InMemoryCache()


def _build_redis_store() -> AbstractCache:
    return RedisCache.from_url(
        settings.rate_limit.redis_url,
        timeout_seconds=settings.rate_limit.cache_timeout_seconds,
    )


_factories: dict[str, CacheFactory] = {
    "default": _build_memory_store,
    "memory": _build_memory_store,
    "redis": _build_redis_store,
}
_stores: dict[str, AbstractCache] = {}
_lock = threading.Lock()


def get_cache_store(name: str = "default") -> AbstractCache:
    """Return the process-wide cache store registered under ``name``.

    Raises:
        ConfigurationAppError: If no store is registered under that name.
    """

    with _lock:
        store = _stores.get(name)
        if store is not None:
            return store

        factory = _factories.get(name)
        if factory is None:
            raise ConfigurationAppError(
                code="unknown_cache_store",
                message=f"Unknown cache store '{name}'",
                details={"value": name, "valid_values": sorted(_factories)},
            )
        store = factory()
        _stores[name] = store
        return store


def register_cache_store(name: str, factory: CacheFactory) -> None:
    """Register (or replace) a named cache store factory."""

    with _lock:
        _factories[name] = factory
        _stores.pop(name, None)


def reset_cache_stores() -> None:
    """Drop every instantiated store so the next lookup rebuilds it."""

    with _lock:
        _stores.clear()


__all__ = [
    "AbstractCache",
    "InMemoryCache",
    "RedisCache",
    "get_cache_store",
    "register_cache_store",
    "reset_cache_stores",
]
