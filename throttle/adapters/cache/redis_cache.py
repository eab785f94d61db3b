"""Redis-backed cache shared by every worker.

Values are JSON encoded so the strategies can store counters, timestamp lists
and bucket mappings through the same interface. Integers encode to plain
digits, which keeps ``INCRBY`` usable on counters written with ``put``.

Every Redis failure surfaces as ``CacheAppError``; callers decide whether to
fail open.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

from throttle.adapters.cache.base import AbstractCache
from throttle.core.errors import CacheAppError

logger = logging.getLogger(__name__)


class RedisCache(AbstractCache):
    """Cache implementation over a synchronous redis-py client.

    Args:
        redis_client: A ``redis.Redis`` compatible client created with
            ``decode_responses=True``.
    """

    def __init__(self, redis_client: Redis) -> None:
        self.redis = redis_client

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 0.5) -> "RedisCache":
        """Build a cache with bounded connect/read timeouts."""

        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client)

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._call("get", self.redis.get, key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise CacheAppError(
                code="cache_decode_failed",
                message=f"Cached value for '{key}' is not valid JSON",
            ) from exc

    def put(self, key: str, value: Any, ttl_seconds: int) -> bool:
        payload = json.dumps(value)
        if ttl_seconds > 0:
            return bool(self._call("put", self.redis.set, key, payload, ex=int(ttl_seconds)))
        return bool(self._call("put", self.redis.set, key, payload))

    def increment(self, key: str, by: int = 1, ttl_seconds: int | None = None) -> int:
        if ttl_seconds is None or ttl_seconds <= 0:
            return int(self._call("increment", self.redis.incrby, key, by))

        # SET NX only creates the key, so a live counter is never reset
        pipe = self.redis.pipeline(transaction=True)
        pipe.set(key, 0, ex=int(ttl_seconds), nx=True)
        pipe.incrby(key, by)
        results = self._call("increment", pipe.execute)
        return int(results[-1])

    def decrement(self, key: str, by: int = 1) -> int:
        return int(self._call("decrement", self.redis.decrby, key, by))

    def has(self, key: str) -> bool:
        return bool(self._call("has", self.redis.exists, key))

    def forget(self, key: str) -> bool:
        return bool(self._call("forget", self.redis.delete, key))

    def flush(self) -> bool:
        return bool(self._call("flush", self.redis.flushdb))

    def _call(self, operation: str, func, *args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except RedisError as exc:
            logger.warning(
                "cache.redis_error",
                extra={
                    "operation": operation,
                    "error_type": type(exc).__name__,
                },
            )
            raise CacheAppError(
                code="cache_unavailable",
                message=f"Redis {operation} failed: {exc}",
                details={"cache_store": "redis"},
            ) from exc
