"""Rate limiting for FastAPI applications.

``RateLimitMiddleware`` wires a ``RateLimitConfig`` into the HTTP layer in
two ways:

- as an HTTP middleware for a whole app::

      app.middleware("http")(RateLimitMiddleware("100,60"))

- as a dependency for a route or router::

      limiter = RateLimitMiddleware("5,60,sliding,user")
      @router.post("/login", dependencies=[Depends(limiter.dependency)])

Behaviour:
- Disabled (no config, ``enabled=False`` or ``RATE_LIMIT_ENABLED=false``):
  requests pass through, the cache is never touched and no headers are added.
- Otherwise every rule is checked in order. The first exceeded rule blocks the
  request with 429; when all pass, headers describe the most restrictive rule.
- Failures inside the limiter (cache down, resolver error) are logged and the
  request is allowed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping

from fastapi import Request, Response

from throttle.adapters.cache import get_cache_store
from throttle.adapters.cache.base import AbstractCache
from throttle.adapters.rate_limit.base import RateLimitResult
from throttle.core.config import settings
from throttle.core.errors import ConfigurationAppError, RateLimitExceededError
from throttle.core.logging import hash_key
from throttle.core.rate_limit_config import RateLimitConfig
from throttle.core.rate_limit_headers import RateLimitHeaders, build_rate_limited_response
from throttle.core.rate_limit_manager import RateLimitManager, get_rate_limit_manager

logger = logging.getLogger(__name__)

ConfigSource = str | Mapping[str, Any] | RateLimitConfig | None


class RateLimitMiddleware:
    """Admission control for requests, driven by a ``RateLimitConfig``.

    Args:
        config: Rule string, structured mapping, parsed config, or None.
        manager: Strategy/key resolver registry (defaults to the process-wide one).
        cache: Cache store; looked up from ``config.cache_store`` when omitted.
        header_names: Overrides for the emitted header names.
        exempt_paths: Request paths the HTTP middleware never limits.

    Raises:
        ConfigurationAppError: If the config is invalid or names an unknown
            strategy or key resolver.
    """

    def __init__(
        self,
        config: ConfigSource = None,
        *,
        manager: RateLimitManager | None = None,
        cache: AbstractCache | None = None,
        header_names: Mapping[str, str] | None = None,
        exempt_paths: Iterable[str] = (),
    ) -> None:
        self.manager = manager or get_rate_limit_manager()
        self.config = self._coerce_config(config)
        self._cache = cache
        self.exempt_paths = frozenset(exempt_paths)

        if self.config is not None:
            self.manager.prepare(self.config)
            self.headers = RateLimitHeaders(self.config.headers, names=header_names)
        else:
            self.headers = RateLimitHeaders(names=header_names)

    @classmethod
    def from_parameters(cls, text: str, **kwargs: Any) -> "RateLimitMiddleware":
        return cls(text, **kwargs)

    @classmethod
    def with_config(cls, config: Mapping[str, Any] | RateLimitConfig, **kwargs: Any) -> "RateLimitMiddleware":
        return cls(config, **kwargs)

    def _coerce_config(self, config: ConfigSource) -> RateLimitConfig | None:
        if config is None or isinstance(config, RateLimitConfig):
            return config

        known = {
            "strategies": self.manager.available_strategies(),
            "key_resolvers": self.manager.available_key_resolvers(),
        }
        if isinstance(config, str):
            return RateLimitConfig.from_parameters(config, **known)
        if isinstance(config, Mapping):
            return RateLimitConfig.from_dict(config, **known)

        raise ConfigurationAppError(
            code="invalid_rule",
            message="Rate limit config must be a rule string, a mapping or a RateLimitConfig",
        )

    @property
    def enabled(self) -> bool:
        return (
            self.config is not None
            and self.config.enabled
            and settings.rate_limit.enabled
        )

    def _get_cache(self) -> AbstractCache:
        if self._cache is None:
            self._cache = get_cache_store(self.config.cache_store)
        return self._cache

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, request: Request) -> RateLimitResult | None:
        """Check ``request`` against every rule.

        Returns:
            The deciding result, or None when the limiter is disabled, no rule
            applied, or the cache could not be obtained.
        """

        if not self.enabled:
            return None

        try:
            cache = self._get_cache()
        except Exception as exc:
            logger.error(
                "rate_limit.cache_unavailable",
                extra={
                    "cache_store": self.config.cache_store,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return None

        result = self.manager.check(request, cache, self.config)
        if result is None:
            return None

        log_extra = {
            "key_hash": hash_key(result.key) if result.key else None,
            "strategy": result.strategy,
            "limit": result.limit,
            "remaining": result.remaining,
            "path": request.url.path,
        }
        if result.exceeded:
            logger.warning(
                "rate_limit.exceeded",
                extra={**log_extra, "retry_after_s": result.retry_after},
            )
        else:
            logger.info("rate_limit.allowed", extra=log_extra)

        return result

    def response_headers(self, result: RateLimitResult) -> dict[str, str]:
        if not settings.rate_limit.include_headers:
            return {}
        return self.headers.build(result)

    async def _evaluate_async(self, request: Request) -> RateLimitResult | None:
        if not self.enabled:
            return None
        # Cache backends are synchronous; keep them off the event loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.evaluate, request)

    # ------------------------------------------------------------------
    # HTTP integration
    # ------------------------------------------------------------------

    async def __call__(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """HTTP middleware entry point (``app.middleware("http")(limiter)``)."""

        if request.url.path in self.exempt_paths:
            return await call_next(request)

        result = await self._evaluate_async(request)

        if result is not None and result.exceeded:
            return build_rate_limited_response(result, self.response_headers(result))

        response = await call_next(request)
        if result is not None:
            response.headers.update(self.response_headers(result))
        return response

    async def dependency(self, request: Request, response: Response) -> None:
        """Route dependency (``Depends(limiter.dependency)``).

        Raises:
            RateLimitExceededError: When the request is blocked.
        """

        result = await self._evaluate_async(request)
        if result is None:
            return

        headers = self.response_headers(result)
        if result.exceeded:
            raise RateLimitExceededError(
                code="rate_limit_exceeded",
                message="Rate limit exceeded. Try again later.",
                details={
                    "limit": result.limit,
                    "retry_after": result.retry_after or 0,
                    "reset_time": result.reset_time,
                },
                result=result,
                headers=headers,
            )

        response.headers.update(headers)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def statistics(self, request: Request) -> dict[str, Any]:
        """Resolved keys (hashed) and current usage of each rule for ``request``."""

        if self.config is None:
            return {"enabled": False, "rules": []}

        cache: AbstractCache | None
        try:
            cache = self._get_cache()
        except Exception as exc:
            logger.warning(
                "rate_limit.cache_unavailable",
                extra={"cache_store": self.config.cache_store, "error_type": type(exc).__name__},
            )
            cache = None

        stats = self.manager.statistics(request, self.config, cache)
        stats["enabled"] = self.enabled
        return stats

    def clear(self, request: Request) -> bool:
        """Reset every rule's state for the keys ``request`` resolves to."""

        if self.config is None:
            return False
        return self.manager.clear(request, self._get_cache(), self.config)
