"""Registry of rate limit strategies and key resolvers.

The manager turns the names found in a ``RateLimitConfig`` into strategy and
key resolver instances, caches them, and evaluates a config's rules against a
request. Custom implementations are added with ``register_strategy`` and
``register_key_resolver``; both validate the class immediately so a bad
registration fails at startup rather than on the first request.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Mapping

from fastapi import Request

from throttle.adapters.cache.base import AbstractCache
from throttle.adapters.key_resolvers import (
    CompositeKeyResolver,
    HeaderKeyResolver,
    IpKeyResolver,
    KeyResolver,
    UserKeyResolver,
)
from throttle.adapters.rate_limit import (
    FixedWindowStrategy,
    RateLimitResult,
    RateLimitStrategy,
    SlidingWindowStrategy,
    TokenBucketStrategy,
)
from throttle.core.config import settings
from throttle.core.errors import ConfigurationAppError
from throttle.core.logging import hash_key
from throttle.core.rate_limit_config import LimitRule, RateLimitConfig, thaw

logger = logging.getLogger(__name__)


class RateLimitManager:
    """Resolve, cache and evaluate rate limit strategies and key resolvers."""

    def __init__(
        self,
        *,
        cache_prefix: str | None = None,
        strategy_options: Mapping[str, Mapping[str, Any]] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache_prefix = cache_prefix or settings.rate_limit.cache_prefix
        self._strategy_options = {name: dict(opts) for name, opts in (strategy_options or {}).items()}
        self._clock = clock

        self._strategies: dict[str, type[RateLimitStrategy]] = {
            "fixed": FixedWindowStrategy,
            "sliding": SlidingWindowStrategy,
            "token_bucket": TokenBucketStrategy,
        }
        self._key_resolvers: dict[str, type[KeyResolver]] = {
            "ip": IpKeyResolver,
            "user": UserKeyResolver,
            "header": HeaderKeyResolver,
            "composite": CompositeKeyResolver,
        }
        self._strategy_instances: dict[tuple[str, str], RateLimitStrategy] = {}
        self._resolver_instances: dict[str, KeyResolver] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_strategy(self, name: str, strategy_cls: type[RateLimitStrategy]) -> None:
        """Register (or replace) a strategy implementation under ``name``.

        Raises:
            ConfigurationAppError: If ``strategy_cls`` is not a RateLimitStrategy subclass.
        """

        self._validate_registration(name, strategy_cls, RateLimitStrategy, "strategy")
        with self._lock:
            self._strategies[name] = strategy_cls
            for cache_key in [k for k in self._strategy_instances if k[0] == name]:
                del self._strategy_instances[cache_key]

        logger.info("rate_limit.strategy_registered", extra={"strategy": name})

    def register_key_resolver(self, name: str, resolver_cls: type[KeyResolver]) -> None:
        """Register (or replace) a key resolver implementation under ``name``.

        Raises:
            ConfigurationAppError: If ``resolver_cls`` is not a KeyResolver subclass.
        """

        self._validate_registration(name, resolver_cls, KeyResolver, "key_resolver")
        with self._lock:
            self._key_resolvers[name] = resolver_cls
            # Composites hold child instances, so drop everything
            self._resolver_instances.clear()

        logger.info("rate_limit.key_resolver_registered", extra={"key_resolver": name})

    @staticmethod
    def _validate_registration(name: str, cls: Any, base: type, kind: str) -> None:
        if not isinstance(name, str) or not name or ":" in name or "+" in name:
            raise ConfigurationAppError(
                code="invalid_registration",
                message=f"Invalid {kind} name: {name!r}",
                details={"value": str(name)},
            )
        if not isinstance(cls, type) or not issubclass(cls, base):
            raise ConfigurationAppError(
                code="invalid_registration",
                message=f"{kind} {name!r} must be a subclass of {base.__name__}",
                details={"value": getattr(cls, "__name__", repr(cls))},
            )

    def available_strategies(self) -> list[str]:
        return sorted(self._strategies)

    def available_key_resolvers(self) -> list[str]:
        return sorted(self._key_resolvers)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_strategy(self, name: str, *, cache_prefix: str | None = None) -> RateLimitStrategy:
        """Return the cached strategy instance for ``name`` and ``cache_prefix``."""

        prefix = cache_prefix or self.cache_prefix
        with self._lock:
            instance = self._strategy_instances.get((name, prefix))
            if instance is not None:
                return instance

            strategy_cls = self._strategies.get(name)
            if strategy_cls is None:
                raise ConfigurationAppError(
                    code="unknown_strategy",
                    message=f"Unknown rate limit strategy: {name!r}",
                    details={"value": name, "valid_values": self.available_strategies()},
                )

            options = {**self._strategy_options.get(name, {}), "cache_prefix": prefix}
            instance = strategy_cls(options, clock=self._clock)
            self._strategy_instances[(name, prefix)] = instance
            return instance

    def get_key_resolver(self, spec: str | Mapping[str, Any]) -> KeyResolver:
        """Return the key resolver for a name or a ``{"type": ..., **params}`` mapping.

        ``{"type": "custom", "name": "<registered>"}`` (``class`` is accepted
        as an alias of ``name``) selects a registered resolver with the
        remaining entries as its config.
        """

        if isinstance(spec, str):
            params: dict[str, Any] = {}
            name = spec
        elif isinstance(spec, Mapping):
            params = thaw(spec)
            name = params.pop("type", None)
            if name == "custom":
                name = params.pop("name", None) or params.pop("class", None)
        else:
            raise ConfigurationAppError(
                code="unknown_key_resolver",
                message="Key resolver must be a name or a mapping with a 'type'",
            )

        cache_key = json.dumps({"type": name, **params}, sort_keys=True, default=repr)
        with self._lock:
            instance = self._resolver_instances.get(cache_key)
            if instance is not None:
                return instance

            resolver_cls = self._key_resolvers.get(name) if isinstance(name, str) else None
            if resolver_cls is None:
                raise ConfigurationAppError(
                    code="unknown_key_resolver",
                    message=f"Unknown key resolver: {name!r}",
                    details={"value": str(name), "valid_values": self.available_key_resolvers()},
                )

            if issubclass(resolver_cls, CompositeKeyResolver):
                instance = resolver_cls(params, resolver_factory=self.get_key_resolver)
            else:
                instance = resolver_cls(params)
            self._resolver_instances[cache_key] = instance
            return instance

    def prepare(self, config: RateLimitConfig) -> None:
        """Build every strategy and key resolver ``config`` refers to.

        Raises:
            ConfigurationAppError: If any rule names an unknown implementation.
        """

        for rule in config.rules:
            self.get_strategy(rule.strategy, cache_prefix=config.cache_prefix)
            self.get_key_resolver(rule.key_resolver)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def check_rule(
        self,
        request: Request,
        cache: AbstractCache,
        rule: LimitRule,
        cache_prefix: str | None = None,
    ) -> RateLimitResult | None:
        """Check one rule; None when the request has no key for it."""

        key = self.get_key_resolver(rule.key_resolver).resolve(request)
        if key is None:
            logger.debug(
                "rate_limit.key_unresolved",
                extra={"key_resolver": rule.key_resolver.get("type"), "strategy": rule.strategy},
            )
            return None

        strategy = self.get_strategy(rule.strategy, cache_prefix=cache_prefix)
        return strategy.check_limit(cache, key, rule.limit, rule.window)

    def check(
        self,
        request: Request,
        cache: AbstractCache,
        config: RateLimitConfig,
    ) -> RateLimitResult | None:
        """Evaluate every rule of ``config`` in order.

        Returns the first exceeded result, otherwise the allowed result with
        the fewest remaining units, or None when no rule produced a result.
        A rule that raises is logged and skipped so the request is not
        blocked by a failure of the limiter itself.
        """

        most_restrictive: RateLimitResult | None = None

        for index, rule in enumerate(config.rules):
            try:
                result = self.check_rule(request, cache, rule, config.cache_prefix)
            except Exception as exc:
                logger.error(
                    "rate_limit.rule_failed",
                    extra={
                        "rule_index": index,
                        "strategy": rule.strategy,
                        "key_resolver": rule.key_resolver.get("type"),
                        "error_type": type(exc).__name__,
                        "error_msg": str(exc),
                    },
                )
                continue

            if result is None:
                continue
            if result.exceeded:
                return result
            if most_restrictive is None or result.remaining < most_restrictive.remaining:
                most_restrictive = result

        return most_restrictive

    def clear(self, request: Request, cache: AbstractCache, config: RateLimitConfig) -> bool:
        """Forget the stored state of every rule for the request's keys."""

        cleared = False
        for rule in config.rules:
            key = self.get_key_resolver(rule.key_resolver).resolve(request)
            if key is None:
                continue
            strategy = self.get_strategy(rule.strategy, cache_prefix=config.cache_prefix)
            cleared = strategy.clear_limit(cache, key, rule.window) or cleared
        return cleared

    def statistics(
        self,
        request: Request,
        config: RateLimitConfig,
        cache: AbstractCache | None = None,
    ) -> dict[str, Any]:
        """Describe how each rule sees ``request`` (keys are hashed).

        When ``cache`` is given, the current usage of every rule is included.
        """

        rules: list[dict[str, Any]] = []
        for rule in config.rules:
            resolver = self.get_key_resolver(rule.key_resolver)
            strategy = self.get_strategy(rule.strategy, cache_prefix=config.cache_prefix)
            key = resolver.resolve(request)

            entry: dict[str, Any] = {
                "limit": rule.limit,
                "window": rule.window,
                "strategy": rule.strategy,
                "key_resolver": rule.key_resolver.get("type"),
                "key_hash": hash_key(key) if key is not None else None,
                "window_info": strategy.get_window_info(rule.window),
            }

            if cache is not None and key is not None:
                try:
                    if isinstance(strategy, TokenBucketStrategy):
                        entry["usage"] = strategy.get_usage(cache, key, rule.window, capacity=rule.limit)
                    else:
                        entry["usage"] = strategy.get_usage(cache, key, rule.window)
                except Exception as exc:
                    logger.warning(
                        "rate_limit.usage_failed",
                        extra={"strategy": rule.strategy, "error_type": type(exc).__name__},
                    )
                    entry["usage"] = None

            rules.append(entry)

        return {
            "enabled": config.enabled,
            "cache_store": config.cache_store,
            "multiple_limits": config.has_multiple_limits(),
            "rules": rules,
        }


_manager: RateLimitManager | None = None
_manager_lock = threading.Lock()


def get_rate_limit_manager() -> RateLimitManager:
    """Return the process-wide manager (custom registrations live here)."""

    global _manager

    with _manager_lock:
        if _manager is None:
            _manager = RateLimitManager()
        return _manager


def reset_rate_limit_manager() -> None:
    """Drop the process-wide manager (used by tests)."""

    global _manager

    with _manager_lock:
        _manager = None
