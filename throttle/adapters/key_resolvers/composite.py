"""Composite key resolver: one quota per combination of identities."""

from __future__ import annotations

from typing import Any, Callable, Mapping

from fastapi import Request

from throttle.adapters.key_resolvers.base import KeyResolver
from throttle.core.errors import ConfigurationAppError

ResolverFactory = Callable[[Any], KeyResolver]


def _default_factory(spec: Any) -> KeyResolver:
    # Imported here: the manager module imports this one
    from throttle.core.rate_limit_manager import get_rate_limit_manager

    return get_rate_limit_manager().get_key_resolver(spec)


class CompositeKeyResolver(KeyResolver):
    """Join the keys of several resolvers: ``composite:ip:1.2.3.4+user:42``.

    ``fallback_mode="any"`` skips children that cannot resolve (unresolvable
    only when none can); ``"all"`` makes the whole key unresolvable as soon as
    one child is. Children are built with ``resolver_factory``, which defaults
    to the process-wide manager, so registered resolvers can take part.
    """

    name = "composite"

    def __init__(
        self,
        config: Mapping[str, Any] | None = None,
        *,
        resolver_factory: ResolverFactory | None = None,
    ) -> None:
        super().__init__(config)
        self._factory = resolver_factory or _default_factory
        self._resolvers = self._build_resolvers()

    def get_default_config(self) -> dict[str, Any]:
        return {
            "resolvers": ["ip", "user"],
            "separator": "+",
            "prefix": "composite",
            "fallback_mode": "any",
        }

    def set_config(self, config: Mapping[str, Any]) -> None:
        super().set_config(config)
        self._resolvers = self._build_resolvers()

    def _build_resolvers(self) -> list[KeyResolver]:
        specs = self._config["resolvers"]
        if not specs:
            raise ConfigurationAppError(
                code="invalid_key_resolver",
                message="Composite key resolver needs at least one resolver",
            )
        if self._config["fallback_mode"] not in ("any", "all"):
            raise ConfigurationAppError(
                code="invalid_key_resolver",
                message="fallback_mode must be 'any' or 'all'",
                details={"value": str(self._config["fallback_mode"]), "valid_values": ["any", "all"]},
            )
        return [self._factory(spec) for spec in specs]

    @property
    def resolvers(self) -> list[KeyResolver]:
        return list(self._resolvers)

    def _parts(self, request: Request) -> list[str | None]:
        return [resolver.resolve(request) for resolver in self._resolvers]

    def resolve(self, request: Request) -> str | None:
        parts = self._parts(request)
        if self._config["fallback_mode"] == "all" and any(p is None for p in parts):
            return None

        # A user resolver falling back to IP would repeat the IP part
        unique = list(dict.fromkeys(p for p in parts if p is not None))
        if not unique:
            return None
        return f"{self._config['prefix']}:{self._config['separator'].join(unique)}"

    def debug_info(self, request: Request) -> dict[str, Any]:
        return {
            **super().debug_info(request),
            "fallback_mode": self._config["fallback_mode"],
            "parts": [
                {"resolver": resolver.name, "key": key}
                for resolver, key in zip(self._resolvers, self._parts(request))
            ],
        }
