"""Rate limit rule configuration.

Rules are written either as a compact string::

    "<limit>,<window>[,<strategy>[,<key_resolver>]]"

with several rules stacked by ``|`` (``"10,1|1000,3600,sliding,user"``), or as
a structured mapping. Both forms produce the same frozen ``RateLimitConfig``,
and every problem is reported as ``ConfigurationAppError`` while parsing, never
while serving a request.

Key resolver forms accepted by the string grammar:

- ``ip``, ``user``, ``header``, ``composite`` (or any registered name)
- ``header:<Header-Name>``
- ``ip+user`` (a composite of the listed resolvers)
- ``custom:<registered name>``

Internally a key resolver is always a mapping with a ``type`` entry, e.g.
``{"type": "header", "header": "X-Tenant"}``.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from throttle.core.config import settings
from throttle.core.errors import ConfigurationAppError

VALID_STRATEGIES = ("fixed", "sliding", "token_bucket")
BUILTIN_KEY_RESOLVERS = ("ip", "user", "header", "composite")
HEADER_FIELDS = ("limit", "remaining", "reset", "retry_after")

DEFAULT_STRATEGY = "fixed"
DEFAULT_KEY_RESOLVER = "ip"

RULE_SEPARATOR = "|"
FIELD_SEPARATOR = ","
COMPOSITE_SEPARATOR = "+"


def _config_error(code: str, message: str, **details: Any) -> ConfigurationAppError:
    return ConfigurationAppError(code=code, message=message, details=details or None)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Return a plain dict/list copy of a frozen key resolver mapping."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(item) for item in value]
    return value


class LimitRule(BaseModel):
    """One quota: ``limit`` requests per ``window`` seconds."""

    model_config = ConfigDict(frozen=True)

    limit: int = Field(..., gt=0, description="Requests allowed per window")
    window: int = Field(..., gt=0, description="Window (or refill period) in seconds")
    strategy: str = Field(DEFAULT_STRATEGY, description="Counting algorithm name")
    key_resolver: Mapping[str, Any] = Field(
        default_factory=lambda: {"type": DEFAULT_KEY_RESOLVER},
        validate_default=True,
        description="Read-only key resolver mapping, always carrying a 'type' entry",
    )

    @field_validator("key_resolver")
    @classmethod
    def freeze_key_resolver(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return _freeze(value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "limit": self.limit,
            "window": self.window,
            "strategy": self.strategy,
            "key_resolver": thaw(self.key_resolver),
        }


class RateLimitConfig(BaseModel):
    """Parsed, immutable rate limit configuration for one route or app."""

    model_config = ConfigDict(frozen=True)

    rules: tuple[LimitRule, ...] = Field(..., min_length=1)
    enabled: bool = True
    cache_store: str = Field(default_factory=lambda: settings.rate_limit.cache_store)
    cache_prefix: str = Field(default_factory=lambda: settings.rate_limit.cache_prefix)
    headers: tuple[str, ...] = HEADER_FIELDS

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_parameters(
        cls,
        text: str,
        *,
        strategies: Iterable[str] | None = None,
        key_resolvers: Iterable[str] | None = None,
        **overrides: Any,
    ) -> "RateLimitConfig":
        """Parse a rule string such as ``"100,60"`` or ``"5,1|100,60,sliding,user"``.

        Args:
            text: Rule string.
            strategies: Strategy names accepted (defaults to the built-ins).
            key_resolvers: Extra key resolver names accepted as bare names or
                after ``custom:`` (e.g. those registered on a manager).
            **overrides: ``enabled``, ``headers``, ``cache_store``, ``cache_prefix``.

        Raises:
            ConfigurationAppError: If the string or any override is invalid.
        """

        parser = _RuleParser(strategies, key_resolvers)
        rules = parser.parse_rules(text)
        return cls._build(rules, overrides)

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        *,
        strategies: Iterable[str] | None = None,
        key_resolvers: Iterable[str] | None = None,
    ) -> "RateLimitConfig":
        """Build a config from its structured form.

        Accepted shapes:

        - ``{"rule": "100,60,sliding"}`` (``parameters`` is an alias)
        - ``{"limits": [{"limit": 100, "window": 60, ...}, ...]}``
        - ``{"limit": 100, "window": 60, "strategy": ..., "key_resolver": ...}``

        each optionally with ``enabled``, ``headers``, ``cache_store`` and
        ``cache_prefix``.
        """

        if not isinstance(data, Mapping):
            raise _config_error("invalid_rule", "Rate limit configuration must be a mapping")

        parser = _RuleParser(strategies, key_resolvers)
        text = data.get("rule", data.get("parameters"))

        if text is not None:
            rules = parser.parse_rules(text)
        elif "limits" in data:
            limits = data["limits"]
            if isinstance(limits, (str, bytes)) or not isinstance(limits, Iterable):
                raise _config_error("invalid_rule", "'limits' must be a list of rules")
            rules = [parser.rule_from_mapping(item) for item in limits]
        elif "limit" in data:
            rules = [parser.rule_from_mapping(data)]
        else:
            raise _config_error(
                "invalid_rule",
                "Rate limit configuration needs 'rule', 'limits' or 'limit'/'window'",
            )

        overrides = {
            name: data[name]
            for name in ("enabled", "headers", "cache_store", "cache_prefix")
            if name in data
        }
        return cls._build(rules, overrides)

    @classmethod
    def _build(cls, rules: list[LimitRule], overrides: Mapping[str, Any]) -> "RateLimitConfig":
        unknown = set(overrides) - {"enabled", "headers", "cache_store", "cache_prefix"}
        if unknown:
            raise _config_error(
                "invalid_rule",
                f"Unknown rate limit options: {', '.join(sorted(unknown))}",
            )

        values: dict[str, Any] = {"rules": tuple(rules), **overrides}
        if "headers" in values:
            values["headers"] = _normalize_headers(values["headers"])

        try:
            return cls(**values)
        except ValidationError as exc:
            raise _config_error(
                "invalid_rule",
                "Invalid rate limit configuration",
                context={"errors": [err["msg"] for err in exc.errors()]},
            ) from exc

    def to_dict(self) -> dict[str, Any]:
        """Structured form accepted by ``from_dict``."""

        return {
            "limits": [rule.to_dict() for rule in self.rules],
            "enabled": self.enabled,
            "headers": list(self.headers),
            "cache_store": self.cache_store,
            "cache_prefix": self.cache_prefix,
        }

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def has_multiple_limits(self) -> bool:
        return len(self.rules) > 1

    def get_limits(self) -> list[LimitRule]:
        return list(self.rules)

    @property
    def limit(self) -> int:
        return self.rules[0].limit

    @property
    def window(self) -> int:
        return self.rules[0].window

    @property
    def strategy(self) -> str:
        return self.rules[0].strategy

    @property
    def key_resolver(self) -> dict[str, Any]:
        return dict(self.rules[0].key_resolver)


def _normalize_headers(value: Any) -> tuple[str, ...]:
    if value is True:
        return HEADER_FIELDS
    if value is False or value is None:
        return ()
    if isinstance(value, str):
        value = [part.strip() for part in value.split(FIELD_SEPARATOR) if part.strip()]

    names = tuple(str(name).lower().replace("-", "_") for name in value)
    invalid = [name for name in names if name not in HEADER_FIELDS]
    if invalid:
        raise _config_error(
            "invalid_rule",
            f"Unknown rate limit header field(s): {', '.join(invalid)}",
            valid_values=list(HEADER_FIELDS),
        )
    return names


class _RuleParser:
    """Turns rule strings and rule mappings into ``LimitRule`` objects."""

    def __init__(
        self,
        strategies: Iterable[str] | None = None,
        key_resolvers: Iterable[str] | None = None,
    ) -> None:
        self.strategies = set(strategies) if strategies is not None else set(VALID_STRATEGIES)
        self.key_resolvers = set(BUILTIN_KEY_RESOLVERS) | set(key_resolvers or ())
        self.check_custom = key_resolvers is not None

    def parse_rules(self, text: Any) -> list[LimitRule]:
        if not isinstance(text, str) or not text.strip():
            raise _config_error("invalid_rule", "Rate limit rule must be a non-empty string")
        return [self.parse_rule(segment) for segment in text.split(RULE_SEPARATOR)]

    def parse_rule(self, segment: str) -> LimitRule:
        fields = [part.strip() for part in segment.split(FIELD_SEPARATOR)]
        if len(fields) < 2:
            raise _config_error(
                "invalid_rule",
                "Rate limit rule needs at least '<limit>,<window>'",
                value=segment.strip(),
            )
        if len(fields) > 4:
            raise _config_error(
                "invalid_rule",
                "Rate limit rule has too many fields",
                value=segment.strip(),
                hint="<limit>,<window>[,<strategy>[,<key_resolver>]]",
            )

        limit = self._parse_int(fields[0], "limit")
        window = self._parse_int(fields[1], "window")
        strategy = fields[2] if len(fields) > 2 and fields[2] else DEFAULT_STRATEGY
        resolver = fields[3] if len(fields) > 3 and fields[3] else DEFAULT_KEY_RESOLVER

        return self._rule(limit, window, strategy, self.parse_key_resolver(resolver))

    def rule_from_mapping(self, data: Any) -> LimitRule:
        if not isinstance(data, Mapping):
            raise _config_error("invalid_rule", "Each rate limit rule must be a mapping")
        if "limit" not in data or "window" not in data:
            raise _config_error("invalid_rule", "Rate limit rule needs 'limit' and 'window'")

        limit = self._parse_int(data["limit"], "limit")
        window = self._parse_int(data["window"], "window")
        strategy = data.get("strategy") or DEFAULT_STRATEGY
        resolver = data.get("key_resolver") or DEFAULT_KEY_RESOLVER

        if isinstance(resolver, Mapping):
            key_resolver = self.normalize_key_resolver(resolver)
        else:
            key_resolver = self.parse_key_resolver(str(resolver))
        return self._rule(limit, window, str(strategy), key_resolver)

    def _rule(self, limit: int, window: int, strategy: str, key_resolver: dict[str, Any]) -> LimitRule:
        if limit <= 0:
            raise _config_error("invalid_limit", "Rate limit must be greater than zero", limit=limit)
        if window <= 0:
            raise _config_error(
                "invalid_window",
                "Rate limit window must be greater than zero",
                value=window,
            )
        if strategy not in self.strategies:
            raise _config_error(
                "unknown_strategy",
                f"Unknown rate limit strategy: {strategy!r}",
                value=strategy,
                valid_values=sorted(self.strategies),
            )
        return LimitRule(limit=limit, window=window, strategy=strategy, key_resolver=key_resolver)

    @staticmethod
    def _parse_int(value: Any, field_name: str) -> int:
        if isinstance(value, bool):
            raise _config_error("invalid_rule", f"Rate limit {field_name} must be an integer")
        if isinstance(value, int):
            return value
        try:
            return int(str(value).strip())
        except ValueError:
            raise _config_error(
                "invalid_rule",
                f"Rate limit {field_name} must be an integer",
                value=str(value),
            ) from None

    def parse_key_resolver(self, text: str) -> dict[str, Any]:
        text = text.strip()
        if not text:
            raise _config_error("unknown_key_resolver", "Key resolver name is empty")

        if COMPOSITE_SEPARATOR in text:
            parts = [part.strip() for part in text.split(COMPOSITE_SEPARATOR)]
            if any(not part for part in parts):
                raise _config_error("unknown_key_resolver", "Empty part in composite key resolver", value=text)
            return {
                "type": "composite",
                "resolvers": [self.parse_key_resolver(part) for part in parts],
            }

        kind, sep, argument = text.partition(":")
        if sep:
            argument = argument.strip()
            if not argument:
                raise _config_error("unknown_key_resolver", f"Key resolver {kind!r} needs an argument", value=text)
            if kind == "header":
                return {"type": "header", "header": argument}
            if kind == "custom":
                self._check_custom(argument)
                return {"type": "custom", "name": argument}
            raise _config_error("unknown_key_resolver", f"Unknown key resolver: {text!r}", value=text)

        if text not in self.key_resolvers:
            raise _config_error(
                "unknown_key_resolver",
                f"Unknown key resolver: {text!r}",
                value=text,
                valid_values=sorted(self.key_resolvers),
            )
        return {"type": text}

    def normalize_key_resolver(self, data: Mapping[str, Any]) -> dict[str, Any]:
        resolver = dict(data)
        kind = resolver.get("type")
        if not kind:
            raise _config_error("unknown_key_resolver", "Key resolver mapping needs a 'type'")

        if kind == "custom":
            name = resolver.get("name") or resolver.get("class")
            if not name:
                raise _config_error("unknown_key_resolver", "Custom key resolver needs a 'name'")
            self._check_custom(str(name))
            resolver.pop("class", None)
            resolver["name"] = str(name)
        elif kind not in self.key_resolvers:
            raise _config_error(
                "unknown_key_resolver",
                f"Unknown key resolver: {kind!r}",
                value=str(kind),
                valid_values=sorted(self.key_resolvers),
            )

        if kind == "composite" and "resolvers" in resolver:
            resolver["resolvers"] = [
                self.normalize_key_resolver(child)
                if isinstance(child, Mapping)
                else self.parse_key_resolver(str(child))
                for child in resolver["resolvers"]
            ]
        return resolver

    def _check_custom(self, name: str) -> None:
        # Without a registry to check against, custom names are validated
        # when the manager builds the resolver.
        if self.check_custom and name not in self.key_resolvers:
            raise _config_error(
                "unknown_key_resolver",
                f"Custom key resolver {name!r} is not registered",
                value=name,
            )
