"""Tests for rate limit rule parsing."""

import pytest
from pydantic import ValidationError

from throttle.core.errors import ConfigurationAppError
from throttle.core.rate_limit_config import LimitRule, RateLimitConfig


class TestFromParameters:
    def test_defaults(self) -> None:
        config = RateLimitConfig.from_parameters("100,60")

        assert config.limit == 100
        assert config.window == 60
        assert config.strategy == "fixed"
        assert config.key_resolver == {"type": "ip"}
        assert config.cache_store == "default"
        assert config.cache_prefix == "rate_limit"
        assert config.enabled is True
        assert config.has_multiple_limits() is False

    def test_strategy_and_resolver(self) -> None:
        config = RateLimitConfig.from_parameters("50,30,sliding,user")

        assert config.strategy == "sliding"
        assert config.key_resolver == {"type": "user"}

    def test_composite_resolver(self) -> None:
        config = RateLimitConfig.from_parameters("100,60,fixed,ip+user")

        assert config.key_resolver == {
            "type": "composite",
            "resolvers": ({"type": "ip"}, {"type": "user"}),
        }

    def test_header_resolver_with_name(self) -> None:
        config = RateLimitConfig.from_parameters("10,60,token_bucket,header:X-Tenant")

        assert config.strategy == "token_bucket"
        assert config.key_resolver == {"type": "header", "header": "X-Tenant"}

    def test_custom_resolver(self) -> None:
        config = RateLimitConfig.from_parameters("10,60,fixed,custom:tenant")

        assert config.key_resolver == {"type": "custom", "name": "tenant"}

    def test_whitespace_and_empty_optional_fields(self) -> None:
        config = RateLimitConfig.from_parameters(" 10 , 60 , , user ")

        assert config.strategy == "fixed"
        assert config.key_resolver == {"type": "user"}

    def test_stacked_rules_keep_declared_order(self) -> None:
        config = RateLimitConfig.from_parameters("10,1|1000,3600,sliding,user")

        assert config.has_multiple_limits() is True
        assert config.get_limits() == [
            LimitRule(limit=10, window=1),
            LimitRule(limit=1000, window=3600, strategy="sliding", key_resolver={"type": "user"}),
        ]

    def test_overrides(self) -> None:
        config = RateLimitConfig.from_parameters(
            "10,60", enabled=False, cache_store="redis", cache_prefix="api", headers=["limit"]
        )

        assert config.enabled is False
        assert config.cache_store == "redis"
        assert config.cache_prefix == "api"
        assert config.headers == ("limit",)

    @pytest.mark.parametrize(
        ("text", "code"),
        [
            ("0,60", "invalid_limit"),
            ("-5,60", "invalid_limit"),
            ("10,0", "invalid_window"),
            ("100", "invalid_rule"),
            ("", "invalid_rule"),
            ("ten,60", "invalid_rule"),
            ("10,60,fixed,ip,extra", "invalid_rule"),
            ("10,60,leaky_bucket", "unknown_strategy"),
            ("10,60,fixed,geo", "unknown_key_resolver"),
            ("10,60,fixed,header:", "unknown_key_resolver"),
            ("10,60,fixed,ip+", "unknown_key_resolver"),
            ("10,60|", "invalid_rule"),
        ],
    )
    def test_invalid_rules_raise_at_parse_time(self, text: str, code: str) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            RateLimitConfig.from_parameters(text)

        assert exc_info.value.code == code

    def test_registered_names_are_accepted(self) -> None:
        config = RateLimitConfig.from_parameters(
            "10,60,leaky,tenant",
            strategies=["fixed", "leaky"],
            key_resolvers=["tenant"],
        )

        assert config.strategy == "leaky"
        assert config.key_resolver == {"type": "tenant"}

    def test_unregistered_custom_name_rejected_when_registry_known(self) -> None:
        with pytest.raises(ConfigurationAppError):
            RateLimitConfig.from_parameters("10,60,fixed,custom:tenant", key_resolvers=[])

    def test_unknown_override_rejected(self) -> None:
        with pytest.raises(ConfigurationAppError):
            RateLimitConfig.from_parameters("10,60", burst=5)

    def test_config_is_immutable(self) -> None:
        config = RateLimitConfig.from_parameters("10,60")

        with pytest.raises(ValidationError):
            config.enabled = False


class TestStructuredConfig:
    def test_rule_string_form_matches_string_parsing(self) -> None:
        assert RateLimitConfig.from_dict({"rule": "50,30,sliding,user"}) == (
            RateLimitConfig.from_parameters("50,30,sliding,user")
        )

    def test_single_rule_mapping(self) -> None:
        config = RateLimitConfig.from_dict(
            {
                "limit": 50,
                "window": 30,
                "strategy": "sliding",
                "key_resolver": {"type": "header", "header": "X-Custom-Key"},
                "headers": False,
            }
        )

        assert config == RateLimitConfig.from_parameters(
            "50,30,sliding,header:X-Custom-Key", headers=False
        )
        assert config.headers == ()

    def test_limits_list(self) -> None:
        config = RateLimitConfig.from_dict(
            {
                "limits": [
                    {"limit": 10, "window": 1},
                    {"limit": 100, "window": 60, "key_resolver": "ip+user"},
                ],
                "cache_store": "memory",
            }
        )

        assert config == RateLimitConfig.from_parameters("10,1|100,60,fixed,ip+user", cache_store="memory")

    def test_composite_children_are_normalized(self) -> None:
        config = RateLimitConfig.from_dict(
            {"limit": 1, "window": 1, "key_resolver": {"type": "composite", "resolvers": ["ip", "user"]}}
        )

        assert config.key_resolver["resolvers"] == ({"type": "ip"}, {"type": "user"})

    def test_custom_class_alias(self) -> None:
        config = RateLimitConfig.from_dict(
            {"limit": 1, "window": 1, "key_resolver": {"type": "custom", "class": "tenant"}}
        )

        assert config.key_resolver == {"type": "custom", "name": "tenant"}

    def test_key_resolver_is_read_only(self) -> None:
        config = RateLimitConfig.from_parameters("10,60,fixed,ip+user")

        with pytest.raises(TypeError):
            config.rules[0].key_resolver["type"] = "user"
        with pytest.raises(TypeError):
            config.key_resolver["resolvers"][0]["type"] = "header"

        exported = config.to_dict()
        exported["limits"][0]["key_resolver"]["type"] = "user"
        assert config.key_resolver["type"] == "composite"

    def test_to_dict_round_trip(self) -> None:
        config = RateLimitConfig.from_parameters(
            "10,1,token_bucket,header:X-Key|100,60,sliding,ip+user", headers=["limit", "reset"]
        )

        assert RateLimitConfig.from_dict(config.to_dict()) == config

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"enabled": True},
            {"limit": 10},
            {"limits": "10,60"},
            {"limits": [{"limit": 0, "window": 60}]},
            {"limit": 10, "window": 60, "key_resolver": {"header": "X"}},
            {"limit": 10, "window": 60, "headers": ["limit", "quota"]},
        ],
    )
    def test_invalid_structures_raise(self, data: dict) -> None:
        with pytest.raises(ConfigurationAppError):
            RateLimitConfig.from_dict(data)
