"""Authenticated user key resolver."""

from __future__ import annotations

from typing import Any, Mapping

from fastapi import Request

from throttle.adapters.key_resolvers.base import KeyResolver
from throttle.adapters.key_resolvers.ip import IpKeyResolver


class UserKeyResolver(KeyResolver):
    """Key requests by authenticated user: ``user:<id>``.

    The user is looked up on ``request.state.user``, ``request.state.user_id``
    and finally ``scope["user"]`` (Starlette's ``AuthenticationMiddleware``).
    Anonymous traffic falls back to the IP key unless ``fallback_to_ip`` is off.
    A ``user_getter`` callable in the config replaces the lookup entirely.
    """

    name = "user"

    def __init__(self, config: Mapping[str, Any] | None = None) -> None:
        super().__init__(config)
        self._ip_resolver = IpKeyResolver({"prefix": self._config["ip_prefix"]})

    def get_default_config(self) -> dict[str, Any]:
        return {
            "prefix": "user",
            "ip_prefix": "ip",
            "fallback_to_ip": True,
            "user_id_field": "id",
            "user_getter": None,
        }

    def set_config(self, config: Mapping[str, Any]) -> None:
        super().set_config(config)
        self._ip_resolver = IpKeyResolver({"prefix": self._config["ip_prefix"]})

    def _current_user(self, request: Request) -> Any:
        getter = self._config.get("user_getter")
        if getter is not None:
            return getter(request)

        user = getattr(request.state, "user", None)
        if user is not None:
            return user

        user_id = getattr(request.state, "user_id", None)
        if user_id is not None:
            return user_id

        return request.scope.get("user")

    def user_id(self, request: Request) -> str | None:
        user = self._current_user(request)
        if user is None:
            return None

        if isinstance(user, (str, int)) and not isinstance(user, bool):
            value: Any = user
        elif getattr(user, "is_authenticated", True) is False:
            return None
        elif isinstance(user, Mapping):
            value = user.get(self._config["user_id_field"])
        else:
            field = self._config["user_id_field"]
            value = getattr(user, field, None)
            if value is None:
                # starlette.authentication.BaseUser
                value = getattr(user, "identity", None)

        if value is None or value == "":
            return None
        return str(value)

    def resolve(self, request: Request) -> str | None:
        user_id = self.user_id(request)
        if user_id is not None:
            return f"{self._config['prefix']}:{user_id}"

        if self._config["fallback_to_ip"]:
            return self._ip_resolver.resolve(request)
        return None

    def debug_info(self, request: Request) -> dict[str, Any]:
        user_id = self.user_id(request)
        return {
            **super().debug_info(request),
            "user_id": user_id,
            "authenticated": user_id is not None,
            "fallback_to_ip": self._config["fallback_to_ip"],
        }
