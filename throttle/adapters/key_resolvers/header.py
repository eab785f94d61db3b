"""Header (API key / token) key resolver."""

from __future__ import annotations

import hashlib
from typing import Any, Mapping

from fastapi import Request

from throttle.adapters.key_resolvers.base import KeyResolver
from throttle.adapters.key_resolvers.ip import IpKeyResolver


class HeaderKeyResolver(KeyResolver):
    """Key requests by a header value: ``header:<value>``.

    ``header`` is checked first, then each of ``fallback_headers`` in order.
    Header names are matched case-insensitively as HTTP requires;
    ``case_sensitive=False`` additionally lowercases the value so ``ABC`` and
    ``abc`` share a quota. With ``hash_value`` the key carries the SHA-256 of
    the value instead of the raw credential.
    """

    name = "header"

    def __init__(self, config: Mapping[str, Any] | None = None) -> None:
        super().__init__(config)
        self._ip_resolver = IpKeyResolver({"prefix": self._config["ip_prefix"]})

    def get_default_config(self) -> dict[str, Any]:
        return {
            "header": "X-API-Key",
            "fallback_headers": ["Authorization", "X-Auth-Token", "X-Client-ID"],
            "prefix": "header",
            "ip_prefix": "ip",
            "fallback_to_ip": True,
            "case_sensitive": True,
            "extract_bearer_token": True,
            "hash_value": False,
        }

    def set_config(self, config: Mapping[str, Any]) -> None:
        super().set_config(config)
        self._ip_resolver = IpKeyResolver({"prefix": self._config["ip_prefix"]})

    def _headers_to_check(self) -> list[str]:
        headers = [self._config["header"], *self._config["fallback_headers"]]
        return [h for h in headers if h]

    def _extract(self, header: str, value: str) -> str | None:
        value = value.strip()
        if header.lower() == "authorization" and self._config["extract_bearer_token"]:
            scheme, _, token = value.partition(" ")
            if scheme.lower() == "bearer":
                value = token.strip()
        return value or None

    def header_value(self, request: Request) -> tuple[str, str] | None:
        """Return ``(header_name, value)`` for the first populated header."""

        for header in self._headers_to_check():
            raw = request.headers.get(header)
            if raw is None:
                continue
            value = self._extract(header, raw)
            if value is not None:
                return header, value
        return None

    def resolve(self, request: Request) -> str | None:
        found = self.header_value(request)
        if found is None:
            if self._config["fallback_to_ip"]:
                return self._ip_resolver.resolve(request)
            return None

        _, value = found
        if not self._config["case_sensitive"]:
            value = value.lower()
        if self._config["hash_value"]:
            value = hashlib.sha256(value.encode("utf-8")).hexdigest()
        return f"{self._config['prefix']}:{value}"

    def debug_info(self, request: Request) -> dict[str, Any]:
        found = self.header_value(request)
        return {
            **super().debug_info(request),
            "headers_checked": self._headers_to_check(),
            "matched_header": found[0] if found else None,
            "fallback_to_ip": self._config["fallback_to_ip"],
        }
