"""Key resolver interface.

A key resolver maps an inbound request to the partition key its quota is
tracked under (``ip:203.0.113.7``, ``user:42``, ``header:<token>`` ...).
Resolvers only read the request; they never touch the cache.
"""

from __future__ import annotations

import ipaddress
from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping

from fastapi import Request

DEFAULT_PROXY_HEADERS = (
    "X-Forwarded-For",
    "X-Real-IP",
    "Client-IP",
    "X-Cluster-Client-IP",
)


class KeyResolver(ABC):
    """Interface for request identity resolution."""

    name: str = ""

    def __init__(self, config: Mapping[str, Any] | None = None) -> None:
        self._config: dict[str, Any] = {**self.get_default_config(), **dict(config or {})}

    @abstractmethod
    def resolve(self, request: Request) -> str | None:
        """Return the rate limit key for ``request``, or None if unresolvable."""
        raise NotImplementedError

    def can_resolve(self, request: Request) -> bool:
        return self.resolve(request) is not None

    def get_default_config(self) -> dict[str, Any]:
        return {}

    def set_config(self, config: Mapping[str, Any]) -> None:
        self._config = {**self._config, **dict(config)}

    def get_config(self) -> dict[str, Any]:
        return dict(self._config)

    def debug_info(self, request: Request) -> dict[str, Any]:
        return {
            "resolver": self.name,
            "resolved_key": self.resolve(request),
        }


def _valid_ip(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def client_ip(
    request: Request,
    *,
    trust_proxies: bool = False,
    proxy_headers: Iterable[str] = DEFAULT_PROXY_HEADERS,
) -> str | None:
    """Return the client address for ``request``.

    The peer address reported by the server is used as-is. Proxy headers are
    only consulted when ``trust_proxies`` is set, in order, taking the first
    entry of comma-separated lists and skipping values that are not IPs.
    """

    if trust_proxies:
        for header in proxy_headers:
            value = request.headers.get(header)
            if not value:
                continue
            candidate = _valid_ip(value.split(",")[0])
            if candidate:
                return candidate

    if request.client and request.client.host:
        return request.client.host
    return None
