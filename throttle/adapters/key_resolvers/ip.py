"""IP address key resolver."""

from __future__ import annotations

import ipaddress
from typing import Any

from fastapi import Request

from throttle.adapters.key_resolvers.base import DEFAULT_PROXY_HEADERS, KeyResolver, client_ip
from throttle.core.config import settings


class IpKeyResolver(KeyResolver):
    """Key requests by client address: ``ip:<address>``.

    IPv6 addresses are normalized to their compressed form. Optional subnet
    masks group neighbouring addresses under one quota (e.g. a /24 or /64).
    """

    name = "ip"

    def get_default_config(self) -> dict[str, Any]:
        return {
            "prefix": "ip",
            "trust_proxies": settings.rate_limit.trust_proxies,
            "proxy_headers": list(DEFAULT_PROXY_HEADERS),
            "normalize_ipv6": True,
            "subnet_mask_ipv4": None,
            "subnet_mask_ipv6": None,
        }

    def client_address(self, request: Request) -> str | None:
        ip = client_ip(
            request,
            trust_proxies=self._config["trust_proxies"],
            proxy_headers=self._config["proxy_headers"],
        )
        if ip is None:
            return None

        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            # Not an IP (e.g. a unix socket peer); use the server's label as-is
            return ip

        mask = (
            self._config["subnet_mask_ipv4"]
            if address.version == 4
            else self._config["subnet_mask_ipv6"]
        )
        if mask:
            network = ipaddress.ip_network(f"{address}/{int(mask)}", strict=False)
            return str(network.network_address)

        if address.version == 6 and self._config["normalize_ipv6"]:
            return address.compressed
        return ip

    def resolve(self, request: Request) -> str | None:
        ip = self.client_address(request)
        if ip is None:
            return None
        return f"{self._config['prefix']}:{ip}"

    def debug_info(self, request: Request) -> dict[str, Any]:
        return {
            **super().debug_info(request),
            "client_ip": self.client_address(request),
            "trust_proxies": self._config["trust_proxies"],
        }
