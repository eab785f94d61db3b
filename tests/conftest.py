"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults must be in place before anything imports settings.
"""

import os
from typing import Any, Callable

import pytest

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_CACHE_STORE", "default")
os.environ.setdefault("RATE_LIMIT_INCLUDE_HEADERS", "true")
os.environ.pop("RATE_LIMIT_DEFAULT_RULE", None)

from fastapi import Request  # noqa: E402

from throttle.adapters.cache import reset_cache_stores  # noqa: E402
from throttle.core.rate_limit_manager import reset_rate_limit_manager  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_rate_limit_state():
    """Every test starts with empty stores and a fresh manager."""
    reset_cache_stores()
    reset_rate_limit_manager()
    yield
    reset_cache_stores()
    reset_rate_limit_manager()


@pytest.fixture
def make_request() -> Callable[..., Request]:
    """Build a bare Starlette request for key resolver tests."""

    def _make(
        headers: dict[str, str] | None = None,
        client: tuple[str, int] | None = ("203.0.113.7", 50000),
        state: dict[str, Any] | None = None,
        user: Any = None,
        path: str = "/",
    ) -> Request:
        scope: dict[str, Any] = {
            "type": "http",
            "method": "GET",
            "path": path,
            "query_string": b"",
            "headers": [
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in (headers or {}).items()
            ],
            "client": client,
            "state": dict(state or {}),
        }
        if user is not None:
            scope["user"] = user
        return Request(scope)

    return _make
