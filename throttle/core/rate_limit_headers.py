"""Rate limit response headers and the 429 response."""

from __future__ import annotations

from typing import Iterable, Mapping

from fastapi import status
from fastapi.responses import JSONResponse

from throttle.adapters.rate_limit.base import RateLimitResult
from throttle.core.rate_limit_config import HEADER_FIELDS

DEFAULT_HEADER_NAMES: dict[str, str] = {
    "limit": "X-RateLimit-Limit",
    "remaining": "X-RateLimit-Remaining",
    "reset": "X-RateLimit-Reset",
    "retry_after": "Retry-After",
}


class RateLimitHeaders:
    """Build ``X-RateLimit-*`` / ``Retry-After`` headers from a result.

    Args:
        emit: Header fields to produce (``limit``, ``remaining``, ``reset``,
            ``retry_after``); defaults to all of them.
        names: Overrides for the header names, keyed by field.
    """

    def __init__(
        self,
        emit: Iterable[str] = HEADER_FIELDS,
        names: Mapping[str, str] | None = None,
    ) -> None:
        self.emit = tuple(emit)
        self.names = {**DEFAULT_HEADER_NAMES, **dict(names or {})}

    def build(self, result: RateLimitResult) -> dict[str, str]:
        values = {
            "limit": result.limit,
            "remaining": result.remaining,
            "reset": result.reset_time,
        }
        # Retry-After only makes sense on a rejected request
        if result.exceeded:
            values["retry_after"] = result.retry_after or 0

        return {
            self.names[field]: str(value)
            for field, value in values.items()
            if field in self.emit
        }


def build_rate_limited_response(
    result: RateLimitResult,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Return the 429 response for a blocked request."""

    retry_after = result.retry_after or 0
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": {
                "code": "rate_limit_exceeded",
                "message": "Rate limit exceeded. Try again later.",
                "details": {
                    "limit": result.limit,
                    "retry_after": retry_after,
                    "reset_time": result.reset_time,
                },
            }
        },
        headers=dict(headers or {}),
    )
