"""Application-level exception types.

Configuration problems, cache failures and rejected requests each have their
own error type so the HTTP layer can map them to consistent responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from throttle.adapters.rate_limit.base import RateLimitResult


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    value: Any
    valid_values: list[str]
    limit: int
    remaining: int
    reset_time: int
    retry_after: int
    strategy: str
    cache_store: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised when a rate limit rule, registration or store name is invalid."""


class CacheAppError(AppError):
    """Raised when a cache backend cannot serve a request."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised by route dependencies when a request is rejected.

    Attributes:
        result: The exceeded rate limit result.
        headers: Response headers describing the limit state.
    """

    result: RateLimitResult | None = None
    headers: dict[str, str] = field(default_factory=dict)
