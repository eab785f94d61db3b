"""Global exception handlers for consistent error responses.

Every error leaves the API as ``{"error": {"code", "message", "details"?}}``:

- RateLimitExceededError → 429 with Retry-After / X-RateLimit-* headers
- ConfigurationAppError → 500 (a deployment problem, not a client fault)
- other AppError → 400
- unexpected Exception → generic 500 that never leaks internals
"""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from throttle.core.errors import AppError, ConfigurationAppError, RateLimitExceededError

logger = logging.getLogger(__name__)


def _error_body(exc: AppError) -> dict:
    error_content = {
        "code": exc.code,
        "message": exc.message,
    }
    if exc.details:
        error_content["details"] = exc.details
    return {"error": error_content}


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Turn a blocked request into 429 with the limiter's headers."""

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=_error_body(exc),
        headers=exc.headers or None,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    ConfigurationAppError maps to 500 because only a broken deployment can
    raise it while serving; every other AppError is a client fault (400).

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    if isinstance(exc, ConfigurationAppError):
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
        },
    )

    return JSONResponse(status_code=status_code, content=_error_body(exc))


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Logs the failure for debugging and returns a generic message so no stack
    trace or implementation detail reaches the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Example:
        >>> from fastapi import FastAPI
        >>> from throttle.core.exception_handlers import setup_exception_handlers
        >>> app = FastAPI()
        >>> setup_exception_handlers(app)
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
