from __future__ import annotations

"""Application factory for the FastAPI app.

Centralizes app construction (logging, handlers, global rate limit, routers)
so tests can build a fresh app with their own settings.
"""

from fastapi import FastAPI

from throttle.api.routes import health_router, status_router
from throttle.core.config import settings
from throttle.core.exception_handlers import setup_exception_handlers
from throttle.core.logging import configure_logging
from throttle.core.rate_limit import RateLimitMiddleware

# Liveness probes must keep answering while a client is throttled
EXEMPT_PATHS = ("/health",)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    When ``RATE_LIMIT_DEFAULT_RULE`` is set, every request except the health
    check goes through a global ``RateLimitMiddleware``. An invalid rule fails
    here, at startup, with ``ConfigurationAppError``.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Throttle API",
        description=(
            "Admission control for FastAPI services: fixed window, sliding "
            "window and token bucket limits keyed by IP, user, header or a "
            "combination, with X-RateLimit-* headers and 429 responses."
        ),
        version="0.1.0",
    )

    # Middleware
    rate_limiter = None
    if settings.rate_limit.default_rule:
        rate_limiter = RateLimitMiddleware(
            settings.rate_limit.default_rule,
            exempt_paths=EXEMPT_PATHS,
        )
        app.middleware("http")(rate_limiter)
    app.state.rate_limiter = rate_limiter

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(health_router)
    app.include_router(status_router)

    return app
