from __future__ import annotations

from throttle.api.routes.health import router as health_router
from throttle.api.routes.status import router as status_router

__all__ = ["health_router", "status_router"]
