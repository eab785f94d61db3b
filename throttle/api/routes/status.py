from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Rate limit"])


@router.get("/rate-limit/status")
def rate_limit_status(request: Request) -> dict:
    """Describe how the global rate limit sees the caller.

    Returns the hashed key of every rule along with its current usage.
    """

    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return {"enabled": False, "rules": []}
    return limiter.statistics(request)
