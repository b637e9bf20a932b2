"""Admin endpoints for inspecting and resetting rate limit windows."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from dashboard.app.core.config import settings
from dashboard.app.middleware.auth import require_admin
from dashboard.app.ratelimit.limiter import SlidingWindowRateLimiter
from dashboard.app.ratelimit.models import RateLimitConfig

router = APIRouter(prefix="/admin/ratelimit", tags=["admin"])


def get_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    """Return the limiter created by the application lifespan."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        raise HTTPException(status_code=503, detail="Rate limiter is not initialized")
    return limiter


@router.get("/{config_name}/{identifier}")
async def rate_limit_status(
    config_name: str,
    identifier: str,
    max: int = Query(..., ge=0),
    window_seconds: int | None = Query(default=None, ge=1),
    admin=Depends(require_admin),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
) -> dict[str, Any]:
    """Current window usage for one identifier (no side effect)."""
    config = RateLimitConfig(
        name=config_name,
        max=max,
        window_seconds=window_seconds or settings.rate_limit_window_seconds,
    )
    result = await limiter.get_rate_limit_status(identifier, config)
    return {"config": config_name, "identifier": identifier, **result.to_dict()}


@router.delete("/{config_name}/{identifier}")
async def reset_rate_limit(
    config_name: str,
    identifier: str,
    admin=Depends(require_admin),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
) -> dict[str, Any]:
    """Clear the window for one identifier."""
    reset = await limiter.reset_rate_limit(identifier, config_name)
    return {"config": config_name, "identifier": identifier, "reset": reset}
