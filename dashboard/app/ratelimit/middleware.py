"""Rate limit middleware.

Applies the endpoint limit table to incoming HTTP requests. Supports both
IP-based and, for reading ingestion, device-based limiting. ``rate_limit``
builds a route dependency for endpoints that need their own limit.
"""

import inspect
import json
from typing import Awaitable, Callable, Dict, List, Optional, Union

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from dashboard.app.core.logging import get_logger
from dashboard.app.exceptions import RateLimitExceededError
from dashboard.app.ratelimit.config import (
    INGEST_PATH,
    build_rate_limit_configs,
    get_rate_limit_config,
    create_rate_limit_config,
    is_rate_limit_enabled,
)
from dashboard.app.ratelimit.limiter import SlidingWindowRateLimiter
from dashboard.app.ratelimit.models import (
    EndpointLimits,
    RateLimitCheck,
    RateLimitConfig,
    RateLimitResult,
)

logger = get_logger(__name__)

# Checked in order of preference
CLIENT_IP_HEADERS = (
    "x-forwarded-for",
    "x-real-ip",
    "cf-connecting-ip",  # Cloudflare
    "x-client-ip",
    "x-cluster-client-ip",
)


def get_client_ip(request: Request) -> str:
    """Extract client IP from request headers.

    x-forwarded-for can contain multiple IPs; the first one is the client.
    Falls back to the socket peer address, then to "unknown".
    """
    for header in CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            ip = value.split(",")[0].strip()
            if ip:
                return ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _device_id_from(payload: dict) -> Optional[str]:
    metadata = payload.get("metadata")
    if isinstance(metadata, dict) and metadata.get("device_id"):
        return str(metadata["device_id"])
    if payload.get("device_id"):
        return str(payload["device_id"])
    return None


async def extract_device_id(request: Request) -> Optional[str]:
    """Extract device ID from an ingestion request body.

    For bulk ingestion the first reading's device is used.

    Returns:
        Device ID, or None if the body is not JSON or carries no device
    """
    try:
        body = json.loads(await request.body())
    except (ValueError, UnicodeDecodeError, RecursionError):
        return None

    if not isinstance(body, dict):
        return None

    readings = body.get("readings")
    if isinstance(readings, list) and readings:
        first = readings[0]
        return _device_id_from(first) if isinstance(first, dict) else None

    return _device_id_from(body)


def add_rate_limit_headers(
    response: Response, result: RateLimitResult, replace: bool = True
) -> Response:
    """Add rate limit headers to response.

    With ``replace=False`` headers already set by a route level limit are kept.
    """
    for name, value in result.to_headers().items():
        if replace:
            response.headers[name] = value
        else:
            response.headers.setdefault(name, value)
    return response


def rate_limit_exceeded_error(result: RateLimitResult) -> RateLimitExceededError:
    return RateLimitExceededError(
        retry_after=result.retry_after,
        limit=result.limit,
        current=result.current,
        reset_in=result.reset_in,
        headers=result.to_headers(),
    )


def rate_limit_exceeded_response(result: RateLimitResult) -> JSONResponse:
    error = rate_limit_exceeded_error(result)
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_response(),
        headers=error.headers,
    )


IdentifierGetter = Callable[[Request], Union[str, Awaitable[str]]]


def _get_limiter(request: Request) -> Optional[SlidingWindowRateLimiter]:
    return getattr(request.app.state, "rate_limiter", None)


def rate_limit(
    name: str,
    max: int,
    window_seconds: int,
    get_identifier: Optional[IdentifierGetter] = None,
):
    """Build a route dependency enforcing a custom limit.

    Use for endpoints that need a tighter or differently keyed limit than
    the endpoint table, e.g.::

        @router.post(
            "/devices/{device_id}/command",
            dependencies=[Depends(rate_limit("device:command", 10, 60))],
        )

    The limit is checked in addition to any table limit the middleware
    applies. A denied request raises ``RateLimitExceededError`` carrying the
    429 headers. An allowed one gets ``X-RateLimit-*`` headers merged into
    the endpoint's response; endpoints returning a ``Response`` object
    directly must copy them themselves.

    Args:
        name: Limit name, used in the Redis key and the denial metric
        max: Maximum requests per window
        window_seconds: Window length in seconds
        get_identifier: Optional callable (sync or async) returning the
            identifier for a request. Defaults to the client IP.

    Raises:
        ValueError: If the limit is invalid
    """
    config: RateLimitConfig = create_rate_limit_config(name, max, window_seconds)

    async def dependency(request: Request, response: Response) -> Optional[RateLimitResult]:
        if not is_rate_limit_enabled():
            return None
        limiter = _get_limiter(request)
        if limiter is None:
            return None

        if get_identifier is None:
            identifier = get_client_ip(request)
        else:
            identifier = get_identifier(request)
            if inspect.isawaitable(identifier):
                identifier = await identifier

        result = await limiter.check_rate_limit(identifier, config)
        if not result.allowed:
            logger.warning(
                "Request rate limited",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "limit_name": config.name,
                    "current": result.current,
                    "limit": result.limit,
                },
            )
            raise rate_limit_exceeded_error(result)

        add_rate_limit_headers(response, result)
        return result

    return dependency


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on requests.

    The limiter is read from ``app.state.rate_limiter`` on each request so
    its lifecycle stays with the application lifespan. Requests pass
    through untouched when no limiter is configured.
    """

    def __init__(self, app, configs: Optional[Dict[str, EndpointLimits]] = None):
        super().__init__(app)
        self.configs = configs if configs is not None else build_rate_limit_configs()

    async def _build_checks(
        self, request: Request, limits: EndpointLimits, client_ip: str
    ) -> List[RateLimitCheck]:
        checks = [RateLimitCheck(identifier=client_ip, config=limits.per_ip)]

        if limits.per_device is not None and request.url.path.startswith(INGEST_PATH):
            device_id = await extract_device_id(request)
            if device_id:
                checks.append(RateLimitCheck(identifier=device_id, config=limits.per_device))

        return checks

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if not is_rate_limit_enabled():
            return await call_next(request)

        limiter = _get_limiter(request)
        if limiter is None:
            return await call_next(request)

        path = request.url.path
        limits = get_rate_limit_config(path, request.method, configs=self.configs)
        if limits is None:
            return await call_next(request)

        client_ip = get_client_ip(request)
        checks = await self._build_checks(request, limits, client_ip)
        result = await limiter.check_multiple_rate_limits(checks)

        if not result.allowed:
            logger.warning(
                "Request rate limited",
                extra={
                    "path": path,
                    "method": request.method,
                    "client_ip": client_ip[:8] + "...",
                    "current": result.current,
                    "limit": result.limit,
                },
            )
            return rate_limit_exceeded_response(result)

        response = await call_next(request)
        return add_rate_limit_headers(response, result, replace=False)
