"""Distributed rate limiting for the dashboard API.

Sliding window log limiter backed by Redis sorted sets, shared by every
mutating endpoint. Fails open when Redis is unavailable.
"""

from dashboard.app.ratelimit.config import (
    RATE_LIMIT_EXEMPT_PATHS,
    build_rate_limit_configs,
    create_rate_limit_config,
    get_rate_limit_config,
    is_rate_limit_enabled,
    is_rate_limit_exempt,
)
from dashboard.app.ratelimit.limiter import SlidingWindowRateLimiter, make_key
from dashboard.app.ratelimit.middleware import (
    RateLimitMiddleware,
    add_rate_limit_headers,
    extract_device_id,
    get_client_ip,
    rate_limit,
)
from dashboard.app.ratelimit.models import (
    EndpointLimits,
    RateLimitCheck,
    RateLimitConfig,
    RateLimitResult,
)

__all__ = [
    # Models
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimitCheck",
    "EndpointLimits",
    # Limiter
    "SlidingWindowRateLimiter",
    "make_key",
    # Endpoint configuration
    "RATE_LIMIT_EXEMPT_PATHS",
    "build_rate_limit_configs",
    "create_rate_limit_config",
    "get_rate_limit_config",
    "is_rate_limit_enabled",
    "is_rate_limit_exempt",
    # Middleware
    "RateLimitMiddleware",
    "add_rate_limit_headers",
    "extract_device_id",
    "get_client_ip",
    "rate_limit",
]
