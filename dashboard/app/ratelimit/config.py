"""Rate limit configuration.

Defines rate limits per endpoint type and identifier. Limits are read from
settings (environment variables) when the table is built.
"""

from typing import Dict, Optional

from dashboard.app.core.config import Settings, settings
from dashboard.app.ratelimit.models import EndpointLimits, RateLimitConfig

INGEST_PATH = "/api/v2/readings/ingest"
MUTATION_DEFAULT = "MUTATION_DEFAULT"
READ_DEFAULT = "READ_DEFAULT"

MUTATION_METHODS = frozenset({"POST", "PATCH", "PUT", "DELETE"})

# Health checks and metrics scrapes are never rate limited
RATE_LIMIT_EXEMPT_PATHS = (
    "/api/health",
    "/api/v2/metrics",
    "/api/v2/health",
    "/health",
    "/metrics",
)


def create_rate_limit_config(name: str, max: int, window_seconds: int) -> RateLimitConfig:
    """Custom rate limit config builder."""
    return RateLimitConfig(name=name, max=max, window_seconds=window_seconds)


def build_rate_limit_configs(cfg: Optional[Settings] = None) -> Dict[str, EndpointLimits]:
    """Build the endpoint limit table.

    Args:
        cfg: Settings to read limits from (defaults to the global settings)

    Returns:
        Mapping of exact path, MUTATION_DEFAULT or READ_DEFAULT to limits
    """
    cfg = cfg or settings
    window = cfg.rate_limit_window_seconds

    return {
        # Protects against malfunctioning sensors flooding the system
        INGEST_PATH: EndpointLimits(
            per_device=create_rate_limit_config(
                "ingest:device", cfg.rate_limit_ingest_per_device, window
            ),
            per_ip=create_rate_limit_config(
                "ingest:ip", cfg.rate_limit_ingest_per_ip, window
            ),
        ),
        MUTATION_DEFAULT: EndpointLimits(
            per_ip=create_rate_limit_config(
                "mutation:ip", cfg.rate_limit_mutations_per_ip, window
            ),
        ),
        READ_DEFAULT: EndpointLimits(
            per_ip=create_rate_limit_config(
                "read:ip", cfg.rate_limit_reads_per_ip, window
            ),
        ),
    }


def is_rate_limit_enabled(cfg: Optional[Settings] = None) -> bool:
    return (cfg or settings).rate_limit_enabled


def is_rate_limit_exempt(path: str) -> bool:
    """Check if a path is exempt from rate limiting."""
    return any(path.startswith(exempt) for exempt in RATE_LIMIT_EXEMPT_PATHS)


def get_rate_limit_config(
    path: str,
    method: str,
    configs: Optional[Dict[str, EndpointLimits]] = None,
    cfg: Optional[Settings] = None,
) -> Optional[EndpointLimits]:
    """Get rate limit config for a specific path and method.

    Exact path matches win; otherwise mutating methods get the mutation
    default and everything else the read default.

    Returns:
        EndpointLimits, or None when rate limiting is disabled or the path is exempt
    """
    if not is_rate_limit_enabled(cfg):
        return None

    if is_rate_limit_exempt(path):
        return None

    configs = configs if configs is not None else build_rate_limit_configs(cfg)

    if path in configs:
        return configs[path]

    if method.upper() in MUTATION_METHODS:
        return configs[MUTATION_DEFAULT]

    return configs[READ_DEFAULT]
