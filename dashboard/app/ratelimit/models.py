"""Rate limiting data models.

This module contains the immutable values passed into and returned from
the sliding window rate limiter.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional, Union

Number = Union[int, float]


@dataclass(frozen=True)
class RateLimitConfig:
    """One named limit.

    Attributes:
        name: Limiter identity, part of the Redis key; must be stable across processes
        max: Maximum admitted requests per window (0 denies everything)
        window_seconds: Sliding window length in seconds
    """
    name: str
    max: int
    window_seconds: int

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name must be a non-empty string")
        if self.max < 0:
            raise ValueError("max must be >= 0")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    ``limit`` and ``remaining`` are ``math.inf`` only for the unbounded
    result of a combined check with no limits.
    """
    allowed: bool
    current: int
    limit: Number
    remaining: Number
    reset_in: int
    retry_after: Optional[int] = None

    @classmethod
    def fail_open(cls, config: RateLimitConfig) -> "RateLimitResult":
        """Result used whenever the counter store cannot be consulted."""
        return cls(
            allowed=True,
            current=0,
            limit=config.max,
            remaining=config.max,
            reset_in=0,
        )

    @classmethod
    def unbounded(cls) -> "RateLimitResult":
        return cls(
            allowed=True,
            current=0,
            limit=math.inf,
            remaining=math.inf,
            reset_in=0,
        )

    @property
    def usage_ratio(self) -> float:
        """Fraction of the limit consumed by ``current``."""
        if self.limit == 0:
            return 0.0 if self.current == 0 else math.inf
        return self.current / self.limit

    def to_headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_in),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers

    def to_dict(self) -> dict:
        """Convert to a JSON-safe dictionary (infinite values become None)."""
        return {
            "allowed": self.allowed,
            "current": self.current,
            "limit": None if math.isinf(self.limit) else self.limit,
            "remaining": None if math.isinf(self.remaining) else self.remaining,
            "reset_in": self.reset_in,
            "retry_after": self.retry_after,
        }


@dataclass(frozen=True)
class RateLimitCheck:
    """One identifier/config pair evaluated by a combined check."""
    identifier: str
    config: RateLimitConfig


@dataclass(frozen=True)
class EndpointLimits:
    """Limits applied to one endpoint pattern."""
    per_ip: RateLimitConfig
    per_device: Optional[RateLimitConfig] = None
