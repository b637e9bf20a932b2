"""Sliding window rate limiter.

Implements a sliding window log using one Redis sorted set per
(limit name, identifier):

1. Remove entries older than the window
2. Count the remaining entries
3. Record the current request
4. Refresh the key expiry (window + buffer)

All four steps run as one atomic pipeline. When the counter store is
unavailable or a call fails, every operation fails open: requests are
allowed rather than blocked.
"""

import asyncio
import secrets
import time
from typing import Callable, Optional, Sequence

from dashboard.app.core.config import settings
from dashboard.app.core.logging import get_log_context, get_logger
from dashboard.app.core.metrics import MetricsCollector, get_metrics_collector
from dashboard.app.core.redis_client import CounterStore, StoreError
from dashboard.app.ratelimit.models import RateLimitCheck, RateLimitConfig, RateLimitResult

logger = get_logger(__name__)

KEY_PREFIX = "ratelimit"


def make_key(config_name: str, identifier: str) -> str:
    """Build the Redis key for a limit name and identifier.

    Both parts are used verbatim: ``ratelimit:{config_name}:{identifier}``.
    """
    return f"{KEY_PREFIX}:{config_name}:{identifier}"


def _redact(identifier: str) -> str:
    return identifier[:8] + "..."


class SlidingWindowRateLimiter:
    """Distributed sliding window rate limiter.

    The limiter holds no counting state of its own; every decision reads
    fresh state from the counter store, so any number of processes can
    share the same keys.

    Usage:
        store = CounterStore(redis_url="redis://localhost:6379/0")
        await store.open()
        limiter = SlidingWindowRateLimiter(store)

        config = RateLimitConfig(name="mutation:ip", max=100, window_seconds=60)
        result = await limiter.check_rate_limit("10.0.0.1", config)
        if not result.allowed:
            ...  # respond 429 with Retry-After: result.retry_after
    """

    def __init__(
        self,
        store: Optional[CounterStore],
        metrics: Optional[MetricsCollector] = None,
        ttl_buffer_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the rate limiter.

        Args:
            store: Counter store; None means rate limiting always fails open
            metrics: Collector notified of denials (defaults to the global one)
            ttl_buffer_seconds: Seconds added to the window for key expiry
            clock: UNIX time source in seconds
        """
        self._store = store
        self._metrics = metrics
        self._ttl_buffer = (
            settings.rate_limit_ttl_buffer_seconds
            if ttl_buffer_seconds is None
            else ttl_buffer_seconds
        )
        self._clock = clock

    @property
    def store(self) -> Optional[CounterStore]:
        return self._store

    def _store_available(self) -> bool:
        return self._store is not None and self._store.available

    def _window_bounds(self, config: RateLimitConfig) -> tuple[int, int]:
        now_ms = int(self._clock() * 1000)
        return now_ms, now_ms - config.window_seconds * 1000

    async def check_rate_limit(
        self, identifier: str, config: RateLimitConfig
    ) -> RateLimitResult:
        """Record a request and decide whether it is admitted.

        Args:
            identifier: Caller-chosen stable identifier (IP, device id, user id)
            config: Limit to apply

        Returns:
            RateLimitResult; never raises on store failure
        """
        if not self._store_available():
            logger.debug(
                "Rate limiter degraded: counter store unavailable",
                extra=get_log_context(identifier=_redact(identifier), limit_name=config.name),
            )
            return RateLimitResult.fail_open(config)

        now_ms, cutoff_ms = self._window_bounds(config)
        member = f"{now_ms}:{secrets.token_hex(3)}"

        outcome = await (
            self._store.pipeline(make_key(config.name, identifier))
            .prune_older_than(cutoff_ms)
            .count()
            .add(now_ms, member)
            .set_expiry(config.window_seconds + self._ttl_buffer)
            .execute()
        )

        if isinstance(outcome, StoreError) or outcome.count is None:
            logger.warning(
                "Rate limit check failed; allowing request",
                extra=get_log_context(
                    identifier=_redact(identifier),
                    limit_name=config.name,
                    reason=getattr(outcome, "reason", "malformed"),
                ),
            )
            return RateLimitResult.fail_open(config)

        current = outcome.count + 1
        allowed = current <= config.max

        if allowed:
            return RateLimitResult(
                allowed=True,
                current=current,
                limit=config.max,
                remaining=max(0, config.max - current),
                reset_in=config.window_seconds,
            )

        logger.warning(
            f"Rate limit exceeded: {config.name}",
            extra=get_log_context(
                identifier=_redact(identifier),
                limit_name=config.name,
                current=current,
                limit=config.max,
            ),
        )
        await self._record_denial(config.name)

        return RateLimitResult(
            allowed=False,
            current=current,
            limit=config.max,
            remaining=0,
            reset_in=config.window_seconds,
            retry_after=config.window_seconds,
        )

    async def check_multiple_rate_limits(
        self, checks: Sequence[RateLimitCheck]
    ) -> RateLimitResult:
        """Evaluate several limits for one request.

        Returns the first denied result in input order. When every limit
        admits the request, returns the result with the highest usage ratio
        (the first one on ties).

        Args:
            checks: Ordered identifier/config pairs

        Returns:
            The most constrained RateLimitResult, or an unbounded result
            when no checks were supplied
        """
        if not checks:
            return RateLimitResult.unbounded()

        results = await asyncio.gather(
            *(self.check_rate_limit(check.identifier, check.config) for check in checks)
        )

        for result in results:
            if not result.allowed:
                return result

        most_constrained = results[0]
        for result in results[1:]:
            if result.usage_ratio > most_constrained.usage_ratio:
                most_constrained = result
        return most_constrained

    async def get_rate_limit_status(
        self, identifier: str, config: RateLimitConfig
    ) -> RateLimitResult:
        """Read the current window usage without recording a request.

        Prunes expired entries but never adds an entry, refreshes the TTL
        or records a denial.
        """
        if not self._store_available():
            return RateLimitResult.fail_open(config)

        _now_ms, cutoff_ms = self._window_bounds(config)
        outcome = await (
            self._store.pipeline(make_key(config.name, identifier))
            .prune_older_than(cutoff_ms)
            .count()
            .execute()
        )

        if isinstance(outcome, StoreError) or outcome.count is None:
            logger.warning(
                "Rate limit status check failed",
                extra=get_log_context(
                    identifier=_redact(identifier),
                    limit_name=config.name,
                    reason=getattr(outcome, "reason", "malformed"),
                ),
            )
            return RateLimitResult.fail_open(config)

        current = outcome.count
        return RateLimitResult(
            allowed=current < config.max,
            current=current,
            limit=config.max,
            remaining=max(0, config.max - current),
            reset_in=config.window_seconds,
        )

    async def reset_rate_limit(self, identifier: str, config_name: str) -> bool:
        """Delete the window for identifier under config_name.

        Returns:
            True when the delete succeeded (even if the key did not exist),
            False when the store is unavailable or the delete failed
        """
        if not self._store_available():
            return False

        outcome = await self._store.delete_key(make_key(config_name, identifier))
        if isinstance(outcome, StoreError):
            logger.error(
                "Failed to reset rate limit",
                extra=get_log_context(
                    identifier=_redact(identifier),
                    limit_name=config_name,
                    reason=outcome.reason,
                ),
            )
            return False

        logger.info(
            "Rate limit reset",
            extra=get_log_context(identifier=_redact(identifier), limit_name=config_name),
        )
        return True

    async def _record_denial(self, limit_name: str) -> None:
        metrics = self._metrics or get_metrics_collector()
        try:
            await metrics.record_rate_limit_hit(limit_name)
        except Exception as e:
            logger.warning(f"Failed to record rate limit metric: {e}")
