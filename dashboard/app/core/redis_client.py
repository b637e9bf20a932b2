"""Counter store adapter backed by Redis sorted sets.

The rate limiter talks to Redis only through this module. Every call
returns either a decoded value or a ``StoreError``; Redis exceptions never
escape into limiter code.

Redis key layout is owned by the caller; this adapter only knows about the
four sorted-set operations a sliding window needs plus key deletion.
"""

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from dashboard.app.core.config import settings
from dashboard.app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoreError:
    """Failure outcome of a counter store call.

    Attributes:
        reason: One of unavailable, connection_error, timeout, redis_error,
            malformed or unexpected
        detail: Human readable detail for logs
    """
    reason: str
    detail: str = ""


@dataclass(frozen=True)
class WindowCounts:
    """Decoded results of one window pipeline.

    Each field is None when the corresponding operation was not queued.
    """
    pruned: Optional[int] = None
    count: Optional[int] = None
    added: Optional[int] = None
    expiry_set: Optional[bool] = None


StoreResult = Union[WindowCounts, StoreError]

# (result field, redis method, positional args, keyword args)
_QueuedOp = Tuple[str, str, tuple, dict]


class WindowPipeline:
    """Typed builder for the atomic per-key window operations.

    Operations are applied in the order they are queued, inside a single
    MULTI/EXEC transaction.

    Example:
        >>> counts = await (
        ...     store.pipeline("ratelimit:mutation:ip:10.0.0.1")
        ...     .prune_older_than(cutoff_ms)
        ...     .count()
        ...     .execute()
        ... )
    """

    def __init__(self, store: "CounterStore", key: str):
        self._store = store
        self.key = key
        self._ops: List[_QueuedOp] = []

    @property
    def operations(self) -> List[str]:
        """Names of the queued operations, in order."""
        return [op[0] for op in self._ops]

    def prune_older_than(self, cutoff_ms: int) -> "WindowPipeline":
        """Remove entries scored strictly below cutoff_ms."""
        self._ops.append(("pruned", "zremrangebyscore", (self.key, "-inf", f"({cutoff_ms}"), {}))
        return self

    def count(self) -> "WindowPipeline":
        self._ops.append(("count", "zcard", (self.key,), {}))
        return self

    def add(self, score_ms: int, member: str) -> "WindowPipeline":
        self._ops.append(("added", "zadd", (self.key, {member: score_ms}), {}))
        return self

    def set_expiry(self, ttl_seconds: int) -> "WindowPipeline":
        self._ops.append(("expiry_set", "expire", (self.key, ttl_seconds), {}))
        return self

    async def execute(self) -> StoreResult:
        """Run all queued operations in one round trip.

        Returns:
            WindowCounts on success, StoreError on any failure
        """
        if not self._ops:
            return WindowCounts()
        return await self._store._execute_pipeline(list(self._ops))


def decode_window_results(fields: List[str], raw: Any) -> StoreResult:
    """Decode raw pipeline results into WindowCounts.

    Args:
        fields: Result field names, one per queued operation
        raw: Ordered results as returned by the Redis client

    Returns:
        WindowCounts, or StoreError(reason="malformed") for an unexpected shape
    """
    if not isinstance(raw, (list, tuple)):
        return StoreError("malformed", f"pipeline returned {raw!r}")
    if len(raw) != len(fields):
        return StoreError(
            "malformed", f"expected {len(fields)} results, got {len(raw)}"
        )

    decoded: dict = {}
    for field, value in zip(fields, raw):
        if isinstance(value, Exception):
            return StoreError("redis_error", f"{field}: {value}")
        if field == "expiry_set":
            if not isinstance(value, int):
                return StoreError("malformed", f"{field}: {value!r}")
            decoded[field] = bool(value)
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            return StoreError("malformed", f"{field}: {value!r}")
        decoded[field] = value
    return WindowCounts(**decoded)


class CounterStore:
    """Thin adapter around an async Redis client.

    The client is injected or created from a URL, and has an explicit
    lifecycle: call ``open()`` on startup and ``close()`` on shutdown.

    A connection or timeout failure marks the store unavailable for a short
    cooldown so that a dead Redis costs at most one timeout per cooldown
    period instead of one per request.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        socket_timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        unavailable_cooldown: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the counter store.

        Args:
            client: Optional pre-built redis.asyncio client
            redis_url: Redis connection URL (defaults to settings.redis_url)
            socket_timeout: Per-command timeout in seconds
            connect_timeout: Connection timeout in seconds
            unavailable_cooldown: Seconds to skip Redis after a connection failure
            clock: Monotonic time source
        """
        self._client = client
        self._redis_url = settings.redis_url if redis_url is None else redis_url
        self._socket_timeout = (
            settings.redis_socket_timeout if socket_timeout is None else socket_timeout
        )
        self._connect_timeout = (
            settings.redis_connect_timeout if connect_timeout is None else connect_timeout
        )
        self._cooldown = (
            settings.redis_unavailable_cooldown_seconds
            if unavailable_cooldown is None
            else unavailable_cooldown
        )
        self._clock = clock
        self._closed = False
        self._unavailable_until = 0.0

    @property
    def available(self) -> bool:
        """Whether calls should be attempted against Redis right now."""
        if self._client is None or self._closed:
            return False
        return self._clock() >= self._unavailable_until

    async def open(self) -> bool:
        """Create the client if needed and verify connectivity.

        Never raises: an unreachable Redis only marks the store unavailable.

        Returns:
            True if Redis answered the ping
        """
        if self._client is None:
            self._client = aioredis.from_url(
                self._redis_url,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._connect_timeout,
            )
        self._closed = False
        self._unavailable_until = 0.0

        if await self.ping():
            logger.info("Counter store connected")
            return True
        logger.warning("Counter store unreachable at startup; rate limiting will fail open")
        return False

    async def close(self) -> None:
        """Close the Redis connection."""
        self._closed = True
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning(f"Error closing Redis connection: {e}")
        self._client = None

    async def ping(self) -> bool:
        result = await self._run("ping", lambda client: client.ping())
        return result is True

    def pipeline(self, key: str) -> WindowPipeline:
        """Start a window pipeline for key."""
        return WindowPipeline(self, key)

    async def delete_key(self, key: str) -> Union[int, StoreError]:
        """Delete key.

        Returns:
            Number of keys removed (0 when the key did not exist), or StoreError
        """
        result = await self._run("delete", lambda client: client.delete(key))
        if isinstance(result, StoreError):
            return result
        if isinstance(result, bool) or not isinstance(result, int):
            return StoreError("malformed", f"delete: {result!r}")
        return result

    async def _execute_pipeline(self, ops: List[_QueuedOp]) -> StoreResult:
        async def _transaction(client: Any) -> Any:
            async with client.pipeline(transaction=True) as pipe:
                for _field, method, args, kwargs in ops:
                    getattr(pipe, method)(*args, **kwargs)
                return await pipe.execute()

        raw = await self._run("pipeline", _transaction)
        if isinstance(raw, StoreError):
            return raw
        return decode_window_results([op[0] for op in ops], raw)

    async def _run(
        self, operation: str, call: Callable[[Any], Awaitable[Any]]
    ) -> Any:
        """Run one Redis call, converting every failure into a StoreError."""
        if not self.available:
            return StoreError("unavailable", "counter store is not available")

        try:
            result = await call(self._client)
        except RedisTimeoutError as e:
            logger.warning(f"Redis timeout during {operation}: {e}")
            self._mark_unavailable()
            return StoreError("timeout", str(e))
        except (RedisConnectionError, OSError) as e:
            logger.warning(f"Redis connection failed during {operation}: {e}")
            self._mark_unavailable()
            return StoreError("connection_error", str(e))
        except RedisError as e:
            logger.error(f"Redis error during {operation}: {e}")
            return StoreError("redis_error", str(e))
        except Exception as e:
            logger.exception(f"Unexpected counter store error during {operation}: {e}")
            return StoreError("unexpected", str(e))

        self._unavailable_until = 0.0
        return result

    def _mark_unavailable(self) -> None:
        if self._clock() >= self._unavailable_until:
            logger.warning(
                f"Counter store marked unavailable for {self._cooldown:g}s"
            )
        self._unavailable_until = self._clock() + self._cooldown
