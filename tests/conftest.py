"""Shared fixtures: an in-process Redis stand-in with sorted-set semantics."""

import math
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from dashboard.app.core.config import settings
from dashboard.app.core.metrics import MetricsCollector, reset_metrics_collector
from dashboard.app.core.redis_client import CounterStore
from dashboard.app.main import create_app
from dashboard.app.ratelimit.limiter import SlidingWindowRateLimiter

FIXED_NOW = 1_700_000_000.0
ADMIN_TOKEN = "test-admin-token"


def _parse_bound(bound) -> tuple[float, bool]:
    """Parse a ZRANGEBYSCORE bound into (value, exclusive)."""
    if isinstance(bound, (int, float)):
        return float(bound), False
    text = str(bound)
    exclusive = text.startswith("(")
    if exclusive:
        text = text[1:]
    if text in ("-inf", "+inf", "inf"):
        return (-math.inf if text == "-inf" else math.inf), exclusive
    return float(text), exclusive


class FakePipeline:
    """Transactional pipeline: queued commands apply together on execute()."""

    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._commands: List[tuple] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._commands = []

    def zremrangebyscore(self, key, min, max):
        self._commands.append(("zremrangebyscore", (key, min, max)))
        return self

    def zcard(self, key):
        self._commands.append(("zcard", (key,)))
        return self

    def zadd(self, key, mapping):
        self._commands.append(("zadd", (key, mapping)))
        return self

    def expire(self, key, ttl):
        self._commands.append(("expire", (key, ttl)))
        return self

    async def execute(self):
        commands, self._commands = self._commands, []
        self._redis.executed.append(commands)
        if self._redis.fail_with is not None:
            raise self._redis.fail_with
        if self._redis.malformed:
            return None
        return [getattr(self._redis, f"_{name}")(*args) for name, args in commands]


class FakeRedis:
    """Minimal async Redis client covering what the counter store uses."""

    def __init__(self):
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.ttls: Dict[str, int] = {}
        self.executed: List[List[tuple]] = []
        self.deleted: List[str] = []
        self.fail_with: Optional[Exception] = None
        self.malformed = False
        self.closed = False

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def ping(self):
        if self.fail_with is not None:
            raise self.fail_with
        return True

    async def delete(self, *keys):
        if self.fail_with is not None:
            raise self.fail_with
        removed = 0
        for key in keys:
            self.deleted.append(key)
            if self.zsets.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def aclose(self):
        self.closed = True

    def seed(self, key: str, scores: List[float]) -> None:
        """Insert entries with the given scores (milliseconds)."""
        entries = self.zsets.setdefault(key, {})
        for i, score in enumerate(scores):
            entries[f"seed-{len(entries)}-{i}"] = score

    def _zremrangebyscore(self, key, min, max):
        low, low_excl = _parse_bound(min)
        high, high_excl = _parse_bound(max)
        entries = self.zsets.get(key, {})
        doomed = [
            member for member, score in entries.items()
            if (score > low if low_excl else score >= low)
            and (score < high if high_excl else score <= high)
        ]
        for member in doomed:
            del entries[member]
        return len(doomed)

    def _zcard(self, key):
        return len(self.zsets.get(key, {}))

    def _zadd(self, key, mapping):
        entries = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in entries)
        entries.update(mapping)
        return added

    def _expire(self, key, ttl):
        if key not in self.zsets:
            return False
        self.ttls[key] = ttl
        return True


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset global metrics state before each test."""
    reset_metrics_collector()
    yield
    reset_metrics_collector()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis) -> CounterStore:
    return CounterStore(client=fake_redis, unavailable_cooldown=5.0)


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def limiter(store, metrics) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(store, metrics=metrics, clock=lambda: FIXED_NOW)


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def app_client(fake_redis, monkeypatch):
    """Test client for the full application backed by the fake Redis."""
    monkeypatch.setattr(settings, "admin_token", ADMIN_TOKEN)
    app = create_app(store=CounterStore(client=fake_redis))
    with TestClient(app) as client:
        yield client
