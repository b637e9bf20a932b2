"""Tests for the Redis counter store adapter."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from dashboard.app.core.redis_client import (
    CounterStore,
    StoreError,
    WindowCounts,
    decode_window_results,
)


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestDecodeWindowResults:
    """Tests for pipeline result decoding."""

    def test_decodes_all_fields(self):
        result = decode_window_results(
            ["pruned", "count", "added", "expiry_set"], [2, 5, 1, 1]
        )
        assert result == WindowCounts(pruned=2, count=5, added=1, expiry_set=True)

    def test_partial_pipeline_leaves_other_fields_none(self):
        result = decode_window_results(["pruned", "count"], [0, 3])
        assert result.count == 3
        assert result.added is None
        assert result.expiry_set is None

    def test_non_list_is_malformed(self):
        result = decode_window_results(["count"], None)
        assert isinstance(result, StoreError)
        assert result.reason == "malformed"

    def test_length_mismatch_is_malformed(self):
        result = decode_window_results(["pruned", "count"], [0])
        assert isinstance(result, StoreError)
        assert result.reason == "malformed"

    def test_non_integer_count_is_malformed(self):
        result = decode_window_results(["pruned", "count"], [0, "7"])
        assert isinstance(result, StoreError)
        assert result.reason == "malformed"

    def test_boolean_count_is_malformed(self):
        result = decode_window_results(["count"], [True])
        assert isinstance(result, StoreError)
        assert result.reason == "malformed"

    def test_embedded_exception_is_redis_error(self):
        result = decode_window_results(
            ["pruned", "count"], [0, RedisError("WRONGTYPE")]
        )
        assert isinstance(result, StoreError)
        assert result.reason == "redis_error"
        assert "WRONGTYPE" in result.detail


class TestWindowPipeline:
    """Tests for the typed window pipeline."""

    @pytest.mark.asyncio
    async def test_operations_are_queued_in_order(self, store):
        pipeline = (
            store.pipeline("ratelimit:read:ip:10.0.0.1")
            .prune_older_than(1000)
            .count()
            .add(2000, "2000:abcdef")
            .set_expiry(70)
        )
        assert pipeline.operations == ["pruned", "count", "added", "expiry_set"]

    @pytest.mark.asyncio
    async def test_execute_runs_one_transaction(self, store, fake_redis):
        key = "ratelimit:read:ip:10.0.0.1"
        fake_redis.seed(key, [500, 1500])

        result = await (
            store.pipeline(key)
            .prune_older_than(1000)
            .count()
            .add(2000, "2000:abcdef")
            .set_expiry(70)
            .execute()
        )

        assert result == WindowCounts(pruned=1, count=1, added=1, expiry_set=True)
        assert len(fake_redis.executed) == 1
        assert [name for name, _ in fake_redis.executed[0]] == [
            "zremrangebyscore", "zcard", "zadd", "expire",
        ]
        assert fake_redis.ttls[key] == 70

    @pytest.mark.asyncio
    async def test_prune_is_exclusive_of_cutoff(self, store, fake_redis):
        """Entries scored exactly at the cutoff stay in the window."""
        key = "ratelimit:read:ip:10.0.0.1"
        fake_redis.seed(key, [999, 1000, 1001])

        result = await store.pipeline(key).prune_older_than(1000).count().execute()

        assert result.pruned == 1
        assert result.count == 2

    @pytest.mark.asyncio
    async def test_empty_pipeline_skips_round_trip(self, store, fake_redis):
        result = await store.pipeline("some-key").execute()
        assert result == WindowCounts()
        assert fake_redis.executed == []

    @pytest.mark.asyncio
    async def test_malformed_reply(self, store, fake_redis):
        fake_redis.malformed = True
        result = await store.pipeline("k").count().execute()
        assert isinstance(result, StoreError)
        assert result.reason == "malformed"


class TestCounterStoreErrors:
    """Redis failures become StoreError values and never raise."""

    @pytest.mark.asyncio
    async def test_no_client_is_unavailable(self):
        store = CounterStore(client=None)
        assert store.available is False
        result = await store.pipeline("k").count().execute()
        assert result == StoreError("unavailable", "counter store is not available")

    @pytest.mark.asyncio
    async def test_connection_error_marks_unavailable(self, fake_redis):
        clock = FakeClock()
        store = CounterStore(client=fake_redis, unavailable_cooldown=5.0, clock=clock)
        fake_redis.fail_with = RedisConnectionError("Connection refused")

        result = await store.pipeline("k").count().execute()

        assert isinstance(result, StoreError)
        assert result.reason == "connection_error"
        assert store.available is False

    @pytest.mark.asyncio
    async def test_store_recovers_after_cooldown(self, fake_redis):
        clock = FakeClock()
        store = CounterStore(client=fake_redis, unavailable_cooldown=5.0, clock=clock)
        fake_redis.fail_with = RedisConnectionError("Connection refused")
        await store.pipeline("k").count().execute()

        # Skipped without touching Redis during the cooldown
        calls_before = len(fake_redis.executed)
        result = await store.pipeline("k").count().execute()
        assert result.reason == "unavailable"
        assert len(fake_redis.executed) == calls_before

        fake_redis.fail_with = None
        clock.now += 5.0
        assert store.available is True
        result = await store.pipeline("k").count().execute()
        assert result == WindowCounts(count=0)

    @pytest.mark.asyncio
    async def test_zero_cooldown_retries_immediately(self, fake_redis):
        store = CounterStore(client=fake_redis, unavailable_cooldown=0, clock=FakeClock())
        fake_redis.fail_with = RedisConnectionError("Connection refused")

        result = await store.pipeline("k").count().execute()
        assert result.reason == "connection_error"
        assert store.available is True

        fake_redis.fail_with = None
        result = await store.pipeline("k").count().execute()
        assert result == WindowCounts(count=0)

    @pytest.mark.asyncio
    async def test_timeout(self, fake_redis):
        store = CounterStore(client=fake_redis, clock=FakeClock())
        fake_redis.fail_with = RedisTimeoutError("Timeout reading from socket")

        result = await store.pipeline("k").count().execute()

        assert result.reason == "timeout"
        assert store.available is False

    @pytest.mark.asyncio
    async def test_redis_error_keeps_store_available(self, store, fake_redis):
        fake_redis.fail_with = RedisError("ERR something")

        result = await store.pipeline("k").count().execute()

        assert result.reason == "redis_error"
        assert store.available is True

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, store, fake_redis):
        fake_redis.fail_with = RuntimeError("boom")

        result = await store.pipeline("k").count().execute()

        assert result.reason == "unexpected"


class TestCounterStoreLifecycle:
    """Tests for open/close/ping/delete."""

    @pytest.mark.asyncio
    async def test_open_with_reachable_redis(self, fake_redis):
        store = CounterStore(client=fake_redis)
        assert await store.open() is True
        assert store.available is True

    @pytest.mark.asyncio
    async def test_open_with_unreachable_redis_does_not_raise(self, fake_redis):
        store = CounterStore(client=fake_redis, clock=FakeClock())
        fake_redis.fail_with = RedisConnectionError("Connection refused")

        assert await store.open() is False
        assert store.available is False

    @pytest.mark.asyncio
    async def test_close(self, fake_redis):
        store = CounterStore(client=fake_redis)
        await store.close()

        assert fake_redis.closed is True
        assert store.available is False
        result = await store.delete_key("k")
        assert result.reason == "unavailable"

    @pytest.mark.asyncio
    async def test_close_without_client(self):
        store = CounterStore(client=None)
        await store.close()
        assert store.available is False

    @pytest.mark.asyncio
    async def test_ping(self, store, fake_redis):
        assert await store.ping() is True
        fake_redis.fail_with = RedisError("ERR")
        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_delete_key(self, store, fake_redis):
        fake_redis.seed("k", [1, 2])

        assert await store.delete_key("k") == 1
        assert await store.delete_key("k") == 0
        assert "k" not in fake_redis.zsets

    @pytest.mark.asyncio
    async def test_delete_key_failure(self, store, fake_redis):
        fake_redis.fail_with = RedisError("ERR")
        result = await store.delete_key("k")
        assert isinstance(result, StoreError)
