"""
Unit tests for the fixed-window rate limiter.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from service_stats_gateway.app.ratelimit.fixed_window import (
    ONE_HOUR_MS,
    FixedWindowRateLimiter,
    InMemoryRateLimitStore,
    RedisRateLimitStore,
)
from shared.errors import CollaboratorUnavailableError, RateLimitStoreError
from shared.metrics import MetricsCollector


class FakeClock:
    """Controllable wall clock in seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class YieldingStore:
    """Store wrapper that gives up the event loop around every hit."""

    def __init__(self, inner):
        self.inner = inner
        self.in_flight = 0
        self.max_in_flight = 0

    async def hit(self, key, bucket, window_ms, ceiling):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            result = await self.inner.hit(key, bucket, window_ms, ceiling)
            await asyncio.sleep(0)
            return result
        finally:
            self.in_flight -= 1


class TestFixedWindowRateLimiter:
    """Test cases for FixedWindowRateLimiter with the in-memory store."""

    @pytest.fixture
    def clock(self):
        # Start exactly on an hour boundary
        return FakeClock(3600.0 * 472_222)

    @pytest.fixture
    def store(self):
        return InMemoryRateLimitStore()

    @pytest.fixture
    def rate_limiter(self, store, clock):
        return FixedWindowRateLimiter(store, clock=clock)

    @pytest.mark.asyncio
    async def test_allows_up_to_ceiling_then_denies(self, rate_limiter):
        ceiling = 5
        for expected_count in range(1, ceiling + 1):
            decision = await rate_limiter.check("key-1", ONE_HOUR_MS, ceiling)
            assert decision.allowed is True
            assert decision.count == expected_count
            assert decision.remaining == ceiling - expected_count

        decision = await rate_limiter.check("key-1", ONE_HOUR_MS, ceiling)
        assert decision.allowed is False
        assert decision.limit == ceiling

    @pytest.mark.asyncio
    async def test_denied_requests_do_not_consume_slots(self, rate_limiter):
        for _ in range(2):
            await rate_limiter.check("key-1", ONE_HOUR_MS, 2)

        for _ in range(3):
            decision = await rate_limiter.check("key-1", ONE_HOUR_MS, 2)
            assert decision.allowed is False
            assert decision.count == 2

    @pytest.mark.asyncio
    async def test_new_window_resets_count(self, rate_limiter, clock):
        for _ in range(3):
            assert (await rate_limiter.check("key-1", ONE_HOUR_MS, 3)).allowed

        assert not (await rate_limiter.check("key-1", ONE_HOUR_MS, 3)).allowed

        clock.advance(3600)

        for _ in range(3):
            assert (await rate_limiter.check("key-1", ONE_HOUR_MS, 3)).allowed
        assert not (await rate_limiter.check("key-1", ONE_HOUR_MS, 3)).allowed

    @pytest.mark.asyncio
    async def test_window_is_fixed_not_sliding(self, rate_limiter, clock):
        clock.advance(3599)
        assert (await rate_limiter.check("key-1", ONE_HOUR_MS, 1)).allowed
        assert not (await rate_limiter.check("key-1", ONE_HOUR_MS, 1)).allowed

        clock.advance(1)
        assert (await rate_limiter.check("key-1", ONE_HOUR_MS, 1)).allowed

    @pytest.mark.asyncio
    async def test_reset_in_seconds_counts_down_to_boundary(self, rate_limiter, clock):
        clock.advance(600)
        decision = await rate_limiter.check("key-1", ONE_HOUR_MS, 10)
        assert decision.reset_in_seconds == 3000

    @pytest.mark.asyncio
    async def test_ceiling_is_per_call(self, rate_limiter):
        assert (await rate_limiter.check("key-1", ONE_HOUR_MS, 1)).allowed
        assert not (await rate_limiter.check("key-1", ONE_HOUR_MS, 1)).allowed
        # A raised ceiling for the same key lets the next request through
        assert (await rate_limiter.check("key-1", ONE_HOUR_MS, 2)).allowed

    @pytest.mark.asyncio
    async def test_credentials_are_independent(self, rate_limiter):
        assert (await rate_limiter.check("key-1", ONE_HOUR_MS, 1)).allowed
        assert not (await rate_limiter.check("key-1", ONE_HOUR_MS, 1)).allowed
        assert (await rate_limiter.check("key-2", ONE_HOUR_MS, 1)).allowed

    @pytest.mark.asyncio
    async def test_gathered_requests_for_one_credential(self, rate_limiter):
        ceiling = 50
        decisions = await asyncio.gather(*[
            rate_limiter.check("key-1", ONE_HOUR_MS, ceiling) for _ in range(2 * ceiling)
        ])

        allowed = [d for d in decisions if d.allowed]
        denied = [d for d in decisions if not d.allowed]
        assert len(allowed) == ceiling
        assert len(denied) == ceiling
        assert sorted(d.count for d in allowed) == list(range(1, ceiling + 1))
        assert all(d.limit == ceiling for d in denied)

    @pytest.mark.asyncio
    async def test_interleaved_requests_for_one_credential(self, store, clock):
        ceiling = 30
        yielding_store = YieldingStore(store)
        rate_limiter = FixedWindowRateLimiter(yielding_store, clock=clock)

        decisions = await asyncio.gather(*[
            rate_limiter.check("key-1", ONE_HOUR_MS, ceiling) for _ in range(2 * ceiling)
        ])

        # Checks overlap inside the store
        assert yielding_store.max_in_flight > 1
        assert sum(1 for d in decisions if d.allowed) == ceiling
        assert sorted(d.count for d in decisions if d.allowed) == list(range(1, ceiling + 1))

    def test_concurrent_threads_for_one_credential(self, rate_limiter):
        ceiling = 40

        def hit(_):
            return asyncio.run(rate_limiter.check("key-1", ONE_HOUR_MS, ceiling))

        with ThreadPoolExecutor(max_workers=8) as pool:
            decisions = list(pool.map(hit, range(2 * ceiling)))

        assert sum(1 for d in decisions if d.allowed) == ceiling
        assert sum(1 for d in decisions if not d.allowed) == ceiling

    @pytest.mark.asyncio
    async def test_concurrent_distinct_credentials_all_succeed(self, rate_limiter):
        ceiling = 3
        credentials = [f"key-{i}" for i in range(25)]
        decisions = await asyncio.gather(*[
            rate_limiter.check(credential, ONE_HOUR_MS, ceiling)
            for credential in credentials
            for _ in range(ceiling)
        ])
        assert all(d.allowed for d in decisions)

    @pytest.mark.asyncio
    async def test_rejects_invalid_arguments(self, rate_limiter):
        with pytest.raises(ValueError):
            await rate_limiter.check("key-1", ONE_HOUR_MS, 0)
        with pytest.raises(ValueError):
            await rate_limiter.check("key-1", 0, 10)

    @pytest.mark.asyncio
    async def test_make_key(self, rate_limiter, store):
        await rate_limiter.check("42", ONE_HOUR_MS, 10)
        assert rate_limiter._make_key("42") == "api_request:42"
        assert "api_request:42" in store._windows

    @pytest.mark.asyncio
    async def test_records_metrics(self, store, clock):
        metrics = MetricsCollector("gateway")
        rate_limiter = FixedWindowRateLimiter(store, clock=clock, metrics=metrics)

        await rate_limiter.check("key-1", ONE_HOUR_MS, 1)
        await rate_limiter.check("key-1", ONE_HOUR_MS, 1)

        registry = metrics.registry
        assert registry.get_sample_value("rate_limit_checks_total", {"result": "allow"}) == 1.0
        assert registry.get_sample_value("rate_limit_checks_total", {"result": "deny"}) == 1.0


class TestInMemoryRateLimitStore:
    """Test cases for window bookkeeping in the in-memory store."""

    @pytest.mark.asyncio
    async def test_sweep_evicts_only_stale_windows(self):
        store = InMemoryRateLimitStore(sweep_interval=0)
        await store.hit("old", 10, 1000, 5)
        await store.hit("current", 11, 1000, 5)

        removed = store.sweep(11 * 1000)

        assert removed == 1
        assert len(store) == 1
        assert "current" in store._windows

    @pytest.mark.asyncio
    async def test_periodic_sweep_bounds_growth(self):
        store = InMemoryRateLimitStore(sweep_interval=4)
        for i in range(3):
            await store.hit(f"key-{i}", 1, 1000, 5)
        assert len(store) == 3

        # The fourth hit lands in a later bucket and triggers a sweep
        await store.hit("key-new", 2, 1000, 5)
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_retired_window_is_not_reused(self):
        store = InMemoryRateLimitStore(sweep_interval=0)
        await store.hit("key-1", 1, 1000, 1)
        stale = store._windows["key-1"]
        store.sweep(2000)

        allowed, count = await store.hit("key-1", 2, 1000, 1)

        assert stale.retired is True
        assert store._windows["key-1"] is not stale
        assert (allowed, count) == (True, 1)

    @pytest.mark.asyncio
    async def test_late_request_counts_against_current_window(self):
        store = InMemoryRateLimitStore(sweep_interval=0)
        assert await store.hit("key-1", 5, 1000, 1) == (True, 1)
        assert await store.hit("key-1", 4, 1000, 1) == (False, 1)


class TestRedisRateLimitStore:
    """Test cases for RedisRateLimitStore."""

    @pytest.fixture
    def redis_client(self):
        client = AsyncMock()
        client.eval.return_value = [1, 3]
        return client

    @pytest.fixture
    def store(self, redis_client):
        return RedisRateLimitStore("redis://localhost:6379/0", client=redis_client)

    @pytest.mark.asyncio
    async def test_hit_allowed(self, store, redis_client):
        allowed, count = await store.hit("api_request:key-1", 472222, ONE_HOUR_MS, 10)

        assert allowed is True
        assert count == 3
        args = redis_client.eval.call_args.args
        assert args[1:] == (1, "api_request:key-1:472222", 10, ONE_HOUR_MS)

    @pytest.mark.asyncio
    async def test_hit_denied(self, store, redis_client):
        redis_client.eval.return_value = [0, 10]

        allowed, count = await store.hit("api_request:key-1", 1, ONE_HOUR_MS, 10)

        assert allowed is False
        assert count == 10

    @pytest.mark.asyncio
    async def test_store_failure_raises_instead_of_allowing(self, store, redis_client):
        redis_client.eval.side_effect = RedisConnectionError("Connection refused")

        with pytest.raises(RateLimitStoreError) as exc_info:
            await store.hit("api_request:key-1", 1, ONE_HOUR_MS, 10)

        assert isinstance(exc_info.value, CollaboratorUnavailableError)
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_limiter_propagates_store_failure(self, store, redis_client):
        redis_client.eval.side_effect = OSError("Network unreachable")
        rate_limiter = FixedWindowRateLimiter(store, clock=FakeClock())

        with pytest.raises(RateLimitStoreError):
            await rate_limiter.check("key-1", ONE_HOUR_MS, 10)

    @pytest.mark.asyncio
    async def test_close(self, store, redis_client):
        await store.close()
        redis_client.aclose.assert_awaited_once()
        assert store._redis is None
