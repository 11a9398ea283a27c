"""
Unit tests for the token bucket RateLimiter.
"""

import asyncio

import pytest
from conftest import FakeClock, RecordingSleep

from smartfetch.services.errors import ErrorKind, FetchError
from smartfetch.services.rate_limiter import RateLimiter
from smartfetch.services.types import FetchRequest, RateLimitPolicy


class TestRateLimiter:
    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    @pytest.fixture
    def sleep(self, clock: FakeClock) -> RecordingSleep:
        return RecordingSleep(clock)

    @pytest.fixture
    def limiter(self, clock: FakeClock, sleep: RecordingSleep) -> RateLimiter:
        return RateLimiter(clock=clock, sleep=sleep)

    @pytest.mark.asyncio
    async def test_rejects_when_bucket_empty(self, limiter: RateLimiter, clock: FakeClock):
        request = FetchRequest(url="/search")
        policy = RateLimitPolicy(max_requests=2, period=1.0)

        await limiter.acquire(request, policy)
        await limiter.acquire(request, policy)
        clock.advance(0.25)

        with pytest.raises(FetchError) as exc_info:
            await limiter.acquire(request, policy)

        assert exc_info.value.kind == ErrorKind.RATE_LIMIT
        assert exc_info.value.retry_after == pytest.approx(0.75)
        assert limiter.rejected == 1

    @pytest.mark.asyncio
    async def test_refills_after_whole_period(self, limiter: RateLimiter, clock: FakeClock):
        request = FetchRequest(url="/search")
        policy = RateLimitPolicy(max_requests=2, period=1.0)
        await limiter.acquire(request, policy)
        await limiter.acquire(request, policy)

        clock.advance(1.0)
        await limiter.acquire(request, policy)
        assert limiter.get_tokens("/search") == 1

    @pytest.mark.asyncio
    async def test_partial_period_does_not_refill(self, limiter: RateLimiter, clock: FakeClock):
        request = FetchRequest(url="/search")
        policy = RateLimitPolicy(max_requests=1, period=1.0)
        await limiter.acquire(request, policy)

        clock.advance(0.99)
        with pytest.raises(FetchError):
            await limiter.acquire(request, policy)

    @pytest.mark.asyncio
    async def test_queueing_waits_for_window(
        self, limiter: RateLimiter, clock: FakeClock, sleep: RecordingSleep
    ):
        request = FetchRequest(url="/search")
        policy = RateLimitPolicy(max_requests=2, period=1.0, queue_requests=True)

        for _ in range(3):
            await limiter.acquire(request, policy)

        assert sleep.delays == [pytest.approx(1.0)]
        assert limiter.get_tokens("/search") == 1
        assert limiter.throttled == 1

    @pytest.mark.asyncio
    async def test_concurrent_waiters_admitted_one_per_window(self):
        clock = FakeClock(start=0.0)

        async def sleep(delay: float) -> None:
            clock.advance(delay)
            await asyncio.sleep(0)

        limiter = RateLimiter(clock=clock, sleep=sleep)
        request = FetchRequest(url="/search")
        policy = RateLimitPolicy(max_requests=1, period=0.5, queue_requests=True)
        admitted: list[float] = []

        async def acquire() -> None:
            await limiter.acquire(request, policy)
            admitted.append(clock())

        await asyncio.gather(acquire(), acquire(), acquire())

        assert sorted(admitted) == [0.0, 0.5, 1.0]
        assert limiter.throttled == 2

    @pytest.mark.asyncio
    async def test_buckets_are_per_key(self, limiter: RateLimiter):
        policy = RateLimitPolicy(max_requests=1, period=1.0)
        await limiter.acquire(FetchRequest(url="/a"), policy)
        await limiter.acquire(FetchRequest(url="/b"), policy)

        shared = RateLimitPolicy(max_requests=1, period=1.0, key="api")
        await limiter.acquire(FetchRequest(url="/a"), shared)
        with pytest.raises(FetchError):
            await limiter.acquire(FetchRequest(url="/b"), shared)

    @pytest.mark.asyncio
    async def test_reset(self, limiter: RateLimiter):
        request = FetchRequest(url="/a")
        policy = RateLimitPolicy(max_requests=1)
        await limiter.acquire(request, policy)

        limiter.reset("/a")
        await limiter.acquire(request, policy)
        assert limiter.get_status()["buckets"] == 1

    def test_policy_validation(self):
        with pytest.raises(ValueError):
            RateLimitPolicy(max_requests=0)
        with pytest.raises(ValueError):
            RateLimitPolicy(max_requests=1, period=0)
