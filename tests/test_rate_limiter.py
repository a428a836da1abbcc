"""Tests for the sliding-window rate limiter."""

import pytest

from caregiver_agent.infrastructure.rate_limit.rate_limiter import AllowAllRateLimiter, SlidingWindowRateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestSlidingWindowRateLimiter:
    """Tests for SlidingWindowRateLimiter."""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit_then_denies(self) -> None:
        limiter = SlidingWindowRateLimiter(max_requests=3, window_seconds=60, clock=FakeClock())

        assert [await limiter.allow("u") for _ in range(4)] == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_users_are_independent(self) -> None:
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

        assert await limiter.allow("a") is True
        assert await limiter.allow("a") is False
        assert await limiter.allow("b") is True

    @pytest.mark.asyncio
    async def test_window_slides(self) -> None:
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)
        await limiter.allow("u")
        clock.now += 30
        await limiter.allow("u")
        assert await limiter.allow("u") is False

        clock.now += 31

        assert await limiter.allow("u") is True
        assert await limiter.allow("u") is False

    @pytest.mark.asyncio
    async def test_retry_after(self) -> None:
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        await limiter.allow("u")
        clock.now += 20

        assert await limiter.retry_after("u") == 40
        assert await limiter.retry_after("nobody") == 0

    @pytest.mark.asyncio
    async def test_reset(self) -> None:
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
        await limiter.allow("u")
        await limiter.reset("u")

        assert await limiter.allow("u") is True

    @pytest.mark.asyncio
    async def test_idle_users_are_forgotten(self) -> None:
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)
        await limiter.allow("a")
        await limiter.allow("b")

        clock.now += 61
        await limiter.allow("c")

        assert set(limiter._requests) == {"c"}
        assert await limiter.retry_after("a") == 0

    @pytest.mark.asyncio
    async def test_allow_all(self) -> None:
        limiter = AllowAllRateLimiter()

        assert all([await limiter.allow("u") for _ in range(50)])
