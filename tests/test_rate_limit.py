"""Tests for ingestion rate limiting."""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from listing_radar.core.exceptions import RateLimitedError
from listing_radar.ingestion.rate_limit import (
    FallbackRateLimiter,
    InMemoryRateLimiter,
    RedisRateLimiter,
    create_rate_limiter,
    enforce_rate_limit,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestInMemoryRateLimiter:
    """Tests for the in-process limiter."""

    @pytest.mark.asyncio
    async def test_window_boundary(self) -> None:
        """Allowed, denied within the window, allowed again at the boundary."""
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock)

        assert await limiter.try_acquire("1.2.3.4", 30) is True
        clock.advance(29.9)
        assert await limiter.try_acquire("1.2.3.4", 30) is False
        clock.advance(0.1)
        assert await limiter.try_acquire("1.2.3.4", 30) is True

    @pytest.mark.asyncio
    async def test_identities_are_independent(self) -> None:
        """One caller's slot does not block another."""
        limiter = InMemoryRateLimiter(clock=FakeClock())
        assert await limiter.try_acquire("a", 30) is True
        assert await limiter.try_acquire("b", 30) is True
        assert await limiter.try_acquire("a", 30) is False

    @pytest.mark.asyncio
    async def test_instances_do_not_share_state(self) -> None:
        """Each limiter instance keeps its own entries."""
        clock = FakeClock()
        first = InMemoryRateLimiter(clock=clock)
        second = InMemoryRateLimiter(clock=clock)

        assert await first.try_acquire("a", 30) is True
        assert await second.try_acquire("a", 30) is True

    @pytest.mark.asyncio
    async def test_expired_entries_are_swept(self) -> None:
        """Old entries are evicted on later calls."""
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock)
        await limiter.try_acquire("a", 30)
        await limiter.try_acquire("b", 30)
        assert len(limiter) == 2

        clock.advance(31)
        await limiter.try_acquire("c", 30)
        assert len(limiter) == 1


class TestRedisRateLimiter:
    """Tests for the Redis-backed limiter."""

    @pytest.mark.asyncio
    async def test_uses_set_nx_ex(self) -> None:
        """The slot is taken with SET NX EX on a prefixed key."""
        redis = AsyncMock()
        redis.set.return_value = True
        limiter = RedisRateLimiter(redis)

        assert await limiter.try_acquire("1.2.3.4", 30) is True
        redis.set.assert_awaited_once_with("ingest:1.2.3.4", "1", ex=30, nx=True)

    @pytest.mark.asyncio
    async def test_existing_key_denies(self) -> None:
        """SET NX returning None means the window is taken."""
        redis = AsyncMock()
        redis.set.return_value = None
        assert await RedisRateLimiter(redis).try_acquire("a", 30) is False


class TestFallbackRateLimiter:
    """Tests for the fallback wrapper."""

    @pytest.mark.asyncio
    async def test_falls_back_when_redis_down(self) -> None:
        """Connection errors route to the in-process limiter."""
        redis = AsyncMock()
        redis.set.side_effect = RedisConnectionError("down")
        limiter = FallbackRateLimiter(RedisRateLimiter(redis), InMemoryRateLimiter(clock=FakeClock()))

        assert await limiter.try_acquire("a", 30) is True
        assert await limiter.try_acquire("a", 30) is False

    @pytest.mark.asyncio
    async def test_primary_result_used_when_available(self) -> None:
        """A reachable primary decides."""
        redis = AsyncMock()
        redis.set.return_value = None
        limiter = FallbackRateLimiter(RedisRateLimiter(redis))
        assert await limiter.try_acquire("a", 30) is False

    def test_create_without_url_is_in_memory(self) -> None:
        """No Redis URL, no Redis."""
        assert isinstance(create_rate_limiter(None), InMemoryRateLimiter)
        assert isinstance(create_rate_limiter("redis://localhost:6379/0"), FallbackRateLimiter)


class TestEnforceRateLimit:
    """Tests for enforce_rate_limit."""

    @pytest.mark.asyncio
    async def test_raises_when_denied(self) -> None:
        """A second call inside the window raises RateLimitedError."""
        limiter = InMemoryRateLimiter(clock=FakeClock())
        await enforce_rate_limit(limiter, "a", 30)

        with pytest.raises(RateLimitedError) as exc_info:
            await enforce_rate_limit(limiter, "a", 30)
        assert exc_info.value.retry_after == 30
        assert exc_info.value.identity == "a"
