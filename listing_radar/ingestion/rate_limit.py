"""
Ingestion Rate Limiting
=======================

A try-acquire gate allowing at most one ingestion per caller identity per
window. Redis (``SET NX EX``) is used when configured so the limit holds
across processes; an in-process map is the fallback.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from redis import asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from listing_radar.core.exceptions import RateLimitedError

logger = logging.getLogger(__name__)

KEY_PREFIX = "ingest:"


class RateLimiter(ABC):
    """Abstract try-acquire gate."""

    @abstractmethod
    async def try_acquire(self, identity: str, window_seconds: int) -> bool:
        """
        Try to take the identity's slot for the current window.

        Args:
            identity: Caller identity (IP address, "cron", ...)
            window_seconds: Window length

        Returns:
            True if the caller is the first in the window
        """
        pass


class InMemoryRateLimiter(RateLimiter):
    """
    Process-local limiter.

    Each instance keeps its own map of identity -> (allowed at, window);
    entries older than their window are swept on every call.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, int]] = {}
        self._lock = asyncio.Lock()

    def _sweep(self, now: float) -> None:
        expired = [
            key for key, (allowed_at, window) in self._entries.items()
            if now - allowed_at >= window
        ]
        for key in expired:
            del self._entries[key]

    async def try_acquire(self, identity: str, window_seconds: int) -> bool:
        key = KEY_PREFIX + identity
        async with self._lock:
            now = self._clock()
            self._sweep(now)
            if key in self._entries:
                return False
            self._entries[key] = (now, window_seconds)
            return True

    def __len__(self) -> int:
        return len(self._entries)


class RedisRateLimiter(RateLimiter):
    """Limiter backed by Redis ``SET key 1 NX EX window``."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    @classmethod
    def from_url(cls, url: str, timeout: float = 5.0) -> RedisRateLimiter:
        """Create a limiter from a redis:// URL."""
        client = aioredis.from_url(url, socket_timeout=timeout, socket_connect_timeout=timeout)
        return cls(client)

    async def try_acquire(self, identity: str, window_seconds: int) -> bool:
        result = await self.redis.set(KEY_PREFIX + identity, "1", ex=window_seconds, nx=True)
        return bool(result)


class FallbackRateLimiter(RateLimiter):
    """Use the primary limiter, and the secondary while the primary is unreachable."""

    def __init__(self, primary: RateLimiter, secondary: RateLimiter | None = None) -> None:
        self.primary = primary
        self.secondary = secondary or InMemoryRateLimiter()

    async def try_acquire(self, identity: str, window_seconds: int) -> bool:
        try:
            return await self.primary.try_acquire(identity, window_seconds)
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            logger.warning(f"Rate limit store unavailable, using in-process limiter: {e}")
            return await self.secondary.try_acquire(identity, window_seconds)


def create_rate_limiter(redis_url: str | None = None) -> RateLimiter:
    """
    Build the limiter for this process.

    Args:
        redis_url: Redis URL; when empty only the in-process limiter is used

    Returns:
        RateLimiter instance
    """
    if redis_url:
        return FallbackRateLimiter(RedisRateLimiter.from_url(redis_url))
    return InMemoryRateLimiter()


async def enforce_rate_limit(limiter: RateLimiter, identity: str, window_seconds: int) -> None:
    """
    Acquire or fail.

    Raises:
        RateLimitedError: If identity already ran inside the window
    """
    if not await limiter.try_acquire(identity, window_seconds):
        raise RateLimitedError(identity, window_seconds)
