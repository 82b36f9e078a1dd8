from __future__ import annotations
import asyncio
import math
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Protocol

import redis.asyncio as redis

from crosslister.core.config import settings


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_seconds: int


class SlidingWindowRateLimiter(Protocol):
    """At most `limit` acquisitions within any `window_seconds` span."""
    limit: int
    window_seconds: int

    async def try_acquire(self) -> RateLimitResult:
        ...


# KEYS[1] = zset; ARGV = now_ms, window_ms, limit, member
_SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
if count < limit then
  redis.call('ZADD', key, now, ARGV[4])
  redis.call('PEXPIRE', key, window)
  return {1, limit - count - 1, 0}
end
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
return {0, 0, tonumber(oldest[2]) + window - now}
"""


class RedisSlidingWindowLimiter:
    """
    Shared window across dispatcher processes. The check-and-add runs as one
    Lua script, so two dispatchers can never both take the last slot.
    """

    def __init__(self, redis_url: str, *, limit: int, window_seconds: int, key: str = "crosslister:job_starts"):
        self.r = redis.from_url(redis_url, decode_responses=True)
        self.limit = limit
        self.window_seconds = window_seconds
        self.key = key
        self._script = self.r.register_script(_SLIDING_WINDOW_LUA)

    async def try_acquire(self) -> RateLimitResult:
        now_ms = int(time.time() * 1000)
        allowed, remaining, reset_ms = await self._script(
            keys=[self.key],
            args=[now_ms, self.window_seconds * 1000, self.limit, f"{now_ms}:{uuid.uuid4().hex}"],
        )
        return RateLimitResult(
            allowed=bool(int(allowed)),
            remaining=int(remaining),
            reset_seconds=max(0, math.ceil(int(reset_ms) / 1000)),
        )

    async def aclose(self) -> None:
        await self.r.aclose()


class InMemorySlidingWindowLimiter:
    """Single-process window (tests, local runs)."""

    def __init__(self, *, limit: int, window_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._starts: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def try_acquire(self) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            while self._starts and self._starts[0] <= now - self.window_seconds:
                self._starts.popleft()

            if len(self._starts) < self.limit:
                self._starts.append(now)
                return RateLimitResult(allowed=True, remaining=self.limit - len(self._starts), reset_seconds=0)

            reset = self._starts[0] + self.window_seconds - now
            return RateLimitResult(allowed=False, remaining=0, reset_seconds=max(0, math.ceil(reset)))

    async def aclose(self) -> None:
        return None


def build_rate_limiter() -> RedisSlidingWindowLimiter | InMemorySlidingWindowLimiter:
    if settings.rate_limit_backend == "memory":
        return InMemorySlidingWindowLimiter(
            limit=settings.rate_limit_max_starts,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return RedisSlidingWindowLimiter(
        settings.redis_url,
        limit=settings.rate_limit_max_starts,
        window_seconds=settings.rate_limit_window_seconds,
    )
