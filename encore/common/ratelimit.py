"""Redis token bucket shared by every delivery worker process.

Capacity equals the refill rate, so at most `rate_per_second` jobs start per
second across the whole pool regardless of how many processes are running.
"""

import asyncio
from time import time


def _as_float(value) -> float | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    return float(value)


class TokenBucket:
    """Async token bucket stored in one Redis hash."""

    def __init__(self, redis, key: str, rate_per_second: float, clock=time, sleep=asyncio.sleep) -> None:
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        self.redis = redis
        self.key = key
        self.capacity = float(rate_per_second)
        self.refill_per_sec = float(rate_per_second)
        self._clock = clock
        self._sleep = sleep

    async def try_acquire(self) -> float:
        """Take one token; return 0.0 on success, else seconds until one is available."""

        now = self._clock()
        values = await self.redis.hmget(self.key, "tokens", "updated_at")
        tokens = _as_float(values[0])
        updated_at = _as_float(values[1])
        if tokens is None:
            tokens = self.capacity
        if updated_at is None:
            updated_at = now
        elapsed = max(0.0, now - updated_at)
        tokens = min(self.capacity, tokens + elapsed * self.refill_per_sec)

        if tokens < 1.0:
            await self.redis.hset(self.key, mapping={"tokens": tokens, "updated_at": now})
            await self.redis.expire(self.key, 60)
            return (1.0 - tokens) / self.refill_per_sec
        tokens -= 1.0
        await self.redis.hset(self.key, mapping={"tokens": tokens, "updated_at": now})
        await self.redis.expire(self.key, 60)
        return 0.0

    async def acquire(self) -> None:
        """Wait until a token is taken."""

        while True:
            wait_seconds = await self.try_acquire()
            if wait_seconds <= 0:
                return
            await self._sleep(wait_seconds)
