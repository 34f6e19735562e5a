from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
DEFAULT_WINDOW_SECONDS = 15 * 60
# requests without an identifier all share this partition
ANONYMOUS = ""


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_epoch: int


class RateLimiter(Protocol):
    limit: int
    window_seconds: int

    async def allow(self, identifier: str | None) -> RateLimitResult: ...

    async def close(self) -> None: ...


@dataclass
class _Window:
    start: float
    count: int


class InMemoryRateLimiter:
    """
    Fixed window counter per identifier, held in process memory.

    A window opens on the first request for an identifier and lasts
    `window_seconds`. Rejected requests still count. State is per process:
    N instances behind a load balancer each allow `limit` requests.
    """

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: dict[str, _Window] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._table_lock = asyncio.Lock()
        self._last_sweep = clock()

    async def _lock_for(self, identifier: str) -> asyncio.Lock:
        async with self._table_lock:
            self._maybe_sweep()
            lock = self._locks.get(identifier)
            if lock is None:
                lock = self._locks[identifier] = asyncio.Lock()
            return lock

    def _maybe_sweep(self) -> None:
        # caller holds _table_lock
        now = self.clock()
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now

        removed = 0
        for identifier, window in list(self._windows.items()):
            lock = self._locks.get(identifier)
            if lock is not None and lock.locked():
                continue
            if now - window.start >= self.window_seconds:
                del self._windows[identifier]
                self._locks.pop(identifier, None)
                removed += 1

        if removed:
            logger.debug("rate_limit_sweep", extra={"removed": removed, "tracked": len(self._windows)})

    async def allow(self, identifier: str | None) -> RateLimitResult:
        identifier = identifier or ANONYMOUS
        lock = await self._lock_for(identifier)

        async with lock:
            now = self.clock()
            window = self._windows.get(identifier)

            if window is None or now - window.start >= self.window_seconds:
                window = self._windows[identifier] = _Window(start=now, count=1)
            else:
                window.count += 1

            count = window.count
            reset_epoch = math.ceil(window.start + self.window_seconds)

        allowed = count <= self.limit

        return RateLimitResult(
            allowed=allowed,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_epoch=reset_epoch,
        )

    def window_count(self, identifier: str | None) -> int:
        window = self._windows.get(identifier or ANONYMOUS)
        return window.count if window else 0

    async def close(self) -> None:
        async with self._table_lock:
            self._windows.clear()
            self._locks.clear()


class RedisRateLimiter:
    """
    Same fixed-window contract on a Redis counter shared by every instance.

    SET NX EX opens the window (with its expiry) only when no counter exists,
    then INCR counts; both run in one MULTI/EXEC so the check is atomic.
    """

    def __init__(
        self,
        redis: Redis,
        limit: int = DEFAULT_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        prefix: str = "rl:",
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix
        self.clock = clock

    async def allow(self, identifier: str | None) -> RateLimitResult:
        redis_key = f"{self.prefix}{identifier or ANONYMOUS}"

        pipe = self.redis.pipeline(transaction=True)
        pipe.set(redis_key, 0, ex=self.window_seconds, nx=True)
        pipe.incr(redis_key)
        pipe.ttl(redis_key)
        _, count, ttl = await pipe.execute()

        count = int(count)
        ttl = int(ttl) if ttl and int(ttl) > 0 else self.window_seconds

        allowed = count <= self.limit

        return RateLimitResult(
            allowed=allowed,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_epoch=int(self.clock()) + ttl,
        )

    async def close(self) -> None:
        await self.redis.aclose()
