"""
Token bucket rate limiting for upstream API calls.

Buckets start full at ``capacity`` permits and refill linearly so that a full
bucket is restored over ``window_ms``. Refill is computed lazily on every
access; there is no background timer.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from typing import Any, Awaitable, Callable


class RateLimitExceeded(Exception):
    """Raised by ``TokenBucket.try_consume`` when no permit is available."""


class TokenBucket:
    """Per-partition permit counter with continuous linear refill."""

    def __init__(
        self,
        capacity: int,
        window_ms: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if capacity <= 0 or window_ms <= 0:
            raise ValueError("capacity and window_ms must be positive")
        self.capacity = capacity
        self.window_ms = window_ms
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed_ms = (now - self._last_refill) * 1000.0
        if elapsed_ms > 0:
            added = elapsed_ms / self.window_ms * self.capacity
            self._tokens = min(float(self.capacity), self._tokens + added)
        self._last_refill = now

    def get_wait_time(self) -> int:
        """Milliseconds until one permit is available, ``0`` if one is now."""
        self._refill()
        if self._tokens >= 1:
            return 0
        deficit = 1 - self._tokens
        return math.ceil(deficit / self.capacity * self.window_ms)

    def try_consume(self) -> None:
        """Take one permit immediately or raise ``RateLimitExceeded``."""
        self._refill()
        if self._tokens < 1:
            raise RateLimitExceeded("Rate limit exceeded - no tokens available")
        self._tokens -= 1

    async def acquire(self) -> None:
        """Wait until a permit is available, then take it.

        Waiters are serialized on the bucket lock so the refill-then-decrement
        step never admits more callers than there are permits. The wait is
        re-checked after every sleep because ``try_consume`` does not queue.
        """
        async with self._lock:
            wait_ms = self.get_wait_time()
            while wait_ms > 0:
                await self._sleep(wait_ms / 1000.0)
                wait_ms = self.get_wait_time()
            self._tokens -= 1

    @property
    def available(self) -> int:
        """Whole permits currently available (diagnostics only)."""
        self._refill()
        return math.floor(self._tokens)


class RateLimiterPool:
    """Lazily created token buckets keyed by partition (market code)."""

    def __init__(
        self,
        capacity: int,
        window_ms: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.capacity = capacity
        self.window_ms = window_ms
        self._clock = clock
        self._sleep = sleep
        self._buckets: dict[str, TokenBucket] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> TokenBucket:
        """Return the bucket for ``key``, creating it on first access."""
        key = key.lower()
        bucket = self._buckets.get(key)
        if bucket is not None:
            return bucket
        with self._guard:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket(
                    self.capacity,
                    self.window_ms,
                    clock=self._clock,
                    sleep=self._sleep,
                )
                self._buckets[key] = bucket
            return bucket

    def __contains__(self, key: str) -> bool:
        return key.lower() in self._buckets

    def __len__(self) -> int:
        return len(self._buckets)


__all__ = ["RateLimitExceeded", "RateLimiterPool", "TokenBucket"]
