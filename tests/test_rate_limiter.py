try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from market_gateway.clients.rate_limiter import (
    RateLimitExceeded,
    RateLimiterPool,
    TokenBucket,
)


def _bucket(clock, capacity: int = 5, window_ms: int = 1000) -> TokenBucket:
    return TokenBucket(capacity, window_ms, clock=clock, sleep=clock.sleep)


@pytest.mark.parametrize("capacity", [1, 5, 40])
def test_fresh_bucket_allows_exactly_capacity(clock, capacity: int) -> None:
    bucket = _bucket(clock, capacity=capacity)

    for _ in range(capacity):
        bucket.try_consume()

    with pytest.raises(RateLimitExceeded):
        bucket.try_consume()


def test_bucket_is_full_again_after_idle_window(clock) -> None:
    bucket = _bucket(clock, capacity=5, window_ms=1000)
    for _ in range(5):
        bucket.try_consume()

    clock.advance(1.0)

    for _ in range(5):
        bucket.try_consume()
    with pytest.raises(RateLimitExceeded):
        bucket.try_consume()


def test_refill_is_capped_at_capacity(clock) -> None:
    bucket = _bucket(clock, capacity=3, window_ms=1000)
    bucket.try_consume()

    clock.advance(3600)

    assert bucket.available == 3


def test_partial_refill_keeps_fractional_tokens(clock) -> None:
    bucket = _bucket(clock, capacity=10, window_ms=1000)
    for _ in range(10):
        bucket.try_consume()

    clock.advance(0.25)
    assert bucket.available == 2

    # The half token left over is not lost to flooring.
    clock.advance(0.25)
    assert bucket.available == 5


def test_wait_time_decreases_to_zero_while_idle(clock) -> None:
    bucket = _bucket(clock, capacity=4, window_ms=1000)
    for _ in range(4):
        bucket.try_consume()

    waits = [bucket.get_wait_time()]
    for _ in range(4):
        clock.advance(0.1)
        waits.append(bucket.get_wait_time())

    assert waits[0] == 250
    assert waits == sorted(waits, reverse=True)
    assert waits[-1] == 0


def test_wait_time_is_zero_with_tokens_available(clock) -> None:
    bucket = _bucket(clock)
    assert bucket.get_wait_time() == 0


@pytest.mark.anyio
async def test_acquire_sleeps_until_a_token_accrues(clock) -> None:
    bucket = _bucket(clock, capacity=2, window_ms=1000)

    await bucket.acquire()
    await bucket.acquire()
    assert clock.sleeps == []

    await bucket.acquire()

    assert clock.sleeps == [0.5]
    assert bucket.available == 0


@pytest.mark.anyio
async def test_concurrent_acquire_never_over_admits(clock) -> None:
    bucket = _bucket(clock, capacity=3, window_ms=1000)

    await asyncio.gather(*(bucket.acquire() for _ in range(6)))

    # Three permits were in the bucket; the other three had to accrue.
    assert sum(clock.sleeps) == pytest.approx(1.0, abs=0.01)
    assert bucket.available == 0
    with pytest.raises(RateLimitExceeded):
        bucket.try_consume()


def test_bucket_rejects_non_positive_sizes(clock) -> None:
    with pytest.raises(ValueError):
        TokenBucket(0, 1000, clock=clock)
    with pytest.raises(ValueError):
        TokenBucket(5, 0, clock=clock)


def test_pool_returns_same_bucket_for_same_key(clock) -> None:
    pool = RateLimiterPool(5, 1000, clock=clock, sleep=clock.sleep)

    with ThreadPoolExecutor(max_workers=8) as executor:
        buckets = list(executor.map(lambda _: pool.get("pl"), range(32)))

    assert all(bucket is buckets[0] for bucket in buckets)
    assert pool.get("PL") is buckets[0]
    assert len(pool) == 1


@pytest.mark.anyio
async def test_pool_concurrent_first_access_from_tasks(clock) -> None:
    pool = RateLimiterPool(5, 1000, clock=clock, sleep=clock.sleep)

    async def fetch():
        await asyncio.sleep(0)
        return pool.get("pl")

    buckets = await asyncio.gather(*(fetch() for _ in range(10)))

    assert len({id(bucket) for bucket in buckets}) == 1


def test_pool_partitions_refill_independently(clock) -> None:
    pool = RateLimiterPool(2, 1000, clock=clock, sleep=clock.sleep)
    poland = pool.get("pl")
    bulgaria = pool.get("bg")

    poland.try_consume()
    poland.try_consume()
    with pytest.raises(RateLimitExceeded):
        poland.try_consume()

    assert bulgaria.available == 2
    bulgaria.try_consume()

    clock.advance(0.5)
    assert poland.available == 1
    assert bulgaria.available == 2
    assert poland is not bulgaria
    assert "bg" in pool
