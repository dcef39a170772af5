from __future__ import annotations

import asyncio
import time

import pytest

from brokerlink.services.rate_limiter import RateLimiter


@pytest.mark.asyncio
async def test_per_second_budget_delays_excess_calls() -> None:
    limiter = RateLimiter(max_per_second=5, max_concurrent=10)
    started: list[float] = []

    async def call() -> None:
        async with limiter.slot():
            started.append(time.monotonic())

    begin = time.monotonic()
    await asyncio.gather(*(call() for _ in range(10)))
    elapsed = time.monotonic() - begin

    assert len(started) == 10
    assert elapsed >= 0.9
    # No rolling one-second window may contain more than five starts.
    started.sort()
    for index in range(len(started) - 5):
        assert started[index + 5] - started[index] >= 0.9


@pytest.mark.asyncio
async def test_concurrency_never_exceeds_budget() -> None:
    limiter = RateLimiter(max_per_second=100, max_concurrent=3)
    in_flight = 0
    peak = 0

    async def call() -> None:
        nonlocal in_flight, peak
        async with limiter.slot():
            in_flight += 1
            peak = max(peak, in_flight)
            assert limiter.snapshot().in_flight <= 3
            await asyncio.sleep(0.02)
            in_flight -= 1

    await asyncio.gather(*(call() for _ in range(12)))

    assert peak == 3
    assert limiter.snapshot().in_flight == 0


@pytest.mark.asyncio
async def test_slot_is_released_when_the_call_fails() -> None:
    limiter = RateLimiter(max_per_second=10, max_concurrent=1)

    with pytest.raises(RuntimeError):
        async with limiter.slot():
            raise RuntimeError("upstream exploded")

    await asyncio.wait_for(limiter.acquire(), timeout=0.5)
    limiter.release()
    assert limiter.snapshot().in_flight == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_leaves_counters_consistent() -> None:
    limiter = RateLimiter(max_per_second=10, max_concurrent=1)
    await limiter.acquire()

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(limiter.acquire(), timeout=0.05)

    assert limiter.snapshot().in_flight == 1
    limiter.release()
    await asyncio.wait_for(limiter.acquire(), timeout=0.5)
    assert limiter.snapshot().in_flight == 1
    limiter.release()


@pytest.mark.asyncio
async def test_cancelled_window_waiter_frees_concurrency_slot() -> None:
    limiter = RateLimiter(max_per_second=1, max_concurrent=2)
    await limiter.acquire()
    limiter.release()

    # The window is full, so this waiter holds a concurrency slot while sleeping.
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(limiter.acquire(), timeout=0.05)

    snapshot = limiter.snapshot()
    assert snapshot.in_flight == 0
    assert snapshot.requests_in_window == 1
    assert limiter._concurrency._value == 2


def test_snapshot_reports_configuration() -> None:
    limiter = RateLimiter(max_per_second=20, max_concurrent=5)

    snapshot = limiter.snapshot()

    assert snapshot.max_per_second == 20
    assert snapshot.max_concurrent == 5
    assert snapshot.window_start_time is None
    assert snapshot.requests_in_window == 0


def test_rejects_non_positive_limits() -> None:
    with pytest.raises(ValueError):
        RateLimiter(max_per_second=0, max_concurrent=1)
