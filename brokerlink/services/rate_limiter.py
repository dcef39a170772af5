"""
Process-wide admission gate for upstream brokerage calls.

Two independent budgets are enforced: calls in flight at once, and calls
started within any rolling window (one second by default). Calls over the
per-second budget are delayed rather than rejected, and waiters are admitted
in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Deque, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateBudget:
    """Snapshot of the limiter's shared counters."""

    window_start_time: Optional[float]
    requests_in_window: int
    max_per_second: int
    max_concurrent: int
    in_flight: int


class RateLimiter:
    """FIFO gate bounding concurrency and starts per rolling window.

    One limiter serves one event loop: its semaphore and lock bind to the
    loop that first waits on them. Build a fresh limiter for each
    ``asyncio.run`` instead of sharing the process-wide one.
    """

    def __init__(
        self,
        *,
        max_per_second: int,
        max_concurrent: int,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_per_second < 1 or max_concurrent < 1:
            raise ValueError("Rate limits must be positive.")
        self.max_per_second = max_per_second
        self.max_concurrent = max_concurrent
        self.window_seconds = window_seconds
        self._clock = clock
        self._concurrency = asyncio.Semaphore(max_concurrent)
        self._admission = asyncio.Lock()
        self._starts: Deque[float] = deque()
        self._in_flight = 0

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one slot for the duration of the block."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    async def acquire(self) -> None:
        await self._concurrency.acquire()
        try:
            await self._admit()
        except BaseException:
            # Cancelled or timed out while queued: hand the concurrency slot back.
            self._concurrency.release()
            raise
        self._in_flight += 1

    def release(self) -> None:
        self._in_flight -= 1
        self._concurrency.release()

    def snapshot(self) -> RateBudget:
        self._prune(self._clock())
        return RateBudget(
            window_start_time=self._starts[0] if self._starts else None,
            requests_in_window=len(self._starts),
            max_per_second=self.max_per_second,
            max_concurrent=self.max_concurrent,
            in_flight=self._in_flight,
        )

    async def _admit(self) -> None:
        # Only one waiter inspects the window at a time; asyncio.Lock wakes
        # waiters in arrival order.
        async with self._admission:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._starts) < self.max_per_second:
                    self._starts.append(now)
                    return
                wait_time = self.window_seconds - (now - self._starts[0])
                logger.debug(
                    "Rate limiter: %d/%d starts in window, waiting %.3fs",
                    len(self._starts),
                    self.max_per_second,
                    wait_time,
                )
                await asyncio.sleep(max(wait_time, 0.0))

    def _prune(self, now: float) -> None:
        while self._starts and now - self._starts[0] >= self.window_seconds:
            self._starts.popleft()


__all__ = ["RateBudget", "RateLimiter"]
