"""Time sources for the monitor.

Every component takes its notion of "now" and its sleeps from a ``Clock`` so
that polling, ticking and sliding windows can be driven deterministically.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Wall time, monotonic time and sleeping."""

    def now(self) -> datetime:
        """Current wall-clock time (timezone-aware, UTC)."""
        ...

    def monotonic(self) -> float:
        """Monotonic seconds, used for durations."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""
        ...


class SystemClock:
    """Clock backed by the OS and the running event loop."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock:
    """Clock that only moves when ``advance()`` is called.

    Sleepers are woken in deadline order, and the event loop is given a chance
    to run after each wake-up, so a task that sleeps again inside the advanced
    span is woken again within the same ``advance()`` call.

    Example:
        ```python
        clock = ManualClock()
        task = asyncio.create_task(worker(clock))
        await clock.advance(10)  # worker observes 10 seconds passing
        ```
    """

    _SETTLE_ITERATIONS = 25

    def __init__(self, start: datetime | None = None) -> None:
        if start is not None and start.tzinfo is None:
            raise ValueError("start must be timezone-aware")
        self._start = start or datetime(2026, 1, 1, tzinfo=UTC)
        self._elapsed = 0.0
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._elapsed)

    def monotonic(self) -> float:
        return self._elapsed

    @property
    def pending_sleepers(self) -> int:
        """Number of tasks currently blocked in ``sleep()``."""
        return sum(1 for _, _, fut in self._sleepers if not fut.done())

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._elapsed + seconds, next(self._seq), fut))
        await fut

    async def advance(self, seconds: float) -> None:
        """Move time forward by ``seconds``, waking sleepers along the way."""
        if seconds < 0:
            raise ValueError("cannot move a clock backwards")
        target = self._elapsed + seconds
        await self._settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, fut = heapq.heappop(self._sleepers)
            if fut.done():
                continue
            self._elapsed = max(self._elapsed, deadline)
            fut.set_result(None)
            await self._settle()
        self._elapsed = target
        await self._settle()

    async def _settle(self) -> None:
        for _ in range(self._SETTLE_ITERATIONS):
            await asyncio.sleep(0)
