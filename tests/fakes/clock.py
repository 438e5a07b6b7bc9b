"""Virtual clock for deterministic timing tests.

``FakeClock.sleep`` never waits in real time. Sleepers are queued by wake-up
time; a background ticker lets the event loop settle, then jumps ``now`` to
the earliest pending wake-up and releases that sleeper. Tests therefore see
exact elapsed times (``t == 10.0``) while running in milliseconds.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools

# Loop iterations allowed for woken tasks to reach their next sleep (or
# finish) before time moves on.
SETTLE_ROUNDS = 50


class FakeClock:
    """In-memory implementation of :class:`stackboot.core.clock.Clock`."""

    def __init__(self, start: float = 0.0, wall_start: float = 1_700_000_000.0) -> None:
        self.now = start
        self.wall_start = wall_start
        self.sleeps: list[float] = []
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = itertools.count()
        self._ticker: asyncio.Task[None] | None = None

    def monotonic(self) -> float:
        return self.now

    def wall_time(self) -> float:
        return self.wall_start + self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()
        heapq.heappush(
            self._sleepers, (self.now + max(seconds, 0.0), next(self._seq), future)
        )
        if self._ticker is None or self._ticker.done():
            self._ticker = loop.create_task(self._advance())
        await future

    async def _advance(self) -> None:
        while True:
            for _ in range(SETTLE_ROUNDS):
                await asyncio.sleep(0)
            if not self._sleepers:
                return
            wake, _, future = heapq.heappop(self._sleepers)
            if future.done():
                continue
            self.now = max(self.now, wake)
            future.set_result(None)

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, f in self._sleepers if not f.done())
