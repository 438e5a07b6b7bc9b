"""Clock abstraction for polling loops.

Production code uses :class:`SystemClock`; tests substitute a virtual clock so
timing behaviour can be checked without real elapsed time.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def monotonic(self) -> float:
        """Seconds on a monotonic scale, used for deadlines."""
        ...

    def wall_time(self) -> float:
        """Seconds since the epoch, used for result timestamps."""
        ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Real clock backed by ``time`` and ``asyncio.sleep``."""

    def monotonic(self) -> float:
        return time.monotonic()

    def wall_time(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
