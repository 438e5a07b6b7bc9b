"""Bounded fixed-interval waiting for a service to become ready.

:class:`WaitState` is the state machine; its ``poll`` and ``expire`` methods
return a new state and never touch I/O. :class:`WaitPolicy` drives it with an
injectable clock, so tests run on virtual time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import StrEnum
import logging

from stackboot.core.clock import Clock, SystemClock
from stackboot.core.exceptions import ProbeTimeout, ProbeUnhealthy, StackbootError
from stackboot.startup.health_checks import HealthState, ProbeResult

logger = logging.getLogger(__name__)

ProbeCall = Callable[[], Awaitable[ProbeResult]]


class WaitOutcome(StrEnum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class WaitState:
    """Progress of one wait."""

    timeout: float
    state: HealthState = HealthState.UNKNOWN
    polls: int = 0
    elapsed: float = 0.0
    outcome: WaitOutcome | None = None
    last_result: ProbeResult | None = None

    def poll(self, result: ProbeResult | None, elapsed: float) -> WaitState:
        """Fold one probe result into the state.

        ``result`` is None when the probe call itself did not finish.
        """
        if self.outcome is not None:
            return self
        state = result.state if result is not None else self.state
        outcome = None
        if state == HealthState.HEALTHY:
            outcome = WaitOutcome.HEALTHY
        elif state == HealthState.UNHEALTHY:
            outcome = WaitOutcome.UNHEALTHY
        elif elapsed >= self.timeout:
            outcome = WaitOutcome.TIMEOUT
        return replace(
            self,
            state=state,
            polls=self.polls + 1,
            elapsed=elapsed,
            outcome=outcome,
            last_result=result if result is not None else self.last_result,
        )

    def expire(self, elapsed: float) -> WaitState:
        if self.outcome is not None or elapsed < self.timeout:
            return self
        return replace(self, elapsed=elapsed, outcome=WaitOutcome.TIMEOUT)


@dataclass(frozen=True)
class WaitResult:
    """Terminal outcome of a wait for one service."""

    service_name: str
    outcome: WaitOutcome
    state: HealthState
    elapsed: float
    polls: int
    timeout: float
    last_result: ProbeResult | None = None

    @property
    def healthy(self) -> bool:
        return self.outcome == WaitOutcome.HEALTHY

    @property
    def caveat(self) -> str | None:
        return self.last_result.caveat if self.last_result else None

    @property
    def error(self) -> StackbootError | None:
        if self.outcome == WaitOutcome.TIMEOUT:
            return ProbeTimeout(self.service_name, self.timeout, self.state.value)
        if self.outcome == WaitOutcome.UNHEALTHY:
            last = self.last_result
            return ProbeUnhealthy(
                self.service_name,
                last.message if last else None,
                last.status_code if last else None,
            )
        return None


class WaitPolicy:
    """Poll a probe at a fixed interval until healthy, unhealthy or timed out."""

    def __init__(
        self,
        probe: ProbeCall,
        timeout: float,
        interval: float,
        *,
        service_name: str = "",
        clock: Clock | None = None,
    ) -> None:
        if timeout <= 0 or interval <= 0:
            msg = "timeout and interval must be positive"
            raise ValueError(msg)
        self.probe = probe
        self.timeout = timeout
        self.interval = interval
        self.service_name = service_name
        self.clock = clock or SystemClock()

    async def run(self) -> WaitResult:
        clock = self.clock
        start = clock.monotonic()
        state = WaitState(timeout=self.timeout)

        while True:
            elapsed = clock.monotonic() - start
            state = state.expire(elapsed)
            if state.outcome is not None:
                break

            try:
                result: ProbeResult | None = await asyncio.wait_for(
                    self.probe(), timeout=self.timeout - elapsed
                )
            except TimeoutError:
                result = None
            state = state.poll(result, clock.monotonic() - start)
            if state.outcome is not None:
                break

            logger.debug(
                "Waiting for %s: %s after %.1fs",
                self.service_name,
                state.state.value,
                state.elapsed,
            )
            remaining = self.timeout - (clock.monotonic() - start)
            await clock.sleep(max(min(self.interval, remaining), 0))

        return WaitResult(
            service_name=self.service_name,
            outcome=state.outcome,
            state=state.state,
            elapsed=state.elapsed,
            polls=state.polls,
            timeout=self.timeout,
            last_result=state.last_result,
        )
