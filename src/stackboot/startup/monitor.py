"""On-demand stack status, log tailing and restart delegation."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
import logging

from rich.table import Table

from stackboot.core.clock import Clock, SystemClock
from stackboot.core.exceptions import RuntimeCommandError
from stackboot.ports.runtime import CommandResult, ExecutionEnvironmentPort
from stackboot.startup.health_checks import (
    HealthState,
    ProbeResult,
    ServiceHealthChecker,
)
from stackboot.startup.service_registry import ServiceNode, ServiceRegistry

logger = logging.getLogger(__name__)

STATE_STYLES = {
    HealthState.HEALTHY: "green",
    HealthState.STARTING: "yellow",
    HealthState.UNHEALTHY: "red",
    HealthState.STOPPED: "red",
    HealthState.NOT_FOUND: "dim",
    HealthState.UNKNOWN: "dim",
}


@dataclass
class StackStatus:
    """Last known probe result per service, in registry order."""

    results: dict[str, ProbeResult] = field(default_factory=dict)

    def update(self, result: ProbeResult) -> None:
        self.results[result.service_name] = result

    def state_of(self, name: str) -> HealthState:
        result = self.results.get(name)
        return result.state if result else HealthState.UNKNOWN

    def names_in(self, state: HealthState) -> list[str]:
        return [name for name, r in self.results.items() if r.state == state]

    @property
    def all_healthy(self) -> bool:
        return bool(self.results) and all(r.is_healthy() for r in self.results.values())

    def to_dict(self) -> dict[str, dict[str, object]]:
        return {
            name: {
                "state": r.state.value,
                "status_code": r.status_code,
                "timestamp": r.timestamp,
                "caveat": r.caveat,
                "message": r.message,
            }
            for name, r in self.results.items()
        }


def status_table(status: StackStatus, registry: ServiceRegistry | None = None) -> Table:
    """Render a status snapshot as a rich table."""
    table = Table(title="Stack Status")
    table.add_column("Service", style="cyan")
    table.add_column("State")
    table.add_column("Detail", style="dim")
    table.add_column("Required", justify="center")

    for name, result in status.results.items():
        style = STATE_STYLES.get(result.state, "")
        state = f"[{style}]{result.state.value}[/{style}]" if style else result.state.value
        detail = result.message
        if result.caveat:
            state += " [yellow](caveat)[/yellow]"
            detail = result.caveat
        required = ""
        if registry is not None and name in registry:
            required = "yes" if registry.get(name).mandatory else "no"
        table.add_row(name, state, detail, required)
    return table


class StackMonitor:
    """Snapshot and control of the registered services.

    Nothing here retries or waits; each call is one pass against the runtime.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        runtime: ExecutionEnvironmentPort,
        checker: ServiceHealthChecker,
        *,
        clock: Clock | None = None,
    ) -> None:
        self.registry = registry
        self.runtime = runtime
        self.checker = checker
        self.clock = clock or SystemClock()

    async def _check(self, node: ServiceNode) -> ProbeResult:
        try:
            return await self.checker.check(node)
        except RuntimeCommandError as e:
            logger.warning("Could not probe %s: %s", node.name, e)
            return ProbeResult(
                node.name,
                HealthState.UNKNOWN,
                timestamp=self.clock.wall_time(),
                message=e.message,
            )

    async def status(self, names: Iterable[str] | None = None) -> StackStatus:
        """Probe every registered service once, concurrently."""
        nodes = (
            [self.registry.get(name) for name in names]
            if names is not None
            else list(self.registry)
        )
        results = await asyncio.gather(*(self._check(node) for node in nodes))
        status = StackStatus()
        for result in results:
            status.update(result)
        return status

    def logs(self, name: str, *, tail: int = 50, follow: bool = False) -> AsyncIterator[str]:
        return self.runtime.logs(self.registry.get(name), tail=tail, follow=follow)

    async def restart(self, name: str) -> CommandResult:
        node = self.registry.get(name)
        logger.info("Restarting %s", name)
        return await self.runtime.restart(node)
