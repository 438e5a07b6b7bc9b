"""Execution environment port.

Defines the contract the bring-up core uses to start, inspect and control
service containers. Concrete adapters live in ``stackboot.services``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stackboot.startup.service_registry import ServiceNode

RUNNING_STATUSES = frozenset({"running"})
STOPPED_STATUSES = frozenset({"exited", "dead", "removing", "paused"})


@dataclass(frozen=True)
class RuntimeInspection:
    """Container state as reported by the runtime.

    ``status`` follows docker's ``.State.Status`` (``running``, ``exited``, ...)
    or ``absent`` when no container exists. ``health`` is ``.State.Health.Status``
    or ``none`` when the image defines no healthcheck.
    """

    status: str
    health: str = "none"

    @classmethod
    def absent(cls) -> RuntimeInspection:
        return cls(status="absent")

    @property
    def exists(self) -> bool:
        return self.status != "absent"

    @property
    def running(self) -> bool:
        return self.status in RUNNING_STATUSES

    @property
    def stopped(self) -> bool:
        return self.status in STOPPED_STATUSES


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one runtime command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ExecutionEnvironmentPort(ABC):
    """Abstract interface to the container runtime."""

    @abstractmethod
    async def ping(self) -> None:
        """Verify the runtime is reachable.

        Raises:
            RuntimeUnavailable: If the runtime cannot be reached.
        """

    @abstractmethod
    async def start(self, node: ServiceNode) -> CommandResult:
        """Start a service without waiting for readiness.

        Raises:
            RuntimeCommandError: If the start command fails.
        """

    @abstractmethod
    async def inspect(self, node: ServiceNode) -> RuntimeInspection:
        """Return the current container state for a service."""

    @abstractmethod
    def logs(
        self, node: ServiceNode, *, tail: int = 50, follow: bool = False
    ) -> AsyncIterator[str]:
        """Stream log lines for a service."""

    @abstractmethod
    async def restart(self, node: ServiceNode) -> CommandResult:
        """Restart a service."""

    @abstractmethod
    async def exec(self, node: ServiceNode, command: Sequence[str]) -> CommandResult:
        """Run a command inside the service's container."""
