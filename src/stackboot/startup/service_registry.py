"""Typed registry of the services in a stack."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from stackboot.core.exceptions import (
    ConfigurationError,
    UnknownDependencyError,
    UnknownServiceError,
)
from stackboot.startup.health_checks import CaveatRule, ProbeSpec


@dataclass(frozen=True)
class ServiceNode:
    """One service in the stack.

    ``name`` is the compose service name and the stable identifier used
    everywhere; ``container_name`` is what the runtime inspects.
    """

    name: str
    container_name: str = ""
    depends_on: tuple[str, ...] = ()
    probe: ProbeSpec | None = None
    timeout: float | None = None
    interval: float | None = None
    mandatory: bool = True
    caveat: CaveatRule | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            msg = "service name cannot be empty"
            raise ValueError(msg)
        if not self.container_name:
            object.__setattr__(self, "container_name", self.name)
        if self.timeout is not None and self.timeout <= 0:
            msg = f"{self.name}: timeout must be positive"
            raise ValueError(msg)
        if self.interval is not None and self.interval <= 0:
            msg = f"{self.name}: interval must be positive"
            raise ValueError(msg)


@dataclass(frozen=True)
class ServiceRegistry:
    """Services keyed by name, in declaration order.

    Construction rejects duplicate names and dependencies on unregistered
    services. Cycles are left to the planner.
    """

    nodes: tuple[ServiceNode, ...]
    _by_name: dict[str, ServiceNode] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_name: dict[str, ServiceNode] = {}
        for node in self.nodes:
            if node.name in by_name:
                msg = f"Service '{node.name}' is declared twice"
                raise ConfigurationError(
                    msg,
                    error_code="CONFIG_004",
                    subject=node.name,
                    remediation="Give every service a unique name.",
                )
            by_name[node.name] = node
        for node in self.nodes:
            for dep in node.depends_on:
                if dep not in by_name:
                    raise UnknownDependencyError(node.name, dep)
        object.__setattr__(self, "_by_name", by_name)

    @classmethod
    def from_nodes(cls, nodes: Iterable[ServiceNode]) -> ServiceRegistry:
        return cls(tuple(nodes))

    def __iter__(self) -> Iterator[ServiceNode]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    @property
    def names(self) -> list[str]:
        return [node.name for node in self.nodes]

    def get(self, name: str) -> ServiceNode:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownServiceError(name, self.names) from None

    def dependency_closure(self, names: Iterable[str]) -> set[str]:
        """Return ``names`` plus everything they transitively depend on."""
        closure: set[str] = set()
        pending = [self.get(name).name for name in names]
        while pending:
            name = pending.pop()
            if name in closure:
                continue
            closure.add(name)
            pending.extend(self._by_name[name].depends_on)
        return closure
