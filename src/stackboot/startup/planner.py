"""Startup planner: orders services into dependency waves."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import logging

from stackboot.core.exceptions import CycleError, UnknownDependencyError
from stackboot.startup.service_registry import ServiceNode, ServiceRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartupPlan:
    """Ordered waves; every node's dependencies sit in an earlier wave."""

    waves: tuple[tuple[ServiceNode, ...], ...]

    def __len__(self) -> int:
        return len(self.waves)

    @property
    def names(self) -> list[list[str]]:
        return [[node.name for node in wave] for wave in self.waves]

    def wave_of(self, name: str) -> int:
        for index, wave in enumerate(self.waves):
            if any(node.name == name for node in wave):
                return index
        raise KeyError(name)


def plan_waves(
    nodes: Iterable[ServiceNode],
    *,
    satisfied: Iterable[str] = (),
) -> StartupPlan:
    """Group nodes into waves by repeatedly removing satisfied nodes.

    Args:
        nodes: Services to schedule, in declaration order
        satisfied: Names treated as already up; dependencies on them are met

    Returns:
        The complete plan. Ties inside a wave keep declaration order.

    Raises:
        UnknownDependencyError: If a dependency is neither scheduled nor satisfied
        CycleError: If some nodes can never be scheduled
    """
    pending = list(nodes)
    done = set(satisfied)
    known = done | {node.name for node in pending}
    for node in pending:
        for dep in node.depends_on:
            if dep not in known:
                raise UnknownDependencyError(node.name, dep)

    waves: list[tuple[ServiceNode, ...]] = []
    while pending:
        wave = tuple(n for n in pending if all(d in done for d in n.depends_on))
        if not wave:
            unresolved = [n.name for n in pending]
            logger.error("Cannot order services: %s", ", ".join(unresolved))
            raise CycleError(unresolved)
        waves.append(wave)
        done.update(n.name for n in wave)
        pending = [n for n in pending if n.name not in done]

    plan = StartupPlan(tuple(waves))
    logger.debug("Planned %d waves: %s", len(plan), plan.names)
    return plan


def plan_registry(registry: ServiceRegistry) -> StartupPlan:
    return plan_waves(registry.nodes)
