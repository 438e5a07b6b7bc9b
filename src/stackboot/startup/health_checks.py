"""Service readiness probes.

A probe check is split in two: :meth:`ServiceHealthChecker.observe` gathers raw
signals (container state, HTTP status, exit code) from the collaborators, and
:func:`evaluate` turns an :class:`Observation` into a :class:`ProbeResult`
without any I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
import logging
import time
from typing import TYPE_CHECKING

import httpx

from stackboot.core.clock import Clock, SystemClock
from stackboot.core.exceptions import RuntimeCommandError
from stackboot.ports.runtime import ExecutionEnvironmentPort, RuntimeInspection

if TYPE_CHECKING:
    from stackboot.startup.service_registry import ServiceNode

logger = logging.getLogger(__name__)

# Exit codes meaning the readiness command itself could not run.
EXEC_COMMAND_MISSING = frozenset({126, 127})


class HealthState(StrEnum):
    """Readiness of one service."""

    UNKNOWN = "unknown"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STOPPED = "stopped"
    NOT_FOUND = "not_found"


class ProbeKind(StrEnum):
    RUNTIME_STATE = "runtime_state"
    HTTP_ENDPOINT = "http_endpoint"
    EXEC_CHECK = "exec_check"


@dataclass(frozen=True)
class RuntimeStateProbe:
    """Readiness as reported by the container's own healthcheck."""

    kind: ProbeKind = field(default=ProbeKind.RUNTIME_STATE, init=False)


@dataclass(frozen=True)
class HttpEndpointProbe:
    """Readiness from an HTTP status code.

    ``expected`` mixes exact codes (``401``) and code classes (``"2xx"``).
    """

    url: str
    expected: tuple[int | str, ...] = ("2xx",)
    kind: ProbeKind = field(default=ProbeKind.HTTP_ENDPOINT, init=False)

    def __post_init__(self) -> None:
        for item in self.expected:
            if isinstance(item, str) and not (
                len(item) == 3 and item[0] in "12345" and item[1:].lower() == "xx"
            ):
                msg = f"invalid status code class: {item!r}"
                raise ValueError(msg)

    def matches(self, status_code: int) -> bool:
        for item in self.expected:
            if isinstance(item, int) and item == status_code:
                return True
            if isinstance(item, str) and str(status_code)[0] == item[0]:
                return True
        return False


@dataclass(frozen=True)
class ExecCheckProbe:
    """Readiness from a command run inside the container (exit 0 = ready)."""

    command: tuple[str, ...]
    kind: ProbeKind = field(default=ProbeKind.EXEC_CHECK, init=False)


ProbeSpec = RuntimeStateProbe | HttpEndpointProbe | ExecCheckProbe


@dataclass(frozen=True)
class CaveatRule:
    """Known non-standard readiness signal that still means "working".

    Example: a realtime server whose health endpoint answers 403 when
    self-hosted.
    """

    status_codes: frozenset[int] = frozenset()
    accept_runtime_unhealthy: bool = False
    note: str = ""


@dataclass(frozen=True)
class Observation:
    """Raw signals collected for one probe check."""

    inspection: RuntimeInspection
    status_code: int | None = None
    exit_code: int | None = None
    error: str | None = None


@dataclass
class ProbeResult:
    """Result of one probe check."""

    service_name: str
    state: HealthState
    status_code: int | None = None
    timestamp: float = field(default_factory=time.time)
    message: str = ""
    caveat: str | None = None
    response_time_ms: float = 0.0

    def is_healthy(self) -> bool:
        return self.state == HealthState.HEALTHY

    @property
    def has_caveat(self) -> bool:
        return self.caveat is not None


def _classify(probe: ProbeSpec | None, obs: Observation) -> tuple[HealthState, str]:
    inspection = obs.inspection
    if not inspection.exists:
        return HealthState.NOT_FOUND, "container not found"
    if inspection.stopped:
        return HealthState.STOPPED, f"container {inspection.status}"
    if not inspection.running:
        return HealthState.STARTING, f"container {inspection.status}"

    if probe is None:
        return HealthState.HEALTHY, "running (no readiness probe)"

    if isinstance(probe, RuntimeStateProbe):
        health = inspection.health
        if health in {"healthy", "none"}:
            return HealthState.HEALTHY, f"running ({health})"
        if health == "unhealthy":
            return HealthState.UNHEALTHY, "container healthcheck failing"
        return HealthState.STARTING, f"healthcheck {health}"

    if isinstance(probe, HttpEndpointProbe):
        if obs.status_code is None:
            return HealthState.STARTING, obs.error or "no HTTP response yet"
        if probe.matches(obs.status_code):
            return HealthState.HEALTHY, f"HTTP {obs.status_code}"
        if obs.status_code >= 500:
            return HealthState.STARTING, f"HTTP {obs.status_code}"
        return HealthState.UNHEALTHY, f"unexpected HTTP {obs.status_code}"

    if obs.exit_code is None:
        return HealthState.UNKNOWN, obs.error or "readiness command did not run"
    if obs.exit_code == 0:
        return HealthState.HEALTHY, "readiness command succeeded"
    if obs.exit_code in EXEC_COMMAND_MISSING:
        return HealthState.UNHEALTHY, f"readiness command unavailable (exit {obs.exit_code})"
    return HealthState.STARTING, f"readiness command exit {obs.exit_code}"


def evaluate(node: ServiceNode, obs: Observation, *, timestamp: float) -> ProbeResult:
    """Classify an observation, applying the node's caveat rule if it has one."""
    state, message = _classify(node.probe, obs)
    caveat = None
    rule = node.caveat
    if rule is not None and state != HealthState.HEALTHY and obs.inspection.running:
        if obs.status_code is not None and obs.status_code in rule.status_codes:
            caveat = rule.note or f"HTTP {obs.status_code} accepted"
        elif state == HealthState.UNHEALTHY and rule.accept_runtime_unhealthy:
            caveat = rule.note or "runtime healthcheck failure accepted"
        if caveat is not None:
            state = HealthState.HEALTHY
    return ProbeResult(
        service_name=node.name,
        state=state,
        status_code=obs.status_code,
        timestamp=timestamp,
        message=message,
        caveat=caveat,
    )


class ServiceHealthChecker:
    """Runs one probe check per call against the runtime and HTTP targets."""

    def __init__(
        self,
        runtime: ExecutionEnvironmentPort,
        *,
        http_client: httpx.AsyncClient | None = None,
        http_timeout: float = 5.0,
        clock: Clock | None = None,
    ) -> None:
        """Initialize health checker.

        Args:
            runtime: Execution environment used for container state and exec probes
            http_client: Shared client for HTTP probes; created on demand if omitted
            http_timeout: Per-request timeout for HTTP probes in seconds
            clock: Clock used for result timestamps
        """
        self.runtime = runtime
        self.http_timeout = http_timeout
        self.clock = clock or SystemClock()
        self._http_client = http_client
        self._owns_client = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.http_timeout), follow_redirects=False
            )
        return self._http_client

    async def observe(self, node: ServiceNode) -> Observation:
        inspection = await self.runtime.inspect(node)
        if not inspection.running or node.probe is None:
            return Observation(inspection)

        probe = node.probe
        if isinstance(probe, HttpEndpointProbe):
            try:
                response = await self._client().get(probe.url)
            except httpx.HTTPError as e:
                return Observation(inspection, error=f"{type(e).__name__}: {e}")
            return Observation(inspection, status_code=response.status_code)

        if isinstance(probe, ExecCheckProbe):
            try:
                result = await self.runtime.exec(node, probe.command)
            except RuntimeCommandError as e:
                return Observation(inspection, error=e.message)
            return Observation(inspection, exit_code=result.returncode)

        return Observation(inspection)

    async def check(self, node: ServiceNode) -> ProbeResult:
        """Run one probe check for a service. Never retries."""
        start_time = self.clock.monotonic()
        observation = await self.observe(node)
        result = evaluate(node, observation, timestamp=self.clock.wall_time())
        result.response_time_ms = (self.clock.monotonic() - start_time) * 1000
        logger.debug(
            "Probe %s -> %s (%s)", node.name, result.state.value, result.message
        )
        return result

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
