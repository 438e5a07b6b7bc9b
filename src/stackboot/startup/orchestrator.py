"""Stack bring-up orchestrator.

Validates prerequisites, brings up the services the data store bootstrap
needs, bootstraps the store, then starts the remaining services wave by wave,
waiting for each wave to become ready before starting the next.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
import logging
from typing import Any, TypeVar

from stackboot.core.clock import Clock, SystemClock
from stackboot.core.exceptions import (
    ConfigurationError,
    ErrorKind,
    ProbeUnhealthy,
    RuntimeCommandError,
    StackbootError,
)
from stackboot.ports.runtime import ExecutionEnvironmentPort
from stackboot.startup.bootstrap import (
    BootstrapReconciler,
    BootstrapReport,
    VerificationReport,
)
from stackboot.startup.config_schema import ConfigValidation, StackConfig
from stackboot.startup.health_checks import (
    HealthState,
    ProbeResult,
    ServiceHealthChecker,
)
from stackboot.startup.monitor import StackMonitor, StackStatus
from stackboot.startup.planner import StartupPlan, plan_waves
from stackboot.startup.progress_reporter import ProgressPhase, StartupProgressReporter
from stackboot.startup.service_registry import ServiceNode, ServiceRegistry
from stackboot.startup.stack_definition import BOOTSTRAP_REQUIRES, default_stack
from stackboot.startup.wait_policy import WaitPolicy, WaitResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _gather_or_cancel(aws: Iterable[Awaitable[T]]) -> list[T]:
    """Like ``asyncio.gather`` but cancels the siblings when one task fails."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


@dataclass
class NodeOutcome:
    """How one service ended up after its wave."""

    name: str
    state: HealthState
    mandatory: bool = True
    started: bool = False
    elapsed: float = 0.0
    caveat: str | None = None
    error: StackbootError | None = None
    note: str = ""

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class WaveReport:
    index: int
    outcomes: list[NodeOutcome] = field(default_factory=list)

    @property
    def failures(self) -> list[NodeOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def mandatory_failures(self) -> list[NodeOutcome]:
        return [o for o in self.failures if o.mandatory]


@dataclass
class BringUpReport:
    """Typed result of :meth:`StackOrchestrator.bring_up`."""

    status: StackStatus = field(default_factory=StackStatus)
    plan: StartupPlan | None = None
    waves: list[WaveReport] = field(default_factory=list)
    bootstrap: BootstrapReport | None = None
    validation: ConfigValidation | None = None
    fatal: StackbootError | None = None

    @property
    def ok(self) -> bool:
        return self.fatal is None

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.fatal.kind if self.fatal else None

    @property
    def soft_failures(self) -> list[NodeOutcome]:
        return [o for wave in self.waves for o in wave.failures if not o.mandatory]

    @property
    def started_services(self) -> list[str]:
        return [o.name for wave in self.waves for o in wave.outcomes if o.started]


class StackOrchestrator:
    """Coordinates a full, idempotent bring-up of the stack."""

    def __init__(
        self,
        config: StackConfig,
        registry: ServiceRegistry,
        runtime: ExecutionEnvironmentPort,
        checker: ServiceHealthChecker,
        reconciler: BootstrapReconciler | None = None,
        *,
        bootstrap_requires: Iterable[str] = BOOTSTRAP_REQUIRES,
        clock: Clock | None = None,
        reporter: StartupProgressReporter | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Resolved, immutable stack configuration
            registry: Services to bring up
            runtime: Execution environment used to start services
            checker: Probe runner shared with the monitor
            reconciler: Store bootstrap; None skips bootstrapping
            bootstrap_requires: Services that must be up before bootstrapping
            clock: Clock driving every wait
            reporter: Progress reporter (creates default if not provided)
        """
        self.config = config
        self.registry = registry
        self.runtime = runtime
        self.checker = checker
        self.reconciler = reconciler
        self.bootstrap_requires = (
            [name for name in bootstrap_requires if name in registry]
            if reconciler is not None
            else []
        )
        self.clock = clock or SystemClock()
        self.reporter = reporter or StartupProgressReporter()
        self.monitor = StackMonitor(registry, runtime, checker, clock=self.clock)
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: StackConfig,
        *,
        registry: ServiceRegistry | None = None,
        reporter: StartupProgressReporter | None = None,
        with_bootstrap: bool = True,
    ) -> StackOrchestrator:
        from stackboot.services import (  # noqa: PLC0415
            DockerComposeRuntime,
            PostgresDataStore,
        )

        runtime = DockerComposeRuntime.from_config(config)
        checker = ServiceHealthChecker(runtime, http_timeout=config.http_probe_timeout)
        reconciler = (
            BootstrapReconciler.from_config(PostgresDataStore.from_config(config), config)
            if with_bootstrap
            else None
        )
        return cls(
            config,
            registry or default_stack(config),
            runtime,
            checker,
            reconciler,
            reporter=reporter,
        )

    async def aclose(self) -> None:
        await self.checker.aclose()
        if self.reconciler is not None:
            await self.reconciler.store.close()

    # ------------------------- phases -------------------------

    @staticmethod
    def _configuration_error(validation: ConfigValidation) -> ConfigurationError:
        return ConfigurationError(
            f"Configuration incomplete: {validation.describe()}",
            missing_keys=validation.missing_keys,
            placeholder_keys=validation.placeholder_keys,
        )

    def _check_configuration(self, report: BringUpReport) -> None:
        step = self.reporter.start_step("Required settings")
        validation = self.config.validate_required()
        report.validation = validation
        if not validation.ok:
            error = self._configuration_error(validation)
            self.reporter.fail_step(step, validation.describe(), error)
            raise error
        if validation.missing_optional_keys:
            logger.warning(
                "Optional settings not configured: %s",
                ", ".join(validation.missing_optional_keys),
            )
        self.reporter.complete_step(step, validation.describe())

    async def _verify_prerequisites(self, report: BringUpReport) -> None:
        self.reporter.start_phase(ProgressPhase.VALIDATING_CONFIG)
        self._check_configuration(report)

        step = self.reporter.start_step("Dependency plan")
        report.plan = plan_waves(self.registry.nodes)
        self.reporter.complete_step(step, f"{len(report.plan)} waves")

        step = self.reporter.start_step("Container runtime")
        try:
            await self.runtime.ping()
        except StackbootError as e:
            self.reporter.fail_step(step, e.message, e)
            raise
        self.reporter.complete_step(step, "reachable")

    def _split_plan(self) -> tuple[StartupPlan, StartupPlan]:
        needed = (
            self.registry.dependency_closure(self.bootstrap_requires)
            if self.bootstrap_requires
            else set()
        )
        before = plan_waves(n for n in self.registry if n.name in needed)
        after = plan_waves(
            (n for n in self.registry if n.name not in needed), satisfied=needed
        )
        return before, after

    async def _probe(self, node: ServiceNode) -> ProbeResult:
        try:
            return await self.checker.check(node)
        except RuntimeCommandError as e:
            return ProbeResult(
                node.name,
                HealthState.UNKNOWN,
                timestamp=self.clock.wall_time(),
                message=e.message,
            )

    async def _start(self, node: ServiceNode) -> StackbootError | None:
        try:
            await self.runtime.start(node)
        except RuntimeCommandError as e:
            logger.warning("Start of %s failed: %s", node.name, e)
            return ProbeUnhealthy(node.name, f"start command failed: {e.message}")
        logger.info("Started %s", node.name)
        return None

    async def _wait(self, node: ServiceNode) -> WaitResult:
        policy = WaitPolicy(
            lambda: self._probe(node),
            node.timeout or self.config.startup_timeout,
            node.interval or self.config.poll_interval,
            service_name=node.name,
            clock=self.clock,
        )
        return await policy.run()

    async def _run_wave(
        self, index: int, wave: tuple[ServiceNode, ...], status: StackStatus
    ) -> WaveReport:
        report = WaveReport(index)
        names = ", ".join(node.name for node in wave)
        self.reporter.start_phase(ProgressPhase.STARTING_SERVICES, f"wave {index}: {names}")

        current = await _gather_or_cancel(self._probe(node) for node in wave)
        pending: list[ServiceNode] = []
        for node, result in zip(wave, current, strict=True):
            if result.is_healthy():
                status.update(result)
                report.outcomes.append(
                    NodeOutcome(
                        node.name,
                        HealthState.HEALTHY,
                        node.mandatory,
                        caveat=result.caveat,
                        note="already healthy",
                    )
                )
            else:
                pending.append(node)

        start_errors = await _gather_or_cancel(self._start(node) for node in pending)
        waiting = []
        for node, error in zip(pending, start_errors, strict=True):
            if error is None:
                waiting.append(node)
                continue
            status.update(
                ProbeResult(
                    node.name,
                    HealthState.UNHEALTHY,
                    timestamp=self.clock.wall_time(),
                    message=error.message,
                )
            )
            report.outcomes.append(
                NodeOutcome(node.name, HealthState.UNHEALTHY, node.mandatory, error=error)
            )

        results = await _gather_or_cancel(self._wait(node) for node in waiting)
        for node, result in zip(waiting, results, strict=True):
            status.update(
                result.last_result
                or ProbeResult(node.name, result.state, timestamp=self.clock.wall_time())
            )
            report.outcomes.append(
                NodeOutcome(
                    node.name,
                    result.state,
                    node.mandatory,
                    started=True,
                    elapsed=result.elapsed,
                    caveat=result.caveat,
                    error=result.error,
                )
            )

        order = {node.name: i for i, node in enumerate(wave)}
        report.outcomes.sort(key=lambda o: order[o.name])
        self.reporter.report_wave(report)
        return report

    async def _run_plan(self, plan: StartupPlan, report: BringUpReport) -> None:
        for wave in plan.waves:
            wave_report = await self._run_wave(len(report.waves), wave, report.status)
            report.waves.append(wave_report)
            for outcome in wave_report.failures:
                if not outcome.mandatory:
                    logger.warning(
                        "Optional service %s failed: %s", outcome.name, outcome.error
                    )
            if wave_report.mandatory_failures:
                first = wave_report.mandatory_failures[0]
                logger.error(
                    "Mandatory service %s failed; remaining waves skipped", first.name
                )
                report.fatal = first.error
                return

    async def _bootstrap(self, report: BringUpReport) -> None:
        if self.reconciler is None:
            return
        self.reporter.start_phase(ProgressPhase.BOOTSTRAPPING_STORE)
        step = self.reporter.start_step("Data store bootstrap")
        try:
            report.bootstrap = await self.reconciler.run()
        except StackbootError as e:
            report.bootstrap = self.reconciler.last_report
            self.reporter.fail_step(step, e.message, e)
            raise
        self.reporter.complete_step(
            step, f"{len(report.bootstrap.completed)} steps applied"
        )

    # ------------------------- entry points -------------------------

    async def bring_up(self) -> BringUpReport:
        """Bring the whole stack up.

        Returns:
            BringUpReport. ``fatal`` holds the first fatal error, if any, and
            ``status`` the state of every service touched so far. Services
            already started are left running on failure.
        """
        async with self._lock:
            report = BringUpReport()
            self.reporter.start_startup(f"{len(self.registry)} services")
            try:
                await self._verify_prerequisites(report)
                before, after = self._split_plan()
                await self._run_plan(before, report)
                if report.ok:
                    await self._bootstrap(report)
                    await self._run_plan(after, report)
                elif self.reconciler is not None and report.fatal is not None:
                    self.reporter.skip_step(
                        self.reporter.start_step("Data store bootstrap"),
                        f"{report.fatal.subject or 'a required service'} is not ready",
                    )
            except StackbootError as e:
                logger.error("Bring-up aborted: %s", e)
                report.fatal = e

            self.reporter.report_startup_complete(
                success=report.ok,
                message=str(report.fatal) if report.fatal else "all services ready",
            )
            return report

    async def dry_run(self) -> tuple[BringUpReport, str]:
        """Validate and plan without starting anything; return the report text."""
        report = BringUpReport()
        report.validation = self.config.validate_required()
        if not report.validation.ok:
            report.fatal = self._configuration_error(report.validation)
        try:
            report.plan = plan_waves(self.registry.nodes)
            await self.runtime.ping()
            report.status = await self.monitor.status()
        except StackbootError as e:
            report.fatal = report.fatal or e
        text = self.reporter.create_dry_run_report(self.config, report)
        return report, text

    async def verify_store(self) -> tuple[StackStatus, VerificationReport | None]:
        """Check the services the bootstrap needs, then the store itself.

        Nothing is started and nothing is written. The verification report is
        None when bootstrapping is disabled or a required service is not up.
        """
        status = await self.monitor.status(self.bootstrap_requires)
        if self.reconciler is None or not all(
            result.is_healthy() for result in status.results.values()
        ):
            return status, None
        return status, await self.reconciler.verify()

    def summary(self, report: BringUpReport) -> dict[str, Any]:
        return {
            "ok": report.ok,
            "error_kind": report.error_kind.value if report.error_kind else None,
            "waves": [[o.name for o in w.outcomes] for w in report.waves],
            "soft_failures": [o.name for o in report.soft_failures],
            "status": report.status.to_dict(),
            "progress": self.reporter.get_startup_summary(),
        }
