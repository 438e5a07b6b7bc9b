"""Bring-up progress reporter.

Writes phase, step and per-wave feedback to a text stream while the stack
comes up.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
import logging
import sys
import time
from typing import TYPE_CHECKING, Any, TextIO

from stackboot.startup.health_checks import HealthState

if TYPE_CHECKING:
    from stackboot.startup.bootstrap import BootstrapReport
    from stackboot.startup.config_schema import StackConfig
    from stackboot.startup.orchestrator import BringUpReport, WaveReport

logger = logging.getLogger(__name__)

STATE_SYMBOLS = {
    HealthState.HEALTHY: "✅",
    HealthState.STARTING: "⏳",
    HealthState.UNHEALTHY: "❌",
    HealthState.STOPPED: "⛔",
    HealthState.NOT_FOUND: "❓",
    HealthState.UNKNOWN: "❓",
}


class ProgressPhase(StrEnum):
    """Bring-up phases."""

    INITIALIZING = "initializing"
    VALIDATING_CONFIG = "validating_config"
    BOOTSTRAPPING_STORE = "bootstrapping_store"
    STARTING_SERVICES = "starting_services"
    READY = "ready"
    FAILED = "failed"


@dataclass
class ProgressStep:
    """Individual progress step."""

    name: str
    phase: ProgressPhase
    status: str = "pending"  # pending, running, completed, failed, skipped
    message: str = ""
    start_time: float | None = None
    end_time: float | None = None
    error: Exception | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time) * 1000
        return 0.0

    def start(self) -> None:
        self.status = "running"
        self.start_time = time.time()

    def finish(self, status: str, message: str = "", error: Exception | None = None) -> None:
        self.status = status
        self.end_time = time.time()
        if message:
            self.message = message
        self.error = error


class StartupProgressReporter:
    """Reports bring-up progress with clear status messages."""

    def __init__(
        self, output: TextIO | None = None, *, enable_colors: bool = True
    ) -> None:
        """Initialize progress reporter.

        Args:
            output: Output stream (defaults to stdout)
            enable_colors: Whether to use colored output
        """
        self.output = output or sys.stdout
        self.enable_colors = (
            enable_colors and hasattr(self.output, "isatty") and self.output.isatty()
        )
        self.steps: list[ProgressStep] = []
        self.current_phase = ProgressPhase.INITIALIZING
        self.start_time = time.time()
        self.end_time: float | None = None

        names = ["reset", "bold", "green", "yellow", "red", "cyan", "gray"]
        codes = ["\033[0m", "\033[1m", "\033[32m", "\033[33m", "\033[31m", "\033[36m", "\033[90m"]
        self.colors = dict(zip(names, codes if self.enable_colors else [""] * len(names), strict=True))

    def _colorize(self, text: str, color: str) -> str:
        return f"{self.colors[color]}{text}{self.colors['reset']}"

    def _print(self, message: str) -> None:
        print(message, file=self.output, flush=True)

    def start_startup(self, description: str = "") -> None:
        self.start_time = time.time()
        header = self._colorize("🚀 Bringing up stack", "bold")
        if description:
            header += f" {self._colorize(description, 'cyan')}"
        self._print(f"\n{header}")
        self._print(self._colorize("=" * 60, "gray"))

    def start_phase(self, phase: ProgressPhase, message: str = "") -> None:
        self.current_phase = phase
        phase_name = phase.value.replace("_", " ").title()
        line = f"▶ {self._colorize(phase_name, 'bold')}"
        if message:
            line += f": {message}"
        self._print(f"\n{line}")
        logger.info("Phase: %s %s", phase_name, message)

    def start_step(self, name: str, message: str = "") -> ProgressStep:
        step = ProgressStep(name=name, phase=self.current_phase)
        self.steps.append(step)
        step.start()
        line = f"  🔄 {name}"
        if message:
            line += f": {self._colorize(message, 'gray')}"
        self._print(line)
        return step

    def complete_step(self, step: ProgressStep, message: str = "") -> None:
        step.finish("completed", message)
        line = f"  ✅ {self._colorize(step.name, 'green')}"
        if message:
            line += f": {message}"
        if step.duration_ms > 0:
            line += f" {self._colorize(f'({step.duration_ms:.0f}ms)', 'gray')}"
        self._print(line)

    def fail_step(
        self, step: ProgressStep, message: str, error: Exception | None = None
    ) -> None:
        step.finish("failed", message, error)
        self._print(
            f"  ❌ {self._colorize(step.name, 'red')}: {self._colorize(message, 'red')}"
        )
        remediation = getattr(error, "remediation", None)
        if remediation:
            self._print(f"     {self._colorize('Fix:', 'yellow')} {remediation}")

    def skip_step(self, step: ProgressStep, reason: str) -> None:
        step.finish("skipped", reason)
        self._print(
            f"  ⏭️  {self._colorize(step.name, 'yellow')}: {self._colorize(reason, 'gray')}"
        )

    def report_wave(self, wave: WaveReport) -> None:
        """Print one line per service, then the wave's failures once."""
        for outcome in wave.outcomes:
            symbol = STATE_SYMBOLS.get(outcome.state, "❓")
            line = f"  {symbol} {outcome.name}: {outcome.state.value}"
            if outcome.note:
                line += f" ({outcome.note})"
            elif outcome.started:
                line += f" after {outcome.elapsed:.0f}s"
            if outcome.caveat:
                line += f" {self._colorize('[caveat: ' + outcome.caveat + ']', 'yellow')}"
            self._print(line)

        for outcome in wave.failures:
            label = "required" if outcome.mandatory else "optional"
            color = "red" if outcome.mandatory else "yellow"
            self._print(
                f"    {self._colorize(f'{label} service failed:', color)} {outcome.error}"
            )
            remediation = getattr(outcome.error, "remediation", "")
            if remediation:
                self._print(f"      {self._colorize('Fix:', 'yellow')} {remediation}")

    def report_bootstrap(self, report: BootstrapReport) -> None:
        self.start_phase(ProgressPhase.BOOTSTRAPPING_STORE, f"{report.mode.value} mode")
        for step in report.steps:
            color = "red" if step.error else "green"
            line = f"  • {self._colorize(step.name, color)}: {step.status.value}"
            if step.error:
                line += f" ({step.error})"
            self._print(line)
        if report.invalidated_sessions:
            self._print(
                self._colorize(
                    f"  {report.invalidated_sessions} session(s) were terminated", "yellow"
                )
            )

    def report_startup_complete(self, *, success: bool = True, message: str = "") -> None:
        self.end_time = time.time()
        total_ms = (self.end_time - self.start_time) * 1000
        if success:
            self.current_phase = ProgressPhase.READY
            line = f"✅ {self._colorize('Stack Ready', 'green')} ({total_ms:.0f}ms)"
        else:
            self.current_phase = ProgressPhase.FAILED
            line = f"❌ {self._colorize('Bring-up Failed', 'red')} ({total_ms:.0f}ms)"
        if message:
            line += f": {message}"
        self._print(f"\n{line}")
        self._print(f"{self._colorize('=' * 60, 'gray')}\n")

    def get_startup_summary(self) -> dict[str, Any]:
        by_status: dict[str, int] = {}
        for step in self.steps:
            by_status[step.status] = by_status.get(step.status, 0) + 1
        total = (self.end_time - self.start_time) * 1000 if self.end_time else 0.0
        return {
            "total_duration_ms": total,
            "total_steps": len(self.steps),
            "completed_steps": by_status.get("completed", 0),
            "failed_steps": by_status.get("failed", 0),
            "skipped_steps": by_status.get("skipped", 0),
            "final_phase": self.current_phase.value,
            "success": not by_status.get("failed")
            and self.current_phase == ProgressPhase.READY,
        }

    def create_dry_run_report(self, config: StackConfig, report: BringUpReport) -> str:
        """Describe what a bring-up would do, without doing it."""
        lines = ["🔍 Stack Bring-up Dry-Run Report", "=" * 50, "", "📋 Configuration:"]
        lines.extend(f"  • {key}: {value}" for key, value in config.summary().items())
        lines.append("")

        validation = report.validation
        if validation is not None and not validation.ok:
            lines.append(f"❌ Required settings: {validation.describe()}")
        else:
            lines.append("✅ Required settings: all set")
        if validation is not None and validation.missing_optional_keys:
            lines.append(
                f"⚠️  Optional settings not set: {', '.join(validation.missing_optional_keys)}"
            )

        if report.plan is not None:
            lines.extend(("", "🗺️  Startup waves:"))
            for index, names in enumerate(report.plan.names):
                lines.append(f"  {index}. {', '.join(names)}")

        if report.status.results:
            lines.extend(("", "🩺 Current state:"))
            for name, result in report.status.results.items():
                symbol = STATE_SYMBOLS.get(result.state, "❓")
                lines.append(f"  {symbol} {name}: {result.message}")

        lines.append("")
        if report.fatal is not None:
            lines.append(f"🚨 BRING-UP WOULD FAIL: {report.fatal}")
            lines.append(f"   Fix: {report.fatal.remediation}")
        else:
            lines.append("✅ BRING-UP SHOULD PROCEED")
        return "\n".join(lines)
