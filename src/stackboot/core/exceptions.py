"""Exception hierarchy for stack bring-up.

Every error names the service or bootstrap step it concerns (``subject``) and
carries a remediation hint, so callers never have to report a bare failure.
Callers branch on ``kind`` rather than on message text.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """Kind of failure, used by callers to decide fatal versus soft handling."""

    CONFIGURATION = "configuration"
    CYCLE = "cycle"
    PROBE_TIMEOUT = "probe_timeout"
    PROBE_UNHEALTHY = "probe_unhealthy"
    BOOTSTRAP_STEP = "bootstrap_step"
    RUNTIME_UNAVAILABLE = "runtime_unavailable"
    RUNTIME_COMMAND = "runtime_command"
    DATA_STORE = "data_store"


class StackbootError(Exception):
    """Base exception for all stack bring-up errors."""

    kind: ErrorKind = ErrorKind.CONFIGURATION
    default_remediation = "Re-run with --verbose and inspect the log output."

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        subject: str | None = None,
        remediation: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.subject = subject
        self.remediation = remediation or self.default_remediation
        self.details = details or {}

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {super().__str__()}"
        return super().__str__()

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "error_code": self.error_code,
            "subject": self.subject,
            "message": self.message,
            "remediation": self.remediation,
            "details": self.details,
        }


# ==============================================================================
# Configuration Exceptions
# ==============================================================================


class ConfigurationError(StackbootError):
    """Raised when required settings are missing or still hold placeholders."""

    kind = ErrorKind.CONFIGURATION
    default_remediation = (
        "Edit the .env file and set every required key to a real value, "
        "then run 'stackboot check-env'."
    )

    def __init__(
        self,
        message: str,
        *,
        missing_keys: list[str] | None = None,
        placeholder_keys: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("error_code", "CONFIG_001")
        kwargs.setdefault("subject", "configuration")
        super().__init__(message, **kwargs)
        self.missing_keys = list(missing_keys or [])
        self.placeholder_keys = list(placeholder_keys or [])
        self.details.setdefault("missing_keys", self.missing_keys)
        self.details.setdefault("placeholder_keys", self.placeholder_keys)


class UnknownServiceError(ConfigurationError):
    """Raised when an operation names a service that is not registered."""

    def __init__(self, service_name: str, known: list[str] | None = None) -> None:
        super().__init__(
            f"Unknown service: {service_name}",
            error_code="CONFIG_003",
            subject=service_name,
            remediation=f"Use one of: {', '.join(known or [])}",
        )
        self.service_name = service_name


# ==============================================================================
# Dependency Graph Exceptions
# ==============================================================================


class CycleError(StackbootError):
    """Raised when the declared dependencies cannot be ordered."""

    kind = ErrorKind.CYCLE
    default_remediation = (
        "Remove one of the listed dependencies so the services form a DAG."
    )

    def __init__(self, unresolved: list[str], **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "GRAPH_001")
        kwargs.setdefault("subject", ", ".join(unresolved))
        super().__init__(
            f"Dependency cycle among services: {', '.join(unresolved)}", **kwargs
        )
        self.unresolved = list(unresolved)


class UnknownDependencyError(CycleError):
    """Raised when a service depends on a name that is not registered."""

    def __init__(self, service_name: str, dependency: str) -> None:
        StackbootError.__init__(
            self,
            f"Service '{service_name}' depends on unknown service '{dependency}'",
            error_code="GRAPH_002",
            subject=service_name,
            remediation=f"Declare '{dependency}' or drop it from depends_on.",
        )
        self.unresolved = [service_name]
        self.dependency = dependency


# ==============================================================================
# Probe Exceptions
# ==============================================================================


class ProbeTimeout(StackbootError):
    """Raised (or reported) when a service did not become healthy in time."""

    kind = ErrorKind.PROBE_TIMEOUT

    def __init__(self, service_name: str, timeout: float, last_state: str) -> None:
        super().__init__(
            f"Service '{service_name}' not healthy after {timeout:g}s "
            f"(last state: {last_state})",
            error_code="PROBE_001",
            subject=service_name,
            remediation=(
                f"Check 'stackboot logs {service_name}'; raise its timeout if it "
                "is merely slow to start."
            ),
            details={"timeout": timeout, "last_state": last_state},
        )
        self.service_name = service_name


class ProbeUnhealthy(StackbootError):
    """Raised (or reported) when a service reports itself unhealthy."""

    kind = ErrorKind.PROBE_UNHEALTHY

    def __init__(
        self,
        service_name: str,
        reason: str | None = None,
        status_code: int | None = None,
    ) -> None:
        message = f"Service '{service_name}' is unhealthy"
        if reason:
            message += f": {reason}"
        super().__init__(
            message,
            error_code="PROBE_002",
            subject=service_name,
            remediation=(
                f"Inspect 'stackboot logs {service_name}' and try "
                f"'stackboot restart {service_name}'."
            ),
            details={"status_code": status_code} if status_code else None,
        )
        self.service_name = service_name
        self.status_code = status_code


# ==============================================================================
# Bootstrap / Data Store Exceptions
# ==============================================================================


class DataStoreError(StackbootError):
    """Structured error returned by the data store for one statement."""

    kind = ErrorKind.DATA_STORE
    default_remediation = (
        "Verify the database container is healthy and POSTGRES_PASSWORD matches."
    )

    def __init__(
        self,
        message: str,
        *,
        sqlstate: str | None = None,
        database: str | None = None,
        statement: str | None = None,
    ) -> None:
        super().__init__(
            message,
            error_code="STORE_001",
            subject=database,
            details={"sqlstate": sqlstate, "statement": statement},
        )
        self.sqlstate = sqlstate
        self.database = database
        self.statement = statement


class BootstrapStepError(StackbootError):
    """Raised when a bootstrap step's precondition, action or postcondition fails."""

    kind = ErrorKind.BOOTSTRAP_STEP
    default_remediation = (
        "Fix the cause and re-run; completed steps are safe to repeat. "
        "Use 'stackboot repair' only when the store state is beyond reconciling."
    )

    def __init__(
        self,
        step_name: str,
        reason: str,
        *,
        completed_steps: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("error_code", "BOOT_001")
        super().__init__(
            f"Bootstrap step '{step_name}' failed: {reason}",
            subject=step_name,
            **kwargs,
        )
        self.step_name = step_name
        self.completed_steps = list(completed_steps or [])
        self.details.setdefault("completed_steps", self.completed_steps)


class BootstrapBusyError(BootstrapStepError):
    """Raised when another bootstrap run already holds the store lock."""

    def __init__(self, holder: str = "another process") -> None:
        super().__init__(
            "single-flight-lock",
            f"bootstrap already running in {holder}",
            error_code="BOOT_002",
            remediation="Wait for the running bootstrap to finish, then retry.",
        )


# ==============================================================================
# Runtime Exceptions
# ==============================================================================


class RuntimeUnavailable(StackbootError):
    """Raised when the container runtime cannot be reached."""

    kind = ErrorKind.RUNTIME_UNAVAILABLE
    default_remediation = (
        "Start Docker (or Docker Desktop) and confirm 'docker info' succeeds."
    )

    def __init__(self, reason: str) -> None:
        super().__init__(
            f"Container runtime unavailable: {reason}",
            error_code="RUNTIME_001",
            subject="docker",
        )


class RuntimeCommandError(StackbootError):
    """Raised when a single runtime command exits non-zero."""

    kind = ErrorKind.RUNTIME_COMMAND

    def __init__(
        self,
        service_name: str,
        args: list[str],
        returncode: int,
        stderr: str = "",
    ) -> None:
        super().__init__(
            f"Command {' '.join(args)!r} for '{service_name}' exited {returncode}",
            error_code="RUNTIME_002",
            subject=service_name,
            remediation=(
                "Check the compose file for this service and run "
                f"'docker compose up -d {service_name}' manually for details."
            ),
            details={"returncode": returncode, "stderr": stderr.strip()[-2000:]},
        )
        self.service_name = service_name
        self.returncode = returncode
