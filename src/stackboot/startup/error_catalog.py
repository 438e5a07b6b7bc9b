"""Bring-up error catalog.

Operator-facing explanations for every error code raised by stackboot, with
common causes and step-by-step fixes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from stackboot.core.exceptions import StackbootError


class ErrorCategory(StrEnum):
    """Error categories for organization."""

    CONFIGURATION = "configuration"
    DEPENDENCIES = "dependencies"
    READINESS = "readiness"
    DATA_STORE = "data_store"
    RUNTIME = "runtime"


class ErrorSeverity(StrEnum):
    """Error severity levels."""

    CRITICAL = "critical"  # Aborts bring-up
    HIGH = "high"  # Aborts bring-up when the service is required
    MEDIUM = "medium"  # One service affected


@dataclass
class ErrorSolution:
    """Suggested solution for an error."""

    description: str
    steps: list[str]


@dataclass
class StartupErrorInfo:
    """Catalog entry for one error code."""

    code: str
    title: str
    description: str
    category: ErrorCategory
    severity: ErrorSeverity
    solutions: list[ErrorSolution]
    common_causes: list[str]
    related_errors: list[str] = field(default_factory=list)


class StartupErrorCatalog:
    """Catalog of bring-up errors with solutions."""

    def __init__(self) -> None:
        self.errors: dict[str, StartupErrorInfo] = self._build_error_catalog()

    def _build_error_catalog(self) -> dict[str, StartupErrorInfo]:
        entries = [
            # Configuration Errors
            StartupErrorInfo(
                code="CONFIG_001",
                title="Required Setting Missing or Placeholder",
                description="A required key in .env is empty or still holds an example value.",
                category=ErrorCategory.CONFIGURATION,
                severity=ErrorSeverity.CRITICAL,
                common_causes=[
                    ".env copied from .env.example without editing",
                    "Key renamed or misspelled",
                    "Value left as 'your-value-here' or 'change-me'",
                ],
                solutions=[
                    ErrorSolution(
                        description="Fill in the listed keys",
                        steps=[
                            "Run 'stackboot check-env' to list missing and placeholder keys",
                            "Generate secrets (e.g. 'openssl rand -base64 32')",
                            "Write them to .env and re-run 'stackboot up'",
                        ],
                    ),
                ],
                related_errors=["CONFIG_002"],
            ),
            StartupErrorInfo(
                code="CONFIG_002",
                title="Invalid Configuration Value",
                description="A setting has a value of the wrong type or outside its range.",
                category=ErrorCategory.CONFIGURATION,
                severity=ErrorSeverity.CRITICAL,
                common_causes=["Non-numeric port", "Zero or negative poll interval"],
                solutions=[
                    ErrorSolution(
                        description="Fix the reported field",
                        steps=[
                            "Read the field name in the error message",
                            "Correct its value in .env or the environment",
                        ],
                    ),
                ],
                related_errors=["CONFIG_001"],
            ),
            StartupErrorInfo(
                code="CONFIG_003",
                title="Unknown Service",
                description="A command named a service that is not part of the stack.",
                category=ErrorCategory.CONFIGURATION,
                severity=ErrorSeverity.MEDIUM,
                common_causes=["Container name used instead of service name", "Typo"],
                solutions=[
                    ErrorSolution(
                        description="Use a registered service name",
                        steps=["Run 'stackboot plan' to list every service"],
                    ),
                ],
            ),
            StartupErrorInfo(
                code="CONFIG_004",
                title="Duplicate Service",
                description="Two services in the stack definition share a name.",
                category=ErrorCategory.CONFIGURATION,
                severity=ErrorSeverity.CRITICAL,
                common_causes=["Copy-pasted service definition"],
                solutions=[
                    ErrorSolution(
                        description="Rename or remove one definition",
                        steps=["Give every service a unique name"],
                    ),
                ],
            ),
            # Dependency Errors
            StartupErrorInfo(
                code="GRAPH_001",
                title="Dependency Cycle",
                description="The declared dependencies cannot be ordered into waves.",
                category=ErrorCategory.DEPENDENCIES,
                severity=ErrorSeverity.CRITICAL,
                common_causes=["Two services depend on each other"],
                solutions=[
                    ErrorSolution(
                        description="Break the cycle",
                        steps=[
                            "Inspect depends_on for the listed services",
                            "Remove the dependency that is not needed at startup",
                        ],
                    ),
                ],
                related_errors=["GRAPH_002"],
            ),
            StartupErrorInfo(
                code="GRAPH_002",
                title="Unknown Dependency",
                description="A service depends on a name that is not declared.",
                category=ErrorCategory.DEPENDENCIES,
                severity=ErrorSeverity.CRITICAL,
                common_causes=["Dependency removed from the stack", "Typo"],
                solutions=[
                    ErrorSolution(
                        description="Declare or drop the dependency",
                        steps=["Add the missing service or edit depends_on"],
                    ),
                ],
                related_errors=["GRAPH_001"],
            ),
            # Readiness Errors
            StartupErrorInfo(
                code="PROBE_001",
                title="Service Not Ready In Time",
                description="A service did not report healthy before its timeout.",
                category=ErrorCategory.READINESS,
                severity=ErrorSeverity.HIGH,
                common_causes=[
                    "Image still pulling or first-run initialization",
                    "Service waiting on a dependency that is misconfigured",
                    "Timeout too short for this machine",
                ],
                solutions=[
                    ErrorSolution(
                        description="Find out what the service is doing",
                        steps=[
                            "Run 'stackboot logs <service>'",
                            "Re-run 'stackboot up'; healthy services are not restarted",
                            "Raise HEALTH_CHECK_TIMEOUT if the service is merely slow",
                        ],
                    ),
                ],
                related_errors=["PROBE_002"],
            ),
            StartupErrorInfo(
                code="PROBE_002",
                title="Service Unhealthy",
                description="A service reported itself unhealthy or could not be started.",
                category=ErrorCategory.READINESS,
                severity=ErrorSeverity.HIGH,
                common_causes=[
                    "Wrong credentials in .env",
                    "Database bootstrap incomplete",
                    "Port already in use",
                ],
                solutions=[
                    ErrorSolution(
                        description="Inspect and restart the service",
                        steps=[
                            "Run 'stackboot logs <service>'",
                            "Run 'stackboot restart <service>'",
                        ],
                    ),
                    ErrorSolution(
                        description="Rebuild the database objects",
                        steps=[
                            "Stop services using the database",
                            "Run 'stackboot repair' (destructive)",
                        ],
                    ),
                ],
                related_errors=["PROBE_001", "BOOT_001"],
            ),
            # Data Store Errors
            StartupErrorInfo(
                code="STORE_001",
                title="Data Store Error",
                description="A statement against PostgreSQL failed or the connection dropped.",
                category=ErrorCategory.DATA_STORE,
                severity=ErrorSeverity.CRITICAL,
                common_causes=[
                    "POSTGRES_PASSWORD differs from the password the volume was created with",
                    "Database port not published to the host",
                ],
                solutions=[
                    ErrorSolution(
                        description="Check connectivity",
                        steps=[
                            "Run 'stackboot status' and confirm db is healthy",
                            "Verify POSTGRES_HOST, POSTGRES_PORT and POSTGRES_PASSWORD",
                        ],
                    ),
                ],
                related_errors=["BOOT_001"],
            ),
            StartupErrorInfo(
                code="BOOT_001",
                title="Bootstrap Step Failed",
                description="One data store bootstrap step could not be applied.",
                category=ErrorCategory.DATA_STORE,
                severity=ErrorSeverity.CRITICAL,
                common_causes=[
                    "Objects left half-created by an older tool",
                    "Replication slot in use by a running consumer",
                ],
                solutions=[
                    ErrorSolution(
                        description="Re-run the bootstrap",
                        steps=[
                            "Fix the cause named in the error",
                            "Run 'stackboot up' again; completed steps are safe to repeat",
                        ],
                    ),
                    ErrorSolution(
                        description="Rebuild from scratch",
                        steps=[
                            "Stop every service that uses the analytics database",
                            "Run 'stackboot repair --yes'",
                        ],
                    ),
                ],
                related_errors=["BOOT_002", "STORE_001"],
            ),
            StartupErrorInfo(
                code="BOOT_002",
                title="Bootstrap Already Running",
                description="Another bootstrap holds the data store lock.",
                category=ErrorCategory.DATA_STORE,
                severity=ErrorSeverity.CRITICAL,
                common_causes=["Two 'stackboot up' or 'repair' runs at once"],
                solutions=[
                    ErrorSolution(
                        description="Wait and retry",
                        steps=["Let the other run finish, then run the command again"],
                    ),
                ],
            ),
            # Runtime Errors
            StartupErrorInfo(
                code="RUNTIME_001",
                title="Container Runtime Unavailable",
                description="The docker CLI is missing or the daemon is not reachable.",
                category=ErrorCategory.RUNTIME,
                severity=ErrorSeverity.CRITICAL,
                common_causes=["Docker not running", "User lacks access to the socket"],
                solutions=[
                    ErrorSolution(
                        description="Start Docker",
                        steps=[
                            "Start Docker Desktop or 'systemctl start docker'",
                            "Confirm 'docker info' succeeds",
                        ],
                    ),
                ],
            ),
            StartupErrorInfo(
                code="RUNTIME_002",
                title="Runtime Command Failed",
                description="A docker command for one service exited non-zero.",
                category=ErrorCategory.RUNTIME,
                severity=ErrorSeverity.MEDIUM,
                common_causes=["Compose file error", "Image not available locally"],
                solutions=[
                    ErrorSolution(
                        description="Run the command by hand",
                        steps=["Run 'docker compose up -d <service>' and read its output"],
                    ),
                ],
                related_errors=["RUNTIME_001"],
            ),
        ]
        return {entry.code: entry for entry in entries}

    def get_error_info(self, error_code: str) -> StartupErrorInfo | None:
        return self.errors.get(error_code)

    def find_errors_by_category(self, category: ErrorCategory) -> list[StartupErrorInfo]:
        return [error for error in self.errors.values() if error.category == category]

    def format_error_help(
        self, error_code: str, context: dict[str, str] | None = None
    ) -> str:
        """Format the full help text for an error code."""
        error_info = self.get_error_info(error_code)
        if not error_info:
            return f"Unknown error code: {error_code}"

        lines = [
            f"🚨 {error_info.title} ({error_info.code})",
            "=" * 60,
            "",
            f"📝 Description: {error_info.description}",
            f"📊 Severity: {error_info.severity.value.upper()}",
            "",
        ]
        if error_info.common_causes:
            lines.append("🔍 Common Causes:")
            lines.extend(f"  • {cause}" for cause in error_info.common_causes)
            lines.append("")

        lines.append("💡 Solutions:")
        for i, solution in enumerate(error_info.solutions, 1):
            lines.append(f"\n  {i}. {solution.description}")
            lines.extend(f"     • {step}" for step in solution.steps)

        if context:
            lines.extend(("", "🔧 Context:"))
            lines.extend(f"  • {key}: {value}" for key, value in context.items())

        if error_info.related_errors:
            lines.extend(("", "🔗 Related Errors:"))
            for related_code in error_info.related_errors:
                related = self.get_error_info(related_code)
                if related:
                    lines.append(f"  • {related_code}: {related.title}")

        return "\n".join(lines)

    def help_for(self, error: StackbootError) -> str:
        """Help text for a raised error, with its subject and remediation as context."""
        context = {"remediation": error.remediation}
        if error.subject:
            context = {"subject": error.subject, **context}
        return self.format_error_help(error.error_code or "", context)


error_catalog = StartupErrorCatalog()
