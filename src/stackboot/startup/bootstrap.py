"""Idempotent bootstrap of the shared PostgreSQL store.

The normal path reconciles the admin role, the analytics database and schema,
grants, default privileges and the logical replication publication. Every step
is safe to repeat, so a run interrupted between steps is resumed by running the
whole sequence again.

:meth:`BootstrapReconciler.repair` is the destructive variant: it drops the
role, database and schema outright and rebuilds them. It terminates every
session bound to those objects and must only run when nothing else is using
the store.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import TYPE_CHECKING

from stackboot.core.clock import Clock, SystemClock
from stackboot.core.exceptions import (
    BootstrapBusyError,
    BootstrapStepError,
    DataStoreError,
)

if TYPE_CHECKING:
    from stackboot.ports.datastore import DataStorePort
    from stackboot.startup.config_schema import StackConfig

logger = logging.getLogger(__name__)

ADMIN_ROLE_ATTRIBUTES = ("LOGIN", "CREATEDB", "CREATEROLE")
GRANTED_OBJECT_KINDS = ("TABLES", "SEQUENCES", "FUNCTIONS")

Q_ROLE_EXISTS = "SELECT 1 FROM pg_roles WHERE rolname = $1"
Q_DATABASE_EXISTS = "SELECT 1 FROM pg_database WHERE datname = $1"
Q_SCHEMA_EXISTS = "SELECT 1 FROM pg_namespace WHERE nspname = $1"
Q_PUBLICATION_EXISTS = "SELECT 1 FROM pg_publication WHERE pubname = $1"
Q_SCHEMA_PRIVILEGE = "SELECT has_schema_privilege($1, $2, 'CREATE')"
Q_STALE_PUBLICATIONS = "SELECT pubname FROM pg_publication WHERE pubname LIKE $1"
Q_STALE_SLOTS = (
    "SELECT slot_name, active FROM pg_replication_slots WHERE slot_name LIKE $1"
)
Q_DATABASE_SLOTS = "SELECT slot_name FROM pg_replication_slots WHERE database = $1"
Q_DROP_SLOT = "SELECT pg_drop_replication_slot($1)"
Q_TERMINATE_ROLE_SESSIONS = (
    "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
    "WHERE usename = $1 AND pid <> pg_backend_pid()"
)
Q_TERMINATE_DATABASE_SESSIONS = (
    "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
    "WHERE datname = $1 AND pid <> pg_backend_pid()"
)


def admin_role_attributes(superuser: bool) -> tuple[str, ...]:  # noqa: FBT001
    """Role options applied to the admin role on every run.

    Options not listed here are left as they are, so an existing superuser
    is only demoted when ``superuser`` is False.
    """
    return (*ADMIN_ROLE_ATTRIBUTES, "SUPERUSER" if superuser else "NOSUPERUSER")


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class StepFailed(Exception):
    """Raised inside a step when a check or action cannot complete."""


StepAction = Callable[["DataStorePort"], Awaitable[None]]
StepCheck = Callable[["DataStorePort"], Awaitable[bool]]
StepReset = Callable[["DataStorePort"], Awaitable[int]]


@dataclass(frozen=True)
class BootstrapStep:
    """One idempotent unit of bootstrap work.

    ``reset`` is the destructive variant used only by repair; it returns the
    number of sessions it terminated. A step without an action only checks
    its postcondition.
    """

    name: str
    action: StepAction | None
    precondition: StepCheck | None = None
    postcondition: StepCheck | None = None
    reset: StepReset | None = None
    requires: str = ""
    description: str = ""


class BootstrapMode(StrEnum):
    NORMAL = "normal"
    REPAIR = "repair"


class StepStatus(StrEnum):
    APPLIED = "applied"
    RESET = "reset"
    FAILED = "failed"


@dataclass
class StepResult:
    name: str
    status: StepStatus
    duration: float = 0.0
    error: str | None = None


@dataclass
class BootstrapReport:
    """What one reconciliation run did."""

    mode: BootstrapMode
    steps: list[StepResult] = field(default_factory=list)
    invalidated_sessions: int = 0

    @property
    def completed(self) -> list[str]:
        return [s.name for s in self.steps if s.status == StepStatus.APPLIED]

    @property
    def ok(self) -> bool:
        return all(s.status != StepStatus.FAILED for s in self.steps)


@dataclass
class CheckResult:
    name: str
    passed: bool
    detail: str = ""


@dataclass
class VerificationReport:
    """Outcome of checking the store without changing it."""

    checks: list[CheckResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.checks) and all(c.passed for c in self.checks)

    @property
    def failed(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.passed]


class StandardBootstrap:
    """Builds the step list for the analytics database the stack needs."""

    def __init__(self, config: StackConfig) -> None:
        self.role = config.admin_role
        self.password = config.postgres_password
        self.owner = config.postgres_user
        self.maintenance_db = config.postgres_db
        self.database = config.analytics_database
        self.schema = config.analytics_schema
        self.publication = config.publication_name
        self.stale_pattern = config.stale_artifact_pattern
        self.attributes = admin_role_attributes(config.admin_superuser)

    def steps(self) -> list[BootstrapStep]:
        return [
            BootstrapStep(
                "admin-role",
                self.ensure_role,
                postcondition=self.role_exists,
                reset=self.drop_role,
                description=f"role {self.role}",
            ),
            BootstrapStep(
                "analytics-database",
                self.ensure_database,
                precondition=self.role_exists,
                postcondition=self.database_exists,
                reset=self.drop_database,
                requires=f"role {self.role}",
                description=f"database {self.database}",
            ),
            BootstrapStep(
                "analytics-schema",
                self.ensure_schema,
                precondition=self.database_exists,
                postcondition=self.schema_exists,
                reset=self.drop_schema,
                requires=f"database {self.database}",
                description=f"schema {self.schema}",
            ),
            BootstrapStep(
                "grants",
                self.grant_privileges,
                precondition=self.schema_exists,
                postcondition=self.role_can_create,
                requires=f"schema {self.schema}",
                description=f"privileges for {self.role}",
            ),
            BootstrapStep(
                "default-privileges",
                self.declare_default_privileges,
                precondition=self.role_can_create,
                requires=f"CREATE on schema {self.schema}",
            ),
            BootstrapStep(
                "publication",
                self.ensure_publication,
                precondition=self.database_exists,
                postcondition=self.publication_exists,
                requires=f"database {self.database}",
                description=f"publication {self.publication}",
            ),
            BootstrapStep(
                "verify-login",
                None,
                postcondition=self.role_can_log_in,
                description=f"{self.role} can connect to {self.database}",
            ),
        ]

    def _scopes(self) -> list[tuple[str, str]]:
        return [
            (self.maintenance_db, "public"),
            (self.database, "public"),
            (self.database, self.schema),
        ]

    # ------------------------- checks -------------------------

    async def role_exists(self, store: DataStorePort) -> bool:
        return bool(await store.fetchval(Q_ROLE_EXISTS, self.role))

    async def database_exists(self, store: DataStorePort) -> bool:
        return bool(await store.fetchval(Q_DATABASE_EXISTS, self.database))

    async def schema_exists(self, store: DataStorePort) -> bool:
        return bool(
            await store.fetchval(Q_SCHEMA_EXISTS, self.schema, database=self.database)
        )

    async def role_can_create(self, store: DataStorePort) -> bool:
        return bool(
            await store.fetchval(
                Q_SCHEMA_PRIVILEGE, self.role, self.schema, database=self.database
            )
        )

    async def publication_exists(self, store: DataStorePort) -> bool:
        return bool(
            await store.fetchval(
                Q_PUBLICATION_EXISTS, self.publication, database=self.database
            )
        )

    async def role_can_log_in(self, store: DataStorePort) -> bool:
        return await store.can_connect(self.role, self.password, self.database)

    # ------------------------- actions -------------------------

    async def ensure_role(self, store: DataStorePort) -> None:
        role = quote_ident(self.role)
        attributes = " ".join(self.attributes)
        if not await self.role_exists(store):
            await store.execute(f"CREATE ROLE {role} WITH {attributes}")
            logger.info("Created role %s", self.role)
        await store.execute(
            f"ALTER ROLE {role} WITH {attributes} PASSWORD {quote_literal(self.password)}"
        )

    async def ensure_database(self, store: DataStorePort) -> None:
        if await self.database_exists(store):
            return
        await store.execute(
            f"CREATE DATABASE {quote_ident(self.database)} OWNER {quote_ident(self.owner)}"
        )
        logger.info("Created database %s", self.database)

    async def ensure_schema(self, store: DataStorePort) -> None:
        await store.execute(
            f"CREATE SCHEMA IF NOT EXISTS {quote_ident(self.schema)} "
            f"AUTHORIZATION {quote_ident(self.owner)}",
            database=self.database,
        )

    async def grant_privileges(self, store: DataStorePort) -> None:
        role = quote_ident(self.role)
        for database in (self.maintenance_db, self.database):
            await store.execute(
                f"GRANT ALL PRIVILEGES ON DATABASE {quote_ident(database)} TO {role}"
            )
        for database, schema in self._scopes():
            await store.execute(
                f"GRANT ALL PRIVILEGES ON SCHEMA {quote_ident(schema)} TO {role}",
                database=database,
            )
            for kind in GRANTED_OBJECT_KINDS:
                await store.execute(
                    f"GRANT ALL PRIVILEGES ON ALL {kind} IN SCHEMA "
                    f"{quote_ident(schema)} TO {role}",
                    database=database,
                )

    async def declare_default_privileges(self, store: DataStorePort) -> None:
        role = quote_ident(self.role)
        for database, schema in self._scopes():
            for kind in GRANTED_OBJECT_KINDS:
                await store.execute(
                    f"ALTER DEFAULT PRIVILEGES IN SCHEMA {quote_ident(schema)} "
                    f"GRANT ALL ON {kind} TO {role}",
                    database=database,
                )

    async def drop_stale_artifacts(self, store: DataStorePort) -> None:
        """Cleanup sub-step run before the publication is created.

        Drops publications matching the stale pattern other than the configured
        one, and inactive replication slots matching it.
        """
        stale = await store.fetch(
            Q_STALE_PUBLICATIONS, self.stale_pattern, database=self.database
        )
        for name in sorted({row["pubname"] for row in stale} - {self.publication}):
            await store.execute(
                f"DROP PUBLICATION IF EXISTS {quote_ident(name)}", database=self.database
            )
            logger.info("Dropped stale publication %s", name)
        for row in await store.fetch(Q_STALE_SLOTS, self.stale_pattern):
            if row["active"]:
                logger.warning(
                    "Replication slot %s is in use; leaving it in place",
                    row["slot_name"],
                )
                continue
            await store.fetchval(Q_DROP_SLOT, row["slot_name"])
            logger.info("Dropped stale replication slot %s", row["slot_name"])

    async def ensure_publication(self, store: DataStorePort) -> None:
        await self.drop_stale_artifacts(store)
        if await self.publication_exists(store):
            logger.debug("Publication %s already present", self.publication)
            return
        await store.execute(
            f"CREATE PUBLICATION {quote_ident(self.publication)} FOR ALL TABLES",
            database=self.database,
        )
        logger.info("Created publication %s", self.publication)

    # ------------------------- destructive resets -------------------------

    async def drop_schema(self, store: DataStorePort) -> int:
        if await self.database_exists(store):
            await store.execute(
                f"DROP SCHEMA IF EXISTS {quote_ident(self.schema)} CASCADE",
                database=self.database,
            )
        return 0

    async def drop_database(self, store: DataStorePort) -> int:
        await store.release(self.database)
        terminated = await store.fetch(Q_TERMINATE_DATABASE_SESSIONS, self.database)
        for row in await store.fetch(Q_DATABASE_SLOTS, self.database):
            await store.fetchval(Q_DROP_SLOT, row["slot_name"])
        await store.execute(f"DROP DATABASE IF EXISTS {quote_ident(self.database)}")
        return len(terminated)

    async def drop_role(self, store: DataStorePort) -> int:
        terminated = await store.fetch(Q_TERMINATE_ROLE_SESSIONS, self.role)
        if await self.role_exists(store):
            role = quote_ident(self.role)
            await store.execute(f"REASSIGN OWNED BY {role} TO {quote_ident(self.owner)}")
            await store.execute(f"DROP OWNED BY {role}")
        await store.execute(f"DROP ROLE IF EXISTS {quote_ident(self.role)}")
        return len(terminated)


class BootstrapReconciler:
    """Runs bootstrap steps in order, one run at a time per store."""

    def __init__(
        self,
        store: DataStorePort,
        steps: list[BootstrapStep],
        *,
        lock_key: int,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.steps = steps
        self.lock_key = lock_key
        self.clock = clock or SystemClock()
        self.last_report: BootstrapReport | None = None
        self._running = asyncio.Lock()

    @classmethod
    def from_config(
        cls, store: DataStorePort, config: StackConfig, *, clock: Clock | None = None
    ) -> BootstrapReconciler:
        return cls(
            store,
            StandardBootstrap(config).steps(),
            lock_key=config.bootstrap_lock_key,
            clock=clock,
        )

    async def run(self) -> BootstrapReport:
        """Apply every step. Safe to call repeatedly."""
        return await self._single_flight(BootstrapMode.NORMAL)

    async def repair(self) -> BootstrapReport:
        """Drop and recreate the bootstrap objects, then apply every step.

        Sessions bound to the dropped role or database are terminated; the
        count is reported in ``invalidated_sessions``.
        """
        return await self._single_flight(BootstrapMode.REPAIR)

    async def verify(self) -> VerificationReport:
        """Evaluate every step's checks without applying anything.

        Takes no lock and only reads catalog state, so it is safe while
        services are using the store. A check that errors counts as failed.
        """
        report = VerificationReport()
        seen: list[StepCheck] = []
        for step in self.steps:
            checks = (
                (step.precondition, step.requires),
                (step.postcondition, step.description),
            )
            for check, label in checks:
                if check is None or check in seen:
                    continue
                seen.append(check)
                name = f"{step.name}: {label}" if label else step.name
                try:
                    passed = await check(self.store)
                except DataStoreError as e:
                    report.checks.append(CheckResult(name, False, e.message))
                    continue
                report.checks.append(CheckResult(name, passed, "" if passed else "not met"))
        logger.info(
            "Bootstrap verification: %d of %d checks passed",
            len(report.checks) - len(report.failed),
            len(report.checks),
        )
        return report

    async def _single_flight(self, mode: BootstrapMode) -> BootstrapReport:
        if self._running.locked():
            raise BootstrapBusyError("this process")
        async with self._running:
            try:
                acquired = await self.store.try_advisory_lock(self.lock_key)
            except DataStoreError as e:
                raise BootstrapStepError(
                    "single-flight-lock", f"cannot reach the data store: {e.message}"
                ) from e
            if not acquired:
                raise BootstrapBusyError()

            report = BootstrapReport(mode)
            self.last_report = report
            logger.info("Bootstrap (%s) started: %d steps", mode.value, len(self.steps))
            try:
                if mode == BootstrapMode.REPAIR:
                    await self._reset_all(report)
                await self._apply_all(report)
            finally:
                try:
                    await self.store.advisory_unlock(self.lock_key)
                except DataStoreError as e:
                    logger.warning("Could not release bootstrap lock: %s", e)
            logger.info("Bootstrap (%s) complete", mode.value)
            return report

    async def _reset_all(self, report: BootstrapReport) -> None:
        for step in reversed(self.steps):
            if step.reset is None:
                continue
            started = self.clock.monotonic()
            try:
                sessions = await step.reset(self.store)
            except DataStoreError as e:
                report.steps.append(
                    StepResult(step.name, StepStatus.FAILED, error=e.message)
                )
                raise BootstrapStepError(
                    f"{step.name}:reset", e.message, completed_steps=report.completed
                ) from e
            report.invalidated_sessions += sessions
            report.steps.append(
                StepResult(step.name, StepStatus.RESET, self.clock.monotonic() - started)
            )
            logger.warning(
                "Reset %s (%d sessions terminated)", step.name, sessions
            )

    async def _apply_all(self, report: BootstrapReport) -> None:
        for step in self.steps:
            started = self.clock.monotonic()
            try:
                await self._apply(step)
            except (StepFailed, DataStoreError) as e:
                reason = e.message if isinstance(e, DataStoreError) else str(e)
                report.steps.append(
                    StepResult(
                        step.name,
                        StepStatus.FAILED,
                        self.clock.monotonic() - started,
                        reason,
                    )
                )
                logger.error("Bootstrap step %s failed: %s", step.name, reason)
                raise BootstrapStepError(
                    step.name, reason, completed_steps=report.completed
                ) from e
            report.steps.append(
                StepResult(step.name, StepStatus.APPLIED, self.clock.monotonic() - started)
            )
            logger.info("Bootstrap step %s applied", step.name)

    async def _apply(self, step: BootstrapStep) -> None:
        if step.precondition is not None and not await step.precondition(self.store):
            msg = f"precondition not met (requires {step.requires or 'earlier steps'})"
            raise StepFailed(msg)
        if step.action is not None:
            await step.action(self.store)
        if step.postcondition is not None and not await step.postcondition(self.store):
            msg = f"postcondition not met: {step.description or step.name}"
            raise StepFailed(msg)
