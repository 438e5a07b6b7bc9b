"""Fake PostgreSQL store for bootstrap tests.

Models just enough catalog state (roles, databases, schemas, grants, default
privileges, publications, replication slots and sessions) to check that
bootstrap statements converge. Queries are matched against the constants in
:mod:`stackboot.startup.bootstrap`; DDL is parsed by its leading keywords.
Errors mirror the SQLSTATEs PostgreSQL would return.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
import re
from typing import Any

from stackboot.core.exceptions import DataStoreError
from stackboot.ports.datastore import DataStorePort
from stackboot.startup import bootstrap as q

CLUSTER = "*cluster*"
MAINTENANCE_DB = "postgres"

_IDENT = re.compile(r'"((?:[^"]|"")*)"')
_PASSWORD = re.compile(r"PASSWORD '((?:[^']|'')*)'")
_KIND = re.compile(r"\b(TABLES|SEQUENCES|FUNCTIONS)\b")


def _idents(sql: str) -> list[str]:
    return [m.replace('""', '"') for m in _IDENT.findall(sql)]


def _like(pattern: str, value: str) -> bool:
    regex = "".join(
        ".*" if ch == "%" else "." if ch == "_" else re.escape(ch) for ch in pattern
    )
    return re.fullmatch(regex, value) is not None


def _attributes(sql: str, current: frozenset[str] = frozenset()) -> frozenset[str]:
    """Apply the role options of a CREATE/ALTER ROLE to ``current``.

    Like PostgreSQL, ``NOFOO`` clears ``FOO`` and unlisted options are kept.
    """
    attributes = set(current)
    for token in sql.split(" WITH ", 1)[1].split():
        if token == "PASSWORD":
            break
        if token.startswith("NO"):
            attributes.discard(token[2:])
        else:
            attributes.add(token)
    return frozenset(attributes)


@dataclass
class Role:
    attributes: frozenset[str]
    password: str | None = None


@dataclass
class Slot:
    database: str
    active: bool = False


@dataclass
class CatalogState:
    roles: dict[str, Role] = field(
        default_factory=lambda: {
            "postgres": Role(frozenset({"SUPERUSER", "LOGIN"}), "postgres-password")
        }
    )
    databases: dict[str, str] = field(default_factory=lambda: {MAINTENANCE_DB: "postgres"})
    schemas: dict[str, set[str]] = field(
        default_factory=lambda: {MAINTENANCE_DB: {"public"}}
    )
    # (database or CLUSTER, object kind, object name, role)
    grants: set[tuple[str, str, str, str]] = field(default_factory=set)
    # (database, schema, object kind, role)
    default_privileges: set[tuple[str, str, str, str]] = field(default_factory=set)
    publications: dict[str, set[str]] = field(
        default_factory=lambda: {MAINTENANCE_DB: set()}
    )
    slots: dict[str, Slot] = field(default_factory=dict)
    # pid -> (user, database)
    sessions: dict[int, tuple[str, str]] = field(default_factory=dict)


class FakeDataStore(DataStorePort):
    """In-memory stand-in for :class:`PostgresDataStore`."""

    def __init__(self, state: CatalogState | None = None) -> None:
        self.state = state or CatalogState()
        self.statements: list[tuple[str, str]] = []
        self.fail_on: dict[str, DataStoreError] = {}
        self.held_locks: set[int] = set()
        self.lock_calls: list[int] = []
        self.terminated: list[int] = []
        self.released: list[str] = []
        self.login_attempts: list[tuple[str, str]] = []
        self.closed = False

    # ------------------------- helpers -------------------------

    def snapshot(self) -> dict[str, Any]:
        """Comparable copy of the catalog, without sessions."""
        s = self.state
        return {
            "roles": {
                name: (sorted(role.attributes), role.password)
                for name, role in sorted(s.roles.items())
            },
            "databases": dict(sorted(s.databases.items())),
            "schemas": {db: sorted(names) for db, names in sorted(s.schemas.items())},
            "grants": sorted(s.grants),
            "default_privileges": sorted(s.default_privileges),
            "publications": {
                db: sorted(names) for db, names in sorted(s.publications.items())
            },
            "slots": {
                name: (slot.database, slot.active) for name, slot in sorted(s.slots.items())
            },
        }

    def grants_for(self, role: str) -> set[tuple[str, str, str]]:
        return {(scope, kind, obj) for scope, kind, obj, r in self.state.grants if r == role}

    def copy_state(self) -> CatalogState:
        return copy.deepcopy(self.state)

    def _db(self, database: str | None) -> str:
        db = database or MAINTENANCE_DB
        if db not in self.state.databases:
            msg = f'database "{db}" does not exist'
            raise DataStoreError(msg, sqlstate="3D000", database=db)
        return db

    def _check_failure(self, sql: str) -> None:
        for prefix, error in self.fail_on.items():
            if sql.startswith(prefix):
                raise error

    def _require_role(self, name: str, db: str) -> None:
        if name not in self.state.roles:
            msg = f'role "{name}" does not exist'
            raise DataStoreError(msg, sqlstate="42704", database=db)

    def _require_schema(self, schema: str, db: str) -> None:
        if schema not in self.state.schemas[db]:
            msg = f'schema "{schema}" does not exist'
            raise DataStoreError(msg, sqlstate="3F000", database=db)

    def _terminate(self, match: Any) -> list[dict[str, Any]]:
        pids = [pid for pid, session in self.state.sessions.items() if match(session)]
        for pid in pids:
            _, database = self.state.sessions.pop(pid)
            self.terminated.append(pid)
            # A terminated walsender releases its slots.
            for slot in self.state.slots.values():
                if slot.database == database and not any(
                    d == database for _, d in self.state.sessions.values()
                ):
                    slot.active = False
        return [{"pg_terminate_backend": True} for _ in pids]

    # ------------------------- DataStorePort -------------------------

    async def execute(self, sql: str, *args: Any, database: str | None = None) -> str:
        await asyncio.sleep(0)
        db = self._db(database)
        self.statements.append((db, sql))
        self._check_failure(sql)
        s = self.state
        names = _idents(sql)

        if sql.startswith("CREATE ROLE "):
            if names[0] in s.roles:
                msg = f'role "{names[0]}" already exists'
                raise DataStoreError(msg, sqlstate="42710", database=db)
            s.roles[names[0]] = Role(_attributes(sql))
            return "CREATE ROLE"

        if sql.startswith("ALTER ROLE "):
            self._require_role(names[0], db)
            password = _PASSWORD.search(sql)
            role = s.roles[names[0]]
            role.attributes = _attributes(sql, role.attributes)
            if password:
                role.password = password.group(1).replace("''", "'")
            return "ALTER ROLE"

        if sql.startswith("CREATE DATABASE "):
            if names[0] in s.databases:
                msg = f'database "{names[0]}" already exists'
                raise DataStoreError(msg, sqlstate="42P04", database=db)
            self._require_role(names[1], db)
            s.databases[names[0]] = names[1]
            s.schemas[names[0]] = {"public"}
            s.publications[names[0]] = set()
            return "CREATE DATABASE"

        if sql.startswith("DROP DATABASE IF EXISTS "):
            target = names[0]
            if target not in s.databases:
                return "DROP DATABASE"
            if any(d == target for _, d in s.sessions.values()) or any(
                slot.database == target and slot.active for slot in s.slots.values()
            ):
                msg = f'database "{target}" is being accessed by other users'
                raise DataStoreError(msg, sqlstate="55006", database=db)
            if any(slot.database == target for slot in s.slots.values()):
                msg = f'database "{target}" is used by a logical replication slot'
                raise DataStoreError(msg, sqlstate="55006", database=db)
            del s.databases[target]
            del s.schemas[target]
            del s.publications[target]
            s.grants = {
                g for g in s.grants
                if g[0] != target and not (g[0] == CLUSTER and g[2] == target)
            }
            s.default_privileges = {d for d in s.default_privileges if d[0] != target}
            return "DROP DATABASE"

        if sql.startswith("CREATE SCHEMA IF NOT EXISTS "):
            self._require_role(names[1], db)
            s.schemas[db].add(names[0])
            return "CREATE SCHEMA"

        if sql.startswith("DROP SCHEMA IF EXISTS "):
            s.schemas[db].discard(names[0])
            s.grants = {
                g for g in s.grants if not (g[0] == db and g[2] == names[0])
            }
            s.default_privileges = {
                d for d in s.default_privileges if not (d[0] == db and d[1] == names[0])
            }
            return "DROP SCHEMA"

        if sql.startswith("GRANT ALL PRIVILEGES ON DATABASE "):
            target, role = names
            self._require_role(role, db)
            self._db(target)
            s.grants.add((CLUSTER, "DATABASE", target, role))
            return "GRANT"

        if sql.startswith("GRANT ALL PRIVILEGES ON SCHEMA "):
            schema, role = names
            self._require_role(role, db)
            self._require_schema(schema, db)
            s.grants.add((db, "SCHEMA", schema, role))
            return "GRANT"

        if sql.startswith("GRANT ALL PRIVILEGES ON ALL "):
            schema, role = names
            self._require_role(role, db)
            self._require_schema(schema, db)
            kind = _KIND.search(sql).group(1)  # type: ignore[union-attr]
            s.grants.add((db, kind, schema, role))
            return "GRANT"

        if sql.startswith("ALTER DEFAULT PRIVILEGES IN SCHEMA "):
            schema, role = names
            self._require_role(role, db)
            self._require_schema(schema, db)
            kind = _KIND.search(sql).group(1)  # type: ignore[union-attr]
            s.default_privileges.add((db, schema, kind, role))
            return "ALTER DEFAULT PRIVILEGES"

        if sql.startswith("DROP PUBLICATION IF EXISTS "):
            s.publications[db].discard(names[0])
            return "DROP PUBLICATION"

        if sql.startswith("CREATE PUBLICATION "):
            if names[0] in s.publications[db]:
                msg = f'publication "{names[0]}" already exists'
                raise DataStoreError(msg, sqlstate="42710", database=db)
            s.publications[db].add(names[0])
            return "CREATE PUBLICATION"

        if sql.startswith("REASSIGN OWNED BY "):
            old, new = names
            self._require_role(old, db)
            self._require_role(new, db)
            for name, owner in list(s.databases.items()):
                if owner == old:
                    s.databases[name] = new
            return "REASSIGN OWNED"

        if sql.startswith("DROP OWNED BY "):
            role = names[0]
            self._require_role(role, db)
            s.grants = {
                g for g in s.grants if not (g[3] == role and g[0] in {db, CLUSTER})
            }
            s.default_privileges = {
                d for d in s.default_privileges if not (d[3] == role and d[0] == db)
            }
            return "DROP OWNED"

        if sql.startswith("DROP ROLE IF EXISTS "):
            role = names[0]
            if role not in s.roles:
                return "DROP ROLE"
            if any(g[3] == role for g in s.grants) or any(
                d[3] == role for d in s.default_privileges
            ):
                msg = f'role "{role}" cannot be dropped because some objects depend on it'
                raise DataStoreError(msg, sqlstate="2BP01", database=db)
            if any(user == role for user, _ in s.sessions.values()):
                msg = f'role "{role}" is still connected'
                raise DataStoreError(msg, sqlstate="55006", database=db)
            del s.roles[role]
            return "DROP ROLE"

        msg = f"unsupported statement: {sql}"
        raise ValueError(msg)

    async def fetch(
        self, sql: str, *args: Any, database: str | None = None
    ) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        db = self._db(database)
        self.statements.append((db, sql))
        self._check_failure(sql)
        s = self.state

        if sql == q.Q_STALE_PUBLICATIONS:
            return [{"pubname": p} for p in sorted(s.publications[db]) if _like(args[0], p)]
        if sql == q.Q_STALE_SLOTS:
            return [
                {"slot_name": name, "active": slot.active}
                for name, slot in sorted(s.slots.items())
                if _like(args[0], name)
            ]
        if sql == q.Q_DATABASE_SLOTS:
            return [
                {"slot_name": name}
                for name, slot in sorted(s.slots.items())
                if slot.database == args[0]
            ]
        if sql == q.Q_TERMINATE_ROLE_SESSIONS:
            return self._terminate(lambda session: session[0] == args[0])
        if sql == q.Q_TERMINATE_DATABASE_SESSIONS:
            return self._terminate(lambda session: session[1] == args[0])

        msg = f"unsupported query: {sql}"
        raise ValueError(msg)

    async def fetchval(self, sql: str, *args: Any, database: str | None = None) -> Any:
        await asyncio.sleep(0)
        db = self._db(database)
        self.statements.append((db, sql))
        self._check_failure(sql)
        s = self.state

        if sql == q.Q_ROLE_EXISTS:
            return 1 if args[0] in s.roles else None
        if sql == q.Q_DATABASE_EXISTS:
            return 1 if args[0] in s.databases else None
        if sql == q.Q_SCHEMA_EXISTS:
            return 1 if args[0] in s.schemas[db] else None
        if sql == q.Q_PUBLICATION_EXISTS:
            return 1 if args[0] in s.publications[db] else None
        if sql == q.Q_SCHEMA_PRIVILEGE:
            role, schema = args
            self._require_role(role, db)
            self._require_schema(schema, db)
            return (db, "SCHEMA", schema, role) in s.grants
        if sql == q.Q_DROP_SLOT:
            slot = s.slots.get(args[0])
            if slot is None:
                msg = f'replication slot "{args[0]}" does not exist'
                raise DataStoreError(msg, sqlstate="42704", database=db)
            if slot.active:
                msg = f'replication slot "{args[0]}" is active'
                raise DataStoreError(msg, sqlstate="55006", database=db)
            del s.slots[args[0]]
            return None

        msg = f"unsupported query: {sql}"
        raise ValueError(msg)

    async def try_advisory_lock(self, key: int) -> bool:
        await asyncio.sleep(0)
        self.lock_calls.append(key)
        if key in self.held_locks:
            return False
        self.held_locks.add(key)
        return True

    async def advisory_unlock(self, key: int) -> None:
        await asyncio.sleep(0)
        self.held_locks.discard(key)

    async def can_connect(self, user: str, password: str, database: str) -> bool:
        await asyncio.sleep(0)
        self.login_attempts.append((user, database))
        role = self.state.roles.get(user)
        return (
            role is not None
            and "LOGIN" in role.attributes
            and role.password == password
            and database in self.state.databases
        )

    async def release(self, database: str) -> None:
        self.released.append(database)

    async def close(self) -> None:
        self.closed = True
