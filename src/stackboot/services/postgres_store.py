"""PostgreSQL data store backed by asyncpg.

One connection per database, opened on first use and kept for the life of
the store. Advisory locks are session-scoped, so they live on the connection
to the maintenance database.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import asyncpg

from stackboot.core.exceptions import DataStoreError
from stackboot.ports.datastore import DataStorePort

if TYPE_CHECKING:
    from stackboot.startup.config_schema import StackConfig

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0


class PostgresDataStore(DataStorePort):
    """Data store port over asyncpg connections."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        user: str,
        password: str,
        maintenance_database: str = "postgres",
        connect_timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.maintenance_database = maintenance_database
        self.connect_timeout = connect_timeout
        self._connections: dict[str, asyncpg.Connection] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: StackConfig) -> PostgresDataStore:
        return cls(
            host=config.postgres_host,
            port=config.postgres_port,
            user=config.postgres_user,
            password=config.postgres_password,
            maintenance_database=config.postgres_db,
        )

    async def _connect(self, database: str, user: str, password: str) -> asyncpg.Connection:
        try:
            return await asyncpg.connect(
                host=self.host,
                port=self.port,
                user=user,
                password=password,
                database=database,
                timeout=self.connect_timeout,
            )
        except asyncpg.PostgresError as e:
            raise DataStoreError(
                f"Cannot connect to database '{database}' as '{user}': {e}",
                sqlstate=getattr(e, "sqlstate", None),
                database=database,
            ) from e
        except (OSError, TimeoutError) as e:
            raise DataStoreError(
                f"Cannot reach {self.host}:{self.port}: {e}", database=database
            ) from e

    async def _connection(self, database: str | None) -> asyncpg.Connection:
        name = database or self.maintenance_database
        async with self._lock:
            conn = self._connections.get(name)
            if conn is None or conn.is_closed():
                logger.debug("Opening connection to %s", name)
                conn = await self._connect(name, self.user, self.password)
                self._connections[name] = conn
            return conn

    async def _call(
        self, method: str, sql: str, args: tuple[Any, ...], database: str | None
    ) -> Any:
        conn = await self._connection(database)
        try:
            return await getattr(conn, method)(sql, *args)
        except asyncpg.PostgresError as e:
            if (getattr(e, "sqlstate", None) or "").startswith("57P"):
                self._connections.pop(database or self.maintenance_database, None)
            raise DataStoreError(
                str(e),
                sqlstate=getattr(e, "sqlstate", None),
                database=database or self.maintenance_database,
                statement=sql,
            ) from e
        except (OSError, asyncpg.InterfaceError) as e:
            self._connections.pop(database or self.maintenance_database, None)
            raise DataStoreError(
                f"Connection lost: {e}",
                database=database or self.maintenance_database,
                statement=sql,
            ) from e

    async def execute(self, sql: str, *args: Any, database: str | None = None) -> str:
        return await self._call("execute", sql, args, database)

    async def fetch(
        self, sql: str, *args: Any, database: str | None = None
    ) -> list[dict[str, Any]]:
        rows = await self._call("fetch", sql, args, database)
        return [dict(row) for row in rows]

    async def fetchval(self, sql: str, *args: Any, database: str | None = None) -> Any:
        return await self._call("fetchval", sql, args, database)

    async def try_advisory_lock(self, key: int) -> bool:
        return bool(await self.fetchval("SELECT pg_try_advisory_lock($1)", key))

    async def advisory_unlock(self, key: int) -> None:
        await self.fetchval("SELECT pg_advisory_unlock($1)", key)

    async def can_connect(self, user: str, password: str, database: str) -> bool:
        try:
            conn = await self._connect(database, user, password)
        except DataStoreError as e:
            logger.debug("Login check for %s@%s failed: %s", user, database, e)
            return False
        try:
            return await conn.fetchval("SELECT current_user") == user
        finally:
            await conn.close()

    async def release(self, database: str) -> None:
        conn = self._connections.pop(database, None)
        if conn is not None and not conn.is_closed():
            await conn.close()

    async def close(self) -> None:
        connections, self._connections = self._connections, {}
        for name, conn in connections.items():
            if not conn.is_closed():
                logger.debug("Closing connection to %s", name)
                await conn.close()
