"""Data store port.

The bootstrap reconciler talks to the relational store only through this
interface: plain statements in, a status or rows out, and a structured
:class:`~stackboot.core.exceptions.DataStoreError` on failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class DataStorePort(ABC):
    """Abstract interface for statements against the shared data store.

    Every method takes the target ``database``; ``None`` means the
    maintenance database the store was configured with.
    """

    @abstractmethod
    async def execute(self, sql: str, *args: Any, database: str | None = None) -> str:
        """Run a statement and return its command status (e.g. ``CREATE ROLE``)."""

    @abstractmethod
    async def fetch(
        self, sql: str, *args: Any, database: str | None = None
    ) -> list[dict[str, Any]]:
        """Run a query and return all rows as dictionaries."""

    @abstractmethod
    async def fetchval(self, sql: str, *args: Any, database: str | None = None) -> Any:
        """Run a query and return the first column of the first row, or None."""

    @abstractmethod
    async def try_advisory_lock(self, key: int) -> bool:
        """Try to take a session-level advisory lock; False if already held."""

    @abstractmethod
    async def advisory_unlock(self, key: int) -> None:
        """Release a lock taken with :meth:`try_advisory_lock`."""

    @abstractmethod
    async def can_connect(self, user: str, password: str, database: str) -> bool:
        """Check that a login with the given credentials succeeds."""

    @abstractmethod
    async def release(self, database: str) -> None:
        """Close any connection held to ``database`` so it can be dropped."""

    @abstractmethod
    async def close(self) -> None:
        """Close every open connection."""
