# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Base adapter class for async database backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a statement executed for its side effects.

    Attributes:
        rows_affected: Row count reported by the driver.
        last_insert_id: Generated key of an INSERT, None when unavailable.
    """

    rows_affected: int
    last_insert_id: Any = None


class DbAdapter(ABC):
    """Abstract base class for async database adapters.

    Provides a unified interface for SQLite and PostgreSQL with:
    - Connection management (acquire, release, shutdown)
    - Transaction control (commit, rollback on connection)
    - Statement execution (execute, fetch_one, fetch_all, iterate)

    Connection model:
    - acquire(): Returns a new connection (from pool or new file handle)
    - release(conn): Returns connection to pool or closes it
    - shutdown(): Closes connection pool (application shutdown only)

    Subclasses must implement the abstract methods and set the placeholder
    attribute for parameter binding (`:name` for SQLite, `%(name)s` for PostgreSQL).
    Statements handed to adapters always use `:name` placeholders.
    """

    placeholder: str = ":name"  # Override in subclass
    dialect: str = ""

    def returning_clause(self, pk_col: str) -> str:
        """Return a RETURNING clause for INSERT if the backend needs one to report keys."""
        return ""

    @abstractmethod
    async def acquire(self) -> Any:
        """Acquire a new connection.

        For pooled adapters: gets connection from pool.
        For file-based adapters: opens new connection.
        """
        ...

    @abstractmethod
    async def release(self, conn: Any) -> None:
        """Release a connection (return to pool or close)."""
        ...

    @abstractmethod
    async def shutdown(self) -> None:
        """Close connection pool (application shutdown)."""
        ...

    # -------------------------------------------------------------------------
    # Connection-bound operations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def execute(
        self, conn: Any, query: str, params: dict[str, Any] | None = None
    ) -> ExecResult:
        """Execute statement on connection, return affected rows and generated key."""
        ...

    @abstractmethod
    async def fetch_one(
        self, conn: Any, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute query on connection, return single row as dict or None."""
        ...

    @abstractmethod
    async def fetch_all(
        self, conn: Any, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute query on connection, return all rows as list of dicts."""
        ...

    @abstractmethod
    def iterate(
        self, conn: Any, query: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Execute query on connection, yield rows one at a time as dicts."""
        ...

    @abstractmethod
    async def execute_script(self, conn: Any, script: str) -> None:
        """Execute multiple statements on connection (for schema creation)."""
        ...

    @abstractmethod
    async def commit(self, conn: Any) -> None:
        """Commit transaction on connection."""
        ...

    @abstractmethod
    async def rollback(self, conn: Any) -> None:
        """Rollback transaction on connection."""
        ...

    # -------------------------------------------------------------------------
    # SQL Helpers
    # -------------------------------------------------------------------------

    def _sql_name(self, name: str) -> str:
        """Return quoted SQL identifier for column/table name."""
        return f'"{name}"'

    def _placeholder(self, name: str) -> str:
        """Return placeholder for named parameter."""
        return self.placeholder.replace("name", name)
