# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Underlying SQL interface: statement execution over an adapter.

SqlCommon is the narrow surface sessions and processors talk to (exec,
iterate, fetch_one, begin). Two implementations:

- SqlDb: database-level handle. Statements run on the connection bound to
  the current task by connection(), or else on a short-lived connection
  that is committed and released right after the statement.
- Transaction: holds one connection until commit() or rollback().

Usage:
    db = SqlDb("/data/app.db")

    result = await db.exec("UPDATE users SET active = :a", {"a": 1})
    async for row in db.iterate("SELECT * FROM users"):
        ...

    tx = await db.begin()
    try:
        await tx.exec("INSERT INTO users (name) VALUES (:n)", {"n": "x"})
        await tx.commit()
    except Exception:
        await tx.rollback()
        raise
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

from ..errors import InvalidTransactionError
from .adapters import DbAdapter, ExecResult, get_adapter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

# Connection context variable - each async task gets its own connection
_current_conn: ContextVar[Any] = ContextVar("genro_orm_conn", default=None)


class SqlCommon(ABC):
    """Statement execution shared by SqlDb and Transaction."""

    adapter: DbAdapter

    @abstractmethod
    def _using_connection(self) -> Any:
        """Async context manager yielding the connection for one statement."""
        ...

    @abstractmethod
    async def begin(self) -> Transaction:
        """Start a transaction on a dedicated connection."""
        ...

    @property
    def dialect(self) -> str:
        return self.adapter.dialect

    async def exec(self, query: str, params: dict[str, Any] | None = None) -> ExecResult:
        """Execute statement, return affected rows and generated key."""
        async with self._using_connection() as conn:
            return await self.adapter.execute(conn, query, params)

    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute query, return single row."""
        async with self._using_connection() as conn:
            return await self.adapter.fetch_one(conn, query, params)

    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute query, return all rows."""
        async with self._using_connection() as conn:
            return await self.adapter.fetch_all(conn, query, params)

    async def iterate(
        self, query: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Execute query, yield rows one at a time.

        The connection stays in use until the iteration is exhausted.
        """
        async with self._using_connection() as conn:
            async for row in self.adapter.iterate(conn, query, params):
                yield row

    async def execute_script(self, script: str) -> None:
        """Execute multiple statements (for schema creation)."""
        async with self._using_connection() as conn:
            await self.adapter.execute_script(conn, script)


class SqlDb(SqlCommon):
    """Database-level SQL interface with per-task connection isolation.

    Connection model:
    - connection(): Context manager that binds one connection to the current
      task, commits on success, rolls back on exception, releases on exit.
    - Outside connection(), each statement uses its own connection (autocommit).
    - begin(): Returns a Transaction on a dedicated connection.
    - shutdown(): Closes pool (application shutdown only).
    """

    def __init__(self, connection_string: str):
        """Initialize from a connection string (see get_adapter)."""
        self.connection_string = connection_string
        self.adapter: DbAdapter = get_adapter(connection_string)

    @property
    def conn(self) -> Any:
        """Get current connection from context.

        Raises:
            RuntimeError: If no connection is active (not inside connection() context).
        """
        c = _current_conn.get()
        if c is None:
            raise RuntimeError("No active connection. Use 'async with db.connection():'")
        return c

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[SqlDb]:
        """Bind a connection to the current task with commit/rollback on exit.

        Usage:
            async with sql_db.connection():
                await sql_db.exec("INSERT INTO items (id) VALUES (:id)", {"id": 1})
            # COMMIT automatic, ROLLBACK on exception
        """
        conn = await self.adapter.acquire()
        token = _current_conn.set(conn)
        try:
            yield self
            await self.adapter.commit(conn)
        except Exception:
            await self.adapter.rollback(conn)
            raise
        finally:
            _current_conn.reset(token)
            await self.adapter.release(conn)

    @asynccontextmanager
    async def _using_connection(self) -> AsyncIterator[Any]:
        conn = _current_conn.get()
        if conn is not None:
            yield conn
            return

        conn = await self.adapter.acquire()
        try:
            yield conn
            await self.adapter.commit(conn)
        except Exception:
            await self.adapter.rollback(conn)
            raise
        finally:
            await self.adapter.release(conn)

    async def begin(self) -> Transaction:
        """Acquire a dedicated connection and return a Transaction on it."""
        conn = await self.adapter.acquire()
        return Transaction(self.adapter, conn)

    async def shutdown(self) -> None:
        """Close connection pool (application shutdown)."""
        await self.adapter.shutdown()

    def __repr__(self) -> str:
        return f"<SqlDb {self.connection_string!r}>"


class Transaction(SqlCommon):
    """SQL interface bound to one connection until commit() or rollback()."""

    def __init__(self, adapter: DbAdapter, conn: Any):
        self.adapter = adapter
        self.conn = conn
        self.finished = False

    @asynccontextmanager
    async def _using_connection(self) -> AsyncIterator[Any]:
        if self.finished:
            raise InvalidTransactionError("transaction already committed or rolled back")
        yield self.conn

    async def begin(self) -> Transaction:
        raise InvalidTransactionError("cannot start a transaction inside a transaction")

    async def commit(self) -> None:
        """Commit and release the connection. No-op once finished."""
        if self.finished:
            return
        self.finished = True
        try:
            await self.adapter.commit(self.conn)
        finally:
            await self.adapter.release(self.conn)

    async def rollback(self) -> None:
        """Roll back and release the connection. No-op once finished."""
        if self.finished:
            return
        self.finished = True
        try:
            await self.adapter.rollback(self.conn)
        finally:
            await self.adapter.release(self.conn)

    def __repr__(self) -> str:
        state = "finished" if self.finished else "active"
        return f"<Transaction {state}>"


__all__ = ["SqlCommon", "SqlDb", "Transaction", "ExecResult"]
