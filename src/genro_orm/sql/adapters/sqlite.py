# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SQLite async adapter using aiosqlite with per-request connections."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

import aiosqlite

from .base import DbAdapter, ExecResult

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class SqliteAdapter(DbAdapter):
    """SQLite async adapter with per-request connections.

    Uses :name placeholders natively. Each acquire() opens a new connection,
    release() closes it. This ensures request isolation; note that every
    connection to ":memory:" is a separate empty database.

    Type normalization ensures consistent behavior with PostgreSQL:
    - datetime/date parameters are stored as ISO strings
    - ISO datetime strings → datetime objects (for timestamp columns)
    - 0/1 for boolean columns → False/True
    """

    placeholder = ":name"
    dialect = "sqlite"

    # Column name patterns that should be converted from 0/1 to False/True
    _BOOL_PREFIXES = ("is_", "use_", "has_")
    _BOOL_NAMES = frozenset({"active", "enabled"})

    # Column name patterns for timestamp columns
    _TIMESTAMP_SUFFIXES = ("_at", "_time")
    _TIMESTAMP_NAMES = frozenset({"created", "updated", "timestamp", "expires"})

    def __init__(self, db_path: str):
        self.db_path = db_path or ":memory:"

    def _adapt_params(self, params: dict[str, Any] | None) -> dict[str, Any]:
        """Convert datetime/date values to ISO strings (no implicit sqlite3 adapters)."""
        if not params:
            return {}
        adapted = {}
        for key, value in params.items():
            if isinstance(value, datetime):
                value = value.isoformat(sep=" ")
            elif isinstance(value, date):
                value = value.isoformat()
            adapted[key] = value
        return adapted

    def _normalize_row(self, row: dict[str, Any]) -> dict[str, Any]:
        """Normalize SQLite values to match PostgreSQL behavior."""
        for key, value in row.items():
            if value is None:
                continue

            if isinstance(value, str) and (
                key.endswith(self._TIMESTAMP_SUFFIXES) or key in self._TIMESTAMP_NAMES
            ):
                row[key] = self._parse_datetime(value)

            elif value in (0, 1) and not isinstance(value, float):
                if key.startswith(self._BOOL_PREFIXES) or key in self._BOOL_NAMES:
                    row[key] = bool(value)

        return row

    def _parse_datetime(self, value: str) -> datetime | str:
        """Parse ISO datetime string to datetime object, leave other strings alone."""
        if "T" not in value and " " not in value:
            return value
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value

    async def acquire(self) -> aiosqlite.Connection:
        """Open new connection for request."""
        return await aiosqlite.connect(self.db_path)

    async def release(self, conn: aiosqlite.Connection) -> None:
        """Close connection."""
        await conn.close()

    async def shutdown(self) -> None:
        """No-op for SQLite (no pool to close)."""
        pass

    async def commit(self, conn: aiosqlite.Connection) -> None:
        """Commit transaction on connection."""
        await conn.commit()

    async def rollback(self, conn: aiosqlite.Connection) -> None:
        """Rollback transaction on connection."""
        await conn.rollback()

    async def execute(
        self, conn: aiosqlite.Connection, query: str, params: dict[str, Any] | None = None
    ) -> ExecResult:
        """Execute statement, return affected row count and lastrowid."""
        async with conn.execute(query, self._adapt_params(params)) as cursor:
            # rowcount is -1 for statements that change no rows (DDL, empty SQL)
            return ExecResult(max(cursor.rowcount, 0), cursor.lastrowid)

    async def fetch_one(
        self, conn: aiosqlite.Connection, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute query, return single row as dict or None."""
        async with conn.execute(query, self._adapt_params(params)) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            cols = [c[0] for c in cursor.description]
            return self._normalize_row(dict(zip(cols, row, strict=True)))

    async def fetch_all(
        self, conn: aiosqlite.Connection, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute query, return all rows as list of dicts."""
        async with conn.execute(query, self._adapt_params(params)) as cursor:
            rows = await cursor.fetchall()
            cols = [c[0] for c in cursor.description or ()]
            return [self._normalize_row(dict(zip(cols, row, strict=True))) for row in rows]

    async def iterate(
        self, conn: aiosqlite.Connection, query: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Execute query, yield rows as dicts while the cursor advances."""
        async with conn.execute(query, self._adapt_params(params)) as cursor:
            cols = [c[0] for c in cursor.description or ()]
            async for row in cursor:
                yield self._normalize_row(dict(zip(cols, row, strict=True)))

    async def execute_script(self, conn: aiosqlite.Connection, script: str) -> None:
        """Execute multiple statements (for schema creation)."""
        await conn.executescript(script)
