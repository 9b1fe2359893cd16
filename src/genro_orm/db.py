# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Session handle: fluent, copy-on-write access to the callback pipeline.

Every query-shaping method returns a new DB wrapping a cloned
SearchCriteria; the receiver is never modified, so a base session can be
shared and specialized freely. Terminal coroutines build a Scope over the
current state, run the callback registry for the operation kind, and
return the scope's session, which carries error and rows_affected.

Usage:
    db = connect("/data/app.db")

    adults: list[User] = []
    result = await db.where("age >= ?", 18).order("name").find(adults, model=User)
    if result.error:
        ...

    user = User(name="Ada")
    await db.insert(user)             # user.id is filled in
    user.name = "Ada L."
    await db.update(user)
    await db.delete(user)             # removes the row
    await db.unscoped().delete(user)  # stamps deleted_at if User declares it

    async with db.transaction() as tx:
        await tx.insert(User(name="Grace"))
"""

from __future__ import annotations

import copy
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Callable

from .callbacks import CallbackKind, CallbackRegistry, RowQueryResult, RowsQueryResult
from .errors import RecordNotFoundError
from .model import get_model_struct
from .processors import ORDER_BY_PRIMARY_KEY, QUERY_DESTINATION
from .scope import Scope
from .search import SearchCriteria
from .sql import SqlDb, Transaction

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .config import OrmConfig
    from .sql import SqlCommon

logger = logging.getLogger(__name__)

ROW_QUERY_RESULT = "orm:row_query_result"


class LogMode(IntEnum):
    """SQL statement logging of a session."""

    DEFAULT = 1
    SILENT = 2


class DB:
    """Caller-facing session.

    Attributes:
        sql: Underlying SQL interface (SqlDb, or a Transaction after begin()).
        callbacks: Shared CallbackRegistry (never cloned).
        value: Current target record or model (see model()).
        error: Last recorded error, None if the operation succeeded.
        errors: All errors recorded along this derivation chain.
        rows_affected: Row count of the last operation.
        search: Current SearchCriteria.
        now_func: Clock used to stamp created_at/updated_at/deleted_at.
    """

    def __init__(
        self,
        sql: SqlCommon,
        callbacks: CallbackRegistry | None = None,
        log_mode: LogMode = LogMode.DEFAULT,
    ):
        self.sql = sql
        self.callbacks = callbacks if callbacks is not None else CallbackRegistry.with_defaults()
        self.value: Any = None
        self.error: BaseException | None = None
        self.errors: list[BaseException] = []
        self.rows_affected = 0
        self.log_mode = log_mode
        self.logger: logging.Logger = logger
        self.now_func: Callable[[], datetime] = datetime.now
        self.search = SearchCriteria()
        self._values: dict[str, Any] = {}

    @classmethod
    def from_config(cls, config: OrmConfig, callbacks: CallbackRegistry | None = None) -> DB:
        """Build a session from an OrmConfig."""
        return connect(config.db_path, callbacks=callbacks, log_mode=config.log_mode)

    def _clone(self) -> DB:
        db = copy.copy(self)
        db.search = self.search.clone()
        db.errors = list(self.errors)
        db._values = dict(self._values)
        return db

    def new(self) -> DB:
        """Fresh session on the same SQL interface and registry, without criteria."""
        db = self._clone()
        db.search = SearchCriteria()
        db.value = None
        db.error = None
        db.errors = []
        return db

    def new_scope(self, value: Any, model: Any = None) -> Scope:
        """Scope over a clone of this session, bound to value."""
        db = self._clone()
        db.value = value
        if model is None and isinstance(value, list) and get_model_struct(self.value):
            model = self.value
        return Scope(db, value, model)

    # -------------------------------------------------------------------------
    # Query shaping (each returns a derived session)
    # -------------------------------------------------------------------------

    def where(self, query: Any, *args: Any) -> DB:
        db = self._clone()
        db.search.where(query, *args)
        return db

    def or_(self, query: Any, *args: Any) -> DB:
        db = self._clone()
        db.search.or_(query, *args)
        return db

    def not_(self, query: Any, *args: Any) -> DB:
        db = self._clone()
        db.search.not_(query, *args)
        return db

    def limit(self, limit: int | None) -> DB:
        db = self._clone()
        db.search.set_limit(limit)
        return db

    def offset(self, offset: int | None) -> DB:
        db = self._clone()
        db.search.set_offset(offset)
        return db

    def order(self, value: Any, reorder: bool = False) -> DB:
        """Add an ORDER BY directive; reorder=True replaces the existing ones."""
        db = self._clone()
        db.search.order(value, reorder)
        return db

    def select(self, query: Any, *args: Any) -> DB:
        db = self._clone()
        db.search.select(query, *args)
        return db

    def omit(self, *columns: str) -> DB:
        db = self._clone()
        db.search.omit(*columns)
        return db

    def table(self, name: str) -> DB:
        db = self._clone()
        db.search.set_table(name)
        return db

    def group(self, query: str) -> DB:
        db = self._clone()
        db.search.set_group(query)
        return db

    def having(self, query: Any, *args: Any) -> DB:
        db = self._clone()
        db.search.having(query, *args)
        return db

    def joins(self, query: str, *args: Any) -> DB:
        db = self._clone()
        db.search.joins(query, *args)
        return db

    def raw(self, sql: str, *values: Any) -> DB:
        """Use sql as the whole statement of the next query."""
        db = self._clone()
        db.search.set_raw(True).where(sql, *values)
        return db

    def unscoped(self) -> DB:
        """Bypass the soft-delete filter; delete() stamps deleted_at instead of removing rows."""
        db = self._clone()
        db.search.set_unscoped()
        return db

    def model(self, value: Any) -> DB:
        """Set the target model (class or record) for table name and list elements."""
        db = self._clone()
        db.value = value
        return db

    def scopes(self, *funcs: Callable[[DB], DB]) -> DB:
        """Apply reusable query-shaping functions in order."""
        db = self
        for func in funcs:
            db = func(db)
        return db

    # -------------------------------------------------------------------------
    # Session key/value store
    # -------------------------------------------------------------------------

    def set(self, name: str, value: Any) -> DB:
        return self._clone().instant_set(name, value)

    def instant_set(self, name: str, value: Any) -> DB:
        self._values[name] = value
        return self

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    # -------------------------------------------------------------------------
    # Terminal operations
    # -------------------------------------------------------------------------

    async def _call(self, kind: CallbackKind, scope: Scope) -> DB:
        await self.callbacks.invoke(kind, scope)
        return scope.db

    async def find(self, out: Any, *where: Any, model: Any = None) -> DB:
        """Load matching rows into out (a list or a dataclass record).

        Args:
            out: List to fill (cleared first) or record to populate.
            *where: Inline condition, same arguments as where().
            model: Element type for a list destination (defaults to model()).
        """
        scope = self.new_scope(out, model)
        if where:
            scope.search.where(*where)
        return await self._call(CallbackKind.QUERY, scope)

    async def first(self, out: Any, *where: Any) -> DB:
        """First record by primary key; RecordNotFoundError if none matched."""
        return await self._first_or_last(out, where, "ASC")

    async def last(self, out: Any, *where: Any) -> DB:
        """Last record by primary key; RecordNotFoundError if none matched."""
        return await self._first_or_last(out, where, "DESC")

    async def _first_or_last(self, out: Any, where: tuple[Any, ...], direction: str) -> DB:
        scope = self.new_scope(out)
        scope.search.set_limit(1)
        scope.set(ORDER_BY_PRIMARY_KEY, direction)
        if where:
            scope.search.where(*where)
        db = await self._call(CallbackKind.QUERY, scope)
        if db.error is None and db.rows_affected == 0:
            db.add_error(RecordNotFoundError(scope.table_name()))
        return db

    async def scan(self, dest: Any) -> DB:
        """Run the query for the current model but load results into dest."""
        scope = self.new_scope(self.value)
        scope.set(QUERY_DESTINATION, dest)
        return await self._call(CallbackKind.QUERY, scope)

    async def count(self) -> int:
        """COUNT(*) of the rows matched by the current criteria."""
        db = self._clone()
        db.search.select("count(*)")
        db.search.ignore_order_query = True
        row = await db.row()
        return int(next(iter(row.values()))) if row else 0

    async def insert(self, value: Any) -> DB:
        return await self._call(CallbackKind.CREATE, self.new_scope(value))

    async def update(self, value: Any) -> DB:
        return await self._call(CallbackKind.UPDATE, self.new_scope(value))

    async def delete(self, value: Any = None, *where: Any) -> DB:
        """Delete value (or the rows of the current model matching the criteria)."""
        scope = self.new_scope(value if value is not None else self.value)
        if where:
            scope.search.where(*where)
        return await self._call(CallbackKind.DELETE, scope)

    async def row(self) -> dict[str, Any] | None:
        """First row of the current query as a dict, None if empty.

        Row-query processors may answer through the RowQueryResult stored
        under "orm:row_query_result"; otherwise the statement is executed here.

        Raises:
            The recorded error, if any.
        """
        scope = self.new_scope(self.value)
        start = time.perf_counter()
        scope.prepare_query_sql()
        result = RowQueryResult()
        scope.set(ROW_QUERY_RESULT, result)
        await self.callbacks.invoke(CallbackKind.ROW_QUERY, scope)
        if not result.done and not scope.has_error():
            try:
                result.row = await scope.sql_db.fetch_one(scope.sql, scope.sql_vars)
            except Exception as exc:
                scope.err(exc)
            finally:
                scope.trace(start)
        if scope.db.error is not None:
            raise scope.db.error
        return result.row

    async def rows(self) -> list[dict[str, Any]]:
        """All rows of the current query as dicts.

        Raises:
            The recorded error, if any.
        """
        scope = self.new_scope(self.value)
        start = time.perf_counter()
        scope.prepare_query_sql()
        result = RowsQueryResult()
        scope.set(ROW_QUERY_RESULT, result)
        await self.callbacks.invoke(CallbackKind.ROW_QUERY, scope)
        if not result.done and not scope.has_error():
            try:
                result.rows = await scope.sql_db.fetch_all(scope.sql, scope.sql_vars)
            except Exception as exc:
                scope.err(exc)
            finally:
                scope.trace(start)
        scope.err(result.error)
        if scope.db.error is not None:
            raise scope.db.error
        return result.rows

    def scan_rows(self, row: dict[str, Any], dest: Any) -> Any:
        """Populate the dataclass record dest from a row returned by rows()."""
        scope = self.new_scope(dest)
        scope.scan(row, list(row), scope.fields())
        return dest

    async def exec(self, sql: str, *values: Any) -> DB:
        """Execute a literal statement with positional '?' values."""
        scope = self.new_scope(None)
        if scope.has_error():
            return scope.db
        start = time.perf_counter()
        scope.raw(scope._render_args(sql, values))
        await scope.exec()
        scope.trace(start)
        return scope.db

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def begin(self) -> DB:
        """Derived session bound to a new transaction."""
        db = self._clone()
        try:
            db.sql = await self.sql.begin()
        except Exception as exc:
            db.add_error(exc)
        return db

    async def commit(self) -> DB:
        """Commit; no-op when not in a transaction or already finished."""
        if isinstance(self.sql, Transaction):
            try:
                await self.sql.commit()
            except Exception as exc:
                self.add_error(exc)
        return self

    async def rollback(self) -> DB:
        """Roll back; no-op when not in a transaction or already finished."""
        if isinstance(self.sql, Transaction):
            try:
                await self.sql.rollback()
            except Exception as exc:
                self.add_error(exc)
        return self

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[DB]:
        """Transactional session: COMMIT on success, ROLLBACK on exception.

        Usage:
            async with db.transaction() as tx:
                await tx.insert(user)
                await tx.update(account)

        Raises:
            The error recorded by begin(); InvalidTransactionError when this
            session is already transactional. The open transaction is left
            untouched.
        """
        tx = await self.begin()
        if tx.sql is self.sql:
            # begin() failed, e.g. nested inside an open transaction
            raise tx.error
        try:
            yield tx
        except Exception:
            await tx.rollback()
            raise
        await tx.commit()

    async def close(self) -> None:
        """Release the connection pool (application shutdown)."""
        if isinstance(self.sql, Transaction):
            await self.sql.rollback()
        elif isinstance(self.sql, SqlDb):
            await self.sql.shutdown()

    # -------------------------------------------------------------------------
    # Errors and logging
    # -------------------------------------------------------------------------

    def add_error(self, error: BaseException | None) -> BaseException | None:
        """Record error as the session's current error. None is ignored."""
        if error is not None:
            self.error = error
            self.errors.append(error)
            if self.log_mode != LogMode.SILENT:
                self.logger.debug("Recorded error: %s", error)
        return error

    def set_log_mode(self, mode: LogMode) -> DB:
        self.log_mode = mode
        return self

    def set_logger(self, custom_logger: logging.Logger) -> DB:
        self.logger = custom_logger
        return self

    def slog(self, sql: str, start: float, sql_vars: dict[str, Any]) -> None:
        """Log a statement with its duration when log_mode is DEFAULT."""
        if self.log_mode == LogMode.DEFAULT:
            elapsed = (time.perf_counter() - start) * 1000
            self.logger.debug(
                "[%.2fms] %s %r (rows affected: %d)", elapsed, sql, sql_vars, self.rows_affected
            )

    def __repr__(self) -> str:
        return f"<DB sql={self.sql!r} error={self.error!r} rows_affected={self.rows_affected}>"


def connect(
    connection_string: str,
    *,
    callbacks: CallbackRegistry | None = None,
    log_mode: LogMode = LogMode.DEFAULT,
) -> DB:
    """Open a session on connection_string (see get_adapter for formats).

    Args:
        connection_string: SQLite path or PostgreSQL URL.
        callbacks: Registry to share; a registry with the default processors
            is created when omitted.
        log_mode: SQL statement logging.

    Raises:
        ValueError: If the connection string is invalid.
    """
    return DB(SqlDb(connection_string), callbacks=callbacks, log_mode=log_mode)


__all__ = ["DB", "LogMode", "connect", "ROW_QUERY_RESULT"]
