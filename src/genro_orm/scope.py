# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Execution context for one terminal operation.

A Scope binds a record value and a SearchCriteria snapshot to the SQL that
processors render and run: it resolves field descriptors, allocates named
parameters, renders WHERE/HAVING/JOIN fragments, scans rows back into
records, and records errors on its session.

Scopes are created by sessions for every terminal call and thrown away
afterwards; processors receive them from the callback registry.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from .errors import MissingTableError
from .model import Field, ModelStruct, get_model_struct
from .search import Condition, ConditionKind, SqlExpr

if TYPE_CHECKING:
    from .db import DB
    from .search import SearchCriteria
    from .sql.adapters import DbAdapter, ExecResult
    from .sql.sqldb import SqlCommon


class Scope:
    """Per-operation context driven by the callback processors.

    Attributes:
        db: Session clone that owns error, rows_affected and the key/value store.
        search: Criteria snapshot of that session.
        value: Record instance, list destination, or model class.
        model: Element type for list destinations (None if unknown).
        sql: Rendered statement.
        sql_vars: Named parameters in binding order.
    """

    def __init__(self, db: DB, value: Any, model: Any = None):
        self.db = db
        self.search: SearchCriteria = db.search
        self.value = value
        self.model = model
        self.sql = ""
        self.sql_vars: dict[str, Any] = {}

    # -------------------------------------------------------------------------
    # Collaborators
    # -------------------------------------------------------------------------

    @property
    def sql_db(self) -> SqlCommon:
        """Underlying SQL interface of the session."""
        return self.db.sql

    @property
    def adapter(self) -> DbAdapter:
        return self.db.sql.adapter

    def new(self, value: Any) -> Scope:
        """Scope over another value sharing this session (used to bind row elements)."""
        return Scope(self.db, value)

    def indirect_value(self) -> Any:
        return self.value

    # -------------------------------------------------------------------------
    # Fields
    # -------------------------------------------------------------------------

    def model_struct(self) -> ModelStruct | None:
        if self.model is not None:
            return get_model_struct(self.model)
        return get_model_struct(self.value)

    def _instance(self) -> Any:
        value = self.value
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return value
        return None

    def fields(self) -> list[Field]:
        """Field descriptors of the model, bound to the value when it is a record."""
        struct = self.model_struct()
        if struct is None:
            return []
        instance = self._instance()
        return [Field(sf, instance) for sf in struct.fields]

    def field_by_name(self, name: str) -> Field | None:
        """Field by attribute name, column name or CamelCase alias ("DeletedAt")."""
        struct = self.model_struct()
        if struct is None:
            return None
        struct_field = struct.field_by_name(name)
        if struct_field is None:
            return None
        return Field(struct_field, self._instance())

    def primary_fields(self) -> list[Field]:
        return [f for f in self.fields() if f.is_primary_key]

    def primary_field(self) -> Field | None:
        primary = self.primary_fields()
        return primary[0] if primary else None

    def primary_key_zero(self) -> bool:
        """True unless the value is a record whose primary key is set."""
        primary = self.primary_field()
        return primary is None or primary.is_blank

    # -------------------------------------------------------------------------
    # Errors and key/value store
    # -------------------------------------------------------------------------

    def err(self, error: BaseException | None) -> BaseException | None:
        """Record error on the session (None is ignored). Returns error."""
        if error is not None:
            self.db.add_error(error)
        return error

    def has_error(self) -> bool:
        return self.db.error is not None

    def set(self, name: str, value: Any) -> Scope:
        self.db.instant_set(name, value)
        return self

    def get(self, name: str, default: Any = None) -> Any:
        return self.db.get(name, default)

    # -------------------------------------------------------------------------
    # SQL building
    # -------------------------------------------------------------------------

    def raw(self, sql: str) -> Scope:
        """Commit final SQL text."""
        self.sql = sql
        return self

    def quote(self, name: str) -> str:
        """Quote an identifier; dotted names are quoted per part."""
        return ".".join(self.adapter._sql_name(part) for part in name.split("."))

    def table_name(self) -> str:
        if self.search.table_name:
            return self.search.table_name
        struct = self.model_struct()
        return struct.table_name if struct else ""

    def quoted_table_name(self) -> str:
        """Quoted table name; records MissingTableError when there is none."""
        name = self.table_name()
        if not name:
            self.err(MissingTableError(self.value))
            return ""
        if " " in name:
            # "users AS u" and other literal table expressions
            return name
        return self.quote(name)

    def add_to_vars(self, value: Any) -> str:
        """Bind a parameter and return its placeholder.

        SqlExpr values are inlined and sub-builders become a sub-SELECT;
        their own arguments are bound on this scope.
        """
        if isinstance(value, SqlExpr):
            return self._render_args(value.sql, value.args)
        if _is_sub_builder(value):
            return self._sub_query(value)
        name = f"v{len(self.sql_vars) + 1}"
        self.sql_vars[name] = value
        return self.adapter._placeholder(name)

    def _bind(self, arg: Any) -> str:
        if isinstance(arg, (list, tuple, set, frozenset)):
            if not arg:
                return "NULL"
            return ",".join(self.add_to_vars(item) for item in arg)
        return self.add_to_vars(arg)

    def _render_args(self, text: str, args: Sequence[Any]) -> str:
        """Replace each positional '?' in text with a bound placeholder.

        Marks inside quoted literals or identifiers ('a?', "b?") are kept.
        Marks beyond the supplied arguments stay as '?'.
        """
        if "?" not in text:
            return text
        out: list[str] = []
        quote = None
        index = 0
        for char in text:
            if quote is not None:
                # a doubled quote ('') closes and reopens, so toggling is enough
                if char == quote:
                    quote = None
                out.append(char)
            elif char in "'\"":
                quote = char
                out.append(char)
            elif char == "?" and index < len(args):
                out.append(self._bind(args[index]))
                index += 1
            else:
                out.append(char)
        return "".join(out)

    def _sub_query(self, db: DB) -> str:
        scope = db.new_scope(db.value)
        scope.sql_vars = self.sql_vars
        scope.prepare_query_sql()
        if scope.has_error():
            self.err(scope.db.error)
        return f"({scope.sql})"

    def _column_sql(self, column: str) -> str:
        if "." in column or "(" in column:
            return column
        table = self.table_name()
        if table and " " not in table:
            return f"{self.quote(table)}.{self.quote(column)}"
        return self.quote(column)

    def _column_condition(self, column: str, value: Any, include: bool) -> str:
        column_sql = self._column_sql(column)
        if value is None:
            return f"({column_sql} IS {'' if include else 'NOT '}NULL)"
        if isinstance(value, (list, tuple, set, frozenset)):
            if not value:
                return "(1=0)" if include else "(1=1)"
            return f"({column_sql} {'IN' if include else 'NOT IN'} ({self._bind(value)}))"
        return f"({column_sql} {'=' if include else '<>'} {self.add_to_vars(value)})"

    def build_condition(self, condition: Condition, include: bool = True) -> str:
        """Render one condition group; include=False renders its negation."""
        kind = condition.kind
        query = condition.query

        if kind is ConditionKind.TEXT:
            sql = self._render_args(query, condition.args)
            return f"({sql})" if include else f"(NOT ({sql}))"

        if kind is ConditionKind.EXPR:
            sql = self._render_args(query.sql, (*query.args, *condition.args))
            return f"({sql})" if include else f"(NOT ({sql}))"

        if kind is ConditionKind.MAPPING:
            return " AND ".join(
                self._column_condition(column, value, include) for column, value in query.items()
            )

        if kind is ConditionKind.RECORD:
            parts = []
            for sf in get_model_struct(query).fields:
                field = Field(sf, query)
                if sf.is_normal and not field.is_blank:
                    parts.append(self._column_condition(sf.db_name, field.value, include))
            return " AND ".join(parts)

        if kind is ConditionKind.PRIMARY_KEY:
            primary = self.primary_field()
            column = primary.db_name if primary else "id"
            return self._column_condition(column, query, include)

        raise ValueError(f"Unsupported condition kind: {kind!r}")

    def where_sql(self) -> str:
        """WHERE clause: soft-delete filter and primary key AND (criteria)."""
        primary_conditions: list[str] = []
        and_conditions: list[str] = []
        or_conditions: list[str] = []

        struct = self.model_struct()
        if not self.search.unscoped and struct is not None:
            deleted_at = struct.field_by_name("deleted_at")
            if deleted_at is not None:
                primary_conditions.append(f"{self._column_sql(deleted_at.db_name)} IS NULL")

        if not self.primary_key_zero():
            for field in self.primary_fields():
                primary_conditions.append(
                    f"({self._column_sql(field.db_name)} = {self.add_to_vars(field.value)})"
                )

        for condition in self.search.where_conditions:
            if sql := self.build_condition(condition, True):
                and_conditions.append(sql)
        for condition in self.search.or_conditions:
            if sql := self.build_condition(condition, True):
                or_conditions.append(sql)
        for condition in self.search.not_conditions:
            if sql := self.build_condition(condition, False):
                and_conditions.append(sql)

        or_sql = " OR ".join(or_conditions)
        combined = " AND ".join(and_conditions)
        if combined:
            if or_sql:
                combined = f"{combined} OR {or_sql}"
        else:
            combined = or_sql

        if primary_conditions:
            sql = "WHERE " + " AND ".join(primary_conditions)
            if combined:
                sql += f" AND ({combined})"
            return sql
        if combined:
            return f"WHERE {combined}"
        return ""

    def joins_sql(self) -> str:
        return " ".join(
            self._render_args(str(c.query), c.args) for c in self.search.join_conditions
        )

    def group_sql(self) -> str:
        return f"GROUP BY {self.search.group}" if self.search.group else ""

    def having_sql(self) -> str:
        parts = [self.build_condition(c) for c in self.search.having_conditions]
        parts = [p for p in parts if p]
        return "HAVING " + " AND ".join(parts) if parts else ""

    def order_sql(self) -> str:
        if not self.search.orders or self.search.ignore_order_query:
            return ""
        parts = []
        for order in self.search.orders:
            if isinstance(order, SqlExpr):
                parts.append(self._render_args(order.sql, order.args))
            else:
                parts.append(str(order))
        return "ORDER BY " + ", ".join(parts)

    def limit_and_offset_sql(self) -> str:
        parts = []
        limit, offset = self.search.limit, self.search.offset
        if limit is not None and limit >= 0:
            parts.append(f"LIMIT {int(limit)}")
        if offset is not None and offset >= 0:
            if not parts and self.adapter.dialect == "sqlite":
                # SQLite accepts OFFSET only after a LIMIT
                parts.append("LIMIT -1")
            parts.append(f"OFFSET {int(offset)}")
        return " ".join(parts)

    def combined_condition_sql(self) -> str:
        """Everything after the table name: joins, where, group, having, order, limit.

        Each non-empty part is prefixed by a space so the result can be
        appended directly to "DELETE FROM table" and friends.
        """
        parts = [
            self.joins_sql(),
            self.where_sql(),
            self.group_sql(),
            self.having_sql(),
            self.order_sql(),
            self.limit_and_offset_sql(),
        ]
        return "".join(f" {part}" for part in parts if part)

    def select_sql(self) -> str:
        selects = self.search.selects
        if selects is None:
            if self.search.join_conditions:
                return f"{self.quoted_table_name()}.*"
            return "*"
        if selects.kind is ConditionKind.EXPR:
            return self._render_args(selects.query.sql, selects.query.args)
        return self._render_args(str(selects.query), selects.args)

    def prepare_query_sql(self) -> Scope:
        """Render the SELECT for the current criteria (or the raw statement)."""
        if self.search.raw:
            if self.search.where_conditions:
                condition = self.search.where_conditions[0]
                if condition.kind is ConditionKind.EXPR:
                    self.raw(self._render_args(condition.query.sql, condition.query.args))
                else:
                    self.raw(self._render_args(str(condition.query), condition.args))
        else:
            self.raw(
                f"SELECT {self.select_sql()} FROM {self.quoted_table_name()}"
                f"{self.combined_condition_sql()}"
            )
        return self

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def scan(self, row: Mapping[str, Any], columns: Sequence[str], fields: list[Field]) -> None:
        """Copy row values into the fields whose column name matches (case-insensitive)."""
        by_name = {field.db_name.lower(): field for field in fields}
        for column in columns:
            field = by_name.get(column.lower())
            if field is not None:
                field.set(row[column])

    async def exec(self) -> ExecResult | None:
        """Execute the rendered statement and record rows_affected.

        Driver errors are recorded on the session; returns None in that case.
        """
        try:
            result = await self.sql_db.exec(self.sql, self.sql_vars)
        except Exception as exc:
            self.err(exc)
            return None
        self.db.rows_affected = result.rows_affected
        return result

    def trace(self, start: float) -> None:
        """Log the rendered statement with its duration."""
        if self.sql:
            self.db.slog(self.sql, start, self.sql_vars)

    def __repr__(self) -> str:
        return f"<Scope value={type(self.value).__name__} sql={self.sql!r}>"


def _is_sub_builder(value: Any) -> bool:
    from .db import DB

    return isinstance(value, DB)


__all__ = ["Scope"]
