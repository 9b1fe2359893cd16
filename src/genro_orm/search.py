# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Search criteria: accumulated WHERE/ORDER/projection directives for one query.

SearchCriteria never renders or executes anything; it only records intent.
The Scope turns it into SQL when a terminal operation runs.

Accumulating attributes are tuples, so every append builds a new tuple and
a criteria cloned with copy.copy() never sees appends made on another clone.
"""

from __future__ import annotations

import copy
import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any


class SqlExpr:
    """Literal SQL with positional '?' arguments, inlined where it is used.

    Usage:
        await db.where("stock < ?", expr("reorder_level * ?", 2)).find(out)
        await db.where("amount > ?", expr("(SELECT AVG(amount) FROM orders)")).find(out)
    """

    def __init__(self, sql: str, *args: Any):
        self.sql = sql
        self.args = args

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SqlExpr):
            return NotImplemented
        return self.sql == other.sql and self.args == other.args

    def __hash__(self) -> int:
        return hash(self.sql)

    def __repr__(self) -> str:
        return f"SqlExpr({self.sql!r}, {self.args!r})"


def expr(sql: str, *args: Any) -> SqlExpr:
    """Build an SqlExpr."""
    return SqlExpr(sql, *args)


class ConditionKind(Enum):
    TEXT = "text"
    MAPPING = "mapping"
    RECORD = "record"
    PRIMARY_KEY = "primary_key"
    EXPR = "expr"


@dataclass(frozen=True)
class Condition:
    """One condition group: the query value tagged with its kind, plus arguments."""

    kind: ConditionKind
    query: Any
    args: tuple[Any, ...] = ()

    @classmethod
    def of(cls, query: Any, args: tuple[Any, ...] = ()) -> Condition:
        """Classify a caller-supplied query value."""
        if isinstance(query, SqlExpr):
            return cls(ConditionKind.EXPR, query, args)
        if isinstance(query, Mapping):
            return cls(ConditionKind.MAPPING, dict(query), args)
        if dataclasses.is_dataclass(query) and not isinstance(query, type):
            return cls(ConditionKind.RECORD, query, args)
        if isinstance(query, int) and not isinstance(query, bool):
            return cls(ConditionKind.PRIMARY_KEY, query, args)
        return cls(ConditionKind.TEXT, str(query), args)


class SearchCriteria:
    """Filter, order and projection directives accumulated by a session.

    Every method mutates this criteria and returns it; sessions call them on
    a fresh clone so the original is never touched.
    """

    def __init__(self) -> None:
        self.where_conditions: tuple[Condition, ...] = ()
        self.or_conditions: tuple[Condition, ...] = ()
        self.not_conditions: tuple[Condition, ...] = ()
        self.having_conditions: tuple[Condition, ...] = ()
        self.join_conditions: tuple[Condition, ...] = ()
        self.selects: Condition | None = None
        self.omits: tuple[str, ...] = ()
        self.orders: tuple[Any, ...] = ()
        self.limit: int | None = None
        self.offset: int | None = None
        self.group: str | None = None
        self.table_name: str | None = None
        self.raw = False
        self.unscoped = False
        self.ignore_order_query = False

    def clone(self) -> SearchCriteria:
        return copy.copy(self)

    def where(self, query: Any, *args: Any) -> SearchCriteria:
        self.where_conditions = (*self.where_conditions, Condition.of(query, args))
        return self

    def not_(self, query: Any, *args: Any) -> SearchCriteria:
        self.not_conditions = (*self.not_conditions, Condition.of(query, args))
        return self

    def or_(self, query: Any, *args: Any) -> SearchCriteria:
        self.or_conditions = (*self.or_conditions, Condition.of(query, args))
        return self

    def order(self, value: Any, reorder: bool = False) -> SearchCriteria:
        """Append an ORDER BY directive; reorder=True drops the previous ones first."""
        if reorder:
            self.orders = ()
        if value is not None and value != "":
            self.orders = (*self.orders, value)
        return self

    def select(self, query: Any, *args: Any) -> SearchCriteria:
        self.selects = Condition.of(query, args)
        return self

    def omit(self, *columns: str) -> SearchCriteria:
        self.omits = tuple(columns)
        return self

    def set_limit(self, limit: int | None) -> SearchCriteria:
        self.limit = limit
        return self

    def set_offset(self, offset: int | None) -> SearchCriteria:
        self.offset = offset
        return self

    def set_group(self, query: str | None) -> SearchCriteria:
        self.group = query
        return self

    def having(self, query: Any, *args: Any) -> SearchCriteria:
        self.having_conditions = (*self.having_conditions, Condition.of(query, args))
        return self

    def joins(self, query: str, *args: Any) -> SearchCriteria:
        self.join_conditions = (*self.join_conditions, Condition.of(query, args))
        return self

    def set_table(self, name: str | None) -> SearchCriteria:
        self.table_name = name
        return self

    def set_unscoped(self) -> SearchCriteria:
        self.unscoped = True
        return self

    def set_raw(self, raw: bool) -> SearchCriteria:
        self.raw = raw
        return self

    def __repr__(self) -> str:
        return (
            f"<SearchCriteria where={len(self.where_conditions)} "
            f"or={len(self.or_conditions)} not={len(self.not_conditions)} "
            f"orders={self.orders!r} limit={self.limit!r} offset={self.offset!r}>"
        )


__all__ = ["SqlExpr", "expr", "ConditionKind", "Condition", "SearchCriteria"]
