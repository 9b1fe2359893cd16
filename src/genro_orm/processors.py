# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Default processors implementing standard CRUD on the Scope contract.

Each processor skips its work when the scope already carries an error, and
logs whatever statement it rendered in a finally block so tracing still
happens after failures. None of them raises: driver errors are recorded on
the scope's session.

Registered names:
    orm:query   (CallbackKind.QUERY)
    orm:create  (CallbackKind.CREATE)
    orm:update  (CallbackKind.UPDATE)
    orm:delete  (CallbackKind.DELETE)
"""

from __future__ import annotations

import dataclasses
import time
from contextlib import aclosing
from typing import TYPE_CHECKING

from .errors import EmptyInsertError, InvalidRecordError, UnsupportedDestinationError

if TYPE_CHECKING:
    from .callbacks import CallbackRegistry
    from .model import Field
    from .scope import Scope

QUERY_DESTINATION = "orm:query_destination"
ORDER_BY_PRIMARY_KEY = "orm:order_by_primary_key"


def _is_record(value: object) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _is_omitted(scope: Scope, field: Field) -> bool:
    omits = scope.search.omits
    return field.name in omits or field.db_name in omits


async def query_callback(scope: Scope) -> None:
    """SELECT into a list (collection mode) or a single record.

    A list destination is cleared first and receives one new element per
    row: instances of the scope's model, or plain dicts when no model is
    known. A record destination is overwritten by each row in turn.
    rows_affected counts the rows actually iterated. If iteration fails
    part-way, the rows already appended stay and the error is recorded.
    """
    start = time.perf_counter()
    try:
        if scope.has_error():
            return

        results = scope.get(QUERY_DESTINATION)
        if results is None:
            results = scope.indirect_value()
        element_type = None
        if isinstance(results, list):
            is_list = True
            results.clear()
            model = scope.model
            if model is not None:
                element_type = model if isinstance(model, type) else type(model)
                if not dataclasses.is_dataclass(element_type):
                    element_type = None
        elif _is_record(results):
            is_list = False
        else:
            scope.err(UnsupportedDestinationError(results))
            return

        order_by = scope.get(ORDER_BY_PRIMARY_KEY)
        if order_by:
            primary = scope.primary_field()
            if primary is not None:
                scope.search.order(
                    f"{scope.quoted_table_name()}.{scope.quote(primary.db_name)} {order_by}"
                )

        scope.prepare_query_sql()
        if scope.has_error():
            return

        scope.db.rows_affected = 0
        try:
            async with aclosing(scope.sql_db.iterate(scope.sql, scope.sql_vars)) as rows:
                async for row in rows:
                    scope.db.rows_affected += 1
                    columns = list(row)
                    if not is_list:
                        scope.scan(row, columns, scope.new(results).fields())
                    elif element_type is None:
                        results.append(dict(row))
                    else:
                        elem = element_type()
                        scope.scan(row, columns, scope.new(elem).fields())
                        results.append(elem)
        except Exception as exc:
            scope.err(exc)
    finally:
        scope.trace(start)


async def create_callback(scope: Scope) -> None:
    """INSERT every persisted non-key field; back-fill a blank primary key."""
    start = time.perf_counter()
    try:
        if scope.has_error():
            return
        if not _is_record(scope.value):
            scope.err(InvalidRecordError(scope.value))
            return

        now = scope.db.now_func()
        for name in ("created_at", "updated_at"):
            stamp = scope.field_by_name(name)
            if stamp is not None:
                stamp.set(now)

        columns: list[str] = []
        placeholders: list[str] = []
        for field in scope.fields():
            if field.is_primary_key or not field.is_normal or _is_omitted(scope, field):
                continue
            columns.append(scope.quote(field.db_name))
            placeholders.append(scope.add_to_vars(field.value))

        table = scope.quoted_table_name()
        if scope.has_error():
            return
        if not columns:
            scope.err(EmptyInsertError(scope.table_name()))
            return

        primary_fields = scope.primary_fields()
        # generated keys only fill a single-column primary key
        primary = primary_fields[0] if len(primary_fields) == 1 else None
        returning = ""
        if primary is not None and primary.is_blank:
            returning = scope.adapter.returning_clause(primary.db_name)

        scope.raw(
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)}){returning}"
        )
        result = await scope.exec()
        if (
            result is not None
            and result.last_insert_id is not None
            and primary is not None
            and primary.is_blank
        ):
            primary.set(result.last_insert_id)
    finally:
        scope.trace(start)


async def update_callback(scope: Scope) -> None:
    """UPDATE every persisted non-key field, matched by primary key and criteria.

    A record with nothing to assign issues no statement and leaves
    rows_affected as it was.
    """
    start = time.perf_counter()
    try:
        if scope.has_error():
            return
        if not _is_record(scope.value):
            scope.err(InvalidRecordError(scope.value))
            return

        stamp = scope.field_by_name("updated_at")
        if stamp is not None:
            stamp.set(scope.db.now_func())

        assignments = [
            f"{scope.quote(field.db_name)} = {scope.add_to_vars(field.value)}"
            for field in scope.fields()
            if not field.is_primary_key and field.is_normal and not _is_omitted(scope, field)
        ]
        if not assignments:
            return

        table = scope.quoted_table_name()
        scope.raw(f"UPDATE {table} SET {', '.join(assignments)}{scope.combined_condition_sql()}")
        if not scope.has_error():
            await scope.exec()
    finally:
        scope.trace(start)


async def delete_callback(scope: Scope) -> None:
    """Soft delete (stamp deleted_at) or hard DELETE, then execute.

    Soft delete runs only when the criteria is unscoped and the model
    declares deleted_at; a plain delete() removes rows. The statement held
    by the scope is executed and rows_affected recorded even when a
    pre-existing error kept this processor from rendering one.
    """
    start = time.perf_counter()
    try:
        if not scope.has_error():
            deleted_at = scope.field_by_name("deleted_at")
            table = scope.quoted_table_name()
            if not scope.has_error():
                if scope.search.unscoped and deleted_at is not None:
                    scope.raw(
                        f"UPDATE {table} SET {scope.quote(deleted_at.db_name)}="
                        f"{scope.add_to_vars(scope.db.now_func())}{scope.combined_condition_sql()}"
                    )
                else:
                    scope.raw(f"DELETE FROM {table}{scope.combined_condition_sql()}")
        await scope.exec()
    finally:
        scope.trace(start)


def register_defaults(registry: CallbackRegistry) -> CallbackRegistry:
    """Register the four default processors on registry."""
    registry.query().register("orm:query", query_callback)
    registry.create().register("orm:create", create_callback)
    registry.update().register("orm:update", update_callback)
    registry.delete().register("orm:delete", delete_callback)
    return registry


__all__ = [
    "QUERY_DESTINATION",
    "ORDER_BY_PRIMARY_KEY",
    "query_callback",
    "create_callback",
    "update_callback",
    "delete_callback",
    "register_defaults",
]
