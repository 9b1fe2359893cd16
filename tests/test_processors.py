# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for processors module - default CRUD processors over a fake SQL interface."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from genro_orm import DB
from genro_orm.errors import (
    EmptyInsertError,
    InvalidRecordError,
    MissingTableError,
    RecordNotFoundError,
    UnsupportedDestinationError,
)
from genro_orm.sql import ExecResult
from genro_orm.sql.adapters import SqliteAdapter

from .models import Article, OrderLine, Setting, Tag, User

NOW = datetime(2025, 6, 1, 12, 0, 0)


class ReturningAdapter(SqliteAdapter):
    """SQLite adapter that asks for generated keys with RETURNING."""

    def returning_clause(self, pk_col: str) -> str:
        return f" RETURNING {self._sql_name(pk_col)}"


def rows_of(*rows, error=None):
    """Fake SqlCommon.iterate yielding rows, then optionally failing."""

    async def iterate(query, params=None):
        for row in rows:
            yield dict(row)
        if error is not None:
            raise error

    return iterate


def make_db(*rows, error=None, result=None, adapter=None) -> DB:
    sql = MagicMock()
    sql.adapter = adapter or SqliteAdapter(":memory:")
    sql.exec = AsyncMock(return_value=result or ExecResult(1, None))
    sql.iterate = MagicMock(side_effect=rows_of(*rows, error=error))
    db = DB(sql)
    db.now_func = lambda: NOW
    return db


class TestQueryCallback:
    """Tests for orm:query."""

    async def test_list_of_models(self):
        """Rows become new model instances appended to the list."""
        db = make_db({"id": 1, "name": "a"}, {"id": 2, "name": "b"})
        out: list[User] = []

        result = await db.find(out, model=User)

        assert result.error is None
        assert result.rows_affected == 2
        assert out == [User(id=1, name="a"), User(id=2, name="b")]
        db.sql.iterate.assert_called_once_with('SELECT * FROM "users"', {})

    async def test_list_is_cleared(self):
        """Previous list content is discarded."""
        db = make_db({"id": 3})
        out = [User(id=99)]
        await db.model(User).find(out)
        assert out == [User(id=3)]

    async def test_list_without_model_gets_dicts(self):
        """Without a model each row is appended as a dict."""
        db = make_db({"id": 1, "name": "a"})
        out: list = []
        await db.table("users").find(out)
        assert out == [{"id": 1, "name": "a"}]

    async def test_record_destination(self):
        """A record destination is populated in place."""
        db = make_db({"id": 5, "name": "ada", "age": 36})
        user = User()
        result = await db.find(user, "name = ?", "ada")
        assert user == User(id=5, name="ada", age=36)
        assert result.rows_affected == 1
        db.sql.iterate.assert_called_once_with(
            'SELECT * FROM "users" WHERE (name = :v1)', {"v1": "ada"}
        )

    async def test_unsupported_destination(self):
        """Anything but a list or a record is rejected before querying."""
        db = make_db()
        result = await db.table("users").find("nope")
        assert isinstance(result.error, UnsupportedDestinationError)
        db.sql.iterate.assert_not_called()

    async def test_skipped_on_existing_error(self):
        """A session that already carries an error issues no query."""
        db = make_db({"id": 1})
        earlier = ValueError("earlier")
        db.add_error(earlier)
        out: list[User] = []
        result = await db.find(out, model=User)
        assert result.error is earlier
        assert out == []
        db.sql.iterate.assert_not_called()

    async def test_error_during_iteration(self):
        """Rows read before a failure stay, the failure is recorded."""
        db = make_db({"id": 1}, error=RuntimeError("connection lost"))
        out: list[User] = []
        result = await db.find(out, model=User)
        assert out == [User(id=1)]
        assert result.rows_affected == 1
        assert isinstance(result.error, RuntimeError)

    async def test_first_orders_by_primary_key(self):
        db = make_db({"id": 1})
        user = User()
        await db.first(user)
        db.sql.iterate.assert_called_once_with(
            'SELECT * FROM "users" ORDER BY "users"."id" ASC LIMIT 1', {}
        )
        assert user.id == 1

    async def test_last_orders_descending(self):
        db = make_db({"id": 9})
        user = User()
        await db.order("name").last(user)
        db.sql.iterate.assert_called_once_with(
            'SELECT * FROM "users" ORDER BY name, "users"."id" DESC LIMIT 1', {}
        )

    async def test_first_not_found(self):
        """first() with no rows records RecordNotFoundError."""
        result = await make_db().first(User())
        assert isinstance(result.error, RecordNotFoundError)
        assert "users" in str(result.error)

    async def test_scan_into_other_destination(self):
        """scan() queries the session model into the given destination."""
        db = make_db({"name": "a", "total": 3})
        out: list = []
        await db.model(User).select("name, count(*) AS total").group("name").scan(out)
        assert out == [{"name": "a", "total": 3}]
        db.sql.iterate.assert_called_once_with(
            'SELECT name, count(*) AS total FROM "users" GROUP BY name', {}
        )


class TestCreateCallback:
    """Tests for orm:create."""

    async def test_insert_statement(self):
        """Every normal non-key field is inserted; timestamps are stamped."""
        db = make_db(result=ExecResult(1, 7))
        user = User(name="ada")

        result = await db.insert(user)

        assert result.error is None
        db.sql.exec.assert_awaited_once_with(
            'INSERT INTO "users" ("name", "age", "email", "created_at", "updated_at") '
            "VALUES (:v1, :v2, :v3, :v4, :v5)",
            {"v1": "ada", "v2": 0, "v3": None, "v4": NOW, "v5": NOW},
        )
        assert user.id == 7
        assert user.created_at == NOW
        assert user.updated_at == NOW
        assert result.rows_affected == 1

    async def test_existing_primary_key_is_kept(self):
        """A set primary key is not overwritten by the generated id."""
        db = make_db(result=ExecResult(1, 99))
        user = User(id=5, name="x")
        await db.insert(user)
        assert user.id == 5

    async def test_composite_key_is_not_back_filled(self):
        """A generated id never lands in one part of a composite key."""
        db = make_db(result=ExecResult(1, 42), adapter=ReturningAdapter(":memory:"))
        line = OrderLine(sku="x")
        await db.insert(line)
        db.sql.exec.assert_awaited_once_with(
            'INSERT INTO "order_lines" ("sku") VALUES (:v1)', {"v1": "x"}
        )
        assert line.order_id == 0
        assert line.line_no == 0

    async def test_omitted_columns(self):
        db = make_db()
        await db.omit("email", "created_at").insert(User(name="x"))
        sql = db.sql.exec.await_args.args[0]
        assert sql == 'INSERT INTO "users" ("name", "age", "updated_at") VALUES (:v1, :v2, :v3)'

    async def test_ignored_and_renamed_columns(self):
        """column(ignore=True) fields are not written; renamed ones use their column."""
        db = make_db()
        await db.insert(Tag(label="red", hits=4))
        db.sql.exec.assert_awaited_once_with(
            'INSERT INTO "labels" ("text") VALUES (:v1)', {"v1": "red"}
        )

    async def test_returning_clause(self):
        """Adapters that report keys with RETURNING get the clause."""
        db = make_db(result=ExecResult(1, 11), adapter=ReturningAdapter(":memory:"))
        tag = Tag(label="x")
        await db.insert(tag)
        assert db.sql.exec.await_args.args[0].endswith(' RETURNING "id"')
        assert tag.id == 11

    async def test_no_columns(self):
        """A record with nothing to insert records EmptyInsertError."""
        db = make_db()
        result = await db.insert(Setting())
        assert isinstance(result.error, EmptyInsertError)
        db.sql.exec.assert_not_awaited()

    async def test_not_a_record(self):
        db = make_db()
        result = await db.insert(User)
        assert isinstance(result.error, InvalidRecordError)
        db.sql.exec.assert_not_awaited()

    async def test_driver_error_recorded(self):
        """Driver exceptions become the session error."""
        db = make_db()
        db.sql.exec.side_effect = RuntimeError("constraint failed")
        user = User(name="x")
        result = await db.insert(user)
        assert isinstance(result.error, RuntimeError)
        assert user.id == 0


class TestUpdateCallback:
    """Tests for orm:update."""

    async def test_update_by_primary_key(self):
        db = make_db(result=ExecResult(1, None))
        user = User(id=3, name="b", age=4)

        result = await db.update(user)

        db.sql.exec.assert_awaited_once_with(
            'UPDATE "users" SET "name" = :v1, "age" = :v2, "email" = :v3, '
            '"created_at" = :v4, "updated_at" = :v5 WHERE ("users"."id" = :v6)',
            {"v1": "b", "v2": 4, "v3": None, "v4": None, "v5": NOW, "v6": 3},
        )
        assert user.updated_at == NOW
        assert result.rows_affected == 1

    async def test_update_with_criteria(self):
        db = make_db()
        await db.where("age > ?", 1).omit("email", "created_at", "updated_at").update(User(id=3))
        sql = db.sql.exec.await_args.args[0]
        assert sql == (
            'UPDATE "users" SET "name" = :v1, "age" = :v2 '
            'WHERE ("users"."id" = :v3) AND ((age > :v4))'
        )

    async def test_nothing_to_assign(self):
        """No assignable field: no statement, rows_affected unchanged."""
        db = make_db()
        db.rows_affected = 5
        result = await db.update(Setting(id=1))
        db.sql.exec.assert_not_awaited()
        assert result.rows_affected == 5
        assert result.error is None

    async def test_soft_deleted_rows_are_not_updated(self):
        db = make_db()
        await db.update(Article(id=2, title="t"))
        sql = db.sql.exec.await_args.args[0]
        assert sql.endswith('WHERE "articles"."deleted_at" IS NULL AND ("articles"."id" = :v4)')


class TestDeleteCallback:
    """Tests for orm:delete."""

    async def test_unscoped_soft_delete(self):
        """Unscoped criteria on a deleted_at model stamp it instead of removing the row."""
        db = make_db()
        await db.unscoped().delete(Article(id=4))
        db.sql.exec.assert_awaited_once_with(
            'UPDATE "articles" SET "deleted_at"=:v1 WHERE ("articles"."id" = :v2)',
            {"v1": NOW, "v2": 4},
        )

    async def test_plain_delete_of_soft_delete_model_removes_row(self):
        """Without the unscoped flag even a deleted_at model gets a real DELETE."""
        db = make_db()
        await db.delete(Article(id=4))
        db.sql.exec.assert_awaited_once_with(
            'DELETE FROM "articles" '
            'WHERE "articles"."deleted_at" IS NULL AND ("articles"."id" = :v1)',
            {"v1": 4},
        )

    async def test_unscoped_without_deleted_at_removes_row(self):
        """The unscoped flag alone never turns a delete into an update."""
        db = make_db()
        await db.unscoped().delete(User(id=4))
        db.sql.exec.assert_awaited_once_with(
            'DELETE FROM "users" WHERE ("users"."id" = :v1)', {"v1": 4}
        )

    async def test_hard_delete(self):
        db = make_db()
        await db.delete(User(id=4))
        db.sql.exec.assert_awaited_once_with(
            'DELETE FROM "users" WHERE ("users"."id" = :v1)', {"v1": 4}
        )

    async def test_delete_by_criteria(self):
        db = make_db(result=ExecResult(3, None))
        result = await db.where("age < ?", 10).delete(User)
        db.sql.exec.assert_awaited_once_with('DELETE FROM "users" WHERE (age < :v1)', {"v1": 10})
        assert result.rows_affected == 3

    async def test_inline_criteria(self):
        db = make_db()
        await db.model(User).delete(None, "name = ?", "x")
        db.sql.exec.assert_awaited_once_with('DELETE FROM "users" WHERE (name = :v1)', {"v1": "x"})

    async def test_existing_error_still_executes(self):
        """With an earlier error nothing is rendered but the empty statement still runs."""
        db = make_db(result=ExecResult(0, None))
        earlier = ValueError("earlier")
        db.add_error(earlier)
        db.rows_affected = 7

        result = await db.delete(User(id=1))

        db.sql.exec.assert_awaited_once_with("", {})
        assert result.error is earlier
        assert result.rows_affected == 0

    async def test_no_delete_processor_leaves_state(self):
        """With orm:delete removed, delete() issues nothing and keeps rows_affected."""
        db = make_db()
        db.callbacks.delete().remove("orm:delete")
        db.rows_affected = 5

        result = await db.delete(User(id=1))

        db.sql.exec.assert_not_awaited()
        assert result.rows_affected == 5
        assert result.error is None

    async def test_missing_table(self):
        db = make_db(result=ExecResult(0, None))
        result = await db.delete()
        assert isinstance(result.error, MissingTableError)
        db.sql.exec.assert_awaited_once_with("", {})


class TestCustomProcessors:
    """Tests for processors registered around the defaults."""

    async def test_processor_before_create_sees_clean_scope(self):
        """A processor placed before orm:create runs first and can read the record."""
        db = make_db()
        seen = []

        def audit(scope):
            seen.append((scope.value.name, scope.has_error(), db.sql.exec.await_count))

        db.callbacks.create().before("orm:create").register("app:audit", audit)
        await db.insert(User(name="ada"))

        assert seen == [("ada", False, 0)]

    async def test_processor_error_blocks_defaults(self):
        """An error recorded early makes the default processor skip its work."""
        db = make_db()

        def reject(scope):
            scope.err(PermissionError("read-only"))

        db.callbacks.create().before("orm:create").register("app:reject", reject)
        result = await db.insert(User(name="ada"))

        assert isinstance(result.error, PermissionError)
        db.sql.exec.assert_not_awaited()

    async def test_replaced_query_processor(self):
        db = make_db()
        calls = []

        async def my_query(scope):
            calls.append(scope.table_name())

        db.callbacks.query().replace("orm:query", my_query)
        await db.find([], model=User)

        assert calls == ["users"]
        db.sql.iterate.assert_not_called()


@pytest.mark.parametrize("method", ["insert", "update"])
async def test_list_is_not_a_record(method):
    """Lists are query destinations only."""
    db = make_db()
    result = await getattr(db, method)([User()])
    assert isinstance(result.error, InvalidRecordError)
