# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for model module - record descriptors and naming conventions."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from genro_orm.model import Field, coerce, get_model_struct, is_blank, pluralize, to_db_name

from .models import Article, OrderLine, Tag, User


class TestNaming:
    """Tests for to_db_name and pluralize."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("User", "user"),
            ("DeletedAt", "deleted_at"),
            ("OrderLine", "order_line"),
            ("HTTPRequest", "http_request"),
            ("already_snake", "already_snake"),
        ],
    )
    def test_to_db_name(self, name, expected):
        """CamelCase becomes snake_case."""
        assert to_db_name(name) == expected

    @pytest.mark.parametrize(
        ("name", "expected"),
        [("user", "users"), ("category", "categories"), ("box", "boxes"), ("day", "days")],
    )
    def test_pluralize(self, name, expected):
        """Default table names are naive English plurals."""
        assert pluralize(name) == expected


class TestModelStruct:
    """Tests for get_model_struct and ModelStruct."""

    def test_table_name_from_class(self):
        """Table name is the pluralized snake_case class name."""
        assert get_model_struct(User).table_name == "users"
        assert get_model_struct(OrderLine).table_name == "order_lines"

    def test_table_name_override(self):
        """__tablename__ wins over the class name."""
        assert get_model_struct(Tag).table_name == "labels"

    def test_instance_and_class_share_struct(self):
        """Struct is cached per type."""
        assert get_model_struct(User()) is get_model_struct(User)

    def test_non_dataclass_returns_none(self):
        """Non-dataclass values have no struct."""
        assert get_model_struct([]) is None
        assert get_model_struct(dict) is None
        assert get_model_struct(None) is None

    def test_id_is_default_primary_key(self):
        """A field named id is the primary key when none is declared."""
        struct = get_model_struct(User)
        assert [f.name for f in struct.primary_fields] == ["id"]

    def test_declared_composite_key(self):
        """column(primary_key=True) declares the key."""
        struct = get_model_struct(OrderLine)
        assert [f.name for f in struct.primary_fields] == ["order_id", "line_no"]

    def test_column_options(self):
        """column(name=...) renames, column(ignore=True) is not normal."""
        struct = get_model_struct(Tag)
        label = struct.field_by_name("label")
        hits = struct.field_by_name("hits")
        assert label.db_name == "text"
        assert label.is_normal is True
        assert hits.is_normal is False

    def test_field_by_name_aliases(self):
        """Fields resolve by attribute, column or CamelCase name."""
        struct = get_model_struct(Article)
        assert struct.field_by_name("deleted_at").name == "deleted_at"
        assert struct.field_by_name("DeletedAt").name == "deleted_at"
        assert get_model_struct(Tag).field_by_name("text").name == "label"
        assert struct.field_by_name("missing") is None

    def test_field_types_resolved(self):
        """Annotations are resolved despite postponed evaluation."""
        struct = get_model_struct(User)
        assert struct.field_by_name("created_at").type_ == datetime | None


class TestField:
    """Tests for Field bound to an instance."""

    def test_value_and_blank(self):
        """Field reads the bound instance."""
        user = User(name="ada")
        struct = get_model_struct(user)
        name = Field(struct.field_by_name("name"), user)
        ident = Field(struct.field_by_name("id"), user)
        assert name.value == "ada"
        assert name.is_blank is False
        assert ident.is_blank is True

    def test_set_coerces(self):
        """set() converts driver values to the annotated type."""
        user = User()
        field = Field(get_model_struct(user).field_by_name("created_at"), user)
        field.set("2025-01-02 03:04:05")
        assert user.created_at == datetime(2025, 1, 2, 3, 4, 5)

    def test_unbound_field_has_no_value(self):
        """Unbound fields read None and refuse writes."""
        field = Field(get_model_struct(User).field_by_name("name"))
        assert field.value is None
        with pytest.raises(TypeError, match="not bound"):
            field.set("x")


class TestHelpers:
    """Tests for is_blank and coerce."""

    @pytest.mark.parametrize("value", [None, 0, "", 0.0, [], {}])
    def test_blank_values(self, value):
        assert is_blank(value) is True

    @pytest.mark.parametrize("value", [1, "x", datetime(2025, 1, 1), True])
    def test_non_blank_values(self, value):
        assert is_blank(value) is False

    def test_coerce(self):
        """Only the conversions drivers need are applied."""
        assert coerce(1, bool) is True
        assert coerce(3, float) == 3.0
        assert coerce("2025-01-02", date) == date(2025, 1, 2)
        assert coerce("x", int) == "x"
        assert coerce(None, int) is None
