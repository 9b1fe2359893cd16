# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Record descriptors: dataclass fields mapped to table columns.

Record types are plain dataclasses. Each type is described once by a
ModelStruct (cached in a module-level table) listing its StructFields;
a Field binds a StructField to one record instance so processors can read
and write values without inspecting the type again.

Column options go in the dataclass field metadata:

    from dataclasses import dataclass, field
    from genro_orm import column

    @dataclass
    class User:
        __tablename__ = "users"

        id: int = 0                      # "id" is the primary key by default
        name: str = ""
        nickname: str = field(default="", metadata=column(name="nick"))
        score: int = field(default=0, metadata=column(ignore=True))

Conventions:
    - Column names are the snake_case field names unless column(name=...).
    - Table name is __tablename__, else the pluralized snake_case class name.
    - Fields with column(ignore=True) are read by queries but never written.
"""

from __future__ import annotations

import dataclasses
import re
import threading
import types
import typing
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

METADATA_KEY = "orm"


@dataclass(frozen=True)
class ColumnOptions:
    """Per-field column options stored under METADATA_KEY."""

    name: str | None = None
    primary_key: bool = False
    ignore: bool = False


def column(
    name: str | None = None, primary_key: bool = False, ignore: bool = False
) -> dict[str, ColumnOptions]:
    """Return dataclass field metadata with column options.

    Args:
        name: Column name override.
        primary_key: Mark the field as (part of) the primary key.
        ignore: Exclude the field from INSERT/UPDATE statements.
    """
    return {METADATA_KEY: ColumnOptions(name, primary_key, ignore)}


def to_db_name(name: str) -> str:
    """Convert a field or class name to snake_case ("UpdatedAt" -> "updated_at")."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return name.lower()


def pluralize(name: str) -> str:
    """Naive English plural used for default table names."""
    if re.search(r"[^aeiou]y$", name):
        return name[:-1] + "ies"
    if name.endswith(("s", "x", "z", "ch", "sh")):
        return name + "es"
    return name + "s"


def is_blank(value: Any) -> bool:
    """True for None and for empty/zero values of simple types."""
    if value is None:
        return True
    if isinstance(value, (str, bytes, int, float, list, tuple, dict, set)):
        return not value
    return False


def _unwrap_optional(annotation: Any) -> Any:
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        return args[0] if len(args) == 1 else None
    return annotation


def coerce(value: Any, annotation: Any) -> Any:
    """Convert a driver value to the annotated field type when it differs.

    Only the conversions drivers actually need are applied: ISO strings to
    datetime/date, integers to bool and float. Anything else is returned as-is.
    """
    if value is None or annotation is None:
        return value
    target = _unwrap_optional(annotation)
    if not isinstance(target, type) or isinstance(value, target):
        return value
    if target is bool and isinstance(value, int):
        return bool(value)
    if target is float and isinstance(value, int):
        return float(value)
    if target is datetime and isinstance(value, str):
        return datetime.fromisoformat(value)
    if target is date and isinstance(value, str):
        return date.fromisoformat(value[:10])
    return value


@dataclass(frozen=True)
class StructField:
    """Static description of one record field."""

    name: str
    db_name: str
    type_: Any
    is_primary_key: bool = False
    is_normal: bool = True


class ModelStruct:
    """Field table for one dataclass record type.

    Attributes:
        model_type: The described dataclass.
        fields: StructFields in declaration order.
        table_name: Unquoted table name.
    """

    def __init__(self, model_type: type):
        self.model_type = model_type
        try:
            hints = typing.get_type_hints(model_type)
        except (NameError, TypeError):
            hints = {}

        fields: list[StructField] = []
        for dc_field in dataclasses.fields(model_type):
            options = dc_field.metadata.get(METADATA_KEY) or ColumnOptions()
            fields.append(
                StructField(
                    name=dc_field.name,
                    db_name=options.name or to_db_name(dc_field.name),
                    type_=hints.get(dc_field.name),
                    is_primary_key=options.primary_key,
                    is_normal=not options.ignore,
                )
            )
        if not any(f.is_primary_key for f in fields):
            fields = [
                dataclasses.replace(f, is_primary_key=True) if f.name == "id" else f
                for f in fields
            ]
        self.fields = fields

        table_name = getattr(model_type, "__tablename__", None)
        self.table_name: str = table_name or pluralize(to_db_name(model_type.__name__))

    @property
    def primary_fields(self) -> list[StructField]:
        return [f for f in self.fields if f.is_primary_key]

    def field_by_name(self, name: str) -> StructField | None:
        """Look up a field by attribute name, column name, or CamelCase alias."""
        db_name = to_db_name(name)
        for f in self.fields:
            if f.name == name or f.db_name == name:
                return f
        for f in self.fields:
            if f.db_name == db_name:
                return f
        return None

    def __repr__(self) -> str:
        return f"<ModelStruct {self.model_type.__name__} table={self.table_name!r}>"


_model_structs: dict[type, ModelStruct] = {}
_model_structs_lock = threading.Lock()


def get_model_struct(value: Any) -> ModelStruct | None:
    """Return the cached ModelStruct for a dataclass type or instance, else None."""
    model_type = value if isinstance(value, type) else type(value)
    if not dataclasses.is_dataclass(model_type):
        return None
    struct = _model_structs.get(model_type)
    if struct is None:
        with _model_structs_lock:
            struct = _model_structs.get(model_type)
            if struct is None:
                struct = ModelStruct(model_type)
                _model_structs[model_type] = struct
    return struct


class Field:
    """A StructField bound to a record instance (instance may be None)."""

    def __init__(self, struct_field: StructField, instance: Any = None):
        self.struct_field = struct_field
        self.instance = instance

    @property
    def name(self) -> str:
        return self.struct_field.name

    @property
    def db_name(self) -> str:
        return self.struct_field.db_name

    @property
    def is_primary_key(self) -> bool:
        return self.struct_field.is_primary_key

    @property
    def is_normal(self) -> bool:
        return self.struct_field.is_normal

    @property
    def value(self) -> Any:
        if self.instance is None or isinstance(self.instance, type):
            return None
        return getattr(self.instance, self.name, None)

    @property
    def is_blank(self) -> bool:
        return is_blank(self.value)

    def set(self, value: Any) -> None:
        """Assign value to the bound instance, coercing it to the field type."""
        if self.instance is None or isinstance(self.instance, type):
            raise TypeError(f"field '{self.name}' is not bound to a record instance")
        setattr(self.instance, self.name, coerce(value, self.struct_field.type_))

    def __repr__(self) -> str:
        return f"<Field {self.name} db_name={self.db_name!r} value={self.value!r}>"


__all__ = [
    "ColumnOptions",
    "column",
    "to_db_name",
    "pluralize",
    "is_blank",
    "coerce",
    "StructField",
    "ModelStruct",
    "get_model_struct",
    "Field",
]
