# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Callback registry: ordered, named processors per operation kind.

Sessions never generate SQL themselves. A terminal call builds a Scope and
asks the registry to run every processor registered for the operation kind,
in registration order. Behavior is extended by registering processors
around the defaults, or changed by replacing them.

Usage:
    registry = CallbackRegistry.with_defaults()

    async def audit(scope):
        ...

    registry.create().before("orm:create").register("app:audit", audit)
    registry.query().replace("orm:query", my_query)
    registry.delete().remove("orm:delete")

    db = connect("/data/app.db", callbacks=registry)

The registry is meant to be configured once at startup and shared by every
session; registration is not synchronized with in-flight dispatch.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from .scope import Scope

logger = logging.getLogger(__name__)

Processor = Callable[["Scope"], Any]


class CallbackKind(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    QUERY = "query"
    ROW_QUERY = "row_query"


@dataclass
class RowQueryResult:
    """Holder a row-query processor fills to answer DB.row() itself."""

    row: dict[str, Any] | None = None
    done: bool = False


@dataclass
class RowsQueryResult:
    """Holder a row-query processor fills to answer DB.rows() itself."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    error: BaseException | None = None
    done: bool = False


@dataclass
class CallbackEntry:
    """A registered processor."""

    name: str
    processor: Processor


class CallbackProcessor:
    """Registration builder for one kind, carrying before/after placement hints.

    Hints are resolved against already registered names when register() runs;
    a hint naming an unknown processor is ignored and the entry is appended.
    """

    def __init__(self, registry: CallbackRegistry, kind: CallbackKind):
        self.registry = registry
        self.kind = kind
        self._before: str | None = None
        self._after: str | None = None

    def before(self, name: str) -> CallbackProcessor:
        self._before = name
        return self

    def after(self, name: str) -> CallbackProcessor:
        self._after = name
        return self

    def register(self, name: str, processor: Processor) -> CallbackProcessor:
        """Register processor under name, honoring before/after hints."""
        entries = self.registry._entries[self.kind]
        existing = _index_of(entries, name)
        if existing is not None:
            logger.warning("Replacing %s callback %r on re-registration", self.kind.value, name)
            entries[existing] = CallbackEntry(name, processor)
            return self

        position = len(entries)
        if self._before is not None:
            index = _index_of(entries, self._before)
            if index is not None:
                position = index
        elif self._after is not None:
            index = _index_of(entries, self._after)
            if index is not None:
                position = index + 1
        entries.insert(position, CallbackEntry(name, processor))
        logger.debug("Registered %s callback %r at position %d", self.kind.value, name, position)
        return self

    def replace(self, name: str, processor: Processor) -> CallbackProcessor:
        """Swap the processor registered as name; no-op if name is unknown."""
        entries = self.registry._entries[self.kind]
        index = _index_of(entries, name)
        if index is not None:
            entries[index] = CallbackEntry(name, processor)
            logger.debug("Replaced %s callback %r", self.kind.value, name)
        return self

    def remove(self, name: str) -> CallbackProcessor:
        """Drop the processor registered as name; no-op if name is unknown."""
        entries = self.registry._entries[self.kind]
        index = _index_of(entries, name)
        if index is not None:
            del entries[index]
            logger.debug("Removed %s callback %r", self.kind.value, name)
        return self

    def get(self, name: str) -> Processor | None:
        entries = self.registry._entries[self.kind]
        index = _index_of(entries, name)
        return entries[index].processor if index is not None else None


def _index_of(entries: list[CallbackEntry], name: str) -> int | None:
    for index, entry in enumerate(entries):
        if entry.name == name:
            return index
    return None


class CallbackRegistry:
    """Processors per CallbackKind, in dispatch order.

    Build one with with_defaults() at startup and pass it to every session
    (sessions derived from each other share it).
    """

    def __init__(self) -> None:
        self._entries: dict[CallbackKind, list[CallbackEntry]] = {kind: [] for kind in CallbackKind}

    @classmethod
    def with_defaults(cls) -> CallbackRegistry:
        """Registry holding the default query/create/update/delete processors."""
        from .processors import register_defaults

        registry = cls()
        register_defaults(registry)
        return registry

    def create(self) -> CallbackProcessor:
        return CallbackProcessor(self, CallbackKind.CREATE)

    def update(self) -> CallbackProcessor:
        return CallbackProcessor(self, CallbackKind.UPDATE)

    def delete(self) -> CallbackProcessor:
        return CallbackProcessor(self, CallbackKind.DELETE)

    def query(self) -> CallbackProcessor:
        return CallbackProcessor(self, CallbackKind.QUERY)

    def row_query(self) -> CallbackProcessor:
        return CallbackProcessor(self, CallbackKind.ROW_QUERY)

    def names(self, kind: CallbackKind) -> list[str]:
        return [entry.name for entry in self._entries[kind]]

    def processors(self, kind: CallbackKind) -> list[Processor]:
        return [entry.processor for entry in self._entries[kind]]

    async def invoke(self, kind: CallbackKind, scope: Scope) -> Scope:
        """Run every processor of kind on scope, in order.

        Processors may be coroutine functions or plain functions. Dispatch
        never stops early: processors check scope.has_error() themselves.
        """
        for processor in self.processors(kind):
            result = processor(scope)
            if inspect.isawaitable(result):
                await result
        return scope

    def __repr__(self) -> str:
        counts = ", ".join(f"{kind.value}={len(entries)}" for kind, entries in self._entries.items())
        return f"<CallbackRegistry {counts}>"


__all__ = [
    "CallbackKind",
    "CallbackEntry",
    "CallbackProcessor",
    "CallbackRegistry",
    "RowQueryResult",
    "RowsQueryResult",
]
