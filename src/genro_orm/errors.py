# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exceptions recorded on sessions by the default processors."""

from __future__ import annotations

from typing import Any


class OrmError(Exception):
    """Base class for errors raised or recorded by genro_orm."""


class UnsupportedDestinationError(OrmError):
    """Query destination is neither a dataclass instance nor a list."""

    def __init__(self, destination: Any):
        self.destination = destination
        super().__init__(
            f"unsupported destination {type(destination).__name__!r}, "
            "should be a list or a dataclass instance"
        )


class EmptyInsertError(OrmError):
    """Record has no persisted column besides its primary key."""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"no insertable columns for '{table}'")


class MissingTableError(OrmError):
    """Neither a model nor an explicit table name identifies the table."""

    def __init__(self, value: Any = None):
        self.value = value
        super().__init__(
            f"cannot determine table name for {type(value).__name__!r}; "
            "use a dataclass model or table()"
        )


class RecordNotFoundError(OrmError):
    """Recorded by first()/last() when no row matched."""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Record not found in '{table}'")


class InvalidRecordError(OrmError):
    """Insert/update target is not a dataclass record instance."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"expected a dataclass record instance, got {type(value).__name__!r}")


class InvalidTransactionError(OrmError):
    """begin() on a session that is already transactional or finished."""


__all__ = [
    "OrmError",
    "UnsupportedDestinationError",
    "EmptyInsertError",
    "MissingTableError",
    "RecordNotFoundError",
    "InvalidRecordError",
    "InvalidTransactionError",
]
