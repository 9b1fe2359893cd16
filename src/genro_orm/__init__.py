# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""genro-orm: fluent, callback-driven async query builder."""

from .callbacks import CallbackKind, CallbackRegistry, RowQueryResult, RowsQueryResult
from .config import OrmConfig, config_from_env
from .db import DB, LogMode, connect
from .errors import (
    EmptyInsertError,
    InvalidRecordError,
    InvalidTransactionError,
    MissingTableError,
    OrmError,
    RecordNotFoundError,
    UnsupportedDestinationError,
)
from .model import column
from .scope import Scope
from .search import SearchCriteria, SqlExpr, expr

__version__ = "0.1.0"

__all__ = [
    "DB",
    "LogMode",
    "connect",
    "OrmConfig",
    "config_from_env",
    "CallbackKind",
    "CallbackRegistry",
    "RowQueryResult",
    "RowsQueryResult",
    "Scope",
    "SearchCriteria",
    "SqlExpr",
    "expr",
    "column",
    "OrmError",
    "EmptyInsertError",
    "InvalidRecordError",
    "InvalidTransactionError",
    "MissingTableError",
    "RecordNotFoundError",
    "UnsupportedDestinationError",
]
