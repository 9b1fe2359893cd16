# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Session configuration.

- OrmConfig: Dataclass with connection string and logging settings
- config_from_env(): Factory to build config from GENRO_ORM_* env vars

Usage:
    config = config_from_env()
    db = DB.from_config(config)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .db import LogMode

_LOG_MODES = {"default": LogMode.DEFAULT, "silent": LogMode.SILENT}


@dataclass
class OrmConfig:
    """Configuration for sessions built with DB.from_config().

    Attributes:
        db_path: SQLite path or PostgreSQL URL.
        log_mode: SQL statement logging of the session.
        log_level: Level applied to the genro_orm logger by configure_logging().
    """

    db_path: str = "/data/orm.db"
    """SQLite/PostgreSQL connection string."""

    log_mode: LogMode = LogMode.DEFAULT
    """DEFAULT logs every statement at DEBUG, SILENT logs none."""

    log_level: str = "WARNING"
    """Logging level name for the genro_orm logger."""

    def configure_logging(self) -> None:
        """Apply log_level to the package logger."""
        logging.getLogger("genro_orm").setLevel(self.log_level.upper())


def config_from_env() -> OrmConfig:
    """Build OrmConfig from GENRO_ORM_* environment variables.

    Environment variables:
        GENRO_ORM_DB: Connection string (default: /data/orm.db)
        GENRO_ORM_LOG_MODE: "default" or "silent" (default: default)
        GENRO_ORM_LOG_LEVEL: Logging level name (default: WARNING)

    Raises:
        ValueError: If GENRO_ORM_LOG_MODE is not a known mode.
    """
    mode_name = os.environ.get("GENRO_ORM_LOG_MODE", "default").lower()
    if mode_name not in _LOG_MODES:
        raise ValueError(
            f"Invalid GENRO_ORM_LOG_MODE: '{mode_name}'. Expected one of: {', '.join(_LOG_MODES)}"
        )
    return OrmConfig(
        db_path=os.environ.get("GENRO_ORM_DB", "/data/orm.db"),
        log_mode=_LOG_MODES[mode_name],
        log_level=os.environ.get("GENRO_ORM_LOG_LEVEL", "WARNING"),
    )


__all__ = ["OrmConfig", "config_from_env"]
