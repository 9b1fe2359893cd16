# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""CLI entry point for genro-orm (python -m genro_orm).

Usage:
    python -m genro_orm --help
    python -m genro_orm query --db ./app.db "SELECT * FROM users WHERE age > ?" 18
"""

from .cli import main

if __name__ == "__main__":
    main()
