# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""CLI entry point for genro-orm (genro-orm command).

Small operational commands over a session: run a query and print its rows,
execute a statement, list the default processors.

Commands:
    query: Run a SELECT and print the rows as a table
    exec: Execute a statement and print the affected-row count
    callbacks: List the default processors per operation kind
"""

from __future__ import annotations

import asyncio
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from .callbacks import CallbackKind, CallbackRegistry
from .config import config_from_env
from .db import DB, LogMode, connect

console = Console()

db_option = click.option(
    "--db",
    "-d",
    "dsn",
    envvar="GENRO_ORM_DB",
    required=True,
    help="SQLite path or PostgreSQL URL (default: $GENRO_ORM_DB).",
)


def _open(dsn: str, verbose: bool) -> DB:
    config = config_from_env()
    config.configure_logging()
    return connect(dsn, log_mode=LogMode.DEFAULT if verbose else config.log_mode)


async def _query(db: DB, sql: str, args: tuple[str, ...]) -> list[dict[str, Any]]:
    try:
        return await db.raw(sql, *args).rows()
    finally:
        await db.close()


async def _exec(db: DB, sql: str, args: tuple[str, ...]) -> DB:
    try:
        return await db.exec(sql, *args)
    finally:
        await db.close()


# ============================================================================
# CLI Commands
# ============================================================================


@click.group()
@click.version_option(package_name="genro-orm")
def main() -> None:
    """Genro ORM - fluent async query builder."""
    pass


@main.command("query")
@db_option
@click.option("--verbose", "-v", is_flag=True, help="Log every statement.")
@click.argument("sql")
@click.argument("args", nargs=-1)
def query_cmd(dsn: str, verbose: bool, sql: str, args: tuple[str, ...]) -> None:
    """Run SQL (with '?' placeholders bound to ARGS) and print the rows."""
    try:
        rows = asyncio.run(_query(_open(dsn, verbose), sql, args))
    except Exception as e:
        raise click.ClickException(str(e)) from e

    if not rows:
        console.print("[dim]No rows.[/dim]")
        return

    table = Table(title=f"{len(rows)} row(s)")
    for name in rows[0]:
        table.add_column(name, style="cyan")
    for row in rows:
        table.add_row(*("[dim]NULL[/dim]" if v is None else str(v) for v in row.values()))
    console.print(table)


@main.command("exec")
@db_option
@click.option("--verbose", "-v", is_flag=True, help="Log every statement.")
@click.argument("sql")
@click.argument("args", nargs=-1)
def exec_cmd(dsn: str, verbose: bool, sql: str, args: tuple[str, ...]) -> None:
    """Execute SQL (with '?' placeholders bound to ARGS)."""
    try:
        result = asyncio.run(_exec(_open(dsn, verbose), sql, args))
    except Exception as e:
        raise click.ClickException(str(e)) from e
    if result.error is not None:
        raise click.ClickException(str(result.error))
    console.print(f"[green]OK[/green] ({result.rows_affected} row(s) affected)")


@main.command("callbacks")
def callbacks_cmd() -> None:
    """List the default processors in dispatch order."""
    registry = CallbackRegistry.with_defaults()

    table = Table(title="Default Callbacks")
    table.add_column("Kind", style="cyan")
    table.add_column("Position", justify="right")
    table.add_column("Name")

    for kind in CallbackKind:
        names = registry.names(kind)
        if not names:
            table.add_row(kind.value, "[dim]-[/dim]", "[dim]none[/dim]")
        for position, name in enumerate(names, 1):
            table.add_row(kind.value, str(position), name)

    console.print(table)


if __name__ == "__main__":
    main()
