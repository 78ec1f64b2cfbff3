from __future__ import annotations

import sys
from datetime import datetime, timezone
from typing import Optional

import typer

from reportstore.config import get_settings
from reportstore.domain.models import GraphType
from reportstore.errors import ReportStoreError
from reportstore.infrastructure.pool import PoolManager
from reportstore.reporter import print_points, print_result
from reportstore.store import ReportingStore
from reportstore.utils.logging import configure_logging

app = typer.Typer(help="reportstore administration CLI.")


def _build_store() -> ReportingStore:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    return ReportingStore(PoolManager.from_settings(settings))


@app.command()
def info() -> None:
    """
    Show effective configuration and whether DB storage is enabled.
    """
    settings = get_settings()
    store = _build_store()
    try:
        db = store.pool.settings
        typer.echo(f"properties={settings.db_properties_file} enabled={store.is_enabled()}")
        if db is not None:
            typer.echo(
                f"DB={db.url} user={db.user} pool={db.pool_size} "
                f"timeout={db.connection_timeout:g}s"
            )
    finally:
        store.close()


@app.command()
def purge(
    now: Optional[datetime] = typer.Option(
        None,
        "--now",
        help="Reference instant for retention cutoffs (default: current UTC time).",
    ),
) -> None:
    """
    Remove minute and hourly rows older than their retention windows.
    """
    store = _build_store()
    try:
        if now is not None and now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        print_result(store.clean_old_reporting_records(now))
    finally:
        store.close()


@app.command()
def query(
    graph_type: GraphType = typer.Option(
        GraphType.MINUTE,
        "--graph-type",
        "-g",
        case_sensitive=False,
        help="Granularity table to read.",
    ),
    since: int = typer.Option(0, "--since", help="Only points with ts (ms) greater than this."),
    limit: int = typer.Option(100, "--limit", "-l", min=1, help="Maximum number of points."),
) -> None:
    """
    Show the most recent reporting points of one granularity.
    """
    store = _build_store()
    try:
        print_points(store.select_reporting(since, limit, graph_type), graph_type)
    finally:
        store.close()


@app.command()
def execute(sql: str = typer.Argument(..., help="SQL statement to execute and commit.")) -> None:
    """
    Execute one SQL statement. Failures are reported and exit with status 1.
    """
    store = _build_store()
    try:
        result = store.execute_sql(sql)
    except ReportStoreError as exc:
        typer.echo(f"Error: {exc}", err=True)
        cause = exc.__cause__
        if cause is not None:
            typer.echo(f"Cause: {cause}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    print_result(result)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
