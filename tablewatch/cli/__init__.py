"""CLI tools: tablewatch watch, tablewatch sql."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
from importlib import metadata

import typer

from tablewatch.config import DebounceOptions, ObserverSettings, load_settings
from tablewatch.exceptions import TableWatchError
from tablewatch.observer import ChangeEvent, TableObserver, build_trigger_function_sql
from tablewatch.observer.sql import trigger_function_name


app = typer.Typer(
    name="tablewatch",
    help="tablewatch: stream PostgreSQL row changes via triggers and NOTIFY.",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if not value:
        return
    try:
        version = metadata.version("tablewatch")
    except metadata.PackageNotFoundError:
        version = "unknown"
    typer.echo(f"tablewatch {version}")
    raise typer.Exit(0)


@app.callback()
def _root(
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True, help="Show version"),
) -> None:
    """tablewatch command line."""


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_event(event: ChangeEvent) -> None:
    typer.echo(json.dumps(event.to_dict(), default=str, ensure_ascii=False))


async def _watch(
    tables: list[str],
    channel: str,
    settings: ObserverSettings,
    debounce: float | None,
) -> None:
    observer = TableObserver(settings.database_url, channel, settings=settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):  # Windows event loop
            loop.add_signal_handler(sig, stop.set)

    def _on_error(error: Exception) -> None:
        typer.echo(f"error: {error}", err=True)

    observer.on_error(_on_error)
    try:
        if debounce is None:
            await observer.subscribe(tables, _print_event)
        else:
            await observer.subscribe_debounced(
                tables,
                lambda event: True,
                lambda: typer.echo("trigger fired"),
                DebounceOptions(delay=debounce),
            )
        typer.echo(f"Watching {', '.join(tables)} on channel {channel}. Press Ctrl+C to stop.", err=True)
        await stop.wait()
    finally:
        await observer.close()


@app.command("watch")
def watch_command(
    tables: list[str] = typer.Argument(..., help="Tables to observe"),
    channel: str = typer.Option("tablewatch", "--channel", "-c", help="NOTIFY channel name"),
    database_url: str = typer.Option("", "--database-url", help="PostgreSQL URL (default: TABLEWATCH_DATABASE_URL)"),
    debounce: float | None = typer.Option(None, "--debounce", help="Coalesce changes into trigger events (seconds)"),
    config: str = typer.Option("", "--config", help="Optional tablewatch.yaml path"),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level"),
) -> None:
    """Print every change on TABLES as one JSON line."""
    _configure_logging(log_level)
    try:
        settings = load_settings(config or None, database_url=database_url or None)
        asyncio.run(_watch(tables, channel, settings, debounce))
    except TableWatchError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc


@app.command("sql")
def sql_command(
    channel: str = typer.Option("tablewatch", "--channel", "-c", help="NOTIFY channel name"),
    prefix: str = typer.Option("tblobs", "--prefix", help="Trigger function name prefix"),
    fragment_size: int = typer.Option(7950, "--fragment-size", help="Maximum bytes per notification page"),
) -> None:
    """Print the trigger function installed for CHANNEL."""
    try:
        sql = build_trigger_function_sql(trigger_function_name(channel, prefix), channel, fragment_size)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(2) from exc
    typer.echo(sql.strip())


def main() -> None:
    app()
