"""Helpers shared by the CLI commands."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from inkwell.cli.errors import err_inkwell, err_journal_not_found, err_no_db
from inkwell.config import ConfigError, InkwellConfig, load_config
from inkwell.db.connection import Database
from inkwell.db.models import Journal
from inkwell.db.repository import EntryStore
from inkwell.db.schema import initialize
from inkwell.errors import InkwellError
from inkwell.log import setup_logging

console = Console()

DEFAULT_DB = Path(".inkwell.db")


def load_settings() -> InkwellConfig:
    """Load config and configure logging; exit 1 on an invalid config."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from exc
    setup_logging(cfg.logging.level)
    return cfg


def open_db(db_path: Path, *, must_exist: bool = True) -> sqlite3.Connection:
    if must_exist and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


def resolve_journal(store: EntryStore, name: str) -> Journal:
    journal = store.get_journal_by_name(name)
    if journal is None:
        console.print(err_journal_not_found(name))
        raise typer.Exit(1)
    return journal


def fail(exc: InkwellError) -> typer.Exit:
    """Print *exc* and return the Exit to raise."""
    console.print(err_inkwell(exc))
    return typer.Exit(1)
