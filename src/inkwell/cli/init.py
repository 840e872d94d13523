"""inkwell init — create the journal database and global config.

Creates:
  .inkwell.db              — empty journal database with schema
  ~/.inkwell/config.yaml   — global model config (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from inkwell.cli.common import DEFAULT_DB, console, open_db
from inkwell.config import ensure_global_config


def init_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the journal database (created if missing)."),
    ] = DEFAULT_DB,
    global_config: Annotated[
        Path | None,
        typer.Option("--global-config", hidden=True, help="Override global config path (for testing)."),
    ] = None,
) -> None:
    """Create an empty journal database."""
    existed = db.exists()
    db.parent.mkdir(parents=True, exist_ok=True)
    conn = open_db(db, must_exist=False)
    conn.close()

    if existed:
        console.print(f"[yellow]⚠[/]  {db} already exists — schema is up to date.")
    else:
        console.print(f"  [green]✓[/] {db}")

    cfg_path = ensure_global_config(global_config)
    console.print(f"  [green]✓[/] {cfg_path}")
    console.print("\nNext:  inkwell journal create <name>")
