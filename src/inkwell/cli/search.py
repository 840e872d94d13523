"""inkwell search / reembed — recall past entries.

Commands:
  inkwell search NAME "query"   — rank finished entries by similarity
  inkwell reembed NAME          — embed finished entries that have no vector
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from inkwell.cli.common import DEFAULT_DB, console, fail, load_settings, open_db, resolve_journal
from inkwell.cli.errors import err_no_api_key
from inkwell.config import RetrievalCfg
from inkwell.conversation import JournalSession
from inkwell.errors import InkwellError
from inkwell.rag.llm_client import credential_status


def search_cmd(
    journal: Annotated[str, typer.Argument(help="Journal name.")],
    query: Annotated[str, typer.Argument(help="What to look for.")],
    top_k: Annotated[
        int | None, typer.Option("--top-k", "-k", help="Maximum number of results.")
    ] = None,
    min_score: Annotated[
        float | None, typer.Option("--min-score", help="Minimum cosine similarity.")
    ] = None,
    db: Annotated[Path, typer.Option("--db", help="Path to the journal database.")] = DEFAULT_DB,
) -> None:
    """Find finished entries similar to QUERY."""
    cfg = load_settings()
    if not credential_status(cfg.embedding.model):
        console.print(err_no_api_key(cfg.embedding.model))
        raise typer.Exit(1)

    options = RetrievalCfg(
        top_k=top_k if top_k is not None else cfg.retrieval.top_k,
        min_score=min_score if min_score is not None else cfg.retrieval.min_score,
    )

    conn = open_db(db)
    try:
        session = JournalSession.create(conn, cfg)
        target = resolve_journal(session.entries, journal)
        try:
            results = asyncio.run(session.search(target.id, query, options))
        except InkwellError as exc:
            raise fail(exc) from exc

        if not results:
            console.print(f"[yellow]No entries in {target.name} match that query.[/]")
            raise typer.Exit(0)

        table = Table(title=f"{target.name}: {query}", show_header=True, header_style="bold")
        table.add_column("Score", justify="right")
        table.add_column("Entry")
        table.add_column("Summary")
        for item in results:
            table.add_row(f"{item.score:.3f}", item.entry_id[:8], item.summary)
        console.print(table)
    finally:
        conn.close()


def reembed_cmd(
    journal: Annotated[str, typer.Argument(help="Journal name.")],
    db: Annotated[Path, typer.Option("--db", help="Path to the journal database.")] = DEFAULT_DB,
) -> None:
    """Embed finished entries that were saved without a vector."""
    cfg = load_settings()
    if not credential_status(cfg.embedding.model):
        console.print(err_no_api_key(cfg.embedding.model))
        raise typer.Exit(1)

    conn = open_db(db)
    try:
        session = JournalSession.create(conn, cfg)
        target = resolve_journal(session.entries, journal)
        missing = len(session.entries.list_missing_embeddings(target.id))
        if not missing:
            console.print(f"[green]✓[/] Every finished entry in {target.name} can be recalled.")
            raise typer.Exit(0)
        try:
            repaired = asyncio.run(session.reembed_missing(target.id))
        except InkwellError as exc:
            raise fail(exc) from exc

        console.print(f"[green]✓[/] Re-embedded {repaired} of {missing} entries")
        if repaired < missing:
            console.print(
                f"[yellow]⚠[/] {missing - repaired} could not be embedded. Try again later."
            )
            raise typer.Exit(1)
    finally:
        conn.close()
