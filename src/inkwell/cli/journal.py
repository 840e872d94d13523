"""inkwell journal commands.

Commands:
  inkwell journal create NAME        — create a journal
  inkwell journal list               — show journals with entry counts
  inkwell journal rag NAME on|off    — toggle recall of past entries
  inkwell journal delete NAME        — delete a journal and all its entries
  inkwell entries NAME               — list a journal's entries
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from inkwell.cli.common import DEFAULT_DB, console, fail, open_db, resolve_journal
from inkwell.cli.errors import warn_embedding_missing
from inkwell.db.models import EntryStatus, Journal
from inkwell.db.repository import EntryStore
from inkwell.errors import InkwellError

journal_app = typer.Typer(
    name="journal",
    help="Manage journals (create, list, rag, delete).",
    add_completion=False,
)

_DbOption = Annotated[Path, typer.Option("--db", help="Path to the journal database.")]


class Toggle(str, Enum):
    on = "on"
    off = "off"


@journal_app.command("create")
def journal_create_cmd(
    name: Annotated[str, typer.Argument(help="Journal name, e.g. 'Work'.")],
    description: Annotated[
        str, typer.Option("--description", "-d", help="Short description.")
    ] = "",
    no_rag: Annotated[
        bool,
        typer.Option("--no-rag", help="Never recall past entries in conversations."),
    ] = False,
    db: _DbOption = DEFAULT_DB,
) -> None:
    """Create a new journal."""
    conn = open_db(db)
    try:
        store = EntryStore(conn)
        try:
            journal = store.create_journal(
                Journal(name=name, description=description, rag_enabled=not no_rag)
            )
        except InkwellError as exc:
            raise fail(exc) from exc
        console.print(f"[green]✓[/] Created journal [bold]{journal.name}[/]")
    finally:
        conn.close()


@journal_app.command("list")
def journal_list_cmd(db: _DbOption = DEFAULT_DB) -> None:
    """List journals with their entry counts."""
    conn = open_db(db)
    try:
        store = EntryStore(conn)
        journals = store.list_journals()
        if not journals:
            console.print("[yellow]No journals yet.[/]  Run:  inkwell journal create <name>")
            raise typer.Exit(0)

        table = Table(title="Journals", show_header=True, header_style="bold")
        table.add_column("Name", style="bold")
        table.add_column("Description")
        table.add_column("Drafts", justify="right")
        table.add_column("Finished", justify="right")
        table.add_column("Recall")
        for journal in journals:
            table.add_row(
                journal.name,
                journal.description,
                str(store.count_entries(journal.id, EntryStatus.DRAFT)),
                str(store.count_entries(journal.id, EntryStatus.FINALIZED)),
                "[green]on[/]" if journal.rag_enabled else "[dim]off[/]",
            )
        console.print(table)
    finally:
        conn.close()


@journal_app.command("rag")
def journal_rag_cmd(
    name: Annotated[str, typer.Argument(help="Journal name.")],
    state: Annotated[Toggle, typer.Argument(help="on or off.")],
    db: _DbOption = DEFAULT_DB,
) -> None:
    """Turn recall of past entries on or off for a journal."""
    conn = open_db(db)
    try:
        store = EntryStore(conn)
        journal = resolve_journal(store, name)
        store.set_rag_enabled(journal.id, state is Toggle.on)
        console.print(f"[green]✓[/] Recall for [bold]{journal.name}[/] is {state.value}")
    finally:
        conn.close()


@journal_app.command("delete")
def journal_delete_cmd(
    name: Annotated[str, typer.Argument(help="Journal name.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    db: _DbOption = DEFAULT_DB,
) -> None:
    """Delete a journal and every entry in it."""
    conn = open_db(db)
    try:
        store = EntryStore(conn)
        journal = resolve_journal(store, name)
        count = store.count_entries(journal.id)
        console.print(f"\nDelete journal: [bold]{journal.name}[/]  ({count} entries)")
        if not yes and not typer.confirm("This cannot be undone. Continue?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)
        store.delete_journal(journal.id)
        console.print(f"[green]✓[/] Deleted: {journal.name}")
    finally:
        conn.close()


def entries_cmd(
    name: Annotated[str, typer.Argument(help="Journal name.")],
    status: Annotated[
        EntryStatus | None,
        typer.Option("--status", help="Only drafts or finalized entries."),
    ] = None,
    db: _DbOption = DEFAULT_DB,
) -> None:
    """List a journal's entries, newest first."""
    conn = open_db(db)
    try:
        store = EntryStore(conn)
        journal = resolve_journal(store, name)
        entries = store.list_entries(journal.id, status)
        if not entries:
            console.print(f"[yellow]No entries in {journal.name}.[/]")
            raise typer.Exit(0)

        table = Table(title=journal.name, show_header=True, header_style="bold")
        table.add_column("Entry")
        table.add_column("Status")
        table.add_column("Created")
        table.add_column("Messages", justify="right")
        table.add_column("Summary")
        for entry in entries:
            table.add_row(
                entry.id[:8],
                "[green]finished[/]" if entry.is_finalized else "[yellow]draft[/]",
                entry.created_at[:16].replace("T", " "),
                str(len(entry.messages)),
                entry.summary or "",
            )
        console.print(table)

        missing = len(store.list_missing_embeddings(journal.id))
        if missing and journal.rag_enabled:
            console.print(warn_embedding_missing(missing))
    finally:
        conn.close()
