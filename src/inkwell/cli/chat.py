"""inkwell chat — write a journal entry as a conversation.

Starts a new draft (or resumes one with --entry) and reads messages from
the terminal until the entry is finished, discarded, or left for later.

In-chat commands:
  /finish   summarise and finish the entry (asks for confirmation)
  /cancel   discard the draft (asks for confirmation)
  /quit     leave; the draft stays and can be resumed later
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from inkwell.cli.common import DEFAULT_DB, console, fail, load_settings, open_db, resolve_journal
from inkwell.cli.errors import err_inkwell, err_no_api_key, render_system_error
from inkwell.config import InkwellConfig
from inkwell.conversation import ConversationState, ConversationView, JournalSession
from inkwell.db.models import EntryStatus, Message, MessageRole
from inkwell.errors import InkwellError
from inkwell.rag.llm_client import credential_status

_COMMANDS = "/finish  /cancel  /quit"


def chat_cmd(
    journal: Annotated[str, typer.Argument(help="Journal name.")],
    entry: Annotated[
        str | None,
        typer.Option("--entry", "-e", help="Resume a draft (id or id prefix)."),
    ] = None,
    db: Annotated[Path, typer.Option("--db", help="Path to the journal database.")] = DEFAULT_DB,
) -> None:
    """Write in a journal, one conversation per entry."""
    cfg = load_settings()
    for model in (cfg.generation.model, cfg.embedding.model):
        if not credential_status(model):
            console.print(err_no_api_key(model))
            raise typer.Exit(1)

    conn = open_db(db)
    try:
        session = JournalSession.create(conn, cfg)
        target = resolve_journal(session.entries, journal)
        try:
            view = _open_entry(session, target.id, entry, cfg)
        except InkwellError as exc:
            raise fail(exc) from exc
        asyncio.run(_chat_loop(session, view))
    finally:
        conn.close()


def _open_entry(
    session: JournalSession, journal_id: str, entry_ref: str | None, cfg: InkwellConfig
) -> ConversationView:
    if entry_ref is not None:
        return session.resume_entry(_match_entry_id(session, journal_id, entry_ref))

    # Single-active-draft policy lives here, not in the core.
    if cfg.conversation.single_active_draft:
        drafts = session.entries.list_entries(journal_id, EntryStatus.DRAFT)
        if drafts:
            console.print("[dim]Resuming your open draft.[/]")
            return session.resume_entry(drafts[0].id)
    return session.start_entry(journal_id)


def _match_entry_id(session: JournalSession, journal_id: str, ref: str) -> str:
    matches = [e.id for e in session.entries.list_entries(journal_id) if e.id.startswith(ref)]
    if len(matches) != 1:
        console.print(
            f"[red]Error:[/] '{ref}' matches {len(matches)} entries.\n"
            "  Run:  inkwell entries <journal>  to see entry ids."
        )
        raise typer.Exit(1)
    return matches[0]


async def _chat_loop(session: JournalSession, view: ConversationView) -> None:
    console.print(f"[dim]Entry {view.entry_id[:8]} — commands: {_COMMANDS}[/]\n")
    for message in view.messages:
        _print_message(message)

    while True:
        try:
            text = await asyncio.to_thread(console.input, "[bold]you ›[/] ")
        except EOFError:
            text = "/quit"
        command = text.strip().lower()

        if command == "/quit":
            console.print("[dim]Draft saved. Resume with --entry " f"{view.entry_id[:8]}[/]")
            return
        if command in ("/finish", "/cancel"):
            confirmed = await asyncio.to_thread(
                typer.confirm,
                "Finish and summarise this entry?" if command == "/finish" else "Discard this entry?",
                default=False,
            )
            try:
                if command == "/finish":
                    view = await session.finish_entry(view.entry_id, confirmed)
                else:
                    view = session.cancel_entry(view.entry_id, confirmed)
            except InkwellError as exc:
                console.print(err_inkwell(exc))
                continue
            if _report_close(view):
                return
            continue
        if not command:
            continue

        try:
            with console.status("[dim]thinking…[/]"):
                view = await session.submit_message(view.entry_id, text)
        except InkwellError as exc:
            console.print(err_inkwell(exc))
            continue
        _print_message(view.messages[-1])


def _report_close(view: ConversationView) -> bool:
    """Print the outcome of /finish or /cancel; True when the chat should end."""
    if view.state is ConversationState.CANCELLED:
        console.print("[dim]Entry discarded.[/]")
        return True
    if view.state is ConversationState.FINALIZED:
        console.print(f"\n[bold]Summary:[/] {view.summary}")
        if view.error is not None:
            console.print(
                "[yellow]⚠[/] Saved, but it can't be recalled in future conversations yet.\n"
                "  Run:  inkwell reembed <journal>"
            )
        return True
    # summary failed; still active
    _print_message(view.messages[-1])
    return False


def _print_message(message: Message) -> None:
    if message.role is MessageRole.USER:
        console.print(f"[bold]you ›[/] {message.content}")
    elif message.role is MessageRole.ASSISTANT:
        console.print(f"[cyan]inkwell ›[/] {message.content}\n")
    else:
        console.print(render_system_error(message.content) + "\n")
