"""Inkwell rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from inkwell.cli.errors import err_no_db
    console.print(err_no_db(".inkwell.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from inkwell.errors import AuthError, InkwellError, QuotaExceeded
from inkwell.rag.llm_client import api_key_env, provider_of


def err_no_db(db_path: str = ".inkwell.db") -> str:
    """No journal database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  inkwell init"
    )


def err_journal_not_found(name: str) -> str:
    return (
        f"[red]Error:[/] No journal named '{name}'.\n"
        "  Run:  inkwell journal list  to see your journals."
    )


def err_no_api_key(model: str) -> str:
    """No API key for the provider of *model*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    provider = provider_of(model)
    env_var = api_key_env(model)
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_inkwell(exc: InkwellError) -> str:
    """Render any Inkwell error as a one-line message plus a hint where one exists."""
    hint = ""
    if isinstance(exc, AuthError):
        hint = "\n  Check the API key environment variable for your provider."
    elif isinstance(exc, QuotaExceeded):
        hint = "\n  Check your provider plan or wait before trying again."
    return f"[red]Error:[/] {exc.user_message}\n  [dim]{exc}[/]{hint}"


def render_system_error(content: str) -> str:
    """Inline rendering of a system_error message in the chat transcript."""
    return f"[yellow]⚠ {content}[/]"


def warn_embedding_missing(count: int) -> str:
    return (
        f"[yellow]⚠[/] {count} finished entr{'y' if count == 1 else 'ies'} "
        "cannot be recalled in conversations yet.\n"
        "  Run:  inkwell reembed <journal>"
    )
