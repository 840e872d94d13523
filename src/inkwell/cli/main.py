"""Inkwell CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from inkwell.cli.chat import chat_cmd
from inkwell.cli.init import init_cmd
from inkwell.cli.journal import entries_cmd, journal_app
from inkwell.cli.search import reembed_cmd, search_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("inkwell")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"inkwell {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="inkwell",
    help=(
        "Inkwell — a private, conversational journal.\n\n"
        "  inkwell chat     Write an entry as a conversation; past entries are recalled.\n"
        "  inkwell search   Find finished entries similar to a query."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Inkwell — a private, conversational journal."""


app.command("init")(init_cmd)
app.command("entries")(entries_cmd)
app.command("chat")(chat_cmd)
app.command("search")(search_cmd)
app.command("reembed")(reembed_cmd)
app.add_typer(journal_app, name="journal")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Inkwell version."""
    typer.echo(f"inkwell {_installed_version()}")


if __name__ == "__main__":
    app()
