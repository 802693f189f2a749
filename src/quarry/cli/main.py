"""Quarry CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from quarry.cli.ask import ask_cmd
from quarry.cli.chat import chat_cmd
from quarry.cli.common import configure_logging
from quarry.cli.index import index_cmd
from quarry.cli.remove import clean_cmd, clear_cmd, remove_cmd
from quarry.cli.search import search_cmd
from quarry.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("quarry")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"quarry {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="quarry",
    help=(
        "Quarry: local document search and cited answers.\n\n"
        "  quarry index   Index a folder of PDFs and text documents.\n"
        "  quarry ask     Answer a question from the indexed documents."
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
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """Quarry: local document search and cited answers."""
    configure_logging(verbose)


app.command("index")(index_cmd)
app.command("search")(search_cmd)
app.command("ask")(ask_cmd)
app.command("chat")(chat_cmd)
app.command("status")(status_cmd)
app.command("remove")(remove_cmd)
app.command("clean")(clean_cmd)
app.command("clear")(clear_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Quarry version."""
    typer.echo(f"quarry {_installed_version()}")


if __name__ == "__main__":
    app()
