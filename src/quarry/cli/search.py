"""quarry search: semantic search over the index, one row per file."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.common import console, load_cfg_or_exit, open_services
from quarry.cli.errors import err_empty_query, err_provider_unavailable
from quarry.exceptions import EmptyInputError, ProviderUnavailableError
from quarry.rag.retriever import SearchResult

_SNIPPET_CHARS = 160


def search_cmd(
    query: Annotated[str, typer.Argument(help="What to look for.")],
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Maximum number of files (default: retrieval.top_k)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database."),
    ] = None,
) -> None:
    """Find the indexed files most similar to QUERY."""
    cfg = load_cfg_or_exit(db)
    with open_services(cfg) as services:
        try:
            response = services.retriever.search(query, limit)
        except EmptyInputError as exc:
            console.print(err_empty_query())
            raise typer.Exit(1) from exc
        except ProviderUnavailableError as exc:
            console.print(err_provider_unavailable(cfg.embedding.model, str(exc)))
            raise typer.Exit(1) from exc

    if not response.results:
        console.print(f"[yellow]No matches for[/] '{query}'.")
        return

    console.print(_results_table(response.results))
    console.print(
        f"[dim]Showing {len(response.results)} of {response.total_matches} matching files.[/]"
    )


def _snippet(result: SearchResult) -> str:
    text = " ".join(result.content.split())
    return text[:_SNIPPET_CHARS] + ("…" if len(text) > _SNIPPET_CHARS else "")


def _results_table(results: list[SearchResult]) -> Table:
    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Match", justify="right", style="bold")
    table.add_column("File", style="cyan")
    table.add_column("Chunks", justify="right", style="dim")
    table.add_column("Excerpt")
    for r in results:
        table.add_row(f"{r.score * 100:.0f}%", r.file_path, str(r.total_chunks), _snippet(r))
    return table
