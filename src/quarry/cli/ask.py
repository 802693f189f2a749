"""quarry ask: one-shot question answered from the indexed documents.

Usage:
  quarry ask "What did we decide about the release date?"
  quarry ask "How is the cache invalidated?" --stream
  quarry ask "Who owns billing?" --no-llm
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markdown import Markdown

from quarry.cli.common import console, load_cfg_or_exit, open_services
from quarry.cli.errors import err_empty_query, err_provider_unavailable
from quarry.exceptions import EmptyInputError, ProviderUnavailableError
from quarry.rag.retriever import SearchResult


def ask_cmd(
    question: Annotated[str, typer.Argument(help="Question to answer from your documents.")],
    stream: Annotated[
        bool,
        typer.Option("--stream", help="Print the answer as it is generated."),
    ] = False,
    no_llm: Annotated[
        bool,
        typer.Option("--no-llm", help="Answer from excerpts only, without a language model."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database."),
    ] = None,
) -> None:
    """Answer QUESTION using only the indexed documents, with sources."""
    cfg = load_cfg_or_exit(db)
    if no_llm:
        cfg.generation.enabled = False

    with open_services(cfg) as services:
        try:
            if stream:
                streamed = services.orchestrator.stream_answer(question)
                for delta in streamed:
                    console.print(delta, end="", markup=False, highlight=False)
                console.print()
                results = streamed.results
            else:
                answer = services.orchestrator.answer(question)
                console.print(Markdown(answer.response))
                results = answer.results
        except EmptyInputError as exc:
            console.print(err_empty_query())
            raise typer.Exit(1) from exc
        except ProviderUnavailableError as exc:
            console.print(err_provider_unavailable(cfg.embedding.model, str(exc)))
            raise typer.Exit(1) from exc

    print_sources(results)


def print_sources(results: list[SearchResult]) -> None:
    if not results:
        return
    console.print("\n[bold]Sources[/]")
    for r in results:
        console.print(f"  [cyan]{r.file_name}[/]  [dim]{r.file_path}[/]  {r.score * 100:.0f}%")
