"""quarry chat: interactive conversation over the index.

Follow-up questions ("what about the second one?") are expanded with the
previous question. Each question runs on the query worker; Ctrl-C cancels
the running question without leaving the chat.

In-chat commands:  /reset  forget the conversation   /quit  leave
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markdown import Markdown

from quarry.cli.ask import print_sources
from quarry.cli.common import console, load_cfg_or_exit, open_services
from quarry.cli.errors import err_provider_unavailable
from quarry.concurrency import CancellationToken, QueryDispatcher
from quarry.exceptions import ProviderUnavailableError
from quarry.rag.orchestrator import AgentAnswer, AgenticOrchestrator

_QUIT = frozenset(["/quit", "/exit", "quit", "exit"])


def chat_cmd(
    no_llm: Annotated[
        bool,
        typer.Option("--no-llm", help="Answer from excerpts only, without a language model."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database."),
    ] = None,
) -> None:
    """Chat with your documents (type /quit to leave)."""
    cfg = load_cfg_or_exit(db)
    if no_llm:
        cfg.generation.enabled = False

    with open_services(cfg) as services:
        orchestrator = services.orchestrator

        def _handle(message: str, token: CancellationToken) -> AgentAnswer:
            return orchestrator.answer(message, token=token)

        debounce = cfg.retrieval.debounce_ms / 1000
        with QueryDispatcher(_handle, debounce=debounce) as dispatcher:
            console.print("[dim]Ask a question about your documents. /reset to start over, /quit to leave.[/]")
            _loop(dispatcher, orchestrator, cfg.embedding.model)


def _loop(
    dispatcher: QueryDispatcher[AgentAnswer], orchestrator: AgenticOrchestrator, model: str
) -> None:
    while True:
        try:
            message = console.input("\n[bold green]you>[/] ").strip()
        except (EOFError, KeyboardInterrupt):
            console.print()
            return
        if not message:
            continue
        if message.lower() in _QUIT:
            return
        if message.lower() == "/reset":
            orchestrator.reset()
            console.print("[dim]Conversation cleared.[/]")
            continue

        future = dispatcher.submit(message, immediate=True)
        try:
            answer = future.result()
        except KeyboardInterrupt:
            dispatcher.cancel()
            console.print("[yellow]Cancelled.[/]")
            continue
        except ProviderUnavailableError as exc:
            console.print(err_provider_unavailable(model, str(exc)))
            raise typer.Exit(1) from exc

        if answer is None:
            console.print("[yellow]Cancelled.[/]")
            continue
        console.print(Markdown(answer.response))
        print_sources(answer.results)
