"""quarry index: add files and folders to the local index.

The run happens on a worker thread so Ctrl-C can cancel it cleanly: the
indexer finishes the current file, stops, and the partial report is shown.

Usage:
  quarry index ~/Documents/notes
  quarry index report.pdf notes.md --clean
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Annotated

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from quarry.cli.common import console, load_cfg_or_exit, open_services
from quarry.cli.errors import err_nothing_to_index, err_provider_unavailable, warn_store_full
from quarry.concurrency import CancellationToken
from quarry.exceptions import ProviderUnavailableError
from quarry.ingest.indexer import IndexReport, Indexer


def index_cmd(
    paths: Annotated[
        list[Path],
        typer.Argument(help="Files or folders to index (folders are scanned recursively)."),
    ],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database (created if missing)."),
    ] = None,
    clean: Annotated[
        bool,
        typer.Option("--clean", help="Also drop indexed files that no longer exist."),
    ] = False,
) -> None:
    """Index documents so they can be searched and asked about."""
    cfg = load_cfg_or_exit(db)
    missing = [str(p) for p in paths if not p.exists()]
    for m in missing:
        console.print(f"[yellow]Skipping missing path:[/] {m}")
    existing = [p for p in paths if p.exists()]
    if not existing:
        console.print(err_nothing_to_index([str(p) for p in paths]))
        raise typer.Exit(1)

    with open_services(cfg, must_exist=False) as services:
        try:
            report = _run_with_progress(services.indexer, existing, clean)
        except ProviderUnavailableError as exc:
            console.print(err_provider_unavailable(cfg.embedding.model, str(exc)))
            raise typer.Exit(1) from exc

    _print_report(report)
    if report.halted:
        console.print(warn_store_full(cfg.index.max_database_size_bytes))
    if report.errors and not report.indexed_count:
        raise typer.Exit(1)


# ------------------------------------------------------------------
# Worker + progress
# ------------------------------------------------------------------


def _run_with_progress(indexer: Indexer, paths: list[Path], clean: bool) -> IndexReport:
    token = CancellationToken()
    done = threading.Event()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Scanning…", total=None)

        def _on_progress(position: int, total: int, name: str) -> None:
            prog.update(task, total=total, completed=position - 1, description=name)

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="quarry-index") as pool:
            future = pool.submit(
                indexer.index_paths,
                paths,
                token=token,
                on_progress=_on_progress,
                sweep_orphans=clean,
            )
            future.add_done_callback(lambda _: done.set())
            try:
                while not done.wait(0.1):
                    pass
            except KeyboardInterrupt:
                console.print("[yellow]Cancelling after the current file…[/]")
                token.cancel()
            return future.result()


def _print_report(report: IndexReport) -> None:
    if report.cancelled:
        console.print("[yellow]Indexing cancelled.[/]")

    console.print(
        f"[green]✓[/] Indexed [bold]{len(report.indexed)}[/] new, "
        f"[bold]{len(report.reindexed)}[/] changed  |  "
        f"unchanged: {len(report.unchanged)}  |  "
        f"empty: {len(report.skipped)}  |  "
        f"errors: {len(report.errors)}"
    )
    if report.removed:
        console.print(f"[dim]Removed {len(report.removed)} files that no longer exist.[/]")

    if report.errors:
        table = Table(show_header=True, box=None, padding=(0, 1))
        table.add_column("File", style="bold")
        table.add_column("Problem", style="red")
        for issue in report.errors:
            table.add_row(issue.name, issue.message)
        console.print(table)
