"""quarry status: index overview (size, models, indexed files)."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from quarry.cli.common import console, load_cfg_or_exit
from quarry.config import QuarryConfig
from quarry.db.models import FileSummary
from quarry.db.repository import DocumentStore


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database."),
    ] = None,
    files: Annotated[
        bool,
        typer.Option("--files", help="List every indexed file."),
    ] = False,
) -> None:
    """Show index status: database, models, and indexed files."""
    cfg = load_cfg_or_exit(db)
    db_path = Path(cfg.db_path)

    if not db_path.exists():
        _show_config_panel(db_path, cfg)
        console.print(
            Panel(
                "[yellow]No index found.[/]\n"
                "  Run:  quarry index <folder>",
                title="[bold]Index[/]",
                expand=False,
            )
        )
        return

    with DocumentStore.open(db_path) as store:
        stats = store.stats()
        summaries = store.list_files_summary()

    _show_config_panel(db_path, cfg)
    lines = [
        f"Files: [bold]{len(summaries):,}[/]  |  "
        f"Chunks: [bold]{stats.chunk_count:,}[/]  |  "
        f"Text: [bold]{stats.total_content_bytes / 1024:,.1f} KiB[/]",
    ]
    if not summaries:
        lines.append("[dim]Nothing indexed yet.[/]")
    console.print(Panel("\n".join(lines), title="[bold]Index[/]", expand=False))

    if files and summaries:
        console.print(_files_table(summaries))


def _show_config_panel(db_path: Path, cfg: QuarryConfig) -> None:
    db_info = f"{db_path}"
    if db_path.exists():
        size_mb = db_path.stat().st_size / (1024 * 1024)
        db_info = f"{db_path} ({size_mb:.1f} MB)"
    generation = cfg.generation.model if cfg.generation.enabled else "[dim]disabled[/]"
    lines = [
        f"Database:    {db_info}",
        f"Embeddings:  {cfg.embedding.model} ({cfg.embedding.dimensions} dims)",
        f"Generation:  {generation}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Quarry[/]", expand=False))


def _files_table(summaries: list[FileSummary]) -> Table:
    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("File", style="bold")
    table.add_column("Lang", style="dim")
    table.add_column("Chunks", justify="right")
    table.add_column("Path", style="dim")
    for s in summaries:
        table.add_row(s.file_name, s.language, str(s.chunk_count), s.file_path)
    return table
