"""quarry remove / clean / clear: index lifecycle management.

  quarry remove --path notes/old.md     drop one file's chunks
  quarry clean                          drop files that no longer exist on disk
  quarry clear --yes                    drop everything
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from quarry.cli.common import console, load_cfg_or_exit, open_services
from quarry.cli.errors import err_file_not_indexed, err_no_db
from quarry.db.repository import DocumentStore


def _open_store(db_path: Path) -> DocumentStore:
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    return DocumentStore.open(db_path)


def remove_cmd(
    path: Annotated[
        str,
        typer.Option("--path", "-p", help="Indexed file path to remove."),
    ],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove one file and all its chunks from the index."""
    cfg = load_cfg_or_exit(db)
    with _open_store(Path(cfg.db_path)) as store:
        # Stored paths are absolute; accept the path as given or resolved.
        target = path
        chunks = store.get_chunks(target)
        if not chunks:
            target = str(Path(path).expanduser().resolve())
            chunks = store.get_chunks(target)
        if not chunks:
            console.print(err_file_not_indexed(path))
            raise typer.Exit(0)

        console.print(f"\nRemove from index: [bold]{target}[/]")
        console.print(f"  Chunks: {len(chunks)}")
        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        deleted = store.delete_by_path(target)
    console.print(f"\n[green]✓[/] Removed: {target}  ({deleted} chunks deleted)")


def clean_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database."),
    ] = None,
) -> None:
    """Remove indexed files that no longer exist on disk."""
    cfg = load_cfg_or_exit(db)
    with open_services(cfg) as services:
        removed = services.indexer.cleanup_orphans()
    if not removed:
        console.print("[green]✓[/] Index is clean: every indexed file still exists.")
        return
    for p in removed:
        console.print(f"  [dim]-[/] {p}")
    console.print(f"[green]✓[/] Removed {len(removed)} missing files from the index.")


def clear_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Delete every chunk from the index."""
    cfg = load_cfg_or_exit(db)
    with _open_store(Path(cfg.db_path)) as store:
        stats = store.stats()
        if not yes:
            if not typer.confirm(
                f"Delete all {stats.chunk_count:,} chunks from the index?", default=False
            ):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)
        deleted = store.clear()
    console.print(f"[green]✓[/] Index cleared ({deleted:,} chunks deleted).")
