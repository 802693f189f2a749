"""Helpers shared by the quarry commands: config, logging, service wiring."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from quarry.cli.errors import err_config, err_no_db
from quarry.config import ConfigError, QuarryConfig, load_config
from quarry.services import Services, build_services

console = Console()

_LOG_FORMAT = "%(name)s: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Route library logging through rich (DEBUG with --verbose, else WARNING)."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=_LOG_FORMAT,
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    if not verbose:
        logging.getLogger("LiteLLM").setLevel(logging.ERROR)


def load_cfg_or_exit(db: Path | None = None) -> QuarryConfig:
    """Load the merged config and apply the --db flag; exit 1 on ConfigError."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if db is not None:
        cfg.db_path = str(db)
    return cfg


def open_services(cfg: QuarryConfig, *, must_exist: bool = True) -> Services:
    """Build the services for *cfg*; with *must_exist*, exit 1 if there is no index."""
    db_path = Path(cfg.db_path)
    if must_exist and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    return build_services(cfg)
