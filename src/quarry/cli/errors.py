"""Quarry rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from quarry.cli.errors import err_no_db
    console.print(err_no_db(".quarry.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from quarry.rag.llm_client import provider_of


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "voyage": "VOYAGE_API_KEY",
        "azure": "AZURE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_provider_unavailable(model: str, detail: str) -> str:
    """Embedding or generation model cannot be reached (or has no key)."""
    provider = provider_of(model)
    if "API key" in detail:
        return err_no_api_key(provider)
    hint = (
        f"  Start Ollama and pull the model:  ollama pull {model.split('/', 1)[-1]}"
        if provider == "ollama"
        else "  Check your network connection and the model name in quarry.yaml."
    )
    return (
        f"[red]Error:[/] Model '{model}' is not available.\n"
        f"  {detail}\n"
        f"{hint}"
    )


def err_no_db(db_path: str = ".quarry.db") -> str:
    """No index database at *db_path*."""
    return (
        f"[red]Error:[/] No index found at '{db_path}'.\n"
        "  Run:  quarry index <folder>"
    )


def err_config(message: str) -> str:
    """Config file is invalid (YAML, range or forbidden key)."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix quarry.yaml (or ~/.quarry/config.yaml) and retry."
    )


def err_empty_query() -> str:
    return (
        "[red]Error:[/] The query is empty.\n"
        "  Pass some text to search for, e.g.:  quarry search \"meeting notes\""
    )


def err_nothing_to_index(paths: list[str]) -> str:
    """No indexable files under the given paths."""
    shown = ", ".join(paths) if paths else "(none)"
    return (
        f"[yellow]No indexable files found in:[/] {shown}\n"
        "  Supported: PDF and plain-text documents (txt, md, rst, csv, log).\n"
        "  Code and image files are skipped unless enabled in quarry.yaml (index:)."
    )


def err_file_not_indexed(path: str) -> str:
    """File is not in the index."""
    return (
        f"[yellow]Not indexed:[/] '{path}' is not in the index.\n"
        "  Run:  quarry status  to see all indexed files."
    )


def warn_store_full(limit_bytes: int) -> str:
    """Indexing halted at max_database_size_bytes."""
    return (
        f"[yellow]⚠[/] Index size limit reached ({limit_bytes:,} bytes); indexing stopped.\n"
        "  Raise index.max_database_size_bytes in quarry.yaml or run:  quarry clean"
    )
