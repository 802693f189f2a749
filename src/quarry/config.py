"""Quarry configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (QUARRY_EMBEDDING_MODEL, QUARRY_GENERATION_MODEL, QUARRY_DB)
  3. Per-project quarry.yaml  (in the working directory)
  4. Global ~/.quarry/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".quarry"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "quarry.yaml"

# Fields that suggest an API key and are forbidden in global config.
# Matches: api_key, apikey, api-key, api_secret, _token (suffix), standalone token,
# standalone secret, _secret (suffix), password, passwd, credential(s).
# Does NOT match legitimate config keys like token_budget or per_document_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token, auth_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # my_secret, client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["database", "embedding", "generation", "index", "retrieval", "agent", "context"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (quarry.yaml: embedding:)."""

    model: str = "ollama/nomic-embed-text"
    dimensions: int = 768


@dataclass
class GenerationCfg:
    """Answer synthesis configuration (quarry.yaml: generation:).

    With ``enabled: false`` answers are composed from the retrieved excerpts
    without calling a language model.
    """

    model: str = "ollama/llama3.2"
    enabled: bool = True
    max_tokens: int = 1_024


@dataclass
class IndexCfg:
    """Indexing limits and filters (quarry.yaml: index:).

    Read once at the start of every indexing run.
    """

    skip_code_files: bool = True
    skip_images: bool = False
    max_file_size_bytes: int = 10_485_760      # 10 MiB
    max_database_size_bytes: int = 1_073_741_824  # 1 GiB
    chunk_size: int = 512
    overlap_sentences: int = 1


@dataclass
class RetrievalCfg:
    """Similarity search configuration (quarry.yaml: retrieval:)."""

    top_k: int = 10
    relevance_floor: float = 0.1
    filename_boost: float = 1.5
    max_documents: int = 50_000
    debounce_ms: int = 300
    rerank: bool = True


@dataclass
class AgentCfg:
    """Multi-iteration query loop (quarry.yaml: agent:)."""

    max_iterations: int = 3
    max_history_turns: int = 5
    per_query_limit: int = 3
    max_results: int = 10
    relevance_gate: float = 0.5
    high_confidence: float = 0.7


@dataclass
class ContextCfg:
    """Context assembly token budget (quarry.yaml: context:)."""

    token_budget: int = 2_000
    per_document_tokens: int = 400


@dataclass
class QuarryConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    db_path: str = ".quarry.db"
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    index: IndexCfg = field(default_factory=IndexCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    agent: AgentCfg = field(default_factory=AgentCfg)
    context: ContextCfg = field(default_factory=ContextCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names.

    Global config must never store credentials; they belong in env vars.
    """

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}', ignored.",
                UserWarning,
                stacklevel=4,
            )


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")
    return raw


def _validate(cfg: QuarryConfig) -> None:
    """Raise ConfigError for values the pipeline cannot work with."""
    checks: list[tuple[bool, str]] = [
        (cfg.index.chunk_size >= 1, "index.chunk_size must be >= 1"),
        (cfg.index.overlap_sentences >= 0, "index.overlap_sentences must be >= 0"),
        (cfg.index.max_file_size_bytes > 0, "index.max_file_size_bytes must be > 0"),
        (cfg.index.max_database_size_bytes > 0, "index.max_database_size_bytes must be > 0"),
        (cfg.embedding.dimensions >= 1, "embedding.dimensions must be >= 1"),
        (cfg.retrieval.top_k >= 1, "retrieval.top_k must be >= 1"),
        (0.0 <= cfg.retrieval.relevance_floor < 1.0, "retrieval.relevance_floor must be in [0, 1)"),
        (cfg.retrieval.max_documents >= 1, "retrieval.max_documents must be >= 1"),
        (cfg.agent.max_iterations >= 1, "agent.max_iterations must be >= 1"),
        (cfg.agent.max_history_turns >= 1, "agent.max_history_turns must be >= 1"),
        (0.0 <= cfg.agent.relevance_gate <= 1.0, "agent.relevance_gate must be in [0, 1]"),
        (cfg.context.token_budget >= 1, "context.token_budget must be >= 1"),
        (cfg.context.per_document_tokens >= 1, "context.per_document_tokens must be >= 1"),
    ]
    for ok, message in checks:
        if not ok:
            raise ConfigError(message)


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> QuarryConfig:
    """Build a *QuarryConfig* from a merged raw YAML dict."""
    cfg = QuarryConfig()

    if "database" in data:
        d = data["database"] or {}
        cfg.db_path = str(d.get("path", cfg.db_path))

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
        )

    if "generation" in data:
        g = data["generation"] or {}
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            enabled=bool(g.get("enabled", cfg.generation.enabled)),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
        )

    if "index" in data:
        i = data["index"] or {}
        cfg.index = IndexCfg(
            skip_code_files=bool(i.get("skip_code_files", cfg.index.skip_code_files)),
            skip_images=bool(i.get("skip_images", cfg.index.skip_images)),
            max_file_size_bytes=int(i.get("max_file_size_bytes", cfg.index.max_file_size_bytes)),
            max_database_size_bytes=int(
                i.get("max_database_size_bytes", cfg.index.max_database_size_bytes)
            ),
            chunk_size=int(i.get("chunk_size", cfg.index.chunk_size)),
            overlap_sentences=int(i.get("overlap_sentences", cfg.index.overlap_sentences)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            relevance_floor=float(r.get("relevance_floor", cfg.retrieval.relevance_floor)),
            filename_boost=float(r.get("filename_boost", cfg.retrieval.filename_boost)),
            max_documents=int(r.get("max_documents", cfg.retrieval.max_documents)),
            debounce_ms=int(r.get("debounce_ms", cfg.retrieval.debounce_ms)),
            rerank=bool(r.get("rerank", cfg.retrieval.rerank)),
        )

    if "agent" in data:
        a = data["agent"] or {}
        cfg.agent = AgentCfg(
            max_iterations=int(a.get("max_iterations", cfg.agent.max_iterations)),
            max_history_turns=int(a.get("max_history_turns", cfg.agent.max_history_turns)),
            per_query_limit=int(a.get("per_query_limit", cfg.agent.per_query_limit)),
            max_results=int(a.get("max_results", cfg.agent.max_results)),
            relevance_gate=float(a.get("relevance_gate", cfg.agent.relevance_gate)),
            high_confidence=float(a.get("high_confidence", cfg.agent.high_confidence)),
        )

    if "context" in data:
        c = data["context"] or {}
        cfg.context = ContextCfg(
            token_budget=int(c.get("token_budget", cfg.context.token_budget)),
            per_document_tokens=int(
                c.get("per_document_tokens", cfg.context.per_document_tokens)
            ),
        )

    return cfg


def _apply_env_overrides(cfg: QuarryConfig) -> QuarryConfig:
    """Apply QUARRY_* environment variable overrides."""
    if model := os.environ.get("QUARRY_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("QUARRY_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if db_path := os.environ.get("QUARRY_DB"):
        cfg.db_path = db_path
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> QuarryConfig:
    """Load and return a merged *QuarryConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *quarry.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *QuarryConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, a file is
            not a YAML mapping, or a value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _load_yaml(global_path)
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _load_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.quarry/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        defaults = QuarryConfig()
        content = (
            "# Quarry global configuration: model defaults only.\n"
            "# NEVER store API keys here. Use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            f"  model: {defaults.embedding.model}\n"
            f"  dimensions: {defaults.embedding.dimensions}\n"
            "\n"
            "generation:\n"
            f"  model: {defaults.generation.model}\n"
            "\n"
            "index:\n"
            f"  skip_code_files: {str(defaults.index.skip_code_files).lower()}\n"
            f"  skip_images: {str(defaults.index.skip_images).lower()}\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
