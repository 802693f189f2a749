"""Tests for the quarry config loader."""

from __future__ import annotations

import stat
import warnings
from pathlib import Path

import pytest
import yaml

from quarry.config import (
    AgentCfg,
    ConfigError,
    ContextCfg,
    QuarryConfig,
    ensure_global_config,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("QUARRY_EMBEDDING_MODEL", "QUARRY_GENERATION_MODEL", "QUARRY_DB"):
        monkeypatch.delenv(var, raising=False)


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


def _load(tmp_path: Path, global_cfg: Path | None = None) -> QuarryConfig:
    return load_config(
        project_dir=tmp_path,
        global_config_path=global_cfg or tmp_path / "nonexistent" / "config.yaml",
    )


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path) -> None:
    """No config files → all hardcoded defaults."""
    cfg = _load(tmp_path)

    assert cfg.db_path == ".quarry.db"
    assert cfg.embedding.model == "ollama/nomic-embed-text"
    assert cfg.embedding.dimensions == 768
    assert cfg.generation.model == "ollama/llama3.2"
    assert cfg.generation.enabled is True
    assert cfg.index.skip_code_files is True
    assert cfg.index.skip_images is False
    assert cfg.index.max_file_size_bytes == 10 * 1024 * 1024
    assert cfg.index.max_database_size_bytes == 1024 ** 3
    assert cfg.index.chunk_size == 512
    assert cfg.index.overlap_sentences == 1
    assert cfg.retrieval.top_k == 10
    assert cfg.retrieval.relevance_floor == 0.1
    assert cfg.retrieval.filename_boost == 1.5
    assert cfg.retrieval.max_documents == 50_000
    assert cfg.retrieval.rerank is True
    assert cfg.agent == AgentCfg()
    assert cfg.agent.relevance_gate == 0.5
    assert cfg.context == ContextCfg(token_budget=2_000, per_document_tokens=400)


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_load_config_global_overrides_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"generation": {"model": "openai/gpt-4o-mini"}})

    cfg = _load(tmp_path, global_cfg)
    assert cfg.generation.model == "openai/gpt-4o-mini"
    assert cfg.embedding.model == "ollama/nomic-embed-text"


@pytest.mark.parametrize("content", ["", "null\n"])
def test_load_config_global_empty_file(tmp_path: Path, content: str) -> None:
    """Empty or null global config → defaults (no crash)."""
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text(content, encoding="utf-8")

    assert _load(tmp_path, global_cfg) == QuarryConfig()


def test_load_config_project_overrides_global(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"retrieval": {"top_k": 20, "relevance_floor": 0.2}})
    _write_yaml(tmp_path / "quarry.yaml", {"retrieval": {"top_k": 5}})

    cfg = _load(tmp_path, global_cfg)
    assert cfg.retrieval.top_k == 5
    # Deep merge keeps the sibling from the global layer
    assert cfg.retrieval.relevance_floor == 0.2


def test_load_config_all_sections(tmp_path: Path) -> None:
    _write_yaml(
        tmp_path / "quarry.yaml",
        {
            "database": {"path": "data/index.db"},
            "embedding": {"model": "openai/text-embedding-3-small", "dimensions": 1536},
            "generation": {"enabled": False, "max_tokens": 256},
            "index": {"skip_code_files": False, "skip_images": True, "chunk_size": 256},
            "retrieval": {"filename_boost": 2.0, "debounce_ms": 100, "rerank": False},
            "agent": {"max_iterations": 2, "relevance_gate": 0.6},
            "context": {"token_budget": 4000},
        },
    )

    cfg = _load(tmp_path)
    assert cfg.db_path == "data/index.db"
    assert cfg.embedding.dimensions == 1536
    assert cfg.generation.enabled is False
    assert cfg.generation.max_tokens == 256
    assert cfg.index.skip_images is True
    assert cfg.index.chunk_size == 256
    assert cfg.index.overlap_sentences == 1
    assert cfg.retrieval.rerank is False
    assert cfg.retrieval.debounce_ms == 100
    assert cfg.agent.max_iterations == 2
    assert cfg.agent.relevance_gate == 0.6
    assert cfg.context.token_budget == 4000
    assert cfg.context.per_document_tokens == 400


# ---------------------------------------------------------------------------
# API key guard
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "bad_key",
    ["api_key", "apikey", "OPENAI_API_KEY", "secret", "password", "token", "api-key"],
)
def test_global_config_rejects_api_key_fields(tmp_path: Path, bad_key: str) -> None:
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text(f"{bad_key}: sk-abc123\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="forbidden key"):
        _load(tmp_path, global_cfg)


def test_global_config_rejects_nested_api_key(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"embedding": {"api_key": "sk-secret"}})

    with pytest.raises(ConfigError, match="forbidden key"):
        _load(tmp_path, global_cfg)


def test_budget_keys_are_not_mistaken_for_secrets(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"context": {"token_budget": 3000, "per_document_tokens": 300}})

    cfg = _load(tmp_path, global_cfg)
    assert cfg.context.token_budget == 3000


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "data,message",
    [
        ({"index": {"chunk_size": 0}}, "chunk_size"),
        ({"index": {"overlap_sentences": -1}}, "overlap_sentences"),
        ({"retrieval": {"relevance_floor": 1.5}}, "relevance_floor"),
        ({"agent": {"max_iterations": 0}}, "max_iterations"),
        ({"agent": {"relevance_gate": 2}}, "relevance_gate"),
        ({"context": {"token_budget": 0}}, "token_budget"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, data: dict, message: str) -> None:
    _write_yaml(tmp_path / "quarry.yaml", data)
    with pytest.raises(ConfigError, match=message):
        _load(tmp_path)


def test_non_mapping_config_raises(tmp_path: Path) -> None:
    (tmp_path / "quarry.yaml").write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        _load(tmp_path)


def test_invalid_yaml_raises_config_error(tmp_path: Path) -> None:
    (tmp_path / "quarry.yaml").write_text("retrieval: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="not valid YAML"):
        _load(tmp_path)


def test_config_does_not_execute_yaml_load(tmp_path: Path) -> None:
    """Python object tags are rejected by safe_load, never executed."""
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text("!!python/object/apply:os.system ['echo pwned']\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        _load(tmp_path, global_cfg)


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"unknown_section": {"foo": "bar"}})

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        cfg = _load(tmp_path, global_cfg)

    assert any("unknown_section" in str(w.message) for w in caught)
    assert cfg.generation.model == "ollama/llama3.2"


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------


def test_env_vars_override_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_yaml(tmp_path / "quarry.yaml", {"generation": {"model": "ollama/mistral"}})
    monkeypatch.setenv("QUARRY_GENERATION_MODEL", "openai/gpt-4o")
    monkeypatch.setenv("QUARRY_EMBEDDING_MODEL", "openai/text-embedding-3-small")
    monkeypatch.setenv("QUARRY_DB", "/tmp/other.db")

    cfg = _load(tmp_path)
    assert cfg.generation.model == "openai/gpt-4o"
    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.db_path == "/tmp/other.db"


def test_empty_env_var_does_not_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUARRY_GENERATION_MODEL", "")
    assert _load(tmp_path).generation.model == "ollama/llama3.2"


# ---------------------------------------------------------------------------
# ensure_global_config
# ---------------------------------------------------------------------------


def test_ensure_global_config_creates_loadable_file(tmp_path: Path) -> None:
    target = tmp_path / ".quarry" / "config.yaml"
    result = ensure_global_config(global_config_path=target)

    assert result == target
    cfg = _load(tmp_path, target)
    assert cfg.embedding.model == "ollama/nomic-embed-text"


def test_ensure_global_config_file_mode(tmp_path: Path) -> None:
    target = tmp_path / ".quarry" / "config.yaml"
    ensure_global_config(global_config_path=target)

    assert stat.S_IMODE(target.stat().st_mode) == 0o600


def test_ensure_global_config_idempotent(tmp_path: Path) -> None:
    target = tmp_path / ".quarry" / "config.yaml"
    ensure_global_config(global_config_path=target)
    target.write_text("generation:\n  model: openai/gpt-4o-mini\n", encoding="utf-8")

    ensure_global_config(global_config_path=target)
    assert "gpt-4o-mini" in target.read_text(encoding="utf-8")
