"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Sequence

import numpy as np
import pytest

from quarry.db.connection import Database
from quarry.db.repository import DocumentStore
from quarry.db.schema import initialize
from quarry.exceptions import EmptyInputError
from quarry.ingest.indexer import Indexer
from quarry.rag.embeddings import detect_language

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class FakeEmbeddingProvider:
    """Deterministic bag-of-words embeddings: each token hashes into one bucket.

    Texts sharing words get a positive cosine similarity, which is all the
    retrieval tests need. Counts calls so tests can assert batching.
    """

    def __init__(self, dimensions: int = 64) -> None:
        self._dimensions = dimensions
        self.batch_calls: list[int] = []

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def vector(self, text: str) -> np.ndarray:
        vec = np.zeros(self._dimensions, dtype=np.float32)
        for token in _TOKEN_RE.findall(text.lower()):
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self._dimensions
            vec[bucket] += 1.0
        return vec

    def embed(self, text: str) -> tuple[np.ndarray, str]:
        if not text or not text.strip():
            raise EmptyInputError("Cannot embed blank text")
        return self.vector(text), detect_language(text)

    def embed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        if any(not t or not t.strip() for t in texts):
            raise EmptyInputError("Cannot embed blank text")
        self.batch_calls.append(len(texts))
        return [self.vector(t) for t in texts]


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".quarry.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def store(tmp_path):
    """File-based DocumentStore in tmp_path, closed after the test."""
    s = DocumentStore.open(tmp_path / ".quarry.db")
    yield s
    s.close()


@pytest.fixture
def embedder():
    return FakeEmbeddingProvider()


@pytest.fixture
def indexer(store, embedder):
    return Indexer(store, embedder)


@pytest.fixture
def docs(tmp_path):
    """Empty documents folder; tests write files into it."""
    d = tmp_path / "docs"
    d.mkdir()
    return d


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Isolated CLI environment: cwd is tmp_path, fake embeddings, no LLM.

    Returns the FakeEmbeddingProvider the commands will use.
    """
    from quarry import config, services
    from quarry.cli import common, main

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config, "_GLOBAL_CONFIG_PATH", tmp_path / "home" / ".quarry" / "config.yaml")
    for var in ("QUARRY_EMBEDDING_MODEL", "QUARRY_GENERATION_MODEL", "QUARRY_DB"):
        monkeypatch.delenv(var, raising=False)

    fake = FakeEmbeddingProvider(dimensions=1024)
    monkeypatch.setattr(services, "make_embedder", lambda cfg: fake)
    monkeypatch.setattr(services, "make_synthesizer", lambda cfg: None)
    # Leave the root logger to pytest; the verbose flag is tested on its own.
    monkeypatch.setattr(main, "configure_logging", lambda verbose: None)
    monkeypatch.setattr(common.console, "width", 200)
    return fake
