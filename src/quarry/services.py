"""Wiring of the store, indexer, retriever and agent from a QuarryConfig.

Every CLI command builds its components here, so providers can be swapped
in one place (tests replace make_embedder / make_synthesizer).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from quarry.config import QuarryConfig
from quarry.db.filters import excluded_extensions
from quarry.db.repository import DocumentStore
from quarry.ingest.indexer import Indexer
from quarry.rag.embeddings import EmbeddingProvider, LiteLLMEmbeddingProvider
from quarry.rag.orchestrator import AgenticOrchestrator
from quarry.rag.reranker import Reranker
from quarry.rag.retriever import Retriever
from quarry.rag.synthesis import LLMSynthesizer, Synthesizer

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: QuarryConfig
    store: DocumentStore
    embedder: EmbeddingProvider
    indexer: Indexer
    retriever: Retriever
    orchestrator: AgenticOrchestrator

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> Services:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def make_embedder(cfg: QuarryConfig) -> EmbeddingProvider:
    return LiteLLMEmbeddingProvider(cfg.embedding.model, cfg.embedding.dimensions)


def make_synthesizer(cfg: QuarryConfig) -> Synthesizer | None:
    """LLM synthesizer, or None when generation is disabled in the config."""
    if not cfg.generation.enabled:
        return None
    return LLMSynthesizer(cfg.generation.model, max_tokens=cfg.generation.max_tokens)


def build_services(cfg: QuarryConfig, db_path: Path | str | None = None) -> Services:
    """Open the store at *db_path* (default: ``cfg.db_path``) and wire everything.

    The caller owns the returned Services and must close() it.
    """
    path = Path(db_path if db_path is not None else cfg.db_path)
    store = DocumentStore.open(path)
    embedder = make_embedder(cfg)
    exclude = excluded_extensions(
        skip_code_files=cfg.index.skip_code_files, skip_images=cfg.index.skip_images
    )
    retriever = Retriever(
        store,
        embedder,
        cfg.retrieval,
        exclude_extensions=exclude,
        reranker=Reranker() if cfg.retrieval.rerank else None,
    )
    orchestrator = AgenticOrchestrator(
        retriever,
        store,
        synthesizer=make_synthesizer(cfg),
        agent=cfg.agent,
        context=cfg.context,
    )
    logger.debug("Services ready (db=%s, embedding=%s)", path, cfg.embedding.model)
    return Services(
        config=cfg,
        store=store,
        embedder=embedder,
        indexer=Indexer(store, embedder, cfg.index),
        retriever=retriever,
        orchestrator=orchestrator,
    )
