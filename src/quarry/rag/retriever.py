"""Dense retriever: brute-force cosine similarity over the chunk store.

Pipeline per query:
  1. Embed the query with the same provider used at index time.
  2. Fetch searchable chunks (read-time exclusion, newest first, capped).
  3. Cosine similarity per chunk; scores ≤ relevance_floor are dropped.
  4. ×filename_boost when the lowercased query occurs in the file name.
  5. Optional heuristic re-ranking; every score is capped at 1.0.
  6. Group by file: best chunk is the representative, max and mean kept.
  7. Sort by max score (ties by path) and cut to *limit*.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

from quarry.concurrency import CancellationToken
from quarry.config import RetrievalCfg
from quarry.db.models import ChunkRecord
from quarry.db.repository import DocumentStore
from quarry.exceptions import EmptyInputError
from quarry.rag.embeddings import EmbeddingProvider
from quarry.rag.reranker import Reranker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchResult:
    """Best-matching chunk of one file plus per-file score aggregates.

    Attributes:
        score: Ranking score (per-file max after boosts, ≤ 1.0).
        avg_score: Mean score over the file's matching chunks.
        max_score: Same as *score*; kept separately for display.
        total_chunks: Number of the file's chunks above the relevance floor.
    """

    chunk_id: str
    file_path: str
    file_name: str
    content: str
    chunk_index: int
    language: str
    score: float
    avg_score: float
    max_score: float
    total_chunks: int


class SearchResponse(NamedTuple):
    results: list[SearchResult]
    total_matches: int


class Retriever:
    """Similarity search with per-file deduplication.

    Args:
        store: Chunk store to search.
        embedder: Query embedding provider.
        config: Floor, boost and corpus cap settings.
        exclude_extensions: Extensions hidden from search results.
        reranker: Optional heuristic re-ranker applied per chunk.
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingProvider,
        config: RetrievalCfg | None = None,
        exclude_extensions: Iterable[str] = (),
        reranker: Reranker | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._reranker = reranker
        self._lock = threading.Lock()
        self._config = config if config is not None else RetrievalCfg()
        self._exclude = frozenset(exclude_extensions)

    def update_settings(
        self,
        config: RetrievalCfg | None = None,
        exclude_extensions: Iterable[str] | None = None,
    ) -> None:
        with self._lock:
            if config is not None:
                self._config = config
            if exclude_extensions is not None:
                self._exclude = frozenset(exclude_extensions)

    def search(
        self,
        query: str,
        limit: int | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> SearchResponse:
        """Return the top *limit* files for *query* and the number of matching files.

        Raises:
            EmptyInputError: If *query* is blank.
            ProviderUnavailableError: If the embedding model is not ready.
            OperationCancelled: If *token* is cancelled mid-search.
        """
        if not query or not query.strip():
            raise EmptyInputError("Search query is empty")
        with self._lock:
            config = self._config
            exclude = self._exclude
        limit = limit if limit is not None else config.top_k

        if token is not None:
            token.raise_if_cancelled()
        query_vec, _ = self._embedder.embed(query)
        records = self._store.fetch_all(exclude, limit=config.max_documents)
        if token is not None:
            token.raise_if_cancelled()

        sims = _similarities(np.asarray(query_vec, dtype=np.float32), records)
        query_lower = query.strip().lower()

        groups: dict[str, list[tuple[ChunkRecord, float]]] = {}
        for record, sim in zip(records, sims):
            score = float(sim)
            if score <= config.relevance_floor:
                continue
            if query_lower in record.file_name.lower():
                score *= config.filename_boost
            if self._reranker is not None:
                score = self._reranker.score(query, record.content, record.file_name, score)
            groups.setdefault(record.file_path, []).append((record, min(score, 1.0)))

        results = [_collapse(path, scored) for path, scored in groups.items()]
        results.sort(key=lambda r: (-r.score, r.file_path))
        logger.debug(
            "Query %r: %d chunks scored, %d files matched", query, len(records), len(results)
        )
        return SearchResponse(results=results[:limit], total_matches=len(results))


# ------------------------------------------------------------------
# Scoring helpers
# ------------------------------------------------------------------


def _similarities(query_vec: np.ndarray, records: Sequence[ChunkRecord]) -> np.ndarray:
    """Cosine similarity of *query_vec* against every record.

    Records whose vector is empty, zero or of another dimension score 0.0.
    """
    scores = np.zeros(len(records), dtype=np.float32)
    dim = query_vec.shape[0] if query_vec.ndim == 1 else 0
    query_norm = float(np.linalg.norm(query_vec)) if dim else 0.0
    if not records or query_norm == 0.0:
        return scores

    rows = [i for i, r in enumerate(records) if r.embedding.shape == (dim,)]
    skipped = len(records) - len(rows)
    if skipped:
        logger.warning("%d chunks have embeddings of the wrong dimension; scored 0.0", skipped)
    if not rows:
        return scores

    matrix = np.vstack([records[i].embedding for i in rows])
    norms = np.linalg.norm(matrix, axis=1) * query_norm
    dots = matrix @ query_vec
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(norms > 0, dots / norms, 0.0)
    scores[rows] = np.clip(sims, -1.0, 1.0)
    return scores


def _collapse(path: str, scored: list[tuple[ChunkRecord, float]]) -> SearchResult:
    best, best_score = min(scored, key=lambda item: (-item[1], item[0].chunk_index))
    avg = sum(s for _, s in scored) / len(scored)
    return SearchResult(
        chunk_id=best.id,
        file_path=path,
        file_name=best.file_name,
        content=best.content,
        chunk_index=best.chunk_index,
        language=best.language,
        score=best_score,
        avg_score=avg,
        max_score=best_score,
        total_chunks=len(scored),
    )
