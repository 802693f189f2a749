"""Heuristic re-ranking on top of cosine similarity.

Multiplicative adjustments, applied in this order and capped at 1.0:

  keyword coverage      × (1 + 0.3 · fraction of query keywords in the chunk)
  exact query in chunk  × 1.2    (case-insensitive substring)
  keyword in file name  × 1.15
  chunk < 100 chars     × 0.8
  chunk 200–1000 chars  × 1.1
  technical query with code-like chunk  × 1.15
"""

from __future__ import annotations

import re
from dataclasses import dataclass

STOPWORDS: frozenset[str] = frozenset(
    [
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "is", "are", "was", "were", "be", "been",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "can", "what", "how", "why", "when", "where",
        "who", "which", "this", "that", "these", "those", "i", "you", "me",
        "my", "your", "about", "tell", "explain", "describe", "refers",
    ]
)

_NON_ALNUM_RE = re.compile(r"[^0-9a-z]+")
_TECHNICAL_TERMS: tuple[str, ...] = ("code", "function", "implement")
_CODE_MARKERS: tuple[str, ...] = ("{", "def ", "func ")


def extract_keywords(text: str) -> list[str]:
    """Lowercase tokens of *text* minus stopwords and tokens of ≤2 chars.

    Order is first occurrence; duplicates are dropped.
    """
    seen: dict[str, None] = {}
    for token in _NON_ALNUM_RE.split(text.lower()):
        if len(token) > 2 and token not in STOPWORDS:
            seen.setdefault(token)
    return list(seen)


def is_technical_query(query: str) -> bool:
    lowered = query.lower()
    return any(term in lowered for term in _TECHNICAL_TERMS)


@dataclass(frozen=True)
class RerankWeights:
    coverage: float = 0.3
    exact_match: float = 1.2
    filename_match: float = 1.15
    short_penalty: float = 0.8
    short_limit: int = 100
    informative: float = 1.1
    informative_range: tuple[int, int] = (200, 1000)
    code_match: float = 1.15


class Reranker:
    """Adjust similarity scores with lexical and content-quality signals."""

    def __init__(self, weights: RerankWeights | None = None) -> None:
        self.weights = weights or RerankWeights()

    def score(self, query: str, content: str, file_name: str, base_score: float) -> float:
        """Return the adjusted score for one chunk, capped at 1.0."""
        w = self.weights
        query_terms = set(extract_keywords(query))
        score = base_score

        if query_terms:
            overlap = len(query_terms & set(extract_keywords(content)))
            score *= 1.0 + w.coverage * overlap / len(query_terms)

        stripped = query.strip().lower()
        if stripped and stripped in content.lower():
            score *= w.exact_match

        if query_terms & set(extract_keywords(file_name)):
            score *= w.filename_match

        length = len(content)
        if length < w.short_limit:
            score *= w.short_penalty
        low, high = w.informative_range
        if low <= length <= high:
            score *= w.informative

        if is_technical_query(query) and any(m in content for m in _CODE_MARKERS):
            score *= w.code_match

        return min(score, 1.0)
