"""Rule-based query planning for the multi-iteration answer loop.

Each call to ``Planner.plan()`` returns one AgentAction:

  Search(queries, reasoning)   run these queries and come back
  Synthesize(reason)           enough material: compose the answer
  NeedsMoreInfo(questions)     nothing searchable: ask the user

The rule-based planner searches with expanded queries on iteration 1, with
gap-filling refinements on iteration 2, and synthesizes from iteration 3 on.
Any other planner (an LLM with tool calling, say) can be substituted.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol, Union

from quarry.rag.reranker import extract_keywords
from quarry.rag.retriever import SearchResult

logger = logging.getLogger(__name__)

MAX_QUERIES = 5
MAX_ORIGINAL_WORDS = 15

# Conversational lead-ins dropped from the front of a question, tried in order.
FILLER_PREFIXES: tuple[str, ...] = (
    "I'm sorry, but I'm unable to find any information on",
    "I'm sorry, but I'm unable to find information on",
    "I cannot find any information about",
    "I don't have information about",
    "Could you provide more details or clarify what",
    "Could you provide more details about",
    "Could you clarify what",
    "Can you tell me about",
    "Can you explain",
    "Please tell me about",
    "Please explain",
    "I would like to know about",
    "I want to know about",
    "Tell me about",
    "Explain to me",
    "What is",
    "What are",
    "Who is",
    "Who are",
    "Where is",
    "When is",
    "How do I",
    "How can I",
    "Why does",
    "Why do",
)

FOLLOW_UP_PHRASES: tuple[str, ...] = (
    "what about", "how about", "tell me more", "elaborate",
    "what else", "can you explain", "why is that", "and that",
    "also", "additionally", "furthermore", "more details",
    "expand on", "continue", "go on", "keep going",
    "more info", "tell me about that", "explain that",
)

_FOLLOW_UP_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(p) for p in FOLLOW_UP_PHRASES) + r")\b"
)
_PRONOUNS: frozenset[str] = frozenset(["it", "that", "this", "those", "these"])
_WORD_RE = re.compile(r"[a-z0-9']+")
_REFERS_TO_RE = re.compile(r" refers to.*$", re.IGNORECASE | re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Search:
    queries: list[str]
    reasoning: str | None = None


@dataclass(frozen=True)
class Synthesize:
    reason: str


@dataclass(frozen=True)
class NeedsMoreInfo:
    questions: list[str] = field(default_factory=list)


AgentAction = Union[Search, Synthesize, NeedsMoreInfo]


class Planner(Protocol):
    def plan(
        self, message: str, iteration: int, previous: Sequence[SearchResult]
    ) -> AgentAction:
        """Decide the next step for *message* at 1-based *iteration*."""
        ...


# ---------------------------------------------------------------------------
# Query text helpers
# ---------------------------------------------------------------------------


def clean_query(query: str) -> str:
    """Strip conversational filler so the core subject of *query* remains.

    Example:
        >>> clean_query('Can you tell me about "vector search"?')
        'vector search'
    """
    cleaned = query.strip()
    for phrase in FILLER_PREFIXES:
        if cleaned.lower().startswith(phrase.lower()):
            cleaned = cleaned[len(phrase):].strip()
    cleaned = cleaned.strip("?.!,")
    cleaned = _REFERS_TO_RE.sub("", cleaned)
    cleaned = cleaned.strip("\"'")
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    if cleaned and cleaned != query:
        logger.debug("Query cleaned: %r -> %r", query, cleaned)
    return cleaned


def is_follow_up(message: str, has_history: bool) -> bool:
    """True if *message* continues the previous turn rather than starting anew.

    A continuation phrase always counts; very short messages and short
    messages built around a bare pronoun count only when there is history.
    """
    lowered = message.lower()
    if _FOLLOW_UP_RE.search(lowered):
        return True
    if not has_history:
        return False
    words = _WORD_RE.findall(lowered)
    if len(message.split()) <= 3:
        return True
    return len(words) <= 8 and any(w in _PRONOUNS for w in words)


def _unique(queries: Iterable[str], limit: int = MAX_QUERIES) -> list[str]:
    out: list[str] = []
    for q in queries:
        q = q.strip()
        if q and q not in out:
            out.append(q)
        if len(out) == limit:
            break
    return out


def initial_queries(message: str) -> list[str]:
    """Expand *message* into at most five first-pass search queries.

    Returns an empty list when *message* has no letters or digits at all.
    """
    if not _WORD_RE.search(message.lower()):
        return []
    cleaned = clean_query(message)
    keywords = extract_keywords(cleaned or message)
    lowered = message.lower()
    joined = " ".join(keywords)

    queries: list[str] = []
    if cleaned and cleaned != message:
        queries.append(cleaned)
    if len(message.split()) <= MAX_ORIGINAL_WORDS:
        queries.append(message)
    queries.extend(keywords[:2])
    if len(keywords) >= 2:
        queries.append(" ".join(keywords[:2]))
    if keywords:
        if "how" in lowered:
            queries += [f"how to {joined}", f"guide {joined}"]
        elif "what" in lowered:
            queries += [f"definition {joined}", f"explanation {joined}"]
        elif "why" in lowered:
            queries += [f"reason {joined}", f"cause {joined}"]
    return _unique(queries)


def refined_queries(message: str, previous: Sequence[SearchResult]) -> list[str]:
    """Second-pass queries aimed at keywords the first pass did not cover."""
    cleaned = clean_query(message)
    keywords = extract_keywords(cleaned or message)
    lowered = message.lower()
    head = " ".join(keywords[:2])

    queries: list[str] = []
    for keyword in missing_keywords(keywords, previous)[:2]:
        queries += [f"detailed {keyword}", f"{keyword} tutorial"]
    for keyword in keywords[:2]:
        queries += [f"example {keyword}", f"{keyword} documentation", f"{keyword} implementation"]
    if head:
        if any(t in lowered for t in ("code", "implement", "function")):
            queries += [f"code example {head}", f"implementation guide {head}"]
        if "what" in lowered or "why" in lowered:
            queries += [f"concept {head}", f"explanation {head}"]
    return _unique(queries)


def missing_keywords(keywords: Sequence[str], results: Sequence[SearchResult]) -> list[str]:
    """Keywords that appear in none of the retrieved chunks."""
    if not results:
        return []
    found: set[str] = set()
    for r in results:
        found.update(extract_keywords(r.content))
    return [k for k in keywords if k not in found]


# ---------------------------------------------------------------------------
# Rule-based planner
# ---------------------------------------------------------------------------


class RuleBasedPlanner:
    """Deterministic planner: initial search, gap-filling search, synthesize.

    Args:
        max_iterations: Iteration at (or beyond) which synthesis is forced.
        high_confidence: Score at which first-pass results are good enough to
            skip the refinement pass when no keyword is left uncovered.
    """

    def __init__(self, max_iterations: int = 3, high_confidence: float = 0.7) -> None:
        self.max_iterations = max_iterations
        self.high_confidence = high_confidence

    def plan(
        self, message: str, iteration: int, previous: Sequence[SearchResult]
    ) -> AgentAction:
        if iteration >= self.max_iterations and iteration > 1:
            return Synthesize("Iteration limit reached; answering from collected context")

        if iteration == 1:
            queries = initial_queries(message)
            if not queries:
                return NeedsMoreInfo(
                    ["What topic, document or term should I look for in your files?"]
                )
            return Search(queries, "Initial search to find relevant context for the question")

        if iteration == 2:
            keywords = extract_keywords(clean_query(message) or message)
            confident = any(r.score >= self.high_confidence for r in previous)
            if confident and not missing_keywords(keywords, previous):
                return Synthesize("First-pass results cover every keyword with high confidence")
            queries = refined_queries(message, previous)
            if queries:
                return Search(queries, "Refining search with more specific queries to fill gaps")

        return Synthesize("Answering from collected context")
