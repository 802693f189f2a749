"""Agentic answer loop: plan → search → (refine) → gate → assemble → answer.

  1. Follow-up messages are expanded with the previous user message.
  2. The planner drives up to ``max_iterations`` rounds; each Search runs
     every query (``per_query_limit`` files each) and keeps the best
     ``max_results`` files of the round.
  3. Results of all rounds are de-duplicated by path (highest score wins).
  4. Relevance gate: without a result ≥ ``relevance_gate`` the answer is a
     fixed "not found" message with no results and no context.
  5. Otherwise the context is assembled and the answer is composed by the
     LLM synthesizer, or from the excerpts when no synthesizer is configured
     or it fails.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from quarry.concurrency import CancellationToken
from quarry.config import AgentCfg, ContextCfg
from quarry.db.repository import DocumentStore
from quarry.exceptions import EmptyInputError
from quarry.rag.assembler import AssembledContext, TokenEstimator, assemble, estimate_tokens
from quarry.rag.planner import NeedsMoreInfo, Planner, RuleBasedPlanner, Search, is_follow_up
from quarry.rag.retriever import Retriever, SearchResult
from quarry.rag.synthesis import Synthesizer, build_prompt

logger = logging.getLogger(__name__)

_HIGH_EXCERPT_CHARS = 400
_MODERATE_EXCERPT_CHARS = 200
_MAX_HIGH_ITEMS = 3
_MAX_MODERATE_ITEMS = 2


@dataclass
class ConversationTurn:
    user_message: str
    results: list[SearchResult]
    response: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class AgentAnswer:
    """Final answer plus the evidence it was built from.

    Attributes:
        results: De-duplicated results that passed the relevance gate.
        found: False when the gate rejected everything (or nothing was searchable).
        used_llm: True when the text came from the language model.
    """

    response: str
    results: list[SearchResult]
    context: AssembledContext
    iterations: int = 0
    queries: list[str] = field(default_factory=list)
    found: bool = True
    used_llm: bool = False


@dataclass
class StreamingAnswer:
    """Streamed answer: iterate for text deltas; evidence is known up front."""

    results: list[SearchResult]
    context: AssembledContext
    deltas: Iterator[str]
    found: bool = True

    def __iter__(self) -> Iterator[str]:
        return self.deltas


@dataclass
class _Gathered:
    effective_message: str
    results: list[SearchResult]
    context: AssembledContext
    iterations: int
    queries: list[str]
    clarification: list[str] | None = None


# ---------------------------------------------------------------------------
# Result helpers
# ---------------------------------------------------------------------------


def dedupe_by_path(results: Iterable[SearchResult]) -> list[SearchResult]:
    """One result per file path (the highest scoring), sorted best first."""
    best: dict[str, SearchResult] = {}
    for r in results:
        current = best.get(r.file_path)
        if current is None or r.score > current.score:
            best[r.file_path] = r
    return sorted(best.values(), key=lambda r: (-r.score, r.file_path))


def _excerpt(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def not_found_response(message: str) -> str:
    return (
        f'I don\'t have information about "{message}" in your indexed documents.\n\n'
        "**Suggestions:**\n"
        "• Try rephrasing your question with different keywords\n"
        "• Index more documents that might contain this information\n"
        "• Check what is currently indexed with `quarry status`"
    )


def clarification_response(questions: list[str]) -> str:
    lines = ["I need a little more detail before I can search your documents:", ""]
    lines += [f"{n}. {q}" for n, q in enumerate(questions, start=1)]
    return "\n".join(lines)


def compose_answer(message: str, results: list[SearchResult], high_confidence: float) -> str:
    """Heuristic answer built from excerpts of the gated results.

    High-confidence results are listed as key findings; the rest are listed
    as additional context and flagged as uncertain.
    """
    high = [r for r in results if r.score >= high_confidence]
    moderate = [r for r in results if r.score < high_confidence]

    parts = [f'**Answer to:** "{message}"', ""]
    if not high:
        parts += ["Based on limited information, the closest matches are below.", ""]
    if high:
        parts += ["**Key Findings:**", ""]
        for n, r in enumerate(high[:_MAX_HIGH_ITEMS], start=1):
            parts += [
                f"**{n}. From {r.file_name}:**",
                _excerpt(r.content, _HIGH_EXCERPT_CHARS),
                "",
                f"*Match: {r.score * 100:.0f}%* • `{r.file_path}`",
                "",
            ]
    if moderate:
        parts += ["**Additional Context:**", ""]
        for r in moderate[:_MAX_MODERATE_ITEMS]:
            parts.append(
                f"• **{r.file_name}** (Match: {r.score * 100:.0f}%, `{r.file_path}`): "
                f"this may be related, but the match is uncertain. "
                f"{_excerpt(r.content, _MODERATE_EXCERPT_CHARS)}"
            )
        parts.append("")
    parts += ["---", f"**Sources:** Found {len(results)} relevant document(s)"]
    return "\n".join(parts)


def _word_stream(text: str) -> Iterator[str]:
    words = text.split(" ")
    for n, word in enumerate(words):
        yield word + (" " if n < len(words) - 1 else "")


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class AgenticOrchestrator:
    """Multi-iteration retrieval with conversation memory.

    Args:
        retriever: Search backend (already configured with re-ranking).
        store: Store used to rehydrate full documents for the context.
        planner: Next-step policy; rule-based by default.
        synthesizer: Optional LLM answer generator.
        agent: Iteration, history and gating settings.
        context: Token budget settings.
        estimator: Token estimator used by the context assembler.
    """

    def __init__(
        self,
        retriever: Retriever,
        store: DocumentStore,
        planner: Planner | None = None,
        synthesizer: Synthesizer | None = None,
        agent: AgentCfg | None = None,
        context: ContextCfg | None = None,
        estimator: TokenEstimator = estimate_tokens,
    ) -> None:
        self._retriever = retriever
        self._store = store
        self._agent = agent if agent is not None else AgentCfg()
        self._context_cfg = context if context is not None else ContextCfg()
        self._planner = planner or RuleBasedPlanner(
            max_iterations=self._agent.max_iterations,
            high_confidence=self._agent.high_confidence,
        )
        self._synthesizer = synthesizer
        self._estimator = estimator
        self._lock = threading.Lock()
        self._history: deque[ConversationTurn] = deque(maxlen=self._agent.max_history_turns)

    @property
    def history(self) -> list[ConversationTurn]:
        with self._lock:
            return list(self._history)

    def reset(self) -> None:
        """Forget the conversation so far."""
        with self._lock:
            self._history.clear()
        logger.debug("Conversation reset")

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def answer(self, message: str, *, token: CancellationToken | None = None) -> AgentAnswer:
        """Answer *message* from the indexed documents.

        Raises:
            EmptyInputError: If *message* is blank.
            ProviderUnavailableError: If the embedding model is not ready.
            OperationCancelled: If *token* is cancelled.
        """
        gathered = self._gather(message, token)

        if gathered.clarification is not None:
            response = clarification_response(gathered.clarification)
            return self._finish(message, gathered, response, found=False, used_llm=False)
        if not gathered.results:
            return self._finish(message, gathered, not_found_response(message), found=False, used_llm=False)

        used_llm = False
        response = ""
        if self._synthesizer is not None:
            prompt = build_prompt(gathered.effective_message, gathered.context.render())
            try:
                response = self._synthesizer.respond(prompt)
                used_llm = True
            except Exception as exc:
                logger.warning(
                    "LLM synthesis unavailable, using excerpts: %s", exc, exc_info=True
                )
        if not used_llm:
            response = compose_answer(message, gathered.results, self._agent.high_confidence)
        return self._finish(message, gathered, response, found=True, used_llm=used_llm)

    def stream_answer(
        self, message: str, *, token: CancellationToken | None = None
    ) -> StreamingAnswer:
        """Like answer(), but the text arrives as an iterator of deltas.

        Retrieval runs eagerly; the turn is added to the history once the
        deltas are fully consumed.
        """
        gathered = self._gather(message, token)

        if gathered.clarification is not None:
            text = clarification_response(gathered.clarification)
            return StreamingAnswer([], gathered.context, self._record(message, [], _word_stream(text)), False)
        if not gathered.results:
            text = not_found_response(message)
            return StreamingAnswer([], gathered.context, self._record(message, [], _word_stream(text)), False)

        deltas = self._stream_deltas(message, gathered)
        return StreamingAnswer(
            gathered.results, gathered.context, self._record(message, gathered.results, deltas)
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _gather(self, message: str, token: CancellationToken | None) -> _Gathered:
        if not message or not message.strip():
            raise EmptyInputError("Question is empty")

        with self._lock:
            previous = self._history[-1] if self._history else None
        effective = message
        if previous is not None and is_follow_up(message, has_history=True):
            effective = f"{previous.user_message} {message}"
            logger.debug("Follow-up detected, expanded to %r", effective)

        collected: list[SearchResult] = []
        queries_run: list[str] = []
        iterations = 0
        for iteration in range(1, self._agent.max_iterations + 1):
            if token is not None:
                token.raise_if_cancelled()
            iterations = iteration
            action = self._planner.plan(effective, iteration, dedupe_by_path(collected))
            if isinstance(action, NeedsMoreInfo):
                return _Gathered(effective, [], AssembledContext(), iterations, queries_run, action.questions)
            if not isinstance(action, Search):
                logger.debug("Iteration %d: synthesize (%s)", iteration, action.reason)
                break

            logger.debug("Iteration %d: searching %s", iteration, action.queries)
            round_results: list[SearchResult] = []
            for query in action.queries:
                response = self._retriever.search(query, self._agent.per_query_limit, token=token)
                round_results.extend(response.results)
                queries_run.append(query)
            collected.extend(dedupe_by_path(round_results)[: self._agent.max_results])

        merged = dedupe_by_path(collected)
        gated = [r for r in merged if r.score >= self._agent.relevance_gate]
        if not gated:
            logger.info("No result reached the relevance gate (%.2f)", self._agent.relevance_gate)
            return _Gathered(effective, [], AssembledContext(), iterations, queries_run)

        context = assemble(gated, self._store, self._context_cfg, self._estimator)
        return _Gathered(effective, gated, context, iterations, queries_run)

    def _finish(
        self, message: str, gathered: _Gathered, response: str, *, found: bool, used_llm: bool
    ) -> AgentAnswer:
        with self._lock:
            self._history.append(ConversationTurn(message, gathered.results, response))
        return AgentAnswer(
            response=response,
            results=gathered.results,
            context=gathered.context,
            iterations=gathered.iterations,
            queries=gathered.queries,
            found=found,
            used_llm=used_llm,
        )

    def _stream_deltas(self, message: str, gathered: _Gathered) -> Iterator[str]:
        if self._synthesizer is not None:
            prompt = build_prompt(gathered.effective_message, gathered.context.render())
            emitted = False
            try:
                for delta in self._synthesizer.stream_response(prompt):
                    emitted = True
                    yield delta
                if emitted:
                    return
            except Exception as exc:
                if emitted:
                    logger.warning("LLM stream interrupted: %s", exc, exc_info=True)
                    return
                logger.warning(
                    "LLM synthesis unavailable, using excerpts: %s", exc, exc_info=True
                )
        yield from _word_stream(compose_answer(message, gathered.results, self._agent.high_confidence))

    def _record(
        self, message: str, results: list[SearchResult], deltas: Iterator[str]
    ) -> Iterator[str]:
        parts: list[str] = []
        for delta in deltas:
            parts.append(delta)
            yield delta
        with self._lock:
            self._history.append(ConversationTurn(message, results, "".join(parts)))
