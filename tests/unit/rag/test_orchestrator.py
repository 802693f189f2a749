"""Tests for the agentic answer loop and its heuristic answers."""

from __future__ import annotations

import numpy as np
import pytest

from quarry.concurrency import CancellationToken
from quarry.config import AgentCfg
from quarry.db.models import FileInfo
from quarry.exceptions import EmptyInputError, GenerationError, OperationCancelled, ProviderUnavailableError
from quarry.rag.orchestrator import AgenticOrchestrator, compose_answer, dedupe_by_path
from quarry.rag.retriever import SearchResponse, SearchResult

_QUESTION = "What is the refund policy?"
_POLICY = "Our refund policy allows returns within 30 days of purchase."

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _result(path="/docs/policy.md", score=0.9, content=_POLICY):
    return SearchResult(
        chunk_id=f"{path}#0",
        file_path=path,
        file_name=path.rsplit("/", 1)[-1],
        content=content,
        chunk_index=0,
        language="en",
        score=score,
        avg_score=score,
        max_score=score,
        total_chunks=1,
    )


class StubRetriever:
    """Serves canned responses in call order; the last one repeats."""

    def __init__(self, *responses: list[SearchResult]) -> None:
        self.responses = list(responses) or [[]]
        self.calls: list[tuple[str, int | None]] = []

    @property
    def queries(self) -> list[str]:
        return [q for q, _ in self.calls]

    def search(self, query, limit=None, *, token=None):
        if token is not None:
            token.raise_if_cancelled()
        results = self.responses[min(len(self.calls), len(self.responses) - 1)]
        self.calls.append((query, limit))
        return SearchResponse(results[:limit] if limit else list(results), len(results))


class StubSynthesizer:
    def __init__(self, answer="According to policy.md, 30 days.", error=None, deltas=None):
        self.answer = answer
        self.error = error
        self.deltas = deltas
        self.prompts: list[str] = []

    def respond(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.answer

    def stream_response(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        yield from self.deltas or [self.answer]


@pytest.fixture
def policy_store(store):
    store.replace_file(
        FileInfo(path="/docs/policy.md", name="policy.md", modified_at=1.0, size=len(_POLICY)),
        [_POLICY],
        [np.ones(4, dtype=np.float32)],
        "en",
    )
    return store


def _agent(retriever, store, **kwargs):
    agent = kwargs.pop("agent", None)
    return AgenticOrchestrator(retriever, store, agent=agent or AgentCfg(), **kwargs)


# ------------------------------------------------------------------
# Answer composition
# ------------------------------------------------------------------


def test_dedupe_keeps_highest_score_per_path():
    merged = dedupe_by_path([
        _result("/docs/a.md", 0.6),
        _result("/docs/b.md", 0.7),
        _result("/docs/a.md", 0.9),
    ])
    assert [(r.file_name, r.score) for r in merged] == [("a.md", 0.9), ("b.md", 0.7)]


def test_compose_answer_lists_key_findings():
    text = compose_answer(_QUESTION, [_result(score=0.92)], high_confidence=0.7)
    assert f'**Answer to:** "{_QUESTION}"' in text
    assert "**Key Findings:**" in text
    assert "**1. From policy.md:**" in text
    assert "*Match: 92%* • `/docs/policy.md`" in text
    assert "Based on limited information" not in text
    assert text.endswith("**Sources:** Found 1 relevant document(s)")


def test_compose_answer_flags_moderate_matches_as_uncertain():
    text = compose_answer(_QUESTION, [_result(score=0.6)], high_confidence=0.7)
    assert "Based on limited information" in text
    assert "**Key Findings:**" not in text
    assert "**Additional Context:**" in text
    assert "the match is uncertain" in text


def test_compose_answer_caps_items_and_excerpts():
    high = [_result(f"/docs/h{n}.md", 0.9 - n * 0.01, "x" * 500) for n in range(4)]
    moderate = [_result(f"/docs/m{n}.md", 0.6 - n * 0.01, "y" * 300) for n in range(3)]
    text = compose_answer(_QUESTION, high + moderate, high_confidence=0.7)
    assert "**3. From h2.md:**" in text
    assert "h3.md" not in text
    assert "m1.md" in text and "m2.md" not in text
    assert "x" * 400 + "..." in text
    assert "y" * 201 not in text
    assert "Found 7 relevant document(s)" in text


# ------------------------------------------------------------------
# Gating and answers
# ------------------------------------------------------------------


def test_nothing_above_gate_is_not_found(policy_store):
    retriever = StubRetriever([_result(score=0.45)])
    answer = _agent(retriever, policy_store).answer(_QUESTION)
    assert not answer.found
    assert answer.results == []
    assert answer.context.empty
    assert "I don't have information about" in answer.response
    assert "quarry status" in answer.response


def test_no_results_is_not_found(policy_store):
    answer = _agent(StubRetriever([]), policy_store).answer(_QUESTION)
    assert not answer.found
    assert answer.results == []


def test_confident_results_give_key_findings(policy_store):
    answer = _agent(StubRetriever([_result(score=0.9)]), policy_store).answer(_QUESTION)
    assert answer.found
    assert not answer.used_llm
    assert [r.file_name for r in answer.results] == ["policy.md"]
    assert answer.context.documents[0].content == _POLICY
    assert "**Key Findings:**" in answer.response
    assert "30 days" in answer.response


def test_gate_drops_weak_results_but_keeps_strong(policy_store):
    retriever = StubRetriever([_result(score=0.9), _result("/docs/noise.md", 0.3)])
    answer = _agent(retriever, policy_store).answer(_QUESTION)
    assert [r.file_name for r in answer.results] == ["policy.md"]


def test_results_deduplicated_across_queries(policy_store):
    retriever = StubRetriever([_result(score=0.6)], [_result(score=0.95)])
    answer = _agent(retriever, policy_store).answer(_QUESTION)
    assert len(answer.results) == 1
    assert answer.results[0].score == 0.95


def test_llm_answer_used_when_available(policy_store):
    synthesizer = StubSynthesizer()
    answer = _agent(StubRetriever([_result()]), policy_store, synthesizer=synthesizer).answer(_QUESTION)
    assert answer.used_llm
    assert answer.response == "According to policy.md, 30 days."
    assert "## Document 1: policy.md" in synthesizer.prompts[0]
    assert _QUESTION in synthesizer.prompts[0]


@pytest.mark.parametrize(
    "error", [GenerationError("boom"), ProviderUnavailableError("offline"), RuntimeError("bug")]
)
def test_llm_failure_falls_back_to_excerpts(policy_store, error):
    synthesizer = StubSynthesizer(error=error)
    answer = _agent(StubRetriever([_result()]), policy_store, synthesizer=synthesizer).answer(_QUESTION)
    assert answer.found
    assert not answer.used_llm
    assert "**Key Findings:**" in answer.response


def test_llm_not_called_when_nothing_found(policy_store):
    synthesizer = StubSynthesizer()
    _agent(StubRetriever([]), policy_store, synthesizer=synthesizer).answer(_QUESTION)
    assert synthesizer.prompts == []


# ------------------------------------------------------------------
# Planning loop
# ------------------------------------------------------------------


def test_confident_first_pass_stops_after_two_iterations(policy_store):
    retriever = StubRetriever([_result(score=0.9)])
    answer = _agent(retriever, policy_store).answer(_QUESTION)
    assert answer.iterations == 2
    assert answer.queries == retriever.queries
    assert len(retriever.queries) == 5


def test_uncertain_first_pass_is_refined(policy_store):
    retriever = StubRetriever([_result(score=0.55)])
    answer = _agent(retriever, policy_store).answer(_QUESTION)
    assert answer.iterations == 3
    assert "example refund" in retriever.queries


def test_single_iteration_limit(policy_store):
    retriever = StubRetriever([_result(score=0.55)])
    answer = _agent(retriever, policy_store, agent=AgentCfg(max_iterations=1)).answer(_QUESTION)
    assert answer.iterations == 1
    assert "example refund" not in retriever.queries


def test_per_query_limit_passed_to_retriever(policy_store):
    retriever = StubRetriever([_result()])
    _agent(retriever, policy_store, agent=AgentCfg(per_query_limit=2)).answer(_QUESTION)
    assert {limit for _, limit in retriever.calls} == {2}


def test_round_keeps_best_max_results(policy_store):
    many = [_result(f"/docs/f{n}.md", 0.9 - n * 0.05) for n in range(5)]
    retriever = StubRetriever(many)
    agent = AgentCfg(max_iterations=1, per_query_limit=5, max_results=2)
    answer = _agent(retriever, policy_store, agent=agent).answer(_QUESTION)
    assert [r.file_name for r in answer.results] == ["f0.md", "f1.md"]


def test_unsearchable_message_asks_for_detail(policy_store):
    retriever = StubRetriever([_result()])
    answer = _agent(retriever, policy_store).answer("???")
    assert not answer.found
    assert "more detail" in answer.response
    assert retriever.calls == []


@pytest.mark.parametrize("message", ["", "   "])
def test_blank_message_raises(policy_store, message):
    with pytest.raises(EmptyInputError):
        _agent(StubRetriever(), policy_store).answer(message)


def test_cancelled_token_stops_loop(policy_store):
    token = CancellationToken()
    token.cancel()
    retriever = StubRetriever([_result()])
    with pytest.raises(OperationCancelled):
        _agent(retriever, policy_store).answer(_QUESTION, token=token)
    assert retriever.calls == []


# ------------------------------------------------------------------
# Conversation memory
# ------------------------------------------------------------------


def test_follow_up_is_expanded_with_previous_message(policy_store):
    retriever = StubRetriever([_result()])
    orchestrator = _agent(retriever, policy_store)
    orchestrator.answer(_QUESTION)
    retriever.calls.clear()

    orchestrator.answer("what about exceptions?")
    assert f"{_QUESTION} what about exceptions?" in retriever.queries


def test_unrelated_question_is_not_expanded(policy_store):
    retriever = StubRetriever([_result()])
    orchestrator = _agent(retriever, policy_store)
    orchestrator.answer(_QUESTION)
    retriever.calls.clear()

    message = "Describe the quarterly revenue targets for the European sales team"
    orchestrator.answer(message)
    assert all(_QUESTION not in q for q in retriever.queries)


def test_history_records_turns_and_is_capped(policy_store):
    orchestrator = _agent(
        StubRetriever([_result()]), policy_store, agent=AgentCfg(max_history_turns=2)
    )
    for message in ("first question here please", "second question here please", "third question here please"):
        orchestrator.answer(message)
    history = orchestrator.history
    assert [t.user_message for t in history] == ["second question here please", "third question here please"]
    assert history[-1].results[0].file_name == "policy.md"
    assert history[-1].response


def test_reset_clears_history(policy_store):
    orchestrator = _agent(StubRetriever([_result()]), policy_store)
    orchestrator.answer(_QUESTION)
    orchestrator.reset()
    assert orchestrator.history == []


# ------------------------------------------------------------------
# Streaming
# ------------------------------------------------------------------


def test_stream_without_llm_matches_composed_answer(policy_store):
    orchestrator = _agent(StubRetriever([_result()]), policy_store)
    streamed = orchestrator.stream_answer(_QUESTION)
    assert streamed.found
    assert orchestrator.history == []

    text = "".join(streamed)
    assert text == compose_answer(_QUESTION, streamed.results, 0.7)
    assert orchestrator.history[-1].response == text


def test_stream_with_llm_yields_model_deltas(policy_store):
    synthesizer = StubSynthesizer(deltas=["According ", "to ", "policy.md"])
    orchestrator = _agent(StubRetriever([_result()]), policy_store, synthesizer=synthesizer)
    assert list(orchestrator.stream_answer(_QUESTION)) == ["According ", "to ", "policy.md"]


@pytest.mark.parametrize("error", [GenerationError("boom"), KeyError("choices")])
def test_stream_falls_back_when_llm_fails_first(policy_store, error):
    synthesizer = StubSynthesizer(error=error)
    orchestrator = _agent(StubRetriever([_result()]), policy_store, synthesizer=synthesizer)
    text = "".join(orchestrator.stream_answer(_QUESTION))
    assert "**Key Findings:**" in text


def test_stream_not_found(policy_store):
    streamed = _agent(StubRetriever([]), policy_store).stream_answer(_QUESTION)
    assert not streamed.found
    assert streamed.results == []
    assert "I don't have information about" in "".join(streamed)
