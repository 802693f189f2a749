"""LLM answer synthesis constrained to the assembled context.

The model is instructed to answer only from the retrieved documents and to
cite them by file name. Any failure surfaces as ProviderUnavailableError or
GenerationError; the orchestrator then falls back to the heuristic answer.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Protocol

from quarry.exceptions import GenerationError, ProviderUnavailableError
from quarry.rag import llm_client

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an assistant with semantic search access to the user's own documents.\n"
    "\n"
    "Rules:\n"
    "1. Use ONLY the information in the 'Context from Indexed Documents' section.\n"
    "2. Never use general knowledge or training data to answer.\n"
    "3. Only mention file names that appear in the context. Never invent citations.\n"
    "4. If the context is empty or irrelevant, reply: "
    "\"I don't have information about this in your knowledge base.\"\n"
    "\n"
    "Relevance scores: above 70% is high confidence, 50-70% is moderate and must be "
    "stated with uncertainty, below 50% is not relevant.\n"
    "Cite sources as 'According to <file name>...'. Answer in concise markdown."
)


class Synthesizer(Protocol):
    def respond(self, prompt: str) -> str: ...

    def stream_response(self, prompt: str) -> Iterator[str]: ...


def build_prompt(question: str, context: str) -> str:
    """User prompt combining the rendered context and the question."""
    return (
        "# Context from Indexed Documents\n\n"
        f"{context}\n\n"
        "# User Question\n\n"
        f"{question}\n\n"
        "# Instructions\n\n"
        "Based strictly on the context above:\n"
        "- If a document has relevance of 70% or more, answer and cite the exact documents.\n"
        "- If relevance is 50-70%, say the answer is based on limited information.\n"
        "- If the context is insufficient, say you don't have this information.\n"
        "- Do not fabricate file names, quotes or facts."
    )


class LLMSynthesizer:
    """Answer generation through LiteLLM.

    Args:
        model: LiteLLM model string (provider/model format).
        max_tokens: Maximum answer length.
    """

    def __init__(self, model: str, max_tokens: int = 1_024) -> None:
        self.model = model
        self.max_tokens = max_tokens

    def _messages(self, prompt: str) -> list[dict]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

    def _check_ready(self) -> None:
        try:
            llm_client.validate_api_key(self.model)
        except EnvironmentError as exc:
            raise ProviderUnavailableError(str(exc)) from exc

    def respond(self, prompt: str) -> str:
        self._check_ready()
        try:
            answer = llm_client.complete(self.model, self._messages(prompt), max_tokens=self.max_tokens)
        except Exception as exc:
            raise GenerationError(f"Answer generation failed with '{self.model}': {exc}") from exc
        if not answer.strip():
            raise GenerationError(f"Model '{self.model}' returned an empty answer")
        return answer

    def stream_response(self, prompt: str) -> Iterator[str]:
        self._check_ready()
        try:
            yield from llm_client.stream_complete(
                self.model, self._messages(prompt), max_tokens=self.max_tokens
            )
        except Exception as exc:
            raise GenerationError(f"Answer streaming failed with '{self.model}': {exc}") from exc
