"""Embedding provider interface and the LiteLLM-backed implementation.

The core only depends on the ``EmbeddingProvider`` protocol; any runtime that
turns text into a fixed-dimension float vector can be plugged in.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import litellm
import numpy as np

from quarry.exceptions import EmbeddingError, EmptyInputError, ProviderUnavailableError
from quarry.rag import llm_client

logger = logging.getLogger(__name__)

# Provider failures that mean "not ready" rather than "bad input".
_UNAVAILABLE_ERRORS: tuple[type[Exception], ...] = (
    litellm.exceptions.APIConnectionError,
    litellm.exceptions.AuthenticationError,
    litellm.exceptions.ServiceUnavailableError,
    litellm.exceptions.NotFoundError,
    litellm.exceptions.Timeout,
)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Text → vector collaborator used by the indexer and the retriever."""

    @property
    def dimensions(self) -> int: ...

    def embed(self, text: str) -> tuple[np.ndarray, str]:
        """Embed one text; returns (vector, language code).

        Raises:
            EmptyInputError: If *text* is blank.
            ProviderUnavailableError: If the model runtime is not ready.
        """
        ...

    def embed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        """Embed many texts in one call; output order matches input order."""
        ...


# ------------------------------------------------------------------
# Language detection
# ------------------------------------------------------------------

# (first codepoint, last codepoint, script)
_SCRIPT_RANGES: tuple[tuple[int, int, str], ...] = (
    (0x3040, 0x30FF, "kana"),
    (0xAC00, 0xD7AF, "ko"),
    (0x1100, 0x11FF, "ko"),
    (0x4E00, 0x9FFF, "han"),
    (0x3400, 0x4DBF, "han"),
    (0x0400, 0x04FF, "ru"),
    (0x0600, 0x06FF, "ar"),
    (0x0590, 0x05FF, "he"),
    (0x0370, 0x03FF, "el"),
    (0x0E00, 0x0E7F, "th"),
    (0x0900, 0x097F, "hi"),
)

_SAMPLE_CHARS = 2_000


def _script_of(ch: str) -> str | None:
    code = ord(ch)
    if ch.isascii():
        return "latin" if ch.isalpha() else None
    for first, last, script in _SCRIPT_RANGES:
        if first <= code <= last:
            return script
    if ch.isalpha() and code <= 0x024F:
        return "latin"
    return None


def detect_language(text: str) -> str:
    """Best-effort language tag from the dominant writing system of *text*.

    Latin script maps to ``en``; text without letters maps to ``und``. Han
    characters mixed with kana are tagged ``ja``, otherwise ``zh``.
    """
    counts = Counter(s for s in map(_script_of, text[:_SAMPLE_CHARS]) if s)
    if not counts:
        return "und"
    if counts["kana"]:
        return "ja"
    script = counts.most_common(1)[0][0]
    if script == "han":
        return "zh"
    if script == "latin":
        return "en"
    return script


# ------------------------------------------------------------------
# LiteLLM provider
# ------------------------------------------------------------------


class LiteLLMEmbeddingProvider:
    """Embeddings through any LiteLLM-supported model (local Ollama by default).

    Args:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Expected vector size; corrected from the first response if
            the model disagrees.
        num_retries: Retries on transient errors.
    """

    def __init__(self, model: str, dimensions: int, num_retries: int = 3) -> None:
        self.model = model
        self._dimensions = dimensions
        self.num_retries = num_retries

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str) -> tuple[np.ndarray, str]:
        if not text or not text.strip():
            raise EmptyInputError("Cannot embed blank text")
        return self.embed_batch([text])[0], detect_language(text)

    def embed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        if not texts:
            return []
        if any(not t or not t.strip() for t in texts):
            raise EmptyInputError("Cannot embed blank text")

        try:
            llm_client.validate_api_key(self.model)
        except EnvironmentError as exc:
            raise ProviderUnavailableError(str(exc)) from exc

        try:
            raw = llm_client.embed_batch(self.model, texts, num_retries=self.num_retries)
        except _UNAVAILABLE_ERRORS as exc:
            raise ProviderUnavailableError(
                f"Embedding model '{self.model}' is not available: {exc}"
            ) from exc
        except Exception as exc:
            raise EmbeddingError(f"Embedding failed with '{self.model}': {exc}") from exc

        if len(raw) != len(texts):
            raise EmbeddingError(
                f"Embedding model '{self.model}' returned {len(raw)} vectors for {len(texts)} texts"
            )

        vectors = [np.asarray(v, dtype=np.float32) for v in raw]
        actual = vectors[0].shape[0]
        if actual != self._dimensions:
            logger.warning(
                "Model %s returns %d-dimensional vectors (configured %d)",
                self.model, actual, self._dimensions,
            )
            self._dimensions = actual
        return vectors
