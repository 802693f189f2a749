"""LiteLLM client wrapper with retry, backoff, and API key validation.

All LLM and embedding calls route through this module. LiteLLM's built-in
retry is used (num_retries=3, exponential backoff). API key presence is
validated before the first call so a missing key fails fast with a clear
message instead of a provider stack trace.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Sequence

import litellm

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    """Return the provider prefix of a 'provider/model' string ('openai' if bare)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 1024,
    temperature: float = 0.0,
    num_retries: int = 3,
) -> str:
    """Call litellm.completion() with retry/backoff. Returns content string.

    Args:
        model: LiteLLM model string (provider/model format).
        messages: OpenAI-style message list.
        max_tokens: Maximum output tokens.
        temperature: Sampling temperature (0 = deterministic).
        num_retries: Number of retries on transient errors (exponential backoff).

    Returns:
        The text content of the first choice.

    Raises:
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
    )
    return response.choices[0].message.content or ""


def stream_complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 1024,
    temperature: float = 0.0,
    num_retries: int = 3,
) -> Iterator[str]:
    """Stream a completion, yielding text deltas as they arrive.

    Empty deltas (role headers, finish markers) are skipped.
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
        stream=True,
    )
    for chunk in response:
        delta = chunk.choices[0].delta.content
        if delta:
            yield delta


def embed_batch(model: str, texts: Sequence[str], num_retries: int = 3) -> list[list[float]]:
    """Call litellm.embedding() once for all *texts*. Returns vectors in input order.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        texts: Texts to embed.
        num_retries: Number of retries on transient errors.
    """
    if not texts:
        return []
    response = litellm.embedding(
        model=model,
        input=list(texts),
        num_retries=num_retries,
    )
    vectors = [item["embedding"] for item in response.data]
    logger.debug("Embedded %d texts with %s", len(vectors), model)
    return vectors
