"""Exception hierarchy shared by the indexing and retrieval pipeline.

Per-item failures (extraction, embedding, resource limits) are recorded by
the indexer and reported as a list; only input validation and provider
readiness errors propagate out of a call.
"""

from __future__ import annotations


class QuarryError(Exception):
    """Base class for all Quarry errors."""


class EmptyInputError(QuarryError, ValueError):
    """Blank text was submitted for embedding, chunking or search."""


class ProviderUnavailableError(QuarryError):
    """The embedding or language model runtime is not ready."""


class EmbeddingError(QuarryError):
    """The embedding provider failed for a specific input."""


class ExtractionError(QuarryError):
    """Text could not be extracted from a file."""


class GenerationError(QuarryError):
    """The language model failed to produce an answer."""


class ResourceLimitError(QuarryError):
    """A configured size limit was reached."""


class FileTooLargeError(ResourceLimitError):
    """A single file exceeds ``max_file_size_bytes``; the file is skipped."""


class StoreFullError(ResourceLimitError):
    """The store would exceed ``max_database_size_bytes``; the run halts."""


class OperationCancelled(QuarryError):
    """A cancellation token was triggered while an operation was running."""
