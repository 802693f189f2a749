"""Context assembler: full documents under a token budget.

Pipeline:
  1. Rehydrate the full document of each result (chunks joined by newlines).
  2. Estimate its tokens; above the per-document cap, keep a window of text
     centred on the matched chunk (``...`` markers), or the head of the
     document when the chunk cannot be located. The window shrinks until
     the excerpt fits the cap.
  3. Add documents in score order until the next one would exceed the total
     budget; assembly stops there.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from quarry.config import ContextCfg
from quarry.db.repository import DocumentStore
from quarry.rag.retriever import SearchResult

logger = logging.getLogger(__name__)

TokenEstimator = Callable[[str], int]

_PUNCTUATION = frozenset(".,!?;:\n()[]{}\"'")
_CHARS_PER_TOKEN = 3.5
_LONG_WORD = 8


def estimate_tokens(text: str) -> int:
    """Approximate token count without a tokenizer.

    Words of up to 8 characters count as one token, longer words as
    ``len // 4`` (at least one), plus one token per two punctuation marks.
    """
    count = 0
    for word in text.split():
        count += 1 if len(word) <= _LONG_WORD else max(1, len(word) // 4)
    count += sum(1 for ch in text if ch in _PUNCTUATION) // 2
    return count


def truncate_around_match(document: str, max_chars: int, matched: str) -> str:
    """Cut *document* to roughly *max_chars*, keeping the text around *matched*.

    The window keeps up to ``max_chars // 3`` characters on each side of the
    match. When *matched* is not found (case-insensitive) the head of the
    document is kept instead.
    """
    if len(document) <= max_chars:
        return document
    start = document.lower().find(matched.lower()) if matched else -1
    if start < 0:
        return document[:max_chars] + "..."
    end = start + len(matched)
    before = min(start, max_chars // 3)
    after = min(len(document) - end, max_chars // 3)
    return "..." + document[start - before : end + after] + "..."


def _shrink_to_cap(
    document: str,
    matched: str,
    max_tokens: int,
    max_chars: int,
    estimator: TokenEstimator,
) -> tuple[str, int]:
    content = truncate_around_match(document, max_chars, matched)
    tokens = estimator(content)
    while tokens > max_tokens and max_chars > 1:
        max_chars = min(max_chars - 1, max(1, int(max_chars * max_tokens / tokens * 0.9)))
        content = truncate_around_match(document, max_chars, matched)
        tokens = estimator(content)
    return content, tokens


def _fit_to_cap(
    document: str,
    matched: str,
    max_tokens: int,
    max_chars: int,
    estimator: TokenEstimator,
) -> tuple[str, int]:
    """Truncate *document* and shrink the window until it fits *max_tokens*."""
    content, tokens = _shrink_to_cap(document, matched, max_tokens, max_chars, estimator)
    if tokens > max_tokens and matched:
        # The matched chunk alone is over the cap: keep the head instead.
        content, tokens = _shrink_to_cap(document, "", max_tokens, max_chars, estimator)
    return content, tokens


@dataclass
class ContextDocument:
    file_name: str
    file_path: str
    score: float
    language: str
    content: str
    tokens: int
    original_chars: int

    @property
    def truncated(self) -> bool:
        return len(self.content) < self.original_chars


@dataclass
class AssembledContext:
    documents: list[ContextDocument] = field(default_factory=list)
    total_tokens: int = 0

    @property
    def empty(self) -> bool:
        return not self.documents

    def render(self) -> str:
        """Markdown block handed to the language model."""
        if not self.documents:
            return "No relevant documents found in the knowledge base."
        parts = ["# Retrieved Documents from Knowledge Base\n"]
        for n, doc in enumerate(self.documents, start=1):
            lines = [
                f"## Document {n}: {doc.file_name}",
                f"- **Path:** `{doc.file_path}`",
                f"- **Relevance Score:** {doc.score * 100:.1f}%",
                f"- **Language:** {doc.language}",
            ]
            if doc.truncated:
                lines.append(
                    f"- **Note:** Excerpt shown (most relevant {len(doc.content)} "
                    f"of {doc.original_chars} chars)"
                )
            lines += ["", "**Content:**", "```", doc.content, "```", "", "---", ""]
            parts.append("\n".join(lines))
        return "\n".join(parts)


def assemble(
    results: Sequence[SearchResult],
    store: DocumentStore,
    config: ContextCfg | None = None,
    estimator: TokenEstimator = estimate_tokens,
) -> AssembledContext:
    """Build the context for *results*, highest score first.

    Results whose document is missing or blank are skipped.
    """
    config = config if config is not None else ContextCfg()
    context = AssembledContext()
    target_chars = int(config.per_document_tokens * _CHARS_PER_TOKEN)

    for result in sorted(results, key=lambda r: (-r.score, r.file_path)):
        full = store.get_document(result.file_path)
        if full is None or not full.strip():
            logger.debug("Skipping %s: no stored content", result.file_name)
            continue

        content = full
        tokens = estimator(full)
        if tokens > config.per_document_tokens:
            content, tokens = _fit_to_cap(
                full, result.content, config.per_document_tokens, target_chars, estimator
            )

        if context.total_tokens + tokens > config.token_budget:
            logger.debug(
                "Context budget reached (%d + %d > %d) after %d documents",
                context.total_tokens, tokens, config.token_budget, len(context.documents),
            )
            break

        context.documents.append(
            ContextDocument(
                file_name=result.file_name,
                file_path=result.file_path,
                score=result.score,
                language=result.language,
                content=content,
                tokens=tokens,
                original_chars=len(full),
            )
        )
        context.total_tokens += tokens

    return context
