"""Sentence chunker with overlap.

Strategy:
  - Split on ``.``, ``!`` or ``?`` followed by whitespace; strip each sentence
    and drop empty ones.
  - Greedily pack whole sentences (joined by one space) while the visible,
    non-whitespace character count stays within ``max_chunk_size``.
  - Advance by ``max(1, sentences_in_chunk - overlap_sentences)`` so that
    consecutive chunks share their boundary sentences.
  - A single sentence longer than the limit is hard-split into fixed-width
    pieces with no overlap.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class TextChunk:
    text: str
    index: int


def split_sentences(text: str) -> list[str]:
    """Return the stripped, non-empty sentences of *text* in order."""
    return [s.strip() for s in _SENTENCE_END_RE.split(text) if s.strip()]


def chunk_text(
    text: str,
    max_chunk_size: int = 512,
    overlap_sentences: int = 1,
) -> list[TextChunk]:
    """Split *text* into overlapping sentence chunks.

    Args:
        text: Full document text.
        max_chunk_size: Upper bound on visible characters per chunk.
        overlap_sentences: Sentences repeated at the start of the next chunk.

    Returns:
        Chunks with contiguous indices from 0. Blank input yields a single
        chunk wrapping the original string.

    Raises:
        ValueError: If *max_chunk_size* < 1 or *overlap_sentences* < 0.
    """
    if max_chunk_size < 1:
        raise ValueError("max_chunk_size must be >= 1")
    if overlap_sentences < 0:
        raise ValueError("overlap_sentences must be >= 0")

    sentences = split_sentences(text)
    if not sentences:
        return [TextChunk(text=text, index=0)]

    pieces: list[str] = []
    i = 0
    while i < len(sentences):
        first = sentences[i]
        if _visible_len(first) > max_chunk_size:
            pieces.extend(_hard_split(first, max_chunk_size))
            i += 1
            continue

        parts = [first]
        size = _visible_len(first)
        j = i + 1
        while j < len(sentences):
            extra = _visible_len(sentences[j])
            if size + extra > max_chunk_size:
                break
            parts.append(sentences[j])
            size += extra
            j += 1

        pieces.append(" ".join(parts))
        if j >= len(sentences):
            # The final sentence is in this chunk; stepping back for overlap
            # would only emit a duplicate tail.
            break
        i += max(1, len(parts) - overlap_sentences)

    return [TextChunk(text=t, index=n) for n, t in enumerate(pieces)]


def _visible_len(text: str) -> int:
    return len(_WHITESPACE_RE.sub("", text))


def _hard_split(sentence: str, width: int) -> list[str]:
    pieces = (sentence[k : k + width].strip() for k in range(0, len(sentence), width))
    return [p for p in pieces if p]
