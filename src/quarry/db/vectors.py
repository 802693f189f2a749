"""Embedding blob codec and vector similarity.

Embeddings are stored as D little-endian float32 values. A blob whose length
is not a multiple of 4 decodes to an empty vector, which scores 0.0 against
everything instead of failing the whole search.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

logger = logging.getLogger(__name__)

_DTYPE = np.dtype("<f4")


def encode_embedding(vector: Sequence[float] | np.ndarray) -> bytes:
    """Serialize *vector* to little-endian float32 bytes."""
    return np.asarray(vector, dtype=_DTYPE).tobytes()


def decode_embedding(blob: bytes | None) -> np.ndarray:
    """Deserialize a stored blob; malformed blobs yield an empty vector."""
    if not blob or len(blob) % _DTYPE.itemsize:
        logger.warning("Malformed embedding blob (%d bytes)", len(blob or b""))
        return np.zeros(0, dtype=np.float32)
    return np.frombuffer(blob, dtype=_DTYPE).astype(np.float32)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Return dot(a, b) / (|a| * |b|).

    Returns 0.0 when either magnitude is zero or the dimensions differ.
    """
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    norm = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return max(-1.0, min(1.0, float(np.dot(va, vb)) / norm))
