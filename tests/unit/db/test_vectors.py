"""Tests for the embedding blob codec and cosine similarity."""

from __future__ import annotations

import numpy as np
import pytest

from quarry.db.vectors import cosine_similarity, decode_embedding, encode_embedding


# --- codec ---

def test_encode_is_little_endian_float32():
    blob = encode_embedding([1.0, -2.0])
    assert blob == np.array([1.0, -2.0], dtype="<f4").tobytes()
    assert len(blob) == 8


def test_decode_restores_values():
    vec = decode_embedding(encode_embedding([0.25, 0.5, 0.75]))
    assert vec.dtype == np.float32
    assert vec.tolist() == [0.25, 0.5, 0.75]


@pytest.mark.parametrize("blob", [b"", None, b"\x00\x01\x02"])
def test_decode_malformed_blob_is_empty(blob):
    assert decode_embedding(blob).size == 0


# --- cosine_similarity ---

def test_cosine_identical_is_one():
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)


def test_cosine_orthogonal_is_zero():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_cosine_opposite_is_minus_one():
    assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)


def test_cosine_zero_vector_is_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_cosine_dimension_mismatch_is_zero():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0


def test_cosine_empty_is_zero():
    assert cosine_similarity([], []) == 0.0
