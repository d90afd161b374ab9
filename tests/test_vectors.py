"""Tests for vector serialization and normalization helpers."""

from __future__ import annotations

import math

import numpy as np
import pytest

from postindex.exceptions import EmbeddingError, SchemaError
from postindex.search.vectors import (
    check_dimension,
    coerce_vector,
    cosine_scores,
    decode_vector,
    encode_vector,
    l2_normalize,
)


class TestEncode:
    def test_canonical_form_has_no_whitespace(self):
        assert encode_vector([0.6, 0.8]) == "[0.6,0.8]"

    def test_ints_become_floats(self):
        assert encode_vector([1, 0]) == "[1.0,0.0]"

    def test_numpy_values_accepted(self):
        assert encode_vector(list(np.array([0.5, 0.25], dtype=np.float64))) == "[0.5,0.25]"

    def test_rejects_nan(self):
        with pytest.raises(SchemaError, match="not finite"):
            encode_vector([0.1, float("nan")])

    def test_rejects_empty(self):
        with pytest.raises(SchemaError, match="empty"):
            encode_vector([])


class TestDecode:
    def test_round_trip_preserves_values(self):
        vector = [0.1234567890123, -0.5, 1e-9, 0.333333333333333]
        assert decode_vector(encode_vector(vector)) == vector

    def test_accepts_already_decoded_list(self):
        assert decode_vector([0.6, 0.8]) == [0.6, 0.8]

    def test_invalid_json(self):
        with pytest.raises(SchemaError, match="not valid JSON"):
            decode_vector("[0.1,")

    def test_not_an_array(self):
        with pytest.raises(SchemaError, match="JSON array"):
            decode_vector('{"a": 1}')

    def test_non_numeric_element(self):
        with pytest.raises(SchemaError, match="element 1"):
            decode_vector('[0.1, "x"]')

    def test_bool_element_rejected(self):
        with pytest.raises(SchemaError):
            coerce_vector([True, 0.5])


class TestDimension:
    def test_matching(self):
        check_dimension([0.0, 1.0], 2)

    def test_mismatch(self):
        with pytest.raises(SchemaError, match="Expected a 3-dimensional vector, got 2"):
            check_dimension([0.0, 1.0], 3)


class TestNormalize:
    def test_unit_norm(self):
        result = l2_normalize([3.0, 4.0])
        assert result == pytest.approx([0.6, 0.8])
        assert math.sqrt(sum(x * x for x in result)) == pytest.approx(1.0, abs=1e-9)

    def test_zero_vector_raises(self):
        with pytest.raises(EmbeddingError):
            l2_normalize([0.0, 0.0])


class TestCosineScores:
    def test_scores(self):
        matrix = np.array([[1.0, 0.0], [0.0, 1.0], [0.6, 0.8]])
        scores = cosine_scores([1.0, 0.0], matrix)
        assert scores.tolist() == pytest.approx([1.0, 0.0, 0.6])

    def test_zero_row_scores_zero(self):
        matrix = np.array([[0.0, 0.0], [1.0, 0.0]])
        scores = cosine_scores([1.0, 0.0], matrix)
        assert scores.tolist() == pytest.approx([0.0, 1.0])
