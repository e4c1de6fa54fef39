"""
Tests for the Matrix container (materialized, element-wise and banded variants).
"""

import pytest
import numpy as np
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from separation_engine.exceptions import DimensionMismatchError
from separation_engine.matrix import Matrix, MatrixKind, band_storage_from_dense
from separation_engine.song import inverse_mask


class TestMaterializedMatrix:
    """Test suite for materialized matrices."""

    @pytest.fixture
    def values(self):
        return np.arange(12, dtype=np.float32).reshape(3, 4)

    def test_from_array(self, values):
        m = Matrix.from_array(values)
        assert m.kind == MatrixKind.MATERIALIZED
        assert m.shape == (3, 4)
        assert m.rows == 3
        assert m.columns == 4
        assert m.get(1, 2) == 6.0
        np.testing.assert_array_equal(m.get_row(2), values[2])
        np.testing.assert_array_equal(m.get_column(3), values[:, 3])

    def test_buffer_is_read_only(self, values):
        m = Matrix.from_array(values)
        with pytest.raises(ValueError):
            m.to_array()[0, 0] = 1.0

    def test_converts_to_float32(self):
        m = Matrix.from_array(np.ones((2, 2), dtype=np.float64))
        assert m.to_array().dtype == np.float32

    def test_rejects_non_2d(self):
        with pytest.raises(ValueError):
            Matrix.from_array(np.zeros(5))

    def test_index_out_of_range(self, values):
        m = Matrix.from_array(values)
        with pytest.raises(IndexError):
            m.get(3, 0)
        with pytest.raises(IndexError):
            m.get_row(-1)
        with pytest.raises(IndexError):
            m.get_column(4)

    def test_transpose_is_zero_copy(self, values):
        m = Matrix.from_array(values)
        t = m.transpose()
        assert t.shape == (4, 3)
        assert np.shares_memory(m.to_array(), t.to_array())
        np.testing.assert_array_equal(t.to_array(), values.T)

    def test_materialize_returns_self(self, values):
        m = Matrix.from_array(values)
        assert m.materialize() is m

    def test_zeros(self):
        m = Matrix.zeros(2, 3)
        assert m.shape == (2, 3)
        assert not np.any(m.to_array())


class TestElementwiseMatrix:
    """Test suite for lazy element-wise views."""

    def test_combine_evaluates_lazily(self):
        a = Matrix.from_array(np.full((2, 3), 2.0))
        b = Matrix.from_array(np.full((2, 3), 3.0))
        view = a.combine(b, np.add)
        assert view.kind == MatrixKind.ELEMENTWISE
        assert view.get(1, 1) == 5.0
        np.testing.assert_array_equal(view.get_row(0), [5.0, 5.0, 5.0])
        np.testing.assert_array_equal(view.get_column(2), [5.0, 5.0])

    def test_hadamard_multiply(self):
        a = Matrix.from_array([[1.0, 2.0], [3.0, 4.0]])
        b = Matrix.from_array([[0.5, 0.0], [1.0, 2.0]])
        np.testing.assert_array_equal(a.hadamard_multiply(b).to_array(), [[0.5, 0.0], [3.0, 8.0]])

    def test_shape_mismatch_raises(self):
        a = Matrix.zeros(2, 3)
        b = Matrix.zeros(3, 2)
        with pytest.raises(DimensionMismatchError) as info:
            a.hadamard_multiply(b)
        assert info.value.expected == (2, 3)
        assert info.value.actual == (3, 2)

    def test_views_compose(self):
        a = Matrix.from_array(np.arange(6, dtype=np.float32).reshape(2, 3))
        view = a.apply(lambda x: x * 2).apply(lambda x: x + 1)
        np.testing.assert_array_equal(view.to_array(), np.arange(6).reshape(2, 3) * 2 + 1)

    def test_materialize_copies_values(self):
        a = Matrix.from_array(np.ones((2, 2)))
        m = a.apply(lambda x: x * 3).materialize()
        assert m.kind == MatrixKind.MATERIALIZED
        np.testing.assert_array_equal(m.to_array(), np.full((2, 2), 3.0))

    def test_transpose(self):
        a = Matrix.from_array(np.arange(6, dtype=np.float32).reshape(2, 3))
        t = a.apply(np.negative).transpose()
        assert t.shape == (3, 2)
        np.testing.assert_array_equal(t.to_array(), -np.arange(6).reshape(2, 3).T)

    def test_inverse_mask_is_complementary(self):
        rng = np.random.default_rng(0)
        mask = Matrix.from_array(rng.random((16, 32), dtype=np.float32))
        total = mask.to_array() + inverse_mask(mask).to_array()
        np.testing.assert_array_equal(total, np.ones((16, 32), dtype=np.float32))


class TestBandedMatrix:
    """Test suite for symmetric banded matrices."""

    @pytest.fixture
    def dense(self):
        rng = np.random.default_rng(1)
        values = rng.random((6, 6)).astype(np.float32)
        return (values + values.T) / 2

    def test_storage_layout(self, dense):
        storage = band_storage_from_dense(dense, 2)
        assert storage.shape == (6, 5)
        # storage[r, k] holds m[r][r + k - bandwidth]
        assert storage[3, 0] == dense[3, 1]
        assert storage[3, 4] == dense[3, 5]
        # positions outside the matrix are 0
        assert storage[0, 0] == 0
        assert storage[5, 4] == 0

    def test_to_array_zeroes_outside_band(self, dense):
        m = Matrix.banded(Matrix.from_array(band_storage_from_dense(dense, 2)), 2)
        assert m.kind == MatrixKind.BANDED
        assert m.shape == (6, 6)
        rows, cols = np.indices((6, 6))
        expected = np.where(np.abs(rows - cols) <= 2, dense, 0)
        np.testing.assert_array_equal(m.to_array(), expected)
        assert m.get(0, 5) == 0.0
        assert m.get(2, 3) == dense[2, 3]

    def test_rows_and_columns_agree(self, dense):
        m = Matrix.banded(Matrix.from_array(band_storage_from_dense(dense, 1)), 1)
        full = m.to_array()
        for i in range(6):
            np.testing.assert_array_equal(m.get_row(i), full[i])
            np.testing.assert_array_equal(m.get_column(i), full[:, i])

    def test_band_row(self, dense):
        m = Matrix.banded(Matrix.from_array(band_storage_from_dense(dense, 2)), 2)
        start, values = m.band_row(0)
        assert start == -2
        assert len(values) == 5
        np.testing.assert_array_equal(values[2:], dense[0, :3])
        np.testing.assert_array_equal(values[:2], [0, 0])

    def test_storage_width_must_match(self):
        with pytest.raises(DimensionMismatchError):
            Matrix.banded(Matrix.zeros(4, 4), 2)

    def test_non_banded_has_no_band_rows(self):
        with pytest.raises(TypeError):
            Matrix.zeros(3, 3).band_row(0)

    def test_transpose_is_identity(self, dense):
        m = Matrix.banded(Matrix.from_array(band_storage_from_dense(dense, 2)), 2)
        assert m.transpose() is m
