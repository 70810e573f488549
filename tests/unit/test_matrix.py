"""
Unit Tests for DenseMatrix
==========================

Tests for the axis-aware matrix container: reductions, shape
transforms, elementwise operations, detrending, convolution and
decompositions.

Author: Online BCI Project Team
License: MIT
"""

import numpy as np
import pytest

from online_bci.matrix import (
    ConfigurationError,
    DenseMatrix,
    check_axis,
    index_range,
    is_power_of_two,
    parse_enum,
)
from online_bci.spatial import SpatialFilterType


# =============================================================================
# Construction Tests
# =============================================================================

class TestConstruction:
    """Tests for building matrices."""

    def test_nested_rows(self, a_matrix):
        """Nested sequences are rows."""
        assert a_matrix.shape == (2, 2)
        assert a_matrix.get_row(1).tolist() == [5.0, 4.0]

    def test_vector_is_column(self):
        """A 1D sequence becomes a single column."""
        m = DenseMatrix([1.0, 2.0, 3.0])
        assert m.shape == (3, 1)

    def test_ragged_rows_rejected(self):
        """Rows of different length raise."""
        with pytest.raises(ConfigurationError):
            DenseMatrix([[1.0, 2.0], [3.0]])

    def test_copy_is_independent(self, a_matrix):
        """Copies never share the buffer."""
        copy = DenseMatrix(a_matrix)
        copy.round(0)
        array = a_matrix.to_array()
        array[0, 0] = 100.0
        assert a_matrix.get_row(0).tolist() == [1.0, 2.0]

    def test_factories(self):
        """zeros / ones / eye have the expected content."""
        assert DenseMatrix.zeros(2, 3).sum().item() == 0.0
        assert DenseMatrix.ones(2, 3).sum().item() == 6.0
        assert DenseMatrix.eye(3) == DenseMatrix(np.eye(3))


# =============================================================================
# Reduction Tests
# =============================================================================

class TestReductions:
    """Tests for sum / mean / median / variance / std."""

    def test_sum_axes(self, a_matrix):
        """Reductions return columns and compose to the full sum."""
        assert a_matrix.sum(0) == DenseMatrix([6.0, 6.0])
        assert a_matrix.sum(1) == DenseMatrix([3.0, 9.0])
        assert a_matrix.sum(-1) == a_matrix.sum(0).sum(0)
        assert a_matrix.sum().item() == 12.0

    def test_mean(self, a_matrix):
        """Mean along each axis."""
        assert a_matrix.mean().item() == 3.0
        assert a_matrix.mean(1).get_column(0).tolist() == [1.5, 4.5]
        assert a_matrix.mean(0).get_column(0).tolist() == [3.0, 3.0]

    def test_mean_of_empty_axis_is_none(self):
        """Mean over an empty axis is absent, not an error."""
        assert DenseMatrix.zeros(0, 3).mean(0) is None
        assert DenseMatrix.zeros(0, 0).mean() is None

    def test_variance_population(self, b_matrix):
        """Variance uses the N denominator."""
        assert b_matrix.variance(0).allclose([0.0155, 0.0088, 0.0555], atol=1e-3)
        assert b_matrix.variance(1).allclose([0.0155, 0.0022, 0.0555], atol=1e-3)
        assert b_matrix.variance(-1).item() == pytest.approx(0.028, abs=1e-3)

    def test_std_matches_variance(self, b_matrix):
        """std is the square root of variance."""
        assert b_matrix.std(0).allclose(b_matrix.variance(0).sqrt())

    def test_median(self, b_matrix):
        """Median of each column."""
        assert b_matrix.median(0).allclose([0.3, 0.2, 0.2])

    def test_statistic_of_empty_matrix_is_none(self):
        """All-elements statistic of an empty matrix is absent."""
        assert DenseMatrix.zeros(0, 2).variance(-1) is None

    def test_statistics_of_empty_axis_match_mean(self):
        """median / variance / std over an empty axis are absent like mean."""
        empty_rows = DenseMatrix.zeros(0, 3)
        empty_cols = DenseMatrix.zeros(2, 0)
        for stat in ("mean", "median", "variance", "std"):
            assert getattr(empty_rows, stat)(0) is None
            assert getattr(empty_cols, stat)(1) is None

    def test_statistic_over_empty_vectors_set(self):
        """No columns to reduce gives an empty result, not None."""
        result = DenseMatrix.zeros(2, 0).variance(0)
        assert result is not None
        assert result.rows == 0

    def test_invalid_axis(self, a_matrix):
        """Axis outside {-1, 0, 1} raises."""
        with pytest.raises(ConfigurationError):
            a_matrix.sum(2)
        with pytest.raises(ConfigurationError):
            a_matrix.variance(3)

    def test_covariance_rows_are_variables(self):
        """Covariance is channels x channels with population denominator."""
        data = DenseMatrix([[1.0, -1.0, 1.0, -1.0], [2.0, -2.0, 2.0, -2.0]])
        cov = data.covariance()
        assert cov.allclose([[1.0, 2.0], [2.0, 4.0]])


# =============================================================================
# Shape Transform Tests
# =============================================================================

class TestShapeTransforms:
    """Tests for transpose, reshape, flips and repeat."""

    def test_transpose_involutive(self, a_matrix, b_matrix):
        assert a_matrix.transpose().transpose() == a_matrix
        assert b_matrix.T.T == b_matrix

    def test_reshape(self, a_matrix):
        """Reshape reinterprets the row-major buffer."""
        assert a_matrix.reshape(1, 4) == DenseMatrix([[1.0, 2.0, 5.0, 4.0]])

    def test_reshape_size_mismatch(self, a_matrix):
        with pytest.raises(ConfigurationError):
            a_matrix.reshape(3, 1)

    def test_flips(self, a_matrix):
        assert a_matrix.flip_ud() == DenseMatrix([[5.0, 4.0], [1.0, 2.0]])
        assert a_matrix.flip_lr() == DenseMatrix([[2.0, 1.0], [4.0, 5.0]])

    def test_repeat_rows(self, a_matrix):
        """Whole matrix stacked vertically."""
        expected = DenseMatrix([[1, 2], [5, 4], [1, 2], [5, 4]])
        assert a_matrix.repeat(2, 0) == expected

    def test_repeat_columns(self, a_matrix):
        """Whole matrix stacked horizontally."""
        expected = DenseMatrix([[1, 2, 1, 2], [5, 4, 5, 4]])
        assert a_matrix.repeat(2, 1) == expected

    def test_repeat_invalid(self, a_matrix):
        with pytest.raises(ConfigurationError):
            a_matrix.repeat(0, 0)

    def test_select_by_mask_and_index(self, b_matrix):
        """select accepts integer positions and boolean masks."""
        assert b_matrix.select(0, [2]) == DenseMatrix([[0.2, 0.2, 0.7]])
        assert b_matrix.select(1, np.array([True, False, True])).shape == (3, 2)

    def test_select_mask_length_mismatch(self, b_matrix):
        with pytest.raises(ConfigurationError):
            b_matrix.select(0, np.array([True, False]))

    def test_sub_matrix(self, b_matrix):
        assert b_matrix.sub_matrix([0, 2], [2]) == DenseMatrix([0.2, 0.7])


# =============================================================================
# Elementwise Tests
# =============================================================================

class TestElementwise:
    """Tests for elementwise and matrix arithmetic."""

    def test_add_subtract(self, a_matrix):
        assert a_matrix.add(a_matrix) == a_matrix.scalar_multiply(2.0)
        assert a_matrix.subtract(a_matrix).sum().item() == 0.0

    def test_multiply_divide(self, a_matrix):
        assert a_matrix.multiply_elements(a_matrix) == DenseMatrix([[1, 4], [25, 16]])
        assert a_matrix.divide_elements(a_matrix) == DenseMatrix.ones(2, 2)

    def test_shape_mismatch(self, a_matrix, b_matrix):
        with pytest.raises(ConfigurationError):
            a_matrix.add(b_matrix)
        with pytest.raises(ConfigurationError):
            a_matrix.multiply_elements(b_matrix)

    def test_map_elements_gets_position(self, a_matrix):
        """The mapping function receives row, column and value."""
        mapped = a_matrix.map_elements(lambda r, c, v: v + 10 * r + 100 * c)
        assert mapped == DenseMatrix([[1, 102], [15, 114]])

    def test_round_in_place(self):
        """round() mutates and returns self, half away from zero."""
        m = DenseMatrix([[1.25, -1.25, 0.004]])
        result = m.round(1)
        assert result is m
        assert m == DenseMatrix([[1.3, -1.3, 0.0]])

    def test_matmul(self, a_matrix):
        assert (a_matrix @ DenseMatrix.eye(2)) == a_matrix
        with pytest.raises(ConfigurationError):
            a_matrix.matmul(DenseMatrix.ones(3, 1))


# =============================================================================
# Signal Operation Tests
# =============================================================================

class TestSignalOperations:
    """Tests for detrending and convolution."""

    def test_detrend_linear_columns(self, b_matrix):
        expected = DenseMatrix([[.016, .033, .082], [-.033, -.066, -.166], [.016, .033, .083]])
        assert b_matrix.detrend(0, "linear").round(2) == expected.round(2)

    def test_detrend_linear_rows(self, b_matrix):
        expected = DenseMatrix([[-.016, .033, -.016], [.016, -.033, .016], [.0833, -.166, .083]])
        assert b_matrix.detrend(1, "linear").round(2) == expected.round(2)

    def test_detrend_constant(self, b_matrix):
        expected0 = DenseMatrix([[.166, .133, -.166], [-.033, -.066, -.166], [-.133, -.066, .333]])
        expected1 = DenseMatrix([[.133, .033, -.166], [.066, -.033, -.033], [-.166, -.166, .33]])
        assert b_matrix.detrend(0, "constant").round(2) == expected0.round(2)
        assert b_matrix.detrend(1, "constant").round(2) == expected1.round(2)

    def test_detrend_removes_line(self):
        """A pure line detrends to zero."""
        line = DenseMatrix([np.arange(8.0) * 3.0 + 1.0]).transpose()
        assert line.detrend(0, "linear").allclose(DenseMatrix.zeros(8, 1))

    def test_detrend_invalid_mode(self, b_matrix):
        with pytest.raises(ConfigurationError):
            b_matrix.detrend(0, "quadratic")

    def test_convolve_rows(self, b_matrix):
        expected = DenseMatrix([[.5, 1.4, 1.0, .4], [.3, .8, .6, .4], [.2, .6, 1.1, 1.4]])
        assert b_matrix.convolve([1.0, 2.0], 0).allclose(expected)

    def test_convolve_columns(self, b_matrix):
        """Axis 1 convolves columns."""
        result = b_matrix.convolve([1.0, 2.0], 1)
        assert result.shape == (4, 3)
        assert result.get_column(0).tolist() == pytest.approx([.5, 1.3, .8, .4])


# =============================================================================
# Decomposition Tests
# =============================================================================

class TestDecompositions:
    """Tests for eig and svd."""

    def test_eig_descending(self):
        m = DenseMatrix([[2.0, 1.0], [1.0, 2.0]])
        eig = m.eig()
        assert eig.values.tolist() == pytest.approx([3.0, 1.0])
        # Eigenvectors match their values
        for i, value in enumerate(eig.values):
            v = eig.vectors.get_column(i)
            assert np.allclose(m.to_array() @ v, value * v)

    def test_eig_ascending(self):
        eig = DenseMatrix([[2.0, 1.0], [1.0, 2.0]]).eig("ascending")
        assert eig.values.tolist() == pytest.approx([1.0, 3.0])

    def test_eig_ties_are_stable(self):
        """Equal eigenvalues keep the solver order in both directions."""
        asc = DenseMatrix.eye(3).eig("ascending")
        desc = DenseMatrix.eye(3).eig("descending")
        assert asc.vectors == desc.vectors

    def test_eig_requires_square(self):
        with pytest.raises(ConfigurationError):
            DenseMatrix.ones(2, 3).eig()

    def test_svd(self, b_matrix):
        svd = b_matrix.svd()
        assert np.diag(svd.s.to_array()).tolist() == pytest.approx([.9957, .4444, .0316], abs=1e-3)
        assert svd.u.matmul(svd.s).matmul(svd.vt).allclose(b_matrix)


# =============================================================================
# Helper Tests
# =============================================================================

class TestHelpers:
    """Tests for parameter helpers."""

    def test_index_range_half_open(self):
        assert index_range(0, 10, 4).tolist() == [0, 4, 8]
        assert index_range(5, 5, 1).size == 0

    def test_index_range_zero_step(self):
        with pytest.raises(ConfigurationError):
            index_range(0, 10, 0)

    @pytest.mark.parametrize("n,expected", [(1, True), (64, True), (0, False), (12, False)])
    def test_is_power_of_two(self, n, expected):
        assert is_power_of_two(n) is expected

    def test_check_axis(self):
        check_axis(-1, allow_all=True)
        with pytest.raises(ConfigurationError):
            check_axis(-1)

    def test_parse_enum(self):
        assert parse_enum(SpatialFilterType, "car") is SpatialFilterType.CAR
        with pytest.raises(ConfigurationError):
            parse_enum(SpatialFilterType, "laplacian")
