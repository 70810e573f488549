"""
Unit Tests for Spatial Filtering
================================

Author: Online BCI Project Team
License: MIT
"""

import numpy as np
import pytest

from online_bci.matrix import ConfigurationError, DenseMatrix
from online_bci.spatial import SpatialFilter, SpatialFilterType


class TestCAR:
    """Tests for the common average reference."""

    def test_car_matrix(self):
        assert SpatialFilter.car(2) == DenseMatrix([[0.5, -0.5], [-0.5, 0.5]])

    def test_car_apply(self, a_matrix):
        filtered = SpatialFilter(SpatialFilterType.CAR).apply(a_matrix)
        assert filtered == DenseMatrix([[-2.0, -1.0], [2.0, 1.0]])

    def test_car_zero_channel_mean(self, rng):
        """Every sample has zero mean across channels after CAR."""
        data = DenseMatrix(rng.standard_normal((6, 50)))
        filtered = SpatialFilter("car").apply(data)
        assert np.allclose(filtered.sum(0).get_column(0), 0.0)

    def test_car_invalid_size(self):
        with pytest.raises(ConfigurationError):
            SpatialFilter.car(0)


class TestWhitening:
    """Tests for covariance whitening."""

    def test_whitened_covariance_is_identity(self, rng):
        data = DenseMatrix(rng.standard_normal((4, 1000)) * np.array([[1.0], [2.0], [5.0], [0.5]]))
        filtered = SpatialFilter(SpatialFilterType.WHITEN).apply(data)
        assert filtered.covariance().allclose(DenseMatrix.eye(4), atol=1e-8)

    def test_whiten_is_symmetric(self, rng):
        w = SpatialFilter.whiten(DenseMatrix(rng.standard_normal((3, 200))))
        assert w.allclose(w.transpose())

    def test_small_components_dropped(self, rng):
        """Components below the relative threshold are zeroed, not inverted."""
        data = np.vstack([rng.standard_normal((3, 500)), np.zeros((1, 500))])
        w = SpatialFilter.whiten(DenseMatrix(data), threshold=1e-6)
        assert np.all(np.isfinite(w.to_array()))
        assert np.linalg.matrix_rank(w.to_array(), tol=1e-6) == 3

    def test_negative_threshold(self):
        with pytest.raises(ConfigurationError):
            SpatialFilter(SpatialFilterType.WHITEN, whiten_threshold=-1.0)


class TestSpatialFilter:
    """Tests for filter selection."""

    def test_none_returns_copy(self, a_matrix):
        filtered = SpatialFilter(SpatialFilterType.NONE).apply(a_matrix)
        assert filtered == a_matrix
        assert filtered is not a_matrix

    def test_transform_shape(self, rng):
        data = DenseMatrix(rng.standard_normal((5, 40)))
        for kind in SpatialFilterType:
            assert SpatialFilter(kind).transform(data).shape == (5, 5)

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            SpatialFilter("laplacian")
