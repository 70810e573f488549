"""
Spatial Filtering Module
========================

Channel-space linear transforms applied to epochs laid out with
channels on rows and samples on columns.

Mathematical Background:
    1. Common Average Reference (CAR):
           C = I - (1/n) · J          (J = all-ones)
           x_car = C · x              (subtracts the cross-channel mean)

    2. Whitening:
           Σ = V Λ Vᵀ                 (channel covariance, ascending λ)
           D_ii = λ_i^(-1/2) if λ_i > max(λ) · threshold else 0
           W = V D Vᵀ
           x_white = W · x            (retained components get unit variance)

Author: Online BCI Project Team
License: MIT
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Union

import numpy as np

from .matrix import ConfigurationError, DenseMatrix, MatrixLike, as_matrix, parse_enum

logger = logging.getLogger(__name__)

DEFAULT_WHITEN_THRESHOLD = 1e-15


class SpatialFilterType(Enum):
    """Types of spatial filters."""
    NONE = auto()
    CAR = auto()       # Common average reference
    WHITEN = auto()    # Covariance whitening


class SpatialFilter:
    """
    Spatial filter for channels-on-rows data.

    Example:
        >>> SpatialFilter(SpatialFilterType.CAR).apply([[1, 2], [5, 4]])
        DenseMatrix(2, 2)
        -2.0 -1.0
        2.0 1.0
    """

    def __init__(
        self,
        kind: Union[SpatialFilterType, str] = SpatialFilterType.CAR,
        whiten_threshold: float = DEFAULT_WHITEN_THRESHOLD
    ) -> None:
        """
        Args:
            kind: Filter type
            whiten_threshold: Relative eigenvalue cut-off for whitening
        """
        if whiten_threshold < 0:
            raise ConfigurationError(f"whiten_threshold must be >= 0, got {whiten_threshold}")
        self.kind = parse_enum(SpatialFilterType, kind)
        self.whiten_threshold = whiten_threshold

    @staticmethod
    def car(size: int) -> DenseMatrix:
        """CAR matrix: 1 - 1/size on the diagonal, -1/size elsewhere."""
        if size < 1:
            raise ConfigurationError(f"CAR size must be >= 1, got {size}")
        return DenseMatrix.eye(size).scalar_add(-1.0 / size)

    @staticmethod
    def whiten(data: MatrixLike, threshold: float = DEFAULT_WHITEN_THRESHOLD) -> DenseMatrix:
        """
        Whitening transform derived from the channel covariance of data.

        Args:
            data: Channels x samples
            threshold: Eigenvalues at or below max(λ) · threshold are dropped

        Returns:
            Symmetric (channels x channels) transform V · D · Vᵀ
        """
        if threshold < 0:
            raise ConfigurationError(f"threshold must be >= 0, got {threshold}")
        eig = as_matrix(data).covariance().eig("ascending")
        values = eig.values
        cutoff = values.max() * threshold if values.size else 0.0

        diag = np.zeros_like(values)
        retained = values > cutoff
        diag[retained] = values[retained] ** -0.5

        if not np.all(retained):
            logger.debug(f"Whitening dropped {int(np.sum(~retained))} of {values.size} components")

        vectors = eig.vectors
        return vectors.matmul(DenseMatrix(np.diag(diag))).matmul(vectors.transpose())

    def transform(self, data: MatrixLike) -> DenseMatrix:
        """The (channels x channels) matrix this filter applies to data."""
        m = as_matrix(data)
        if self.kind == SpatialFilterType.CAR:
            return self.car(m.rows)
        if self.kind == SpatialFilterType.WHITEN:
            return self.whiten(m, self.whiten_threshold)
        return DenseMatrix.eye(m.rows)

    def apply(self, data: MatrixLike) -> DenseMatrix:
        """Pre-multiply channels x samples data by the filter."""
        m = as_matrix(data)
        if self.kind == SpatialFilterType.NONE:
            return DenseMatrix(m)
        return self.transform(m).matmul(m)
