"""
Outlier Trimming Module
=======================

Iterative rejection of rows or columns whose summary feature lies far
from the bulk, used for bad-channel and bad-trial detection.

Algorithm (per iteration, on the matrix left by the previous one):
    1. Feature per vector along the axis:
           VAR:  sqrt(|population variance|)
           MEAN: mean
    2. Bounds from the feature's median and sample standard deviation:
           low  = median + lower_threshold · std
           high = median + upper_threshold · std
    3. Keep vectors with low < feature < high (strict on both sides)

    Axis 0 computes one feature per column and removes columns; axis 1
    computes one feature per row and removes rows. Indices are always
    relative to the already shrunk matrix.

Degenerate Result:
    When no vector survives an iteration the result is None; callers
    must check for it before use.

Author: Online BCI Project Team
License: MIT
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Optional, Union

import numpy as np
from numpy.typing import NDArray

from .matrix import (
    ConfigurationError,
    DenseMatrix,
    MatrixLike,
    as_matrix,
    check_axis,
    parse_enum,
)

logger = logging.getLogger(__name__)


class OutlierFeature(Enum):
    """Per-vector feature used to rank rows/columns."""
    VAR = auto()    # sqrt(|variance|)
    MEAN = auto()   # mean


def compute_feature(
    matrix: DenseMatrix,
    axis: int,
    feature: Union[OutlierFeature, str] = OutlierFeature.VAR
) -> NDArray[np.float64]:
    """Feature value of every column (axis 0) or row (axis 1)."""
    feature = parse_enum(OutlierFeature, feature)
    if feature == OutlierFeature.VAR:
        values = matrix.variance(axis)
        if values is not None:
            values = values.abs().sqrt()
    else:
        values = matrix.mean(axis)
    if values is None:
        return np.zeros(0)
    return values.get_column(0)


def inlier_mask(
    matrix: MatrixLike,
    axis: int,
    lower_threshold: float,
    upper_threshold: float,
    feature: Union[OutlierFeature, str] = OutlierFeature.VAR
) -> NDArray[np.bool_]:
    """
    Single trimming pass: which columns (axis 0) or rows (axis 1) to keep.

    The spread of the feature is its sample standard deviation (N-1);
    with a single vector the spread is zero and finite bounds reject
    it. Infinite thresholds leave that side unbounded.

    Returns:
        Boolean mask, True = inlier
    """
    check_axis(axis)
    values = compute_feature(as_matrix(matrix), axis, feature)
    if values.size == 0:
        return np.zeros(0, dtype=bool)

    median = float(np.median(values))
    spread = float(np.std(values, ddof=1)) if values.size > 1 else 0.0
    low = _bound(median, lower_threshold, spread)
    high = _bound(median, upper_threshold, spread)
    return (low < values) & (values < high)


def _bound(median: float, threshold: float, spread: float) -> float:
    # Infinite thresholds disable the bound even when the spread is zero
    if np.isinf(threshold):
        return threshold
    return median + threshold * spread


def remove_outliers(
    matrix: MatrixLike,
    axis: int,
    lower_threshold: float,
    upper_threshold: float,
    max_iter: int,
    feature: Union[OutlierFeature, str] = OutlierFeature.VAR
) -> Optional[DenseMatrix]:
    """
    Iteratively remove outlying columns (axis 0) or rows (axis 1).

    Args:
        matrix: Input data
        axis: 0 removes columns, 1 removes rows
        lower_threshold: Lower bound in feature standard deviations
        upper_threshold: Upper bound in feature standard deviations
        max_iter: Number of trimming passes (>= 1)
        feature: VAR or MEAN

    Returns:
        Trimmed matrix, or None if an iteration leaves nothing
    """
    check_axis(axis)
    if max_iter < 1:
        raise ConfigurationError(f"max_iter must be >= 1, got {max_iter}")
    feature = parse_enum(OutlierFeature, feature)

    m = as_matrix(matrix)
    for iteration in range(max_iter):
        keep = inlier_mask(m, axis, lower_threshold, upper_threshold, feature)
        if not np.any(keep):
            logger.debug(f"Outlier removal left no {'columns' if axis == 0 else 'rows'} "
                         f"at iteration {iteration + 1}")
            return None
        m = m.select(1 - axis, keep)
    return m


class OutlierTrimmer:
    """
    Outlier removal with fixed settings.

    Example:
        >>> trimmer = OutlierTrimmer(axis=1, lower_threshold=-1.0, upper_threshold=1.0)
        >>> clean = trimmer.trim(data)
        >>> if clean is None:
        ...     handle_degenerate()
    """

    def __init__(
        self,
        axis: int,
        lower_threshold: float,
        upper_threshold: float,
        max_iter: int = 3,
        feature: Union[OutlierFeature, str] = OutlierFeature.VAR
    ) -> None:
        check_axis(axis)
        if max_iter < 1:
            raise ConfigurationError(f"max_iter must be >= 1, got {max_iter}")
        self.axis = axis
        self.lower_threshold = lower_threshold
        self.upper_threshold = upper_threshold
        self.max_iter = max_iter
        self.feature = parse_enum(OutlierFeature, feature)

    def trim(self, matrix: MatrixLike) -> Optional[DenseMatrix]:
        """Trimmed matrix, or None when nothing survives."""
        return remove_outliers(
            matrix, self.axis, self.lower_threshold, self.upper_threshold,
            self.max_iter, self.feature
        )
