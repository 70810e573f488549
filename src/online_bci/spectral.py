"""
Spectral Estimation Module
==========================

FFT power spectra and Welch's averaged-periodogram estimator on
DenseMatrix data.

Mathematical Background:

    Power spectrum along an axis:
        P[k] = |X[k]|^2,  X = FFT(x)

    Welch amplitude estimate over K tapered windows of width N:
        A[k] = (1 / (K · Σw)) · Σ_j sqrt(2 · |FFT(w · x_j)[k]|^2)

        Only the non-negative frequencies k = 0 .. ceil((N-1)/2) are kept.
        Frequency of bin k is k · fs / N.

Constraints:
    - Transform lengths must be powers of two (no zero padding)
    - The taper length must equal the Welch window width
    - Only the amplitude output kind is implemented

Example:
    >>> taper = make_taper(TaperType.HANNING, 64)
    >>> starts = welch_starts(256, 64)
    >>> spectrum = welch(epoch, axis=1, taper=taper, starts=starts, width=64)

Author: Online BCI Project Team
License: MIT
"""

from __future__ import annotations

import logging
import math
from enum import Enum, auto
from typing import Optional, Sequence, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.signal import windows

from .matrix import (
    ConfigurationError,
    DenseMatrix,
    MatrixLike,
    as_matrix,
    check_axis,
    index_range,
    is_power_of_two,
    parse_enum,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Enumerations
# =============================================================================

class TransformDirection(Enum):
    """Direction of the discrete Fourier transform."""
    FORWARD = auto()
    INVERSE = auto()


class TaperType(Enum):
    """Window functions applied before the transform to limit leakage."""
    HANNING = auto()
    HAMMING = auto()
    BLACKMAN = auto()
    RECTANGULAR = auto()


class WelchOutputType(Enum):
    """Output kinds of the Welch estimator. Only AMPLITUDE is implemented."""
    AMPLITUDE = auto()
    POWER = auto()
    DB = auto()


# =============================================================================
# Tapers
# =============================================================================

def make_taper(kind: Union[TaperType, str], width: int) -> NDArray[np.float64]:
    """
    Symmetric window of the given kind and width.

    Args:
        kind: Taper type (or its name)
        width: Number of points

    Returns:
        1D taper array of length width
    """
    kind = parse_enum(TaperType, kind)
    if width < 1:
        raise ConfigurationError(f"taper width must be >= 1, got {width}")

    if kind == TaperType.HANNING:
        return windows.hann(width, sym=True)
    if kind == TaperType.HAMMING:
        return windows.hamming(width, sym=True)
    if kind == TaperType.BLACKMAN:
        return windows.blackman(width, sym=True)
    return windows.boxcar(width)


# =============================================================================
# Fourier Transforms
# =============================================================================

def _check_transform_length(n: int) -> None:
    if not is_power_of_two(n):
        raise ConfigurationError(f"Transform length must be a power of two, got {n}")


def fft_complex(
    matrix: MatrixLike,
    axis: int,
    direction: Union[TransformDirection, str] = TransformDirection.FORWARD
) -> NDArray[np.complex128]:
    """
    Raw complex DFT coefficients of every column (axis 0) or row (axis 1).

    The inverse direction is scaled by 1/n.

    Returns:
        Complex array with the same shape as the input
    """
    check_axis(axis)
    direction = parse_enum(TransformDirection, direction)
    m = as_matrix(matrix)
    _check_transform_length(m.dimension(axis))

    data = m.to_array()
    if direction == TransformDirection.FORWARD:
        return np.fft.fft(data, axis=axis)
    return np.fft.ifft(data, axis=axis)


def fft(
    matrix: MatrixLike,
    axis: int,
    direction: Union[TransformDirection, str] = TransformDirection.FORWARD
) -> DenseMatrix:
    """
    Power (squared magnitude) of the DFT of every column or row.

    Args:
        matrix: Input data
        axis: 0 transforms each column, 1 transforms each row
        direction: Forward or inverse transform

    Returns:
        DenseMatrix of |X|^2 with the input's shape
    """
    coefficients = fft_complex(matrix, axis, direction)
    return DenseMatrix(np.abs(coefficients) ** 2)


def ifft(matrix: MatrixLike, axis: int) -> DenseMatrix:
    """Power of the inverse DFT of every column or row."""
    return fft(matrix, axis, TransformDirection.INVERSE)


# =============================================================================
# Welch's Method
# =============================================================================

def n_positive_bins(width: int) -> int:
    """Number of non-negative frequency bins kept from a width-point FFT."""
    return int(math.ceil((width - 1) / 2.0)) + 1


def welch_starts(
    length: int,
    width: int,
    overlap: float = 0.5,
    offset: int = 0
) -> NDArray[np.int64]:
    """
    Start positions of overlapping Welch windows inside a segment.

    Args:
        length: Segment length in samples
        width: Window width in samples
        overlap: Fractional overlap between consecutive windows, in [0, 1)
        offset: Position of the segment's first sample

    Returns:
        Start positions of every window that fits completely in the segment
    """
    if not 0.0 <= overlap < 1.0:
        raise ConfigurationError(f"overlap must be in [0, 1), got {overlap}")
    step = max(1, int(round(width * (1.0 - overlap))))
    starts = index_range(offset, offset + length - width + 1, step)
    if starts.size == 0:
        raise ConfigurationError(
            f"Segment of {length} samples is shorter than the Welch width {width}"
        )
    return starts


def welch(
    matrix: MatrixLike,
    axis: int,
    taper: ArrayLike,
    starts: Sequence[int],
    width: int,
    detrend: bool = False,
    center: bool = False,
    output: Union[WelchOutputType, str] = WelchOutputType.AMPLITUDE
) -> DenseMatrix:
    """
    Welch averaged amplitude spectrum along an axis.

    Args:
        matrix: Input data
        axis: Axis holding time (0: samples on rows, 1: samples on columns)
        taper: Window function of length width
        starts: Start index of every window along the axis
        width: Window width, a power of two
        detrend: Linearly detrend each window
        center: Subtract each window's mean
        output: Output kind; only AMPLITUDE is supported

    Returns:
        DenseMatrix with the time axis replaced by ceil((width-1)/2)+1
        frequency bins

    Raises:
        ConfigurationError: On invalid axis, width, taper, starts or output
    """
    check_axis(axis)
    if not is_power_of_two(width):
        raise ConfigurationError(f"Welch width must be a power of two, got {width}")
    taper = np.asarray(taper, dtype=np.float64).ravel()
    if taper.size != width:
        raise ConfigurationError(f"Taper length ({taper.size}) must equal width ({width})")
    starts = np.asarray(starts, dtype=np.int64).ravel()
    if starts.size == 0:
        raise ConfigurationError("Welch requires at least one window start")
    if parse_enum(WelchOutputType, output) != WelchOutputType.AMPLITUDE:
        raise ConfigurationError(f"Only amplitude output is supported, got {output}")

    m = as_matrix(matrix)
    length = m.dimension(axis)
    if starts.min() < 0 or starts.max() + width > length:
        raise ConfigurationError(
            f"Welch windows [{starts.min()}, {starts.max() + width}) exceed "
            f"axis length {length}"
        )

    other = 1 - axis
    n_bins = n_positive_bins(width)
    keep = np.arange(n_bins)

    # Taper laid out along the windowed axis
    if axis == 0:
        weights = DenseMatrix(taper).repeat(m.dimension(other), 1)
        result = DenseMatrix.zeros(n_bins, m.cols)
    else:
        weights = DenseMatrix(taper).transpose().repeat(m.dimension(other), 0)
        result = DenseMatrix.zeros(m.rows, n_bins)

    for start in starts:
        window = m.select(axis, np.arange(start, start + width))

        if center:
            window = window.detrend(axis, "constant")
        if detrend:
            window = window.detrend(axis, "linear")

        window = window.multiply_elements(weights)
        power = fft(window, axis).scalar_multiply(2.0).select(axis, keep)
        result = result.add(power.sqrt())

    return result.scalar_multiply(1.0 / (starts.size * taper.sum()))


# =============================================================================
# Configured Estimator
# =============================================================================

class SpectralEstimator:
    """
    Welch estimator with a fixed taper, width and window overlap.

    All parameters are validated at construction so that configuration
    errors surface before the first epoch is processed.

    Example:
        >>> estimator = SpectralEstimator(width=64, taper=TaperType.HANNING)
        >>> amp = estimator.estimate(epoch, axis=1)         # whole epoch
        >>> amp = estimator.estimate(epoch, axis=1, offset=128, length=256)
        >>> freqs = estimator.frequencies(sample_rate=256)
    """

    def __init__(
        self,
        width: int,
        taper: Union[TaperType, str] = TaperType.HANNING,
        overlap: float = 0.5,
        detrend: bool = True,
        center: bool = False,
        output: Union[WelchOutputType, str] = WelchOutputType.AMPLITUDE
    ) -> None:
        """
        Initialize the estimator.

        Args:
            width: Welch window width in samples (power of two)
            taper: Window function kind
            overlap: Fractional overlap between windows, in [0, 1)
            detrend: Linearly detrend each window
            center: Subtract each window's mean
            output: Output kind (only AMPLITUDE)
        """
        if not is_power_of_two(width):
            raise ConfigurationError(f"Welch width must be a power of two, got {width}")
        if not 0.0 <= overlap < 1.0:
            raise ConfigurationError(f"overlap must be in [0, 1), got {overlap}")
        self.output = parse_enum(WelchOutputType, output)
        if self.output != WelchOutputType.AMPLITUDE:
            raise ConfigurationError(f"Only amplitude output is supported, got {self.output.name}")

        self.width = width
        self.taper_type = parse_enum(TaperType, taper)
        self.taper = make_taper(self.taper_type, width)
        self.overlap = overlap
        self.detrend = detrend
        self.center = center

        logger.debug(
            f"SpectralEstimator: width={width}, taper={self.taper_type.name}, "
            f"overlap={overlap}, detrend={detrend}, center={center}"
        )

    @property
    def n_bins(self) -> int:
        """Number of frequency bins produced."""
        return n_positive_bins(self.width)

    def frequencies(self, sample_rate: float) -> NDArray[np.float64]:
        """Frequency (Hz) of every output bin."""
        return np.arange(self.n_bins) * sample_rate / self.width

    def estimate(
        self,
        matrix: MatrixLike,
        axis: int,
        offset: int = 0,
        length: Optional[int] = None
    ) -> DenseMatrix:
        """
        Welch amplitude spectrum of the segment [offset, offset + length).

        Args:
            matrix: Input data
            axis: Time axis
            offset: First sample of the segment
            length: Segment length (default: up to the end of the axis)
        """
        m = as_matrix(matrix)
        if length is None:
            length = m.dimension(axis) - offset
        starts = welch_starts(length, self.width, self.overlap, offset)
        return welch(
            m, axis, self.taper, starts, self.width,
            detrend=self.detrend, center=self.center, output=self.output
        )
