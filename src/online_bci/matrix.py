"""
Dense Matrix Module
===================

Row-major 2D numeric container used by every processing stage of the
online classifier: spectral estimation, spatial filtering, outlier
trimming and the linear decision function all exchange DenseMatrix
values.

Axis Convention (fixed everywhere in this package):

    axis=0   varies the row index    → one value per column
    axis=1   varies the column index → one value per row
    axis=-1  covers all elements     → a 1x1 matrix

    Reductions always return a column matrix (k x 1), so that
    ``m.sum(0).sum(0) == m.sum(-1)``.

Value Semantics:
    A DenseMatrix owns its buffer. Every operation returns a new
    instance, except ``round`` which rounds in place and returns self.
    Elementwise transforms are expressed as pure functions
    ``(row, col, value) -> value`` through ``map_elements``.

Decompositions:
    eig()  symmetric eigendecomposition, sorted eigenvalues (stable on ties)
    svd()  compact singular value decomposition U · Σ · Vᵀ

Example:
    >>> m = DenseMatrix([[1.0, 2.0], [5.0, 4.0]])
    >>> m.mean().item()
    3.0
    >>> m.mean(axis=1).to_array().ravel().tolist()
    [1.5, 4.5]

Author: Online BCI Project Team
License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple, Type, TypeVar, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy import linalg, signal

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)


# =============================================================================
# Exceptions
# =============================================================================

class ConfigurationError(ValueError):
    """
    Raised for invalid parameters or incompatible shapes.

    Configuration errors are detected before any expensive work is done
    and are always fatal: the online loop never retries them.
    """
    pass


# =============================================================================
# Parameter Checks
# =============================================================================

VALID_AXES = (0, 1)
VALID_AXES_WITH_ALL = (-1, 0, 1)
DETREND_MODES = ("constant", "linear")
EIG_ORDERS = ("ascending", "descending")


def check_axis(axis: int, allow_all: bool = False) -> None:
    """Validate an axis argument."""
    valid = VALID_AXES_WITH_ALL if allow_all else VALID_AXES
    if axis not in valid:
        raise ConfigurationError(
            f"Wrong axis selected. Should be one of {valid} but is {axis}"
        )


def check_option(value: str, options: Sequence[str], name: str) -> str:
    """Validate a string option (case-insensitive) and return it lower-cased."""
    if not isinstance(value, str) or value.lower() not in options:
        raise ConfigurationError(f"{name} must be one of {tuple(options)}, got {value!r}")
    return value.lower()


def parse_enum(enum_cls: Type[E], value: Union[E, str]) -> E:
    """Resolve an enum member from itself or its (case-insensitive) name."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str) and value.upper() in enum_cls.__members__:
        return enum_cls[value.upper()]
    raise ConfigurationError(
        f"Unknown {enum_cls.__name__}: {value!r}. "
        f"Expected one of {list(enum_cls.__members__)}"
    )


def is_power_of_two(n: int) -> bool:
    """Whether n is a positive integral power of two."""
    return n > 0 and (n & (n - 1)) == 0


def index_range(start: int, end: int, step: int) -> NDArray[np.int64]:
    """
    Integer positions in the half-open interval [start, end).

    Args:
        start: First position
        end: Exclusive upper bound
        step: Non-zero step between positions

    Returns:
        1D int array, empty when the interval holds no positions
    """
    if step == 0:
        raise ConfigurationError("step must be non-zero")
    return np.arange(start, end, step, dtype=np.int64)


# =============================================================================
# Decomposition Results
# =============================================================================

@dataclass(frozen=True)
class EigenResult:
    """
    Eigendecomposition of a symmetric matrix.

    Attributes:
        vectors: Eigenvectors as matrix columns, permuted to match values
        values: Eigenvalues in the requested order
    """
    vectors: "DenseMatrix"
    values: NDArray[np.float64]


@dataclass(frozen=True)
class SVDResult:
    """
    Singular value decomposition M = U · Σ · Vᵀ (compact form).

    Attributes:
        u: Left singular vectors, shape (rows, p)
        s: Diagonal matrix of singular values, shape (p, p)
        vt: Right singular vectors (transposed), shape (p, cols)
    """
    u: "DenseMatrix"
    s: "DenseMatrix"
    vt: "DenseMatrix"


# =============================================================================
# Dense Matrix
# =============================================================================

MatrixLike = Union["DenseMatrix", ArrayLike]
UnivariateStatistic = Callable[[NDArray[np.float64]], float]


class DenseMatrix:
    """
    Rectangular grid of real numbers with axis-aware operations.

    The matrix is built from nested sequences (rows), a 1D sequence
    (interpreted as a single column, as for reduction results) or a 2D
    numpy array. The buffer is copied on construction and never shared.

    Example:
        >>> a = DenseMatrix([[1, 2], [5, 4]])
        >>> a.repeat(2, axis=0).shape
        (4, 2)
        >>> a.transpose().transpose() == a
        True
    """

    __slots__ = ("_data",)

    def __init__(self, data: MatrixLike) -> None:
        if isinstance(data, DenseMatrix):
            array = data._data.copy()
        else:
            try:
                array = np.array(data, dtype=np.float64)
            except ValueError as e:
                raise ConfigurationError(f"All rows must have identical length: {e}") from e

        if array.ndim == 0:
            array = array.reshape(1, 1)
        elif array.ndim == 1:
            array = array.reshape(-1, 1)
        elif array.ndim != 2:
            raise ConfigurationError(f"data must be 1D or 2D, got {array.ndim}D")

        self._data: NDArray[np.float64] = np.ascontiguousarray(array)

    @classmethod
    def _wrap(cls, array: NDArray[np.float64]) -> "DenseMatrix":
        """Wrap a freshly computed 2D array without copying it again."""
        m = cls.__new__(cls)
        m._data = np.ascontiguousarray(array, dtype=np.float64)
        return m

    # =========================================================================
    # Factories
    # =========================================================================

    @classmethod
    def zeros(cls, rows: int, cols: int) -> "DenseMatrix":
        """Matrix of zeros with shape (rows, cols)."""
        _check_non_negative(rows, cols)
        return cls._wrap(np.zeros((rows, cols)))

    @classmethod
    def ones(cls, rows: int, cols: int) -> "DenseMatrix":
        """Matrix of ones with shape (rows, cols)."""
        _check_non_negative(rows, cols)
        return cls._wrap(np.ones((rows, cols)))

    @classmethod
    def eye(cls, size: int) -> "DenseMatrix":
        """Square identity matrix."""
        _check_non_negative(size)
        return cls._wrap(np.eye(size))

    # =========================================================================
    # Shape and Access
    # =========================================================================

    @property
    def shape(self) -> Tuple[int, int]:
        """(rows, cols)."""
        return self._data.shape  # type: ignore[return-value]

    @property
    def rows(self) -> int:
        return self._data.shape[0]

    @property
    def cols(self) -> int:
        return self._data.shape[1]

    @property
    def size(self) -> int:
        """Total number of elements."""
        return self._data.size

    @property
    def T(self) -> "DenseMatrix":
        return self.transpose()

    def dimension(self, axis: int) -> int:
        """Number of rows (axis 0) or columns (axis 1)."""
        check_axis(axis)
        return self._data.shape[axis]

    def shape_string(self) -> str:
        return f"({self.rows}, {self.cols})"

    def to_array(self) -> NDArray[np.float64]:
        """Copy of the underlying buffer as a 2D numpy array."""
        return self._data.copy()

    def item(self) -> float:
        """The single value of a 1x1 matrix."""
        if self.size != 1:
            raise ConfigurationError(f"item() requires a 1x1 matrix, got {self.shape_string()}")
        return float(self._data[0, 0])

    def get_row(self, index: int) -> NDArray[np.float64]:
        return self._data[index].copy()

    def get_column(self, index: int) -> NDArray[np.float64]:
        return self._data[:, index].copy()

    def select(self, axis: int, indices: ArrayLike) -> "DenseMatrix":
        """
        Keep a subset of rows (axis 0) or columns (axis 1).

        Args:
            axis: 0 selects rows, 1 selects columns
            indices: Integer positions or a boolean mask
        """
        check_axis(axis)
        return DenseMatrix._wrap(np.take(self._data, _as_index(indices, self.dimension(axis)), axis=axis))

    def sub_matrix(self, row_idx: ArrayLike, col_idx: ArrayLike) -> "DenseMatrix":
        """Sub-matrix at the cross product of row and column indices."""
        rows = _as_index(row_idx, self.rows)
        cols = _as_index(col_idx, self.cols)
        return DenseMatrix._wrap(self._data[np.ix_(rows, cols)])

    # =========================================================================
    # Reductions
    # =========================================================================

    def sum(self, axis: int = -1) -> "DenseMatrix":
        """Sum over all elements (-1), over rows (0) or over columns (1)."""
        check_axis(axis, allow_all=True)
        if axis == -1:
            return self.sum(0).sum(0)
        return DenseMatrix._wrap(np.sum(self._data, axis=axis).reshape(-1, 1))

    def mean(self, axis: int = -1) -> Optional["DenseMatrix"]:
        """
        Mean along an axis.

        Returns:
            Column matrix of means, or None when the reduced axis is empty.
        """
        check_axis(axis, allow_all=True)
        count = self.size if axis == -1 else self._data.shape[axis]
        if count == 0:
            return None
        return self.sum(axis).scalar_multiply(1.0 / count)

    def median(self, axis: int = -1) -> Optional["DenseMatrix"]:
        return self.evaluate_univariate_statistic(axis, np.median)

    def variance(self, axis: int = -1) -> Optional["DenseMatrix"]:
        """Population variance (denominator N)."""
        return self.evaluate_univariate_statistic(axis, np.var)

    def std(self, axis: int = -1) -> Optional["DenseMatrix"]:
        """Population standard deviation (denominator N)."""
        return self.evaluate_univariate_statistic(axis, np.std)

    def evaluate_univariate_statistic(
        self,
        axis: int,
        stat: UnivariateStatistic
    ) -> Optional["DenseMatrix"]:
        """
        Apply a per-vector statistic along an axis.

        Args:
            axis: -1 (all elements), 0 (each column) or 1 (each row)
            stat: Function mapping a 1D array to a float

        Returns:
            Column matrix with one value per column/row, a 1x1 matrix for
            axis=-1, or None when the reduced axis is empty (same as mean).
        """
        check_axis(axis, allow_all=True)
        count = self.size if axis == -1 else self._data.shape[axis]
        if count == 0:
            return None
        if axis == -1:
            return self.flatten().evaluate_univariate_statistic(0, stat)
        if axis == 0:
            values = [stat(self._data[:, c]) for c in range(self.cols)]
        else:
            values = [stat(self._data[r, :]) for r in range(self.rows)]
        return DenseMatrix._wrap(np.asarray(values, dtype=np.float64).reshape(-1, 1))

    def covariance(self) -> "DenseMatrix":
        """
        Covariance between rows, each row being one variable.

        With channels on rows this is the (channels x channels) spatial
        covariance over samples. Uses the population denominator.
        """
        if self.cols == 0:
            raise ConfigurationError("covariance requires at least one observation")
        centered = self._data - self._data.mean(axis=1, keepdims=True)
        return DenseMatrix._wrap(centered @ centered.T / self.cols)

    # =========================================================================
    # Shape Transforms
    # =========================================================================

    def transpose(self) -> "DenseMatrix":
        return DenseMatrix._wrap(self._data.T.copy())

    def reshape(self, rows: int, cols: int) -> "DenseMatrix":
        """Reinterpret the row-major buffer with a new shape."""
        if rows * cols != self.size:
            raise ConfigurationError(
                f"Cannot reshape {self.shape_string()} into ({rows}, {cols}): "
                f"{rows * cols} != {self.size} elements"
            )
        return DenseMatrix._wrap(self._data.reshape(rows, cols).copy())

    def flatten(self) -> "DenseMatrix":
        """All elements in row-major order as a single column."""
        return DenseMatrix._wrap(self._data.reshape(-1, 1).copy())

    def flip_ud(self) -> "DenseMatrix":
        """Reverse the row order."""
        return DenseMatrix._wrap(self._data[::-1, :].copy())

    def flip_lr(self) -> "DenseMatrix":
        """Reverse the element order within each row."""
        return DenseMatrix._wrap(self._data[:, ::-1].copy())

    def repeat(self, repeats: int, axis: int) -> "DenseMatrix":
        """
        Stack whole copies of the matrix along an axis.

        The complete matrix is repeated, not its individual values:
        ``repeat(2, 0)`` of ``[[1, 2], [5, 4]]`` is
        ``[[1, 2], [5, 4], [1, 2], [5, 4]]``.
        """
        check_axis(axis)
        if repeats < 1:
            raise ConfigurationError(f"repeats must be >= 1, got {repeats}")
        if axis == 1:
            return self.transpose().repeat(repeats, 0).transpose()
        return DenseMatrix._wrap(np.concatenate([self._data] * repeats, axis=0))

    # =========================================================================
    # Elementwise Operations
    # =========================================================================

    def map_elements(self, fn: Callable[[int, int, float], float]) -> "DenseMatrix":
        """New matrix with ``fn(row, col, value)`` applied to every element."""
        out = np.empty_like(self._data)
        for (r, c), value in np.ndenumerate(self._data):
            out[r, c] = fn(r, c, float(value))
        return DenseMatrix._wrap(out)

    def add(self, other: "DenseMatrix") -> "DenseMatrix":
        self._check_same_shape(other, "add")
        return DenseMatrix._wrap(self._data + other._data)

    def subtract(self, other: "DenseMatrix") -> "DenseMatrix":
        self._check_same_shape(other, "subtract")
        return DenseMatrix._wrap(self._data - other._data)

    def multiply_elements(self, other: "DenseMatrix") -> "DenseMatrix":
        self._check_same_shape(other, "multiply_elements")
        return DenseMatrix._wrap(self._data * other._data)

    def divide_elements(self, other: "DenseMatrix") -> "DenseMatrix":
        self._check_same_shape(other, "divide_elements")
        return DenseMatrix._wrap(self._data / other._data)

    def scalar_multiply(self, factor: float) -> "DenseMatrix":
        return DenseMatrix._wrap(self._data * factor)

    def scalar_add(self, value: float) -> "DenseMatrix":
        return DenseMatrix._wrap(self._data + value)

    def abs(self) -> "DenseMatrix":
        return DenseMatrix._wrap(np.abs(self._data))

    def sqrt(self) -> "DenseMatrix":
        return DenseMatrix._wrap(np.sqrt(self._data))

    def round(self, decimals: int) -> "DenseMatrix":
        """
        Round values in place (half away from zero) and return self.

        This is the only in-place operation of DenseMatrix.
        """
        _check_non_negative(decimals)
        factor = 10.0 ** decimals
        np.copyto(
            self._data,
            np.sign(self._data) * np.floor(np.abs(self._data) * factor + 0.5) / factor
        )
        return self

    def matmul(self, other: "DenseMatrix") -> "DenseMatrix":
        """Matrix product self · other."""
        if self.cols != other.rows:
            raise ConfigurationError(
                f"Cannot multiply {self.shape_string()} by {other.shape_string()}"
            )
        return DenseMatrix._wrap(self._data @ other._data)

    def __matmul__(self, other: "DenseMatrix") -> "DenseMatrix":
        return self.matmul(other)

    def _check_same_shape(self, other: "DenseMatrix", op: str) -> None:
        if self.shape != other.shape:
            raise ConfigurationError(
                f"{op} requires identical shapes, got {self.shape_string()} "
                f"and {other.shape_string()}"
            )

    # =========================================================================
    # Signal Operations
    # =========================================================================

    def detrend(self, axis: int, mode: str = "linear") -> "DenseMatrix":
        """
        Remove a constant or linear trend along an axis.

        Args:
            axis: 0 detrends each column, 1 detrends each row
            mode: "constant" subtracts the mean, "linear" subtracts the
                  least-squares line fitted against index 0..n-1

        Returns:
            New detrended matrix
        """
        check_axis(axis)
        mode = check_option(mode, DETREND_MODES, "mode")
        if self.dimension(axis) == 0:
            return DenseMatrix(self)
        return DenseMatrix._wrap(signal.detrend(self._data, axis=axis, type=mode))

    def convolve(self, kernel: ArrayLike, axis: int) -> "DenseMatrix":
        """
        Full linear convolution with a kernel.

        Axis 0 convolves every row (output has cols + len(kernel) - 1
        columns); axis 1 convolves every column via the transpose.
        """
        check_axis(axis)
        kernel = np.asarray(kernel, dtype=np.float64).ravel()
        if kernel.size == 0:
            raise ConfigurationError("convolution kernel must be non-empty")
        if axis == 1:
            return self.transpose().convolve(kernel, 0).transpose()
        out = np.zeros((self.rows, self.cols + kernel.size - 1))
        for r in range(self.rows):
            out[r] = np.convolve(self._data[r], kernel)
        return DenseMatrix._wrap(out)

    # =========================================================================
    # Decompositions
    # =========================================================================

    def eig(self, order: str = "descending") -> EigenResult:
        """
        Symmetric eigendecomposition.

        Args:
            order: "descending" (default) or "ascending". Ties keep the
                   original order of the solver output.

        Returns:
            EigenResult with eigenvectors as columns matching the values
        """
        order = check_option(order, EIG_ORDERS, "order")
        if self.rows != self.cols:
            raise ConfigurationError(f"eig requires a square matrix, got {self.shape_string()}")

        values, vectors = linalg.eigh(self._data)
        keys = values if order == "ascending" else -values
        idx = np.argsort(keys, kind="stable")
        return EigenResult(
            vectors=DenseMatrix._wrap(vectors[:, idx]),
            values=values[idx].copy()
        )

    def svd(self) -> SVDResult:
        """Compact singular value decomposition (library sign conventions)."""
        u, s, vt = linalg.svd(self._data, full_matrices=False)
        return SVDResult(
            u=DenseMatrix._wrap(u),
            s=DenseMatrix._wrap(np.diag(s)),
            vt=DenseMatrix._wrap(vt)
        )

    # =========================================================================
    # Comparison and Representation
    # =========================================================================

    def allclose(self, other: MatrixLike, atol: float = 1e-8) -> bool:
        other = other if isinstance(other, DenseMatrix) else DenseMatrix(other)
        return self.shape == other.shape and bool(np.allclose(self._data, other._data, atol=atol))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DenseMatrix):
            return NotImplemented
        return self.shape == other.shape and bool(np.array_equal(self._data, other._data))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        rows = "\n".join(" ".join(repr(float(v)) for v in row) for row in self._data)
        return f"{self.__class__.__name__}{self.shape_string()}\n{rows}"


# =============================================================================
# Helpers
# =============================================================================

def as_matrix(data: MatrixLike) -> DenseMatrix:
    """Return data as a DenseMatrix, copying only when it is not one already."""
    return data if isinstance(data, DenseMatrix) else DenseMatrix(data)


def _check_non_negative(*values: int) -> None:
    for value in values:
        if value < 0:
            raise ConfigurationError(f"value must be non-negative, got {value}")


def _as_index(indices: ArrayLike, length: int) -> NDArray[np.int64]:
    idx = np.asarray(indices)
    if idx.dtype == bool:
        if idx.size != length:
            raise ConfigurationError(f"mask length {idx.size} does not match dimension {length}")
        return np.flatnonzero(idx)
    idx = idx.astype(np.int64).ravel()
    if idx.size and (idx.min() < -length or idx.max() >= length):
        raise ConfigurationError(f"index out of range for dimension {length}")
    return idx
