"""
Matrix - 2-D float32 container with materialized and lazy variants

A ``Matrix`` is one of three kinds:

- MATERIALIZED: owns a numpy buffer (read-only once wrapped)
- ELEMENTWISE: computes values on demand from one or more source
  matrices of identical shape using a vectorized operator
- BANDED: a square, symmetric matrix backed by band storage; entries
  farther than ``bandwidth`` from the main diagonal read as 0

Band storage uses a row-relative layout of shape ``(n, 2 * bandwidth + 1)``:
``storage[r, k]`` holds ``m[r][r + k - bandwidth]``. Positions that fall
outside the matrix are 0. The storage itself is a Matrix (materialized or
elementwise), so banded views compose with elementwise views.
"""

import logging
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from .exceptions import DimensionMismatchError

logger = logging.getLogger(__name__)

Operator = Callable[..., np.ndarray]


class MatrixKind(Enum):
    """Storage variant of a Matrix."""
    MATERIALIZED = "materialized"
    ELEMENTWISE = "elementwise"
    BANDED = "banded"


class Matrix:
    """
    Row-major float32 matrix.

    Use the factory methods ``from_array``, ``elementwise`` and ``banded``
    rather than the constructor.
    """

    __slots__ = ("kind", "_shape", "_buffer", "_sources", "_operator", "_bandwidth")

    def __init__(self, kind: MatrixKind, shape: Tuple[int, int],
                 buffer: Optional[np.ndarray] = None,
                 sources: Sequence["Matrix"] = (),
                 operator: Optional[Operator] = None,
                 bandwidth: Optional[int] = None):
        self.kind = kind
        self._shape = (int(shape[0]), int(shape[1]))
        self._buffer = buffer
        self._sources = tuple(sources)
        self._operator = operator
        self._bandwidth = bandwidth

    # === Factories ===

    @classmethod
    def from_array(cls, array: np.ndarray) -> "Matrix":
        """
        Wrap a 2-D array as a materialized matrix.

        The matrix holds a read-only view of the array; no copy is made
        when the array already is float32.
        """
        buffer = np.asarray(array, dtype=np.float32)
        if buffer.ndim != 2:
            raise ValueError(f"Matrix buffer must be 2-D, got shape {buffer.shape}")
        buffer = buffer.view()
        buffer.flags.writeable = False
        return cls(MatrixKind.MATERIALIZED, buffer.shape, buffer=buffer)

    @classmethod
    def zeros(cls, rows: int, columns: int) -> "Matrix":
        """All-zero materialized matrix."""
        return cls.from_array(np.zeros((rows, columns), dtype=np.float32))

    @classmethod
    def elementwise(cls, operator: Operator, *sources: "Matrix") -> "Matrix":
        """
        Lazy view applying ``operator`` element-wise to ``sources``.

        The operator receives one float32 array per source (rows, columns
        or whole matrices) and must return an array of the same shape.

        Raises:
            DimensionMismatchError: If the sources differ in shape
        """
        if not sources:
            raise ValueError("Element-wise view needs at least one source")
        shape = sources[0].shape
        for source in sources[1:]:
            if source.shape != shape:
                raise DimensionMismatchError(shape, source.shape)
        return cls(MatrixKind.ELEMENTWISE, shape, sources=sources, operator=operator)

    @classmethod
    def banded(cls, storage: "Matrix", bandwidth: int) -> "Matrix":
        """
        Symmetric banded view over row-relative band storage.

        Args:
            storage: Matrix of shape (n, 2 * bandwidth + 1)
            bandwidth: Maximum distance from the main diagonal

        Returns:
            Square (n, n) banded matrix
        """
        if storage.kind == MatrixKind.BANDED:
            raise ValueError("Band storage cannot itself be banded")
        if bandwidth < 0 or storage.columns != 2 * bandwidth + 1:
            raise DimensionMismatchError((storage.rows, 2 * bandwidth + 1), storage.shape,
                                         f"Band storage {storage.shape} does not match bandwidth {bandwidth}")
        n = storage.rows
        return cls(MatrixKind.BANDED, (n, n), sources=(storage,), bandwidth=bandwidth)

    # === Geometry ===

    @property
    def shape(self) -> Tuple[int, int]:
        return self._shape

    @property
    def rows(self) -> int:
        return self._shape[0]

    @property
    def columns(self) -> int:
        return self._shape[1]

    @property
    def bandwidth(self) -> Optional[int]:
        """Band half-width for banded matrices, None otherwise."""
        return self._bandwidth

    @property
    def band_storage(self) -> "Matrix":
        """Row-relative band storage of a banded matrix."""
        if self.kind != MatrixKind.BANDED:
            raise TypeError(f"{self.kind.value} matrix has no band storage")
        return self._sources[0]

    def _check_index(self, row: int, column: int) -> None:
        if not (0 <= row < self.rows and 0 <= column < self.columns):
            raise IndexError(f"Index ({row}, {column}) out of range for {self.shape} matrix")

    # === Access ===

    def get(self, row: int, column: int) -> float:
        """Single element."""
        self._check_index(row, column)
        if self.kind == MatrixKind.MATERIALIZED:
            return float(self._buffer[row, column])
        if self.kind == MatrixKind.ELEMENTWISE:
            values = [np.asarray([s.get(row, column)], dtype=np.float32) for s in self._sources]
            return float(np.asarray(self._operator(*values), dtype=np.float32)[0])
        k = column - row + self._bandwidth
        if k < 0 or k > 2 * self._bandwidth:
            return 0.0
        return self.band_storage.get(row, k)

    def get_row(self, row: int) -> np.ndarray:
        """One row as a float32 array (read-only for materialized matrices)."""
        if not 0 <= row < self.rows:
            raise IndexError(f"Row {row} out of range for {self.shape} matrix")
        if self.kind == MatrixKind.MATERIALIZED:
            return self._buffer[row]
        if self.kind == MatrixKind.ELEMENTWISE:
            return self._evaluate([s.get_row(row) for s in self._sources])
        start, values = self.band_row(row)
        dense = np.zeros(self.columns, dtype=np.float32)
        lo = max(0, start)
        hi = min(self.columns, start + len(values))
        dense[lo:hi] = values[lo - start:hi - start]
        return dense

    def get_column(self, column: int) -> np.ndarray:
        """One column as a float32 array."""
        if not 0 <= column < self.columns:
            raise IndexError(f"Column {column} out of range for {self.shape} matrix")
        if self.kind == MatrixKind.MATERIALIZED:
            return self._buffer[:, column]
        if self.kind == MatrixKind.ELEMENTWISE:
            return self._evaluate([s.get_column(column) for s in self._sources])
        # banded matrices are symmetric
        return self.get_row(column)

    def band_row(self, row: int) -> Tuple[int, np.ndarray]:
        """
        Band slice of one row of a banded matrix.

        Returns:
            Tuple of (column of the first value, values); the values cover
            columns ``start .. start + 2 * bandwidth`` and are 0 where those
            columns fall outside the matrix.
        """
        if self.kind != MatrixKind.BANDED:
            raise TypeError(f"{self.kind.value} matrix has no band rows")
        return row - self._bandwidth, self.band_storage.get_row(row)

    def to_array(self) -> np.ndarray:
        """Evaluate into a dense float32 array."""
        if self.kind == MatrixKind.MATERIALIZED:
            return self._buffer
        if self.kind == MatrixKind.ELEMENTWISE:
            return self._evaluate([s.to_array() for s in self._sources])
        n = self.rows
        storage = self.band_storage.to_array()
        dense = np.zeros((n, n), dtype=np.float32)
        for k in range(storage.shape[1]):
            offset = k - self._bandwidth
            lo = max(0, -offset)
            hi = min(n, n - offset)
            if lo < hi:
                r = np.arange(lo, hi)
                dense[r, r + offset] = storage[lo:hi, k]
        return dense

    def _evaluate(self, values) -> np.ndarray:
        return np.asarray(self._operator(*values), dtype=np.float32)

    # === Transformations ===

    def materialize(self) -> "Matrix":
        """Materialized copy of a view; materialized matrices return themselves."""
        if self.kind == MatrixKind.MATERIALIZED:
            return self
        if self.kind == MatrixKind.BANDED:
            return Matrix.banded(self.band_storage.materialize(), self._bandwidth)
        return Matrix.from_array(self.to_array())

    def transpose(self) -> "Matrix":
        """Transposed matrix; zero-copy for materialized buffers."""
        if self.kind == MatrixKind.MATERIALIZED:
            return Matrix.from_array(self._buffer.T)
        if self.kind == MatrixKind.ELEMENTWISE:
            return Matrix.elementwise(self._operator, *[s.transpose() for s in self._sources])
        return self

    def apply(self, operator: Operator) -> "Matrix":
        """Unary element-wise view."""
        return Matrix.elementwise(operator, self)

    def combine(self, other: "Matrix", operator: Operator) -> "Matrix":
        """Binary element-wise view ``operator(self, other)``."""
        return Matrix.elementwise(operator, self, other)

    def hadamard_multiply(self, other: "Matrix") -> "Matrix":
        """Element-wise product view."""
        return self.combine(other, np.multiply)

    def __repr__(self) -> str:
        extra = f", bandwidth={self._bandwidth}" if self.kind == MatrixKind.BANDED else ""
        return f"Matrix({self.kind.value}, {self.rows}x{self.columns}{extra})"


def band_storage_from_dense(array: np.ndarray, bandwidth: int) -> np.ndarray:
    """
    Copy the band of a dense square array into row-relative band storage.

    Args:
        array: Square (n, n) array
        bandwidth: Band half-width

    Returns:
        float32 array of shape (n, 2 * bandwidth + 1)
    """
    array = np.asarray(array, dtype=np.float32)
    if array.ndim != 2 or array.shape[0] != array.shape[1]:
        raise ValueError(f"Matrix must be square, got shape {array.shape}")
    n = array.shape[0]
    storage = np.zeros((n, 2 * bandwidth + 1), dtype=np.float32)
    for k in range(2 * bandwidth + 1):
        offset = k - bandwidth
        lo = max(0, -offset)
        hi = min(n, n - offset)
        if lo < hi:
            r = np.arange(lo, hi)
            storage[lo:hi, k] = array[r, r + offset]
    return storage
