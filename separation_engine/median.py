"""
Median Filter Kernel - Sliding-window medians along rows, columns and diagonals

For a half-window ``length`` every output value is the median of the
``2 * length + 1`` input values centred on it. Values before the first
and after the last index repeat the edge values (``mode="nearest"``).
Rows, columns and diagonals are independent and are filtered on a
worker pool, each worker writing its own slice of the output.
"""

import logging
import threading
from typing import Optional

import numpy as np
from scipy.ndimage import median_filter

from .matrix import Matrix, MatrixKind, band_storage_from_dense
from .parallel import fan_out

logger = logging.getLogger(__name__)


def sliding_median(values: np.ndarray, length: int) -> np.ndarray:
    """
    Sliding median of a 1-D sequence with edge-repetition padding.

    Args:
        values: Input sequence
        length: Half-window; the window holds ``2 * length + 1`` values

    Returns:
        float32 array of the same length
    """
    values = np.asarray(values, dtype=np.float32)
    if length <= 0 or values.size == 0:
        return values.copy()
    return median_filter(values, size=2 * length + 1, mode="nearest")


def row_medians(matrix: Matrix, length: int, max_workers: Optional[int] = None,
                cancel_event: Optional[threading.Event] = None) -> Matrix:
    """
    Sliding median along every row.

    Args:
        matrix: Source matrix
        length: Half-window length

    Returns:
        New materialized matrix of medians
    """
    source = matrix.to_array()
    medians = np.empty(source.shape, dtype=np.float32)
    size = (1, 2 * max(0, length) + 1)

    def compute(start: int, stop: int) -> None:
        medians[start:stop] = median_filter(source[start:stop], size=size, mode="nearest")

    fan_out(compute, source.shape[0], max_workers, cancel_event)
    return Matrix.from_array(medians)


def column_medians(matrix: Matrix, length: int, max_workers: Optional[int] = None,
                   cancel_event: Optional[threading.Event] = None) -> Matrix:
    """Sliding median along every column, via transposition."""
    return row_medians(matrix.transpose(), length, max_workers, cancel_event).transpose()


def diagonal_medians(matrix: Matrix, length: int, bandwidth: Optional[int] = None,
                     max_workers: Optional[int] = None,
                     cancel_event: Optional[threading.Event] = None) -> Matrix:
    """
    Sliding median along every diagonal within the band of a square matrix.

    Each diagonal at distance ``d`` from the main diagonal is extracted as a
    1-D sequence, filtered, and written back to both mirrored positions of
    a new banded matrix. The source is not modified.

    Args:
        matrix: Square matrix; banded matrices keep their bandwidth
        length: Half-window length
        bandwidth: Band half-width for dense input (defaults to n - 1)

    Returns:
        New banded matrix holding the diagonal medians
    """
    if matrix.rows != matrix.columns:
        raise ValueError(f"Matrix must be square, got {matrix.shape}")
    n = matrix.rows
    if matrix.kind == MatrixKind.BANDED:
        bandwidth = matrix.bandwidth
        storage = matrix.band_storage.to_array()
    else:
        bandwidth = n - 1 if bandwidth is None else min(bandwidth, max(0, n - 1))
        storage = band_storage_from_dense(matrix.to_array(), bandwidth)

    medians = np.zeros_like(storage)

    def compute(start: int, stop: int) -> None:
        for d in range(start, stop):
            filtered = sliding_median(storage[d:, bandwidth - d], length)
            medians[d:, bandwidth - d] = filtered
            medians[:n - d, bandwidth + d] = filtered

    fan_out(compute, min(bandwidth + 1, n), max_workers, cancel_event)
    return Matrix.banded(Matrix.from_array(medians), bandwidth)
