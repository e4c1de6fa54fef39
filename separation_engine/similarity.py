"""
Self-Similarity Engine - Banded frame-to-frame similarity with ridge sharpening

Builds the similarity between analysis frames that the background/foreground
separator clusters on:

1. normalize every magnitude row to unit length
2. rescaled cosine similarity for all row pairs within the band
3. median smoothing along each diagonal (repeated structure shows up as
   diagonal stripes)
4. sharpening: entries next to a strictly larger neighbour are zeroed,
   leaving thin ridges
"""

import logging
import threading
from typing import Optional

import numpy as np

from .matrix import Matrix
from .median import diagonal_medians
from .parallel import fan_out, check_cancelled

logger = logging.getLogger(__name__)

# Half-window of the diagonal median, in frames
MEDIAN_LENGTH = 10


def normalize_rows(matrix: Matrix, max_workers: Optional[int] = None,
                   cancel_event: Optional[threading.Event] = None) -> Matrix:
    """
    Scale every row to unit Euclidean norm; all-zero rows stay zero.
    """
    source = matrix.to_array()
    normalized = np.zeros(source.shape, dtype=np.float32)

    def compute(start: int, stop: int) -> None:
        block = source[start:stop].astype(np.float64)
        norms = np.sqrt(np.einsum("ij,ij->i", block, block))
        nonzero = norms != 0
        normalized[start:stop][nonzero] = block[nonzero] / norms[nonzero, None]

    fan_out(compute, source.shape[0], max_workers, cancel_event)
    return Matrix.from_array(normalized)


def effective_bandwidth(n_rows: int, bandwidth: Optional[int]) -> int:
    """Bandwidth capped to the matrix size; None means the whole matrix."""
    limit = max(0, n_rows - 1)
    if bandwidth is None or bandwidth < 0:
        return limit
    return min(bandwidth, limit)


def banded_similarity(normalized: Matrix, bandwidth: Optional[int] = None,
                      max_workers: Optional[int] = None,
                      cancel_event: Optional[threading.Event] = None) -> Matrix:
    """
    Banded self-similarity of unit-length rows.

    ``sim(i, j) = max(0, 2 * dot(row_i, row_j) - 1)`` for ``|i - j| <= bandwidth``.
    Each diagonal is computed once and stored at both mirrored positions.

    Args:
        normalized: Row-normalized feature matrix
        bandwidth: Band half-width (None for the whole matrix)

    Returns:
        Banded (n, n) matrix
    """
    rows = normalized.to_array()
    n = rows.shape[0]
    bandwidth = effective_bandwidth(n, bandwidth)
    storage = np.zeros((n, 2 * bandwidth + 1), dtype=np.float32)

    def compute(start: int, stop: int) -> None:
        for d in range(start, stop):
            dots = np.einsum("ij,ij->i", rows[d:], rows[:n - d], dtype=np.float64)
            similarity = np.maximum(0.0, 2.0 * dots - 1.0).astype(np.float32)
            storage[d:, bandwidth - d] = similarity
            storage[:n - d, bandwidth + d] = similarity

    fan_out(compute, min(bandwidth + 1, n), max_workers, cancel_event)
    return Matrix.banded(Matrix.from_array(storage), bandwidth)


def _ridge(value, right, left, below, above):
    larger = (right > value) | (left > value) | (below > value) | (above > value)
    return np.where(larger, np.float32(0), value)


def sharpen_diagonally(matrix: Matrix) -> Matrix:
    """
    View of a banded matrix where every entry with a strictly larger
    horizontal or vertical neighbour is set to 0.

    Neighbours outside the matrix or the band read as 0, which never
    exceeds a (non-negative) similarity, so edges behave as if clamped.
    """
    bandwidth = matrix.bandwidth
    if bandwidth is None:
        raise TypeError("Diagonal sharpening needs a banded matrix")
    padded = np.pad(matrix.band_storage.to_array(), 1)
    value = Matrix.from_array(padded[1:-1, 1:-1])
    right = Matrix.from_array(padded[1:-1, 2:])   # (r, c + 1)
    left = Matrix.from_array(padded[1:-1, :-2])   # (r, c - 1)
    below = Matrix.from_array(padded[2:, :-2])    # (r + 1, c)
    above = Matrix.from_array(padded[:-2, 2:])    # (r - 1, c)
    return Matrix.banded(Matrix.elementwise(_ridge, value, right, left, below, above), bandwidth)


class SelfSimilarityFunction:
    """
    Callable turning a channel into its sharpened, banded self-similarity matrix.
    """

    def __init__(self, bandwidth: Optional[int] = None, median_length: int = MEDIAN_LENGTH,
                 max_workers: Optional[int] = None,
                 cancel_event: Optional[threading.Event] = None):
        """
        Args:
            bandwidth: Band half-width in frames (None: whole track)
            median_length: Half-window of the diagonal median
            max_workers: Worker pool size
            cancel_event: Checked between stages
        """
        self.bandwidth = bandwidth
        self.median_length = median_length
        self.max_workers = max_workers
        self.cancel_event = cancel_event

    def __call__(self, channel) -> Matrix:
        return self.compute(channel.magnitudes)

    def compute(self, magnitudes: Matrix) -> Matrix:
        """Run all four stages on a magnitude matrix."""
        logger.debug(f"Creating self-similarity matrix for {magnitudes.rows} frames...")
        normalized = normalize_rows(magnitudes, self.max_workers, self.cancel_event)
        check_cancelled(self.cancel_event)

        similarity = banded_similarity(normalized, self.bandwidth, self.max_workers, self.cancel_event)
        logger.debug(f"Computed banded similarity, bandwidth={similarity.bandwidth}")
        check_cancelled(self.cancel_event)

        medians = diagonal_medians(similarity, self.median_length,
                                   max_workers=self.max_workers, cancel_event=self.cancel_event)
        logger.debug("Created diagonal median matrix")
        check_cancelled(self.cancel_event)

        sharpened = sharpen_diagonally(medians)
        logger.debug("Sharpened")
        return sharpened
