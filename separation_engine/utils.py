"""
Utility Functions - Stateless numeric helpers shared by the separators

Contains the lower median used by the background/foreground mask
builder, half-up rounding for window sizes, and display helpers for
log messages.
"""

import math
import logging
from typing import Tuple

import numpy as np

logger = logging.getLogger(__name__)


# === Order Statistics ===

def lower_median(values: np.ndarray, axis: int = 0) -> np.ndarray:
    """
    Median using the lower of the two central order statistics.

    For odd-length input this is the ordinary median. For even-length
    input the result is always one of the input values, never an average.

    Args:
        values: Input array
        axis: Axis along which to take the median

    Returns:
        Array of medians with ``axis`` removed (float32)
    """
    values = np.asarray(values, dtype=np.float32)
    n = values.shape[axis]
    if n == 0:
        raise ValueError("Cannot take the median of an empty sequence")
    k = (n - 1) // 2
    return np.take(np.partition(values, k, axis=axis), k, axis=axis)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves rounding towards +infinity."""
    return int(math.floor(value + 0.5))


# === Display Helpers ===

def format_duration(seconds: float) -> str:
    """
    Format duration in human-readable format.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (HH:MM:SS or MM:SS)
    """
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    else:
        return f"{minutes:02d}:{secs:02d}"


def format_shape(shape: Tuple[int, ...]) -> str:
    """Format a matrix shape as ``rows x columns``."""
    return " x ".join(str(s) for s in shape)
