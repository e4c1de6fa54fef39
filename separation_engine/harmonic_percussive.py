"""
Harmonic/Percussive Separation - Median-filter soft masks

Percussive events are broadband within a frame, harmonic partials are
steady across frames. Median filtering each magnitude row (across bins)
enhances the percussive part, filtering each column (across frames)
enhances the harmonic part; a soft mask is derived from their ratio.
Output A of the mask is percussive, output B harmonic.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Optional, Tuple

import numpy as np

from .matrix import Matrix
from .median import column_medians, row_medians
from .parallel import check_cancelled
from .utils import round_half_up

logger = logging.getLogger(__name__)


class MaskFunction(Enum):
    """How harmonic and percussive medians are turned into a mask value."""
    LOGISTIC = "logistic"          # Soft, steepness k (default)
    PROPORTIONAL = "proportional"  # Percussive share of the total
    BINARY = "binary"              # 1 where percussive >= harmonic
    TWO_THIRDS = "two_thirds"      # 1 where percussive share > 0.66


def percussive_ratio(harmonic: np.ndarray, percussive: np.ndarray) -> np.ndarray:
    """
    Percussive share ``p / (h + p)``; 0.5 where both are zero.
    """
    harmonic = np.asarray(harmonic, dtype=np.float32)
    percussive = np.asarray(percussive, dtype=np.float32)
    total = harmonic + percussive
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(total == 0, np.float32(0.5), percussive / total).astype(np.float32)


def logistic_mask(harmonic: np.ndarray, percussive: np.ndarray, k: float = 10) -> np.ndarray:
    """
    ``1 / (1 + exp(-k * (ratio - 0.5)))`` of the percussive ratio.

    Equal medians give exactly 0.5.
    """
    ratio = percussive_ratio(harmonic, percussive).astype(np.float64)
    return (1.0 / (1.0 + np.exp(-k * (ratio - 0.5)))).astype(np.float32)


def proportional_mask(harmonic: np.ndarray, percussive: np.ndarray) -> np.ndarray:
    return percussive_ratio(harmonic, percussive)


def binary_mask(harmonic: np.ndarray, percussive: np.ndarray) -> np.ndarray:
    return np.where(np.asarray(harmonic) > np.asarray(percussive), 0, 1).astype(np.float32)


def two_thirds_mask(harmonic: np.ndarray, percussive: np.ndarray) -> np.ndarray:
    return np.where(percussive_ratio(harmonic, percussive) > 0.66, 1, 0).astype(np.float32)


@dataclass
class HarmonicPercussiveConfig:
    """Configuration for harmonic/percussive separation."""
    # Harmonic median extent along time, in milliseconds
    harmonic_window_ms: float = 325

    # Percussive median extent along frequency, in Hertz
    percussive_window_hz: float = 1292

    # Logistic steepness
    k: float = 10

    mask_function: MaskFunction = MaskFunction.LOGISTIC

    def __post_init__(self):
        """Clamp to the ranges the separator is tuned for."""
        self.harmonic_window_ms = max(20, min(1000, self.harmonic_window_ms))
        self.percussive_window_hz = max(20, min(5000, self.percussive_window_hz))
        self.k = max(5, min(50, self.k))


def to_median_length(region_length: float) -> int:
    """Half-window length for a median region of the given extent."""
    return max(0, round_half_up((region_length - 1.0) / 2.0))


class HarmonicPercussiveSeparation:
    """
    Callable producing a percussive mask for a channel.
    """

    def __init__(self, config: Optional[HarmonicPercussiveConfig] = None,
                 max_workers: Optional[int] = None,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize separation.

        Args:
            config: Window sizes, steepness and mask function (defaults if None)
            max_workers: Worker pool size for the median filters
            cancel_event: Checked between stages
        """
        self.config = config or HarmonicPercussiveConfig()
        self.max_workers = max_workers
        self.cancel_event = cancel_event

    @property
    def magnitudes_to_mask(self):
        """Vectorized operator ``(harmonic, percussive) -> mask``."""
        function = self.config.mask_function
        if function == MaskFunction.LOGISTIC:
            return partial(logistic_mask, k=self.config.k)
        if function == MaskFunction.PROPORTIONAL:
            return proportional_mask
        if function == MaskFunction.BINARY:
            return binary_mask
        return two_thirds_mask

    def median_lengths(self, sample_rate: float, hop_size: int,
                       slice_length: int) -> Tuple[int, int]:
        """
        Half-window lengths for the two median filters.

        Returns:
            Tuple of (harmonic length in frames, percussive length in bins)
        """
        hop_size_ms = hop_size / sample_rate * 1000
        harmonic_region = self.config.harmonic_window_ms / hop_size_ms
        percussive_region = slice_length * self.config.percussive_window_hz / sample_rate
        return to_median_length(harmonic_region), to_median_length(percussive_region)

    def __call__(self, channel) -> Matrix:
        fmt = channel.audio_format
        harmonic_length, percussive_length = self.median_lengths(
            fmt.sample_rate, fmt.hop_size, fmt.slice_length)
        logger.info(f"Percussive l={percussive_length}, harmonic l={harmonic_length}")

        magnitudes = channel.magnitudes
        percussive = row_medians(magnitudes, percussive_length, self.max_workers, self.cancel_event)
        check_cancelled(self.cancel_event)
        harmonic = column_medians(magnitudes, harmonic_length, self.max_workers, self.cancel_event)
        check_cancelled(self.cancel_event)

        return harmonic.combine(percussive, self.magnitudes_to_mask).materialize()
