"""
Spectral Analyzer - Frame audio into overlapping windows and compute magnitudes

Produces, per channel, a samples matrix (one analysis frame per row) and
a magnitude matrix (one magnitude spectrum per row) sharing the same row
indexing. Frames are rectangular (no analysis window); a trailing partial
frame is dropped rather than zero-padded.
"""

import logging
import threading
from typing import Optional, Tuple

import numpy as np
import librosa
import scipy.fft

from .matrix import Matrix
from .parallel import fan_out

logger = logging.getLogger(__name__)


def frame_signal(signal: np.ndarray, slice_length: int, hop_size: int) -> np.ndarray:
    """
    Split a 1-D signal into overlapping frames.

    Args:
        signal: Mono audio samples
        slice_length: Frame length L in samples
        hop_size: Frame advance H in samples

    Returns:
        float32 array of shape (n_frames, slice_length) where row ``r``
        starts at sample ``r * hop_size``
    """
    signal = np.ascontiguousarray(signal, dtype=np.float32)
    if signal.ndim != 1:
        raise ValueError(f"Expected a 1-D signal, got shape {signal.shape}")
    if len(signal) < slice_length:
        return np.zeros((0, slice_length), dtype=np.float32)
    frames = librosa.util.frame(signal, frame_length=slice_length, hop_length=hop_size, axis=0)
    return np.array(frames, dtype=np.float32)


def magnitude_spectrum(frames: np.ndarray, max_workers: Optional[int] = None,
                       cancel_event: Optional[threading.Event] = None) -> np.ndarray:
    """
    Magnitude of the FFT of every frame, first L/2 bins.

    Args:
        frames: Array of shape (n_frames, L)
        max_workers: Worker pool size

    Returns:
        float32 array of shape (n_frames, L // 2)
    """
    n_frames, slice_length = frames.shape
    bins = slice_length // 2
    magnitudes = np.zeros((n_frames, bins), dtype=np.float32)

    def compute(start: int, stop: int) -> None:
        spectrum = scipy.fft.rfft(frames[start:stop], axis=1)
        magnitudes[start:stop] = np.abs(spectrum[:, :bins])

    fan_out(compute, n_frames, max_workers, cancel_event)
    return magnitudes


class SpectralAnalyzer:
    """
    Turns one channel of raw samples into samples and magnitude matrices.
    """

    def __init__(self, slice_length: int = 2048, hop_size: int = 512,
                 max_workers: Optional[int] = None):
        """
        Initialize analyzer.

        Args:
            slice_length: Analysis frame length L (even)
            hop_size: Frame advance H (H <= L)
            max_workers: Worker pool size for the FFT fan-out
        """
        if slice_length < 2 or slice_length % 2:
            raise ValueError(f"Slice length must be even and >= 2, got {slice_length}")
        if not 1 <= hop_size <= slice_length:
            raise ValueError(f"Hop size must be in [1, {slice_length}], got {hop_size}")
        self.slice_length = slice_length
        self.hop_size = hop_size
        self.max_workers = max_workers

    def analyze(self, signal: np.ndarray,
                cancel_event: Optional[threading.Event] = None) -> Tuple[Matrix, Matrix]:
        """
        Analyze one channel.

        Args:
            signal: Mono float samples of the channel

        Returns:
            Tuple of (samples, magnitudes) matrices
        """
        frames = frame_signal(signal, self.slice_length, self.hop_size)
        magnitudes = magnitude_spectrum(frames, self.max_workers, cancel_event)
        logger.debug(f"Analyzed {len(signal)} samples into {frames.shape[0]} frames "
                     f"(L={self.slice_length}, H={self.hop_size})")
        return Matrix.from_array(frames), Matrix.from_array(magnitudes)


def analyze_channel(signal: np.ndarray, slice_length: int = 2048, hop_size: int = 512,
                    max_workers: Optional[int] = None) -> Tuple[Matrix, Matrix]:
    """Convenience wrapper around SpectralAnalyzer.analyze."""
    return SpectralAnalyzer(slice_length, hop_size, max_workers).analyze(signal)
