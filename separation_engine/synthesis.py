"""
Channel Synthesis - Iterative phase estimation and overlap-add

Each masked magnitude row is turned back into a time-domain frame by
Griffin-Lim style phase estimation seeded with the phase of the original
frame. Frames are stitched together with overlap-add, which is stateful:
frames must arrive strictly in row order.
"""

import logging
import threading
from typing import Iterator, Optional

import numpy as np
import scipy.fft

from .parallel import check_cancelled

logger = logging.getLogger(__name__)

GRIFFIN_LIM_ITERATIONS = 5


def estimate_frame(seed: np.ndarray, magnitudes: np.ndarray,
                   iterations: int = GRIFFIN_LIM_ITERATIONS) -> np.ndarray:
    """
    Estimate a time-domain frame with the given magnitude spectrum.

    Args:
        seed: Original time-domain frame (length L), provides the initial phase
        magnitudes: Target magnitudes for bins ``0 .. L/2 - 1``; the Nyquist
                    bin is taken as 0
        iterations: Number of projection iterations

    Returns:
        float32 frame of length L
    """
    slice_length = len(seed)
    target = np.zeros(slice_length // 2 + 1, dtype=np.float64)
    target[:len(magnitudes)] = magnitudes

    phase = np.angle(scipy.fft.rfft(np.asarray(seed, dtype=np.float64)))
    for _ in range(iterations):
        frame = scipy.fft.irfft(target * np.exp(1j * phase), n=slice_length)
        phase = np.angle(scipy.fft.rfft(frame))
    return scipy.fft.irfft(target * np.exp(1j * phase), n=slice_length).astype(np.float32)


class OverlapAdd:
    """
    Overlap-add accumulator.

    Every processed frame is added at its hop offset; ``hop_size`` finished
    samples are emitted per frame and the remaining ``slice_length - hop_size``
    samples on ``flush()``.
    """

    def __init__(self, slice_length: int, hop_size: int):
        if not 1 <= hop_size <= slice_length:
            raise ValueError(f"Hop size must be in [1, {slice_length}], got {hop_size}")
        self.slice_length = slice_length
        self.hop_size = hop_size
        self._buffer = np.zeros(slice_length, dtype=np.float32)
        self._next_row = 0
        self._flushed = False

    @property
    def frames_processed(self) -> int:
        return self._next_row

    def process(self, frame: np.ndarray, row: Optional[int] = None) -> np.ndarray:
        """
        Add the next frame and return the samples that are now complete.

        Args:
            frame: Time-domain frame of length ``slice_length``
            row: Row index of the frame; if given it must be the next one

        Returns:
            ``hop_size`` output samples
        """
        if self._flushed:
            raise ValueError("Overlap-add already flushed")
        if row is not None and row != self._next_row:
            raise ValueError(f"Frames must arrive in row order: expected {self._next_row}, got {row}")
        if len(frame) != self.slice_length:
            raise ValueError(f"Frame length {len(frame)} != slice length {self.slice_length}")

        self._buffer += frame
        out = self._buffer[:self.hop_size].copy()
        tail = self.slice_length - self.hop_size
        self._buffer[:tail] = self._buffer[self.hop_size:]
        self._buffer[tail:] = 0
        self._next_row += 1
        return out

    def flush(self) -> np.ndarray:
        """Emit the trailing samples. May be called once."""
        if self._flushed:
            raise ValueError("Overlap-add already flushed")
        self._flushed = True
        if self._next_row == 0:
            return np.zeros(0, dtype=np.float32)
        return self._buffer[:self.slice_length - self.hop_size].copy()


class ChannelSynthesizer:
    """
    Resynthesizes one channel, frame by frame, in row order.
    """

    def __init__(self, channel, iterations: int = GRIFFIN_LIM_ITERATIONS):
        """
        Args:
            channel: Channel with (masked) magnitudes and original samples
            iterations: Griffin-Lim iterations per frame
        """
        self.channel = channel
        self.iterations = iterations
        fmt = channel.audio_format
        self.ola = OverlapAdd(fmt.slice_length, fmt.hop_size)

    def synthesize(self, row: int) -> np.ndarray:
        """Time-domain estimate of one row."""
        return estimate_frame(self.channel.samples.get_row(row),
                              self.channel.magnitudes.get_row(row),
                              self.iterations)

    def next_block(self, row: int) -> np.ndarray:
        """Synthesize ``row`` and push it through overlap-add."""
        return self.ola.process(self.synthesize(row), row)

    def flush(self) -> np.ndarray:
        return self.ola.flush()

    def blocks(self, cancel_event: Optional[threading.Event] = None) -> Iterator[np.ndarray]:
        """
        All output blocks of the channel: one per row, then the flushed tail.
        """
        for row in range(self.channel.rows):
            check_cancelled(cancel_event)
            yield self.next_block(row)
        yield self.flush()
