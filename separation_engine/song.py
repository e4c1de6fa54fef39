"""
Song and Channel - Analyzed audio, mask application and resynthesis

A Song holds one Channel per audio channel plus the analysis geometry.
Separation never mutates anything: ``Song.separate`` computes one mask per
channel and returns two new Songs whose channels carry masked magnitude
views over the original magnitudes, sharing the original samples as phase
seeds for synthesis.
"""

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from .audio_io import ArraySink, WaveFileSink, load_audio
from .exceptions import DimensionMismatchError
from .matrix import Matrix
from .parallel import check_cancelled, default_workers
from .spectral import SpectralAnalyzer
from .synthesis import GRIFFIN_LIM_ITERATIONS, ChannelSynthesizer
from .utils import format_duration, format_shape

logger = logging.getLogger(__name__)

# Output scaling applied before writing; overlap-add of unwindowed frames
# sums slice_length / hop_size copies of every sample
DEFAULT_OUTPUT_GAIN = 0.2

MaskingFunction = Callable[["Channel"], Matrix]


@dataclass
class AudioFormat:
    """Sample rate, channel count and analysis geometry."""
    sample_rate: int = 44100
    channels: int = 2
    slice_length: int = 2048
    hop_size: int = 512

    def __post_init__(self):
        """Validate geometry; a hop larger than the slice raises the slice."""
        if self.sample_rate <= 0:
            raise ValueError(f"Invalid sample rate: {self.sample_rate}")
        if self.channels < 1:
            raise ValueError(f"Invalid channel count: {self.channels}")
        if self.hop_size < 1:
            raise ValueError(f"Hop size must be >= 1, got {self.hop_size}")
        if self.slice_length < self.hop_size:
            logger.warning(f"Slice length {self.slice_length} < hop size {self.hop_size}, "
                           f"using slice length {self.hop_size}")
            self.slice_length = self.hop_size
        if self.slice_length < 2 or self.slice_length % 2:
            raise ValueError(f"Slice length must be even and >= 2, got {self.slice_length}")

    @property
    def hop_duration_ms(self) -> float:
        return self.hop_size * 1000.0 / self.sample_rate

    @property
    def bins(self) -> int:
        """Number of magnitude bins per frame."""
        return self.slice_length // 2


def inverse_mask(mask: Matrix) -> Matrix:
    """Complementary mask view ``|mask - 1|``."""
    return mask.apply(lambda m: np.abs(m - 1))


class Channel:
    """
    One analyzed audio channel: frame samples and magnitude spectra.

    ``samples`` and ``magnitudes`` share row indexing; row ``r`` of both
    describes the frame starting at sample ``r * hop_size``.
    """

    def __init__(self, audio_format: AudioFormat, magnitudes: Matrix, samples: Matrix):
        """
        Args:
            audio_format: Geometry of the owning song
            magnitudes: Matrix of shape (frames, slice_length // 2)
            samples: Matrix of shape (frames, slice_length)

        Raises:
            DimensionMismatchError: If the matrices don't fit the geometry
        """
        expected_samples = (magnitudes.rows, audio_format.slice_length)
        if samples.shape != expected_samples:
            raise DimensionMismatchError(expected_samples, samples.shape)
        expected_magnitudes = (samples.rows, audio_format.bins)
        if magnitudes.shape != expected_magnitudes:
            raise DimensionMismatchError(expected_magnitudes, magnitudes.shape)
        self._audio_format = audio_format
        self._magnitudes = magnitudes
        self._samples = samples

    @classmethod
    def from_signal(cls, signal: np.ndarray, audio_format: AudioFormat,
                    max_workers: Optional[int] = None) -> "Channel":
        """Analyze one channel of raw samples."""
        analyzer = SpectralAnalyzer(audio_format.slice_length, audio_format.hop_size, max_workers)
        samples, magnitudes = analyzer.analyze(signal)
        return cls(audio_format, magnitudes, samples)

    @property
    def audio_format(self) -> AudioFormat:
        return self._audio_format

    @property
    def magnitudes(self) -> Matrix:
        return self._magnitudes

    @property
    def samples(self) -> Matrix:
        return self._samples

    @property
    def rows(self) -> int:
        return self._magnitudes.rows

    def separate(self, mask: Matrix) -> Tuple["Channel", "Channel"]:
        """
        Split this channel into two complementary channels.

        Args:
            mask: Mask of the same shape as the magnitudes, values in [0, 1]

        Returns:
            Tuple of (channel masked with ``mask``, channel masked with
            ``1 - mask``)

        Raises:
            DimensionMismatchError: If the mask shape differs from the magnitudes
        """
        if mask.shape != self._magnitudes.shape:
            raise DimensionMismatchError(self._magnitudes.shape, mask.shape)
        return (
            Channel(self._audio_format, self._magnitudes.hadamard_multiply(mask), self._samples),
            Channel(self._audio_format, self._magnitudes.hadamard_multiply(inverse_mask(mask)), self._samples),
        )

    def synthesizer(self, iterations: int = GRIFFIN_LIM_ITERATIONS) -> ChannelSynthesizer:
        return ChannelSynthesizer(self, iterations)

    def __repr__(self) -> str:
        return f"Channel(frames={self.rows}, magnitudes={format_shape(self._magnitudes.shape)})"


class Song:
    """
    Analyzed multi-channel audio.
    """

    def __init__(self, audio_format: AudioFormat, channels: List[Channel]):
        if len(channels) != audio_format.channels:
            raise ValueError(f"Expected {audio_format.channels} channels, got {len(channels)}")
        rows = {channel.rows for channel in channels}
        if len(rows) > 1:
            raise ValueError(f"Channels differ in frame count: {sorted(rows)}")
        self.audio_format = audio_format
        self.channels = list(channels)

    # === Construction ===

    @classmethod
    def from_samples(cls, audio: np.ndarray, sample_rate: int, slice_length: int = 2048,
                     hop_size: int = 512, max_workers: Optional[int] = None) -> "Song":
        """
        Analyze raw audio.

        Args:
            audio: Samples of shape (channels, frames), or (frames,) for mono
            sample_rate: Sample rate in Hz
            slice_length: Analysis frame length
            hop_size: Frame advance

        Returns:
            Song with one analyzed Channel per audio channel
        """
        audio = np.asarray(audio, dtype=np.float32)
        if audio.ndim == 1:
            audio = audio[np.newaxis, :]
        if audio.ndim != 2:
            raise ValueError(f"Invalid audio shape: {audio.shape}")

        audio_format = AudioFormat(sample_rate=sample_rate, channels=audio.shape[0],
                                   slice_length=slice_length, hop_size=hop_size)
        workers = max_workers or default_workers()
        with ThreadPoolExecutor(max_workers=min(audio.shape[0], workers)) as executor:
            channels = list(executor.map(
                lambda signal: Channel.from_signal(signal, audio_format, workers), audio))

        song = cls(audio_format, channels)
        logger.info(f"Analyzed {song}")
        return song

    @classmethod
    def from_file(cls, file_path: Union[str, Path], slice_length: int = 2048,
                  hop_size: int = 512, max_workers: Optional[int] = None) -> "Song":
        """
        Read and analyze an audio file.

        Raises:
            UnsupportedFormatError: If the file can't be normalized to
                                    canonical PCM
        """
        audio, sample_rate = load_audio(file_path)
        return cls.from_samples(audio, sample_rate, slice_length, hop_size, max_workers)

    # === Properties ===

    @property
    def rows(self) -> int:
        """Number of analysis frames."""
        return self.channels[0].rows if self.channels else 0

    @property
    def duration(self) -> float:
        """Duration in seconds covered by the analysis frames."""
        fmt = self.audio_format
        if self.rows == 0:
            return 0.0
        return ((self.rows - 1) * fmt.hop_size + fmt.slice_length) / fmt.sample_rate

    # === Separation ===

    def separate(self, masking_function: MaskingFunction,
                 cancel_event: Optional[threading.Event] = None) -> Tuple["Song", "Song"]:
        """
        Separate into two complementary songs.

        Args:
            masking_function: Callable producing a mask for a channel
            cancel_event: Checked between channels

        Returns:
            Tuple of (song masked with the mask, song masked with its inverse)
        """
        a_channels = []
        b_channels = []
        for index, channel in enumerate(self.channels):
            check_cancelled(cancel_event)
            mask = masking_function(channel)
            a, b = channel.separate(mask)
            a_channels.append(a)
            b_channels.append(b)
            logger.debug(f"Separated channel {index} with {type(masking_function).__name__}")
        return Song(self.audio_format, a_channels), Song(self.audio_format, b_channels)

    # === Synthesis ===

    def write(self, sink, output_gain: float = DEFAULT_OUTPUT_GAIN,
              iterations: int = GRIFFIN_LIM_ITERATIONS,
              cancel_event: Optional[threading.Event] = None) -> None:
        """
        Resynthesize all channels and stream them to a sink.

        Rows are synthesized in increasing order; each row yields one
        interleaved block of ``hop_size`` frames, and the overlap-add tails
        are flushed once at the end.

        Args:
            sink: File path, or object with ``write(block)`` and ``close()``
            output_gain: Scale applied to every output sample
            iterations: Griffin-Lim iterations per frame
            cancel_event: Checked every row; the sink is closed either way
        """
        if isinstance(sink, (str, Path)):
            sink = WaveFileSink(sink, self.audio_format.sample_rate, len(self.channels))

        synthesizers = [channel.synthesizer(iterations) for channel in self.channels]
        try:
            for row in range(self.rows):
                check_cancelled(cancel_event)
                block = np.stack([s.next_block(row) for s in synthesizers], axis=1)
                sink.write(block * np.float32(output_gain))
            tail = np.stack([s.flush() for s in synthesizers], axis=1)
            sink.write(tail * np.float32(output_gain))
        finally:
            sink.close()

    def write_async(self, file_path: Union[str, Path], executor: Executor,
                    **kwargs) -> Future:
        """Write to ``file_path`` on ``executor``; see ``write``."""
        return executor.submit(self.write, file_path, **kwargs)

    def synthesize(self, output_gain: float = DEFAULT_OUTPUT_GAIN,
                   iterations: int = GRIFFIN_LIM_ITERATIONS) -> np.ndarray:
        """Resynthesize into memory; returns shape (frames, channels)."""
        sink = ArraySink(len(self.channels))
        self.write(sink, output_gain=output_gain, iterations=iterations)
        return sink.audio

    def __repr__(self) -> str:
        fmt = self.audio_format
        return (f"Song(channels={len(self.channels)}, frames={self.rows}, "
                f"sr={fmt.sample_rate}, L={fmt.slice_length}, H={fmt.hop_size}, "
                f"duration={format_duration(self.duration)})")
