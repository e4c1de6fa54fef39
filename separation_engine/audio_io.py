"""
Audio I/O - Load canonical PCM and write WAV output

Thin adapters around soundfile and librosa. Input is normalized to the
canonical layout the separators expect (44.1 kHz, stereo, float32);
output blocks are written as 16-bit PCM WAV.
"""

import logging
from pathlib import Path
from typing import List, Tuple, Union

import numpy as np
import soundfile as sf
import librosa

from .exceptions import UnsupportedFormatError

logger = logging.getLogger(__name__)

CANONICAL_SAMPLE_RATE = 44100
CANONICAL_CHANNELS = 2


def load_audio(file_path: Union[str, Path],
               target_sample_rate: int = CANONICAL_SAMPLE_RATE,
               channels: int = CANONICAL_CHANNELS) -> Tuple[np.ndarray, int]:
    """
    Load an audio file and normalize it to the canonical layout.

    Args:
        file_path: Path to audio file
        target_sample_rate: Output sample rate (resampled if different)
        channels: Output channel count; mono input is duplicated

    Returns:
        Tuple of (audio with shape (channels, frames) as float32, sample rate)

    Raises:
        FileNotFoundError: If the file doesn't exist
        UnsupportedFormatError: If the file can't be decoded or has more
                                channels than requested
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Audio file not found: {file_path}")

    logger.info(f"Loading audio: {file_path.name}")
    try:
        audio, sr = sf.read(str(file_path), dtype="float32", always_2d=True)
    except Exception as e:
        logger.error(f"Failed to decode audio: {e}")
        raise UnsupportedFormatError(f"Cannot decode {file_path.name}: {e}") from e

    audio = audio.T
    logger.info(f"  Loaded: {audio.shape[0]} channel(s), {audio.shape[1]} frames, {sr} Hz")

    if audio.shape[0] > channels:
        raise UnsupportedFormatError(
            f"Unsupported channel count {audio.shape[0]} in {file_path.name} (maximum {channels})")
    if audio.shape[0] < channels:
        if audio.shape[0] != 1:
            raise UnsupportedFormatError(
                f"Cannot map {audio.shape[0]} channels to {channels} in {file_path.name}")
        audio = np.repeat(audio, channels, axis=0)
        logger.debug(f"  Duplicated mono to {channels} channels")

    if sr != target_sample_rate:
        audio = librosa.resample(audio, orig_sr=sr, target_sr=target_sample_rate)
        logger.debug(f"  Resampled: {sr} Hz -> {target_sample_rate} Hz")

    return np.ascontiguousarray(audio, dtype=np.float32), target_sample_rate


class ArraySink:
    """Collects output blocks in memory."""

    def __init__(self, channels: int):
        self.channels = channels
        self._blocks: List[np.ndarray] = []
        self.closed = False

    def write(self, block: np.ndarray) -> None:
        if self.closed:
            raise ValueError("Sink is closed")
        self._blocks.append(np.asarray(block, dtype=np.float32).reshape(-1, self.channels))

    def close(self) -> None:
        self.closed = True

    @property
    def audio(self) -> np.ndarray:
        """All written samples, shape (frames, channels)."""
        if not self._blocks:
            return np.zeros((0, self.channels), dtype=np.float32)
        return np.concatenate(self._blocks, axis=0)


class WaveFileSink:
    """
    Writes interleaved blocks to a 16-bit PCM WAV file.

    Samples are clipped to [-1, 1] before conversion.
    """

    def __init__(self, file_path: Union[str, Path], sample_rate: int, channels: int,
                 subtype: str = "PCM_16"):
        self.file_path = Path(file_path)
        self.channels = channels
        self._file = sf.SoundFile(str(self.file_path), mode="w", samplerate=sample_rate,
                                  channels=channels, format="WAV", subtype=subtype)

    def write(self, block: np.ndarray) -> None:
        block = np.asarray(block, dtype=np.float32).reshape(-1, self.channels)
        self._file.write(np.clip(block, -1.0, 1.0))

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()
            logger.info(f"Wrote {self.file_path}")

    def __enter__(self) -> "WaveFileSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
