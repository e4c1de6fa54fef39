"""
Separation Engine - Background/foreground and harmonic/percussive source separation

Splits a stereo recording into four files: the repeating background and
the foreground, and the percussive and harmonic parts. Both separations
work on soft masks over short-time magnitude spectra and resynthesize
with Griffin-Lim phase estimation.
"""

from .exceptions import (
    SeparationError,
    UnsupportedFormatError,
    DimensionMismatchError,
    OperationCancelled,
    SeparationPipelineError,
)
from .matrix import Matrix, MatrixKind
from .spectral import SpectralAnalyzer
from .similarity import SelfSimilarityFunction
from .background_foreground import BackgroundForegroundConfig, BackgroundForegroundSeparation
from .harmonic_percussive import HarmonicPercussiveConfig, HarmonicPercussiveSeparation, MaskFunction
from .song import AudioFormat, Channel, Song
from .pipeline import SeparationPipeline, SeparatorConfig, PipelineResult, PipelineStatus

__version__ = "1.0.0"

__all__ = [
    "SeparationError",
    "UnsupportedFormatError",
    "DimensionMismatchError",
    "OperationCancelled",
    "SeparationPipelineError",
    "Matrix",
    "MatrixKind",
    "SpectralAnalyzer",
    "SelfSimilarityFunction",
    "BackgroundForegroundConfig",
    "BackgroundForegroundSeparation",
    "HarmonicPercussiveConfig",
    "HarmonicPercussiveSeparation",
    "MaskFunction",
    "AudioFormat",
    "Channel",
    "Song",
    "SeparationPipeline",
    "SeparatorConfig",
    "PipelineResult",
    "PipelineStatus",
]
