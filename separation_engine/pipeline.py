"""
Separation Pipeline - Runs both separations concurrently and writes the results

Coordinates the full workflow:
Read → {Background/Foreground, Harmonic/Percussive} → Synthesize → Write

Both separations run on their own worker and each writes its two output
songs asynchronously. Cancellation stops remaining work and yields a
cancelled result; any other failure aborts the sibling separation and is
raised as a single aggregated error.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from .background_foreground import BackgroundForegroundConfig, BackgroundForegroundSeparation
from .exceptions import OperationCancelled, SeparationPipelineError
from .harmonic_percussive import HarmonicPercussiveConfig, HarmonicPercussiveSeparation
from .parallel import check_cancelled
from .song import DEFAULT_OUTPUT_GAIN, Song
from .synthesis import GRIFFIN_LIM_ITERATIONS
from .utils import format_duration

logger = logging.getLogger(__name__)


class PipelineStatus(Enum):
    """Outcome of a pipeline run."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class SeparatorConfig:
    """Configuration for the separation pipeline."""
    # Analysis geometry
    hop_size: int = 512
    slice_length: int = 2048

    # Harmonic/percussive settings
    harmonic_window_ms: int = 325
    percussive_window_hz: int = 1292
    k: int = 10

    # Background/foreground settings
    similarity_bandwidth: Optional[int] = None  # None: derived from tempo and track length
    max_similar_rows: int = 10

    # Which separations to run
    enable_background_foreground: bool = True
    enable_harmonic_percussive: bool = True

    # Synthesis
    output_gain: float = DEFAULT_OUTPUT_GAIN
    griffin_lim_iterations: int = GRIFFIN_LIM_ITERATIONS

    # Worker pool size for the numeric kernels (None: CPU count)
    max_workers: Optional[int] = None

    def __post_init__(self):
        """Validate and clamp values."""
        if self.hop_size < 1:
            raise ValueError(f"Hop size must be >= 1, got {self.hop_size}")
        if self.slice_length < self.hop_size:
            logger.warning(f"Slice length {self.slice_length} < hop size {self.hop_size}, "
                           f"using slice length {self.hop_size}")
            self.slice_length = self.hop_size
        if self.slice_length < 2 or self.slice_length % 2:
            raise ValueError(f"Slice length must be even and >= 2, got {self.slice_length}")
        self.harmonic_window_ms = max(20, min(1000, self.harmonic_window_ms))
        self.percussive_window_hz = max(20, min(5000, self.percussive_window_hz))
        self.k = max(5, min(50, self.k))
        self.max_similar_rows = max(1, self.max_similar_rows)
        self.griffin_lim_iterations = max(0, self.griffin_lim_iterations)

    def background_foreground_config(self) -> BackgroundForegroundConfig:
        return BackgroundForegroundConfig(
            similarity_bandwidth=self.similarity_bandwidth,
            max_similar_rows=self.max_similar_rows,
        )

    def harmonic_percussive_config(self) -> HarmonicPercussiveConfig:
        return HarmonicPercussiveConfig(
            harmonic_window_ms=self.harmonic_window_ms,
            percussive_window_hz=self.percussive_window_hz,
            k=self.k,
        )


@dataclass
class PipelineResult:
    """Result of a pipeline run."""
    status: PipelineStatus
    output_files: Dict[str, Path] = field(default_factory=dict)
    total_processing_time: float = 0.0
    stage_times: Dict[str, float] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == PipelineStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "status": self.status.value,
            "output_files": {k: str(v) for k, v in self.output_files.items()},
            "processing_time": {
                "total": f"{self.total_processing_time:.1f}s",
                "by_stage": {k: f"{v:.1f}s" for k, v in self.stage_times.items()},
            },
        }


# Output file suffixes: (mask output, inverse-mask output)
OUTPUT_NAMES = {
    "background_foreground": ("background", "foreground"),
    "harmonic_percussive": ("percussive", "harmonic"),
}


class SeparationPipeline:
    """
    Background/foreground and harmonic/percussive separation of one file.

    A pipeline can be cancelled from another thread with ``cancel()``;
    once cancelled it stays cancelled.
    """

    def __init__(self, config: Optional[SeparatorConfig] = None):
        """
        Initialize the pipeline.

        Args:
            config: Pipeline configuration (uses defaults if None)
        """
        self.config = config or SeparatorConfig()
        self._cancel_event = threading.Event()

        logger.info(f"Initialized SeparationPipeline: hop={self.config.hop_size}, "
                    f"slice={self.config.slice_length}, k={self.config.k}")

    def cancel(self) -> None:
        """Request cancellation of the running separation."""
        logger.info("Cancellation requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _separations(self) -> Dict[str, Any]:
        separations = {}
        if self.config.enable_background_foreground:
            separations["background_foreground"] = BackgroundForegroundSeparation(
                self.config.background_foreground_config(),
                max_workers=self.config.max_workers,
                cancel_event=self._cancel_event,
            )
        if self.config.enable_harmonic_percussive:
            separations["harmonic_percussive"] = HarmonicPercussiveSeparation(
                self.config.harmonic_percussive_config(),
                max_workers=self.config.max_workers,
                cancel_event=self._cancel_event,
            )
        return separations

    @staticmethod
    def output_paths(input_path: Union[str, Path],
                     output_dir: Optional[Union[str, Path]] = None) -> Dict[str, Tuple[Path, Path]]:
        """
        Output files for an input file: ``<stem>_background.wav`` etc.

        Returns:
            Mapping of separation name to (mask output, inverse output) paths
        """
        input_path = Path(input_path)
        directory = Path(output_dir) if output_dir is not None else input_path.parent
        return {
            name: tuple(directory / f"{input_path.stem}_{suffix}.wav" for suffix in suffixes)
            for name, suffixes in OUTPUT_NAMES.items()
        }

    def process(self, input_path: Union[str, Path],
                output_dir: Optional[Union[str, Path]] = None) -> PipelineResult:
        """
        Separate an audio file and write the four output files.

        Args:
            input_path: Path to the input audio file
            output_dir: Directory for output files (input directory if None)

        Returns:
            PipelineResult; ``status`` is CANCELLED if ``cancel()`` was called

        Raises:
            UnsupportedFormatError: If the input can't be read
            SeparationPipelineError: If a separation failed
        """
        total_start = time.time()
        logger.info(f"🚀 Starting separation: {Path(input_path).name}")

        stage_start = time.time()
        song = Song.from_file(input_path, self.config.slice_length, self.config.hop_size,
                              self.config.max_workers)
        read_time = time.time() - stage_start
        logger.info(f"  ✅ Read {format_duration(song.duration)} in {read_time:.1f}s")

        if output_dir is not None:
            Path(output_dir).mkdir(parents=True, exist_ok=True)
        result = self.process_song(song, self.output_paths(input_path, output_dir))
        result.stage_times = {"read": read_time, **result.stage_times}
        result.total_processing_time = time.time() - total_start
        return result

    def process_song(self, song: Song,
                     output_paths: Dict[str, Tuple[Path, Path]]) -> PipelineResult:
        """
        Run the enabled separations on an analyzed song concurrently.

        Args:
            song: Analyzed song
            output_paths: Mapping of separation name to output paths

        Returns:
            PipelineResult with the written files
        """
        start = time.time()
        separations = self._separations()
        stage_times: Dict[str, float] = {}
        output_files: Dict[str, Path] = {}

        if self.cancelled:
            return PipelineResult(PipelineStatus.CANCELLED, stage_times=stage_times)

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="separation") as pool, \
                ThreadPoolExecutor(max_workers=4, thread_name_prefix="writer") as writers:
            futures = {
                pool.submit(self._separate, song, name, separation, output_paths[name],
                            writers, stage_times): name
                for name, separation in separations.items()
            }
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            if any(f.exception() is not None for f in done):
                # abort the sibling
                self._cancel_event.set()
            wait(pending)

        errors = []
        cancelled = False
        for future, name in futures.items():
            error = future.exception()
            if error is None:
                a_path, b_path = output_paths[name]
                a_name, b_name = OUTPUT_NAMES[name]
                output_files[a_name] = a_path
                output_files[b_name] = b_path
            elif isinstance(error, OperationCancelled):
                cancelled = True
            else:
                logger.error(f"❌ {name} failed: {error}")
                errors.append(error)

        if errors:
            raise SeparationPipelineError(errors) from errors[0]

        status = PipelineStatus.CANCELLED if cancelled else PipelineStatus.COMPLETED
        logger.info(f"{'⏹️ Cancelled' if cancelled else '✅ Completed'} after {time.time() - start:.1f}s")
        return PipelineResult(status, output_files=output_files,
                              total_processing_time=time.time() - start,
                              stage_times=dict(stage_times))

    def _separate(self, song: Song, name: str, separation, paths: Tuple[Path, Path],
                  writers: ThreadPoolExecutor, stage_times: Dict[str, float]) -> None:
        stage_start = time.time()
        logger.info(f"Separating: {name}...")
        a, b = song.separate(separation, cancel_event=self._cancel_event)
        check_cancelled(self._cancel_event)

        write_options = dict(output_gain=self.config.output_gain,
                             iterations=self.config.griffin_lim_iterations,
                             cancel_event=self._cancel_event)
        a_future = a.write_async(paths[0], writers, **write_options)
        b_future = b.write_async(paths[1], writers, **write_options)
        wait([a_future, b_future])
        errors = [f.exception() for f in (a_future, b_future) if f.exception() is not None]
        if errors:
            errors.sort(key=lambda e: isinstance(e, OperationCancelled))
            raise errors[0]

        stage_times[name] = time.time() - stage_start
        logger.info(f"  ✅ {name}: wrote {paths[0].name}, {paths[1].name}")
