"""
Background/Foreground Separation - Similarity-clustered median masks

Frames that repeat elsewhere in the track (within a tempo-derived distance
window) are clustered; the per-bin median magnitude of a cluster is the
steady "background" template for every frame in it. The mask routes the
part of each frame explained by that template to output A (background)
and the remainder to output B (foreground).
"""

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .matrix import Matrix
from .parallel import check_cancelled
from .similarity import MEDIAN_LENGTH, SelfSimilarityFunction
from .utils import lower_median

logger = logging.getLogger(__name__)


@dataclass
class BackgroundForegroundConfig:
    """Configuration for background/foreground separation."""
    # Assumed tempo; only used to derive the repetition distance window
    bpm: float = 100.0
    min_distance_beats: float = 2.0
    max_distance_factor: int = 10

    # Cluster size limit
    max_similar_rows: int = 10

    # Lowest frequency bins always go to the background
    protected_bins: int = 5

    # Self-similarity band; None means max_distance
    similarity_bandwidth: Optional[int] = None
    median_length: int = MEDIAN_LENGTH

    def __post_init__(self):
        """Validate values."""
        if self.bpm <= 0:
            raise ValueError(f"bpm must be positive, got {self.bpm}")
        self.max_similar_rows = max(1, int(self.max_similar_rows))
        self.max_distance_factor = max(1, int(self.max_distance_factor))
        self.protected_bins = max(0, int(self.protected_bins))


class BackgroundForegroundSeparation:
    """
    Callable producing a background mask for a channel.

    The mask is 1 where a bin belongs to the repeating background and
    falls towards 0 where the frame exceeds its cluster template.
    """

    def __init__(self, config: Optional[BackgroundForegroundConfig] = None,
                 max_workers: Optional[int] = None,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize separation.

        Args:
            config: Separation settings (defaults if None)
            max_workers: Worker pool size for the similarity stages
            cancel_event: Checked between rows
        """
        self.config = config or BackgroundForegroundConfig()
        self.max_workers = max_workers
        self.cancel_event = cancel_event

    def distances(self, sample_rate: float, hop_size: int) -> Tuple[int, int]:
        """
        Repetition distance window in frames.

        Args:
            sample_rate: Sample rate in Hz
            hop_size: Hop size in samples

        Returns:
            Tuple of (min_distance, max_distance)
        """
        hop_duration_ms = hop_size * 1000.0 / sample_rate
        beats_per_ms = self.config.bpm / 60.0 / 1000.0
        frames_per_beat = 1.0 / (beats_per_ms * hop_duration_ms)
        min_distance = int(frames_per_beat * self.config.min_distance_beats)
        max_distance = min_distance * self.config.max_distance_factor
        logger.debug(f"Frames per beat: {frames_per_beat:.2f} (assuming {self.config.bpm:g} bpm), "
                     f"min_distance={min_distance}, max_distance={max_distance}")
        return min_distance, max_distance

    def __call__(self, channel) -> Matrix:
        fmt = channel.audio_format
        min_distance, max_distance = self.distances(fmt.sample_rate, fmt.hop_size)

        bandwidth = self.config.similarity_bandwidth
        if bandwidth is None:
            bandwidth = max_distance
        similarity = SelfSimilarityFunction(
            bandwidth=bandwidth,
            median_length=self.config.median_length,
            max_workers=self.max_workers,
            cancel_event=self.cancel_event,
        )(channel)

        return self.mask(channel.magnitudes, similarity, min_distance, max_distance)

    def find_clusters(self, similarity: Matrix, min_distance: int,
                      max_distance: int) -> List[np.ndarray]:
        """
        Partition all rows into clusters of mutually similar frames.

        Rows are visited in order; each unassigned row seeds a cluster with
        the unassigned rows at distance ``min_distance .. max_distance`` that
        have positive similarity to it. Candidates are ranked by descending
        similarity, ties by ascending row index, and cut to
        ``max_similar_rows``.

        Args:
            similarity: Banded self-similarity matrix
            min_distance: Minimum row distance of a cluster member to its seed
            max_distance: Maximum row distance of a cluster member to its seed

        Returns:
            List of row index arrays, seed first; every row appears in
            exactly one cluster
        """
        n = similarity.rows
        min_distance = max(1, min_distance)
        processed = np.zeros(n, dtype=bool)
        clusters = []

        for row in range(n):
            if processed[row]:
                continue
            check_cancelled(self.cancel_event)

            start, values = similarity.band_row(row)
            columns = np.arange(start, start + len(values))
            distance = np.abs(columns - row)
            in_range = (columns >= 0) & (columns < n)
            candidate = in_range & (distance >= min_distance) & (distance <= max_distance) & (values > 0)
            candidate[in_range] &= ~processed[columns[in_range]]

            rows = np.concatenate(([row], columns[candidate]))
            scores = np.concatenate(([1.0], values[candidate].astype(np.float64)))
            order = np.argsort(-scores, kind="stable")[:self.config.max_similar_rows]
            cluster = rows[order]

            processed[cluster] = True
            clusters.append(cluster)

        return clusters

    def mask(self, magnitudes: Matrix, similarity: Matrix, min_distance: int,
             max_distance: int) -> Matrix:
        """
        Build the background mask from a precomputed similarity matrix.

        Returns:
            Materialized mask of the same shape as ``magnitudes``
        """
        values = magnitudes.to_array()
        mask = np.zeros(values.shape, dtype=np.float32)
        protected = min(self.config.protected_bins, values.shape[1])

        clusters = self.find_clusters(similarity, min_distance, max_distance)
        masked_power = 0.0
        total_power = 0.0

        for cluster in clusters:
            region = values[cluster]
            medians = lower_median(region, axis=0)
            with np.errstate(divide="ignore", invalid="ignore"):
                ratio = np.where(region == 0, np.float32(0), medians / region)
            ratio = np.minimum(np.float32(1), ratio)
            ratio[:, :protected] = 1
            mask[cluster] = ratio

            power = region.astype(np.float64) ** 2
            masked_power += float(np.sum(ratio * power))
            total_power += float(np.sum(power))

        logger.debug(f"Clustered {values.shape[0]} frames into {len(clusters)} clusters; "
                     f"background power ratio={masked_power / (total_power or 1.0):.3f}")
        return Matrix.from_array(mask)
