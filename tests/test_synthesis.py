"""
Tests for channel synthesis (phase estimation and overlap-add).
"""

import pytest
import numpy as np
import scipy.fft
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from separation_engine.song import AudioFormat, Channel
from separation_engine.synthesis import ChannelSynthesizer, OverlapAdd, estimate_frame


class TestOverlapAdd:

    def test_sums_overlapping_frames(self):
        ola = OverlapAdd(4, 2)
        np.testing.assert_array_equal(ola.process(np.ones(4), 0), [1, 1])
        np.testing.assert_array_equal(ola.process(np.ones(4), 1), [2, 2])
        np.testing.assert_array_equal(ola.flush(), [1, 1])
        assert ola.frames_processed == 2

    def test_output_length(self):
        ola = OverlapAdd(8, 2)
        blocks = [ola.process(np.ones(8)) for _ in range(5)]
        blocks.append(ola.flush())
        # (frames - 1) * hop + slice
        assert sum(len(b) for b in blocks) == 4 * 2 + 8

    def test_rows_must_be_in_order(self):
        ola = OverlapAdd(4, 2)
        ola.process(np.zeros(4), 0)
        with pytest.raises(ValueError):
            ola.process(np.zeros(4), 2)

    def test_frame_length_checked(self):
        with pytest.raises(ValueError):
            OverlapAdd(4, 2).process(np.zeros(3))

    def test_flush_once(self):
        ola = OverlapAdd(4, 2)
        ola.process(np.zeros(4))
        ola.flush()
        with pytest.raises(ValueError):
            ola.flush()
        with pytest.raises(ValueError):
            ola.process(np.zeros(4))

    def test_flush_without_frames(self):
        assert len(OverlapAdd(4, 2).flush()) == 0

    def test_invalid_hop(self):
        with pytest.raises(ValueError):
            OverlapAdd(4, 5)


class TestPhaseEstimation:

    @pytest.fixture
    def frame(self):
        n = np.arange(64)
        return (np.sin(2 * np.pi * 3 * n / 64) + 0.5 * np.cos(2 * np.pi * 7 * n / 64)).astype(np.float32)

    def test_consistent_spectrum_is_fixed_point(self, frame):
        magnitudes = np.abs(scipy.fft.rfft(frame))[:32]
        result = estimate_frame(frame, magnitudes, iterations=5)
        assert result.dtype == np.float32
        np.testing.assert_allclose(result, frame, atol=1e-5)

    def test_zero_magnitudes_give_silence(self, frame):
        result = estimate_frame(frame, np.zeros(32))
        np.testing.assert_allclose(result, 0.0, atol=1e-7)

    def test_magnitudes_respected(self, frame):
        target = np.abs(scipy.fft.rfft(frame))[:32] * 0.5
        result = estimate_frame(frame, target, iterations=3)
        np.testing.assert_allclose(np.abs(scipy.fft.rfft(result))[:32], target, atol=1e-4)


class TestChannelSynthesizer:

    @pytest.fixture
    def channel(self):
        audio_format = AudioFormat(sample_rate=8000, channels=1, slice_length=256, hop_size=64)
        t = np.arange(8000) / 8000
        signal = (0.5 * np.sin(2 * np.pi * 250 * t)).astype(np.float32)
        return Channel.from_signal(signal, audio_format), signal

    def test_reconstructs_unmasked_channel(self, channel):
        channel, signal = channel
        blocks = list(ChannelSynthesizer(channel).blocks())
        output = np.concatenate(blocks)
        assert len(output) == (channel.rows - 1) * 64 + 256
        # interior samples are covered by slice / hop = 4 frames
        interior = slice(256 - 64, channel.rows * 64)
        np.testing.assert_allclose(output[interior] / 4, signal[interior], atol=1e-3)

    def test_rows_must_be_in_order(self, channel):
        synthesizer = ChannelSynthesizer(channel[0])
        synthesizer.next_block(0)
        with pytest.raises(ValueError):
            synthesizer.next_block(5)
