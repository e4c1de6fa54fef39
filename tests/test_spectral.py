"""
Tests for the spectral analyzer (framing and magnitude spectra).
"""

import pytest
import numpy as np
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from separation_engine.matrix import MatrixKind
from separation_engine.spectral import SpectralAnalyzer, analyze_channel, frame_signal, magnitude_spectrum


class TestFraming:

    def test_frame_offsets(self):
        frames = frame_signal(np.arange(10), 4, 2)
        assert frames.shape == (4, 4)
        for r in range(4):
            np.testing.assert_array_equal(frames[r], np.arange(2 * r, 2 * r + 4))

    def test_partial_frame_dropped(self):
        frames = frame_signal(np.arange(11), 4, 2)
        assert frames.shape == (4, 4)

    def test_signal_shorter_than_frame(self):
        frames = frame_signal(np.ones(3), 8, 4)
        assert frames.shape == (0, 8)

    def test_rejects_multichannel(self):
        with pytest.raises(ValueError):
            frame_signal(np.zeros((2, 100)), 8, 4)


class TestMagnitudeSpectrum:

    def test_constant_frame(self):
        magnitudes = magnitude_spectrum(np.ones((2, 8), dtype=np.float32), max_workers=2)
        assert magnitudes.shape == (2, 4)
        np.testing.assert_allclose(magnitudes[:, 0], [8.0, 8.0])
        np.testing.assert_allclose(magnitudes[:, 1:], 0.0, atol=1e-5)

    def test_no_frames(self):
        magnitudes = magnitude_spectrum(np.zeros((0, 16), dtype=np.float32))
        assert magnitudes.shape == (0, 8)


class TestSpectralAnalyzer:

    @pytest.fixture
    def sine(self):
        """One second of a sine centred on FFT bin 10."""
        sample_rate = 44100
        frequency = 10 * sample_rate / 2048
        t = np.arange(sample_rate) / sample_rate
        return (0.5 * np.sin(2 * np.pi * frequency * t)).astype(np.float32)

    def test_shapes(self, sine):
        samples, magnitudes = SpectralAnalyzer(2048, 512).analyze(sine)
        n_frames = (len(sine) - 2048) // 512 + 1
        assert samples.shape == (n_frames, 2048)
        assert magnitudes.shape == (n_frames, 1024)
        assert samples.kind == MatrixKind.MATERIALIZED
        assert magnitudes.to_array().dtype == np.float32

    def test_samples_hold_frames(self, sine):
        samples, _ = analyze_channel(sine, 2048, 512)
        np.testing.assert_array_equal(samples.get_row(3), sine[3 * 512:3 * 512 + 2048])

    def test_peak_bin(self, sine):
        _, magnitudes = analyze_channel(sine, 2048, 512, max_workers=4)
        peaks = np.argmax(magnitudes.to_array(), axis=1)
        assert np.all(peaks == 10)

    def test_magnitudes_non_negative(self):
        rng = np.random.default_rng(3)
        _, magnitudes = analyze_channel(rng.standard_normal(8192).astype(np.float32), 512, 128)
        assert np.all(magnitudes.to_array() >= 0)

    @pytest.mark.parametrize("slice_length,hop_size", [(7, 2), (0, 1), (8, 0), (8, 9)])
    def test_invalid_geometry(self, slice_length, hop_size):
        with pytest.raises(ValueError):
            SpectralAnalyzer(slice_length, hop_size)
