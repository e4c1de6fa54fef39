"""
Tests for Song and Channel (analysis, mask application and output).
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor

import pytest
import numpy as np
import soundfile as sf
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from separation_engine.audio_io import ArraySink
from separation_engine.exceptions import DimensionMismatchError, OperationCancelled
from separation_engine.matrix import Matrix
from separation_engine.song import AudioFormat, Channel, Song


class TestAudioFormat:

    def test_defaults(self):
        fmt = AudioFormat()
        assert fmt.sample_rate == 44100
        assert fmt.channels == 2
        assert fmt.slice_length == 2048
        assert fmt.hop_size == 512
        assert fmt.bins == 1024
        assert fmt.hop_duration_ms == pytest.approx(11.61, abs=0.01)

    def test_slice_raised_to_hop(self):
        fmt = AudioFormat(slice_length=512, hop_size=600)
        assert fmt.slice_length == 600

    def test_odd_slice_rejected(self):
        with pytest.raises(ValueError):
            AudioFormat(slice_length=1023, hop_size=256)

    def test_invalid_sample_rate(self):
        with pytest.raises(ValueError):
            AudioFormat(sample_rate=0)


class TestSong:

    @pytest.fixture
    def stereo(self):
        """Half a second of stereo test audio."""
        sample_rate = 8000
        t = np.arange(sample_rate // 2) / sample_rate
        left = 0.4 * np.sin(2 * np.pi * 250 * t)
        right = 0.2 * np.sin(2 * np.pi * 500 * t)
        return np.stack([left, right]).astype(np.float32), sample_rate

    @pytest.fixture
    def song(self, stereo):
        audio, sample_rate = stereo
        return Song.from_samples(audio, sample_rate, slice_length=256, hop_size=64, max_workers=2)

    def test_from_samples(self, song):
        assert len(song.channels) == 2
        assert song.rows == (4000 - 256) // 64 + 1
        assert song.channels[0].magnitudes.shape == (song.rows, 128)
        assert song.channels[1].samples.shape == (song.rows, 256)
        assert song.duration == pytest.approx(((song.rows - 1) * 64 + 256) / 8000)

    def test_mono_input(self, stereo):
        audio, sample_rate = stereo
        song = Song.from_samples(audio[0], sample_rate, slice_length=256, hop_size=64)
        assert len(song.channels) == 1
        assert song.audio_format.channels == 1

    def test_channel_count_checked(self, song):
        with pytest.raises(ValueError):
            Song(song.audio_format, song.channels[:1])

    def test_separate_identity_mask(self, song):
        background, foreground = song.separate(lambda channel: Matrix.from_array(
            np.ones(channel.magnitudes.shape)))
        for original, a, b in zip(song.channels, background.channels, foreground.channels):
            np.testing.assert_array_equal(a.magnitudes.to_array(), original.magnitudes.to_array())
            assert not np.any(b.magnitudes.to_array())
            # samples are shared as phase seeds
            assert a.samples is original.samples

    def test_separated_parts_add_up(self, song):
        rng = np.random.default_rng(0)
        a, b = song.separate(lambda channel: Matrix.from_array(
            rng.random(channel.magnitudes.shape)))
        for original, x, y in zip(song.channels, a.channels, b.channels):
            total = x.magnitudes.to_array() + y.magnitudes.to_array()
            np.testing.assert_allclose(total, original.magnitudes.to_array(), rtol=1e-5, atol=1e-6)

    def test_separate_cancelled(self, song):
        event = threading.Event()
        event.set()
        with pytest.raises(OperationCancelled):
            song.separate(lambda channel: channel.magnitudes, cancel_event=event)

    def test_synthesize(self, song):
        audio = song.synthesize(output_gain=0.25)
        assert audio.shape == ((song.rows - 1) * 64 + 256, 2)
        assert audio.dtype == np.float32
        assert np.max(np.abs(audio)) < 1.0

    def test_write_to_file(self, song, tmp_path):
        path = tmp_path / "out.wav"
        song.write(path)
        data, sample_rate = sf.read(str(path))
        assert sample_rate == 8000
        assert data.shape == ((song.rows - 1) * 64 + 256, 2)

    def test_write_async(self, song, tmp_path):
        with ThreadPoolExecutor(max_workers=1) as executor:
            future = song.write_async(tmp_path / "async.wav", executor)
            assert isinstance(future, Future)
            future.result()
        assert (tmp_path / "async.wav").exists()

    def test_write_cancelled_closes_sink(self, song):
        event = threading.Event()
        event.set()
        sink = ArraySink(2)
        with pytest.raises(OperationCancelled):
            song.write(sink, cancel_event=event)
        assert sink.closed

    def test_too_short_for_one_frame(self):
        song = Song.from_samples(np.zeros((2, 100), dtype=np.float32), 8000, slice_length=256, hop_size=64)
        assert song.rows == 0
        assert song.duration == 0.0
        assert song.synthesize().shape == (0, 2)


class TestChannel:

    def test_mask_shape_checked(self):
        fmt = AudioFormat(sample_rate=8000, channels=1, slice_length=8, hop_size=4)
        channel = Channel(fmt, Matrix.zeros(3, 4), Matrix.zeros(3, 8))
        with pytest.raises(DimensionMismatchError):
            channel.separate(Matrix.zeros(3, 5))

    def test_geometry_checked(self):
        fmt = AudioFormat(sample_rate=8000, channels=1, slice_length=8, hop_size=4)
        with pytest.raises(DimensionMismatchError):
            Channel(fmt, Matrix.zeros(3, 4), Matrix.zeros(2, 8))
        with pytest.raises(DimensionMismatchError):
            Channel(fmt, Matrix.zeros(3, 5), Matrix.zeros(3, 8))
