"""Tests for decoded audio sources against real files written with soundfile."""

from __future__ import annotations

import shutil

import numpy as np
import pytest
import soundfile as sf

from tz_tracks.services.audio_source import (
    FALLBACK_CHANNELS,
    FALLBACK_SAMPLE_RATE,
    DecodeSkipSource,
    FfmpegSource,
    NativeSeekSource,
    SourceOpenError,
    open_source,
    probe_stream_format,
)

RATE = 8_000


def _ramp(seconds: float, channels: int = 2) -> np.ndarray:
    frames = int(seconds * RATE)
    column = (np.arange(frames, dtype=np.float32) % RATE) / RATE
    return np.repeat(column[:, None], channels, axis=1) * 0.5


@pytest.fixture
def wav_path(tmp_path):
    path = tmp_path / "tone.wav"
    sf.write(str(path), _ramp(2.0), RATE, subtype="FLOAT")
    return path


@pytest.fixture
def flac_path(tmp_path):
    path = tmp_path / "tone.flac"
    data = np.random.default_rng(7).uniform(-0.5, 0.5, size=(2 * RATE, 2))
    sf.write(str(path), data, RATE, subtype="PCM_16")
    return path


def test_missing_file_raises(tmp_path) -> None:
    with pytest.raises(SourceOpenError) as excinfo:
        open_source(str(tmp_path / "missing.mp3"))
    assert excinfo.value.reason == "file not found"


def test_corrupt_file_raises(tmp_path) -> None:
    path = tmp_path / "broken.wav"
    path.write_bytes(b"not really audio" * 64)
    with pytest.raises(SourceOpenError):
        open_source(str(path))


def test_wav_uses_native_seek(wav_path) -> None:
    source = open_source(str(wav_path))
    try:
        assert isinstance(source, NativeSeekSource)
        assert source.supports_fast_seek
        assert source.sample_rate == RATE
        assert source.channels == 2
        block = source.read(100)
        assert block.shape == (100, 2)
        assert block.dtype == np.float32
    finally:
        source.close()


def test_native_open_at_offset(wav_path) -> None:
    expected = _ramp(2.0)
    source = open_source(str(wav_path), 1.25)
    try:
        block = source.read(10)
        np.testing.assert_allclose(block, expected[10_000:10_010])
    finally:
        source.close()


def test_native_seek_in_place(wav_path) -> None:
    expected = _ramp(2.0)
    source = NativeSeekSource(str(wav_path))
    try:
        source.read(500)
        assert source.seek(0.5)
        np.testing.assert_allclose(source.read(5), expected[4_000:4_005])
        assert source.seek(0.0)
        np.testing.assert_allclose(source.read(5), expected[:5])
    finally:
        source.close()


def test_native_seek_past_end_lands_at_end(wav_path) -> None:
    source = NativeSeekSource(str(wav_path))
    try:
        assert source.seek(60.0)
        assert len(source.read(100)) == 0
    finally:
        source.close()


def test_read_until_exhausted(wav_path) -> None:
    source = open_source(str(wav_path), 1.75)
    try:
        total = 0
        while True:
            block = source.read(256)
            if len(block) == 0:
                break
            total += len(block)
        assert total == 2_000
    finally:
        source.close()


def test_closed_source_reads_empty(wav_path) -> None:
    source = open_source(str(wav_path))
    source.close()
    source.close()
    assert len(source.read(10)) == 0
    assert source.seek(1.0) is False


def test_flac_decodes_and_skips(flac_path) -> None:
    reference, _rate = sf.read(str(flac_path), dtype="float32", always_2d=True)
    source = open_source(str(flac_path), 1.5)
    try:
        assert isinstance(source, DecodeSkipSource)
        assert not source.supports_fast_seek
        assert source.seek(0.5) is False
        np.testing.assert_allclose(source.read(8), reference[12_000:12_008])
    finally:
        source.close()


def test_flac_offset_past_end_is_empty(flac_path) -> None:
    source = open_source(str(flac_path), 10.0)
    try:
        assert len(source.read(64)) == 0
    finally:
        source.close()


def test_mono_source_reports_one_channel(tmp_path) -> None:
    path = tmp_path / "mono.wav"
    sf.write(str(path), _ramp(0.5, channels=1), RATE)
    source = open_source(str(path))
    try:
        assert source.channels == 1
        assert source.read(4).shape == (4, 1)
    finally:
        source.close()


def test_probe_stream_format_falls_back(tmp_path) -> None:
    path = tmp_path / "unknown.m4a"
    path.write_bytes(b"\x00" * 32)
    assert probe_stream_format(str(path)) == (FALLBACK_SAMPLE_RATE, FALLBACK_CHANNELS)


def test_probe_stream_format_reads_wav_header(wav_path) -> None:
    assert probe_stream_format(str(wav_path)) == (RATE, 2)


def test_ffmpeg_missing_raises(monkeypatch, wav_path) -> None:
    import tz_tracks.services.audio_source as audio_source_module

    monkeypatch.setattr(audio_source_module.shutil, "which", lambda _name: None)
    with pytest.raises(SourceOpenError) as excinfo:
        FfmpegSource(str(wav_path))
    assert "ffmpeg" in excinfo.value.reason


@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
def test_ffmpeg_source_seeks_by_restart(wav_path) -> None:
    source = FfmpegSource(str(wav_path), 1.0)
    try:
        assert not source.supports_fast_seek
        assert source.seek(0.0) is False
        assert source.sample_rate == RATE
        total = 0
        while True:
            block = source.read(1024)
            if len(block) == 0:
                break
            assert block.shape[1] == 2
            total += len(block)
        assert abs(total - RATE) < 400
    finally:
        source.close()
