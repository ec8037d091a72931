"""Tests for best-effort duration probing."""

from __future__ import annotations

import numpy as np
import soundfile as sf

import tz_tracks.services.duration_probe as probe_module
from tz_tracks.services.duration_probe import probe_duration_s


def _write(path, seconds: float, rate: int = 8_000) -> None:
    sf.write(str(path), np.zeros((int(seconds * rate), 2)), rate)


def test_wav_duration(tmp_path) -> None:
    path = tmp_path / "a.wav"
    _write(path, 3.0)
    assert probe_duration_s(path) == 3


def test_flac_duration_truncates_to_whole_seconds(tmp_path) -> None:
    path = tmp_path / "a.flac"
    _write(path, 2.5)
    assert probe_duration_s(str(path)) == 2


def test_missing_file_is_unknown(tmp_path) -> None:
    assert probe_duration_s(tmp_path / "missing.mp3") is None


def test_garbage_file_is_unknown(tmp_path) -> None:
    path = tmp_path / "noise.wav"
    path.write_bytes(b"\x01\x02garbage" * 10)
    assert probe_duration_s(path) is None


def test_falls_back_to_decoder_when_headers_fail(tmp_path, monkeypatch) -> None:
    path = tmp_path / "a.wav"
    _write(path, 4.0)
    monkeypatch.setattr(probe_module, "_read_mutagen", lambda _path: None)
    monkeypatch.setattr(probe_module, "_read_tinytag", lambda _path: None)
    assert probe_duration_s(path) == 4


def test_wave_reader_is_last_resort(tmp_path, monkeypatch) -> None:
    path = tmp_path / "a.wav"
    _write(path, 5.0)
    for name in ("_read_mutagen", "_read_tinytag", "_read_soundfile"):
        monkeypatch.setattr(probe_module, name, lambda _path: None)
    assert probe_duration_s(path) == 5


def test_invalid_lengths_are_rejected() -> None:
    assert probe_module._safe_seconds(float("nan")) is None
    assert probe_module._safe_seconds(float("inf")) is None
    assert probe_module._safe_seconds(0) is None
    assert probe_module._safe_seconds(True) is None
    assert probe_module._safe_seconds("12") is None
    assert probe_module._safe_seconds(12.7) == 12.7
