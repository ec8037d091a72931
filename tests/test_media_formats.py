"""Tests for supported suffixes and seek strategy selection."""

from __future__ import annotations

from pathlib import Path

import pytest

from tz_tracks.media_formats import is_supported_audio_file, source_kind


@pytest.mark.parametrize(
    ("path", "kind"),
    [
        ("song.mp3", "native"),
        ("song.WAV", "native"),
        ("song.ogg", "native"),
        ("song.aiff", "native"),
        ("song.flac", "skip"),
        ("song.FLAC", "skip"),
        ("song.m4a", "ffmpeg"),
        ("song.opus", "ffmpeg"),
        ("song.unknown", "ffmpeg"),
    ],
)
def test_source_kind(path: str, kind: str) -> None:
    assert source_kind(path) == kind


def test_is_supported_audio_file() -> None:
    assert is_supported_audio_file(Path("a.mp3"))
    assert is_supported_audio_file(Path("a.Flac"))
    assert is_supported_audio_file(Path("a.m4a"))
    assert not is_supported_audio_file(Path("cover.jpg"))
    assert not is_supported_audio_file(Path("README"))
