"""Audio suffix tables and per-format decode strategy selection."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

SourceKind = Literal["native", "skip", "ffmpeg"]

NATIVE_SEEK_EXTENSIONS = frozenset(
    {".aif", ".aiff", ".mp3", ".oga", ".ogg", ".wav", ".wave"}
)
"""Containers libsndfile can reposition reliably in place."""

DECODE_SKIP_EXTENSIONS = frozenset({".flac"})
"""Containers decoded from the start and discarded up to the offset."""

FFMPEG_EXTENSIONS = frozenset(
    {
        ".aac",
        ".ac3",
        ".alac",
        ".ape",
        ".dff",
        ".dsf",
        ".m4a",
        ".mka",
        ".mp2",
        ".opus",
        ".wma",
    }
)
"""Containers handed to ffmpeg with a container-level `-ss` seek."""

AUDIO_EXTENSIONS = NATIVE_SEEK_EXTENSIONS | DECODE_SKIP_EXTENSIONS | FFMPEG_EXTENSIONS


def is_supported_audio_file(path: Path) -> bool:
    """Return whether path suffix is in the app's supported audio set."""
    return path.suffix.lower() in AUDIO_EXTENSIONS


def source_kind(path: Path | str) -> SourceKind:
    """Pick the decode/seek strategy for a track path."""
    suffix = Path(path).suffix.lower()
    if suffix in DECODE_SKIP_EXTENSIONS:
        return "skip"
    if suffix in NATIVE_SEEK_EXTENSIONS:
        return "native"
    return "ffmpeg"
