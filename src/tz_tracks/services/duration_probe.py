"""Best-effort total duration lookup for audio files.

Header-only readers run first (mutagen, then TinyTag). When neither reports
a length the file is handed to a decoder (libsndfile, then the stdlib `wave`
reader). Every failure maps to "unknown"; nothing here raises.
"""

from __future__ import annotations

import logging
import math
import wave
from pathlib import Path

import soundfile as sf
from mutagen import File as MutagenFile
from mutagen import MutagenError
from tinytag import TinyTag

logger = logging.getLogger(__name__)


def probe_duration_s(path: Path | str) -> int | None:
    """Return whole seconds of playable audio, or None when undeterminable."""
    track = Path(path)
    if not track.is_file():
        return None
    for reader in (_read_mutagen, _read_tinytag, _read_soundfile, _read_wave):
        seconds = reader(track)
        if seconds is not None:
            return int(seconds)
    logger.debug("Duration unknown", extra={"path": str(track)})
    return None


def _read_mutagen(path: Path) -> float | None:
    try:
        audio = MutagenFile(str(path))
    except (MutagenError, OSError) as exc:
        logger.debug("mutagen could not read %s: %s", path, exc)
        return None
    return _safe_seconds(getattr(getattr(audio, "info", None), "length", None))


def _read_tinytag(path: Path) -> float | None:
    try:
        tag = TinyTag.get(str(path))
    except Exception as exc:
        # TinyTag raises its own error types per format.
        logger.debug("tinytag could not read %s: %s", path, exc)
        return None
    return _safe_seconds(getattr(tag, "duration", None))


def _read_soundfile(path: Path) -> float | None:
    try:
        info = sf.info(str(path))
    except (sf.LibsndfileError, RuntimeError, OSError, ValueError, TypeError):
        return None
    if info.samplerate <= 0:
        return None
    if info.frames > 0:
        return _safe_seconds(info.frames / info.samplerate)
    return _count_decoded_seconds(path)


def _count_decoded_seconds(path: Path) -> float | None:
    """Decode the whole stream when the header carries no frame count."""
    frames = 0
    try:
        with sf.SoundFile(str(path)) as handle:
            rate = handle.samplerate
            for block in handle.blocks(blocksize=65_536, dtype="float32"):
                frames += len(block)
    except (sf.LibsndfileError, RuntimeError, OSError, ValueError):
        return None
    return _safe_seconds(frames / rate) if rate > 0 else None


def _read_wave(path: Path) -> float | None:
    try:
        with wave.open(str(path), "rb") as handle:
            frame_rate = int(handle.getframerate())
            frame_count = int(handle.getnframes())
    except (wave.Error, EOFError, OSError):
        return None
    if frame_rate <= 0:
        return None
    return _safe_seconds(frame_count / frame_rate)


def _safe_seconds(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    normalized = float(value)
    if not math.isfinite(normalized) or normalized <= 0:
        return None
    return normalized
