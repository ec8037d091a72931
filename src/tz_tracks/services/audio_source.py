"""Seekable decoded-audio sources, one strategy per container class.

`open_source()` picks the strategy from the file suffix:

- native: libsndfile (`soundfile`) with a direct frame seek and in-place
  repositioning for later seeks.
- skip: libsndfile decoding from the start and discarding frames up to the
  offset. Used where native seek tables are unreliable (FLAC).
- ffmpeg: an ffmpeg subprocess with a container-level `-ss` seek; the decoder
  state is rebuilt for every offset so in-place seeking is not offered.

All sources yield float32 frames shaped `(frames, channels)` and return an
empty block once the stream is exhausted.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import numpy as np
import soundfile as sf
from mutagen import File as MutagenFile
from mutagen import MutagenError

from tz_tracks.media_formats import source_kind

logger = logging.getLogger(__name__)

FALLBACK_SAMPLE_RATE = 44_100
FALLBACK_CHANNELS = 2
_DISCARD_BLOCK_FRAMES = 65_536
_FFMPEG_PRIME_FRAMES = 4_096
_FFMPEG_EXIT_TIMEOUT_S = 4.0


class SourceOpenError(Exception):
    """Raised when a track cannot be opened or decoded."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class AudioSource(Protocol):
    """Finite, non-restartable decoded sample stream."""

    path: str
    sample_rate: int
    channels: int
    supports_fast_seek: bool

    def read(self, frames: int) -> np.ndarray: ...

    def seek(self, position_s: float) -> bool: ...

    def close(self) -> None: ...


SourceOpener = Callable[[str, float], AudioSource]


def open_source(path: str, start_s: float = 0.0) -> AudioSource:
    """Open `path` positioned at `start_s` using the strategy for its format."""
    if not Path(path).is_file():
        raise SourceOpenError(path, "file not found")
    start_s = max(0.0, float(start_s))
    kind = source_kind(path)
    if kind == "skip":
        return DecodeSkipSource(path, start_s)
    if kind == "native":
        try:
            return NativeSeekSource(path, start_s)
        except SourceOpenError as exc:
            # Older libsndfile builds lack some codecs (e.g. MP3).
            if shutil.which("ffmpeg") is None:
                raise
            logger.debug("libsndfile refused %s (%s); retrying via ffmpeg", path, exc)
    return FfmpegSource(path, start_s)


def empty_block(channels: int) -> np.ndarray:
    return np.zeros((0, channels), dtype=np.float32)


class _SoundFileSource:
    """Shared libsndfile plumbing for the native and skip strategies."""

    supports_fast_seek = False

    def __init__(self, path: str) -> None:
        self.path = path
        try:
            self._file = sf.SoundFile(path)
        except (sf.LibsndfileError, OSError, ValueError, TypeError) as exc:
            raise SourceOpenError(path, str(exc)) from exc
        self.sample_rate = _sane_rate(self._file.samplerate)
        self.channels = _sane_channels(self._file.channels)
        self._closed = False

    def read(self, frames: int) -> np.ndarray:
        if self._closed or frames <= 0:
            return empty_block(self.channels)
        try:
            block = self._file.read(frames, dtype="float32", always_2d=True)
        except (sf.LibsndfileError, RuntimeError) as exc:
            logger.warning(
                "Decode error mid-stream; ending track",
                extra={"path": self.path, "error": str(exc)},
            )
            return empty_block(self.channels)
        return block

    def seek(self, position_s: float) -> bool:
        return False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._file.close()

    def _discard_until(self, position_s: float) -> None:
        remaining = int(position_s * self.sample_rate)
        while remaining > 0:
            block = self.read(min(remaining, _DISCARD_BLOCK_FRAMES))
            if len(block) == 0:
                return
            remaining -= len(block)


class NativeSeekSource(_SoundFileSource):
    """libsndfile source with direct frame seeking."""

    def __init__(self, path: str, start_s: float = 0.0) -> None:
        super().__init__(path)
        self.supports_fast_seek = bool(self._file.seekable())
        if start_s > 0 and not self.seek(start_s):
            self._discard_until(start_s)

    def seek(self, position_s: float) -> bool:
        if self._closed or not self._file.seekable():
            return False
        target = max(0, int(position_s * self.sample_rate))
        if self._file.frames > 0:
            target = min(target, self._file.frames)
        try:
            landed = self._file.seek(target)
        except (sf.LibsndfileError, RuntimeError, ValueError) as exc:
            logger.debug("Native seek failed for %s: %s", self.path, exc)
            return False
        # A seek that lands anywhere else counts as failed.
        return bool(landed == target)


class DecodeSkipSource(_SoundFileSource):
    """libsndfile source that reaches the offset by decoding and discarding."""

    def __init__(self, path: str, start_s: float = 0.0) -> None:
        super().__init__(path)
        if start_s > 0:
            self._discard_until(start_s)


class FfmpegSource:
    """ffmpeg-decoded PCM stream starting at a container-level seek offset."""

    supports_fast_seek = False

    def __init__(self, path: str, start_s: float = 0.0) -> None:
        self.path = path
        ffmpeg_bin = shutil.which("ffmpeg")
        if ffmpeg_bin is None:
            raise SourceOpenError(path, "ffmpeg not found on PATH")
        self.sample_rate, self.channels = probe_stream_format(path)
        self._frame_bytes = 4 * self.channels
        self._pending = b""
        self._proc = self._spawn(ffmpeg_bin, start_s)
        self._primed = self._read_bytes(_FFMPEG_PRIME_FRAMES * self._frame_bytes)
        if not self._primed:
            code = self._wait()
            if code != 0:
                self.close()
                raise SourceOpenError(path, f"ffmpeg exited with status {code}")

    def _spawn(self, ffmpeg_bin: str, start_s: float) -> subprocess.Popen[bytes]:
        cmd = [ffmpeg_bin, "-v", "error", "-nostdin"]
        if start_s > 0:
            cmd += ["-ss", f"{start_s:.3f}"]
        cmd += [
            "-i",
            self.path,
            "-vn",
            "-sn",
            "-dn",
            "-f",
            "f32le",
            "-acodec",
            "pcm_f32le",
            "-ac",
            str(self.channels),
            "-ar",
            str(self.sample_rate),
            "pipe:1",
        ]
        try:
            return subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            raise SourceOpenError(self.path, str(exc)) from exc

    def read(self, frames: int) -> np.ndarray:
        if frames <= 0:
            return empty_block(self.channels)
        wanted = frames * self._frame_bytes
        data = self._primed[:wanted]
        self._primed = self._primed[wanted:]
        if len(data) < wanted:
            data += self._read_bytes(wanted - len(data))
        usable = len(data) - (len(data) % self._frame_bytes)
        if usable <= 0:
            return empty_block(self.channels)
        samples = np.frombuffer(data[:usable], dtype="<f4")
        return samples.reshape(-1, self.channels).astype(np.float32, copy=True)

    def seek(self, position_s: float) -> bool:
        return False

    def close(self) -> None:
        proc = self._proc
        if proc.poll() is None:
            proc.kill()
        if proc.stdout is not None:
            proc.stdout.close()
        try:
            proc.wait(timeout=_FFMPEG_EXIT_TIMEOUT_S)
        except subprocess.TimeoutExpired:
            logger.warning("ffmpeg did not exit after kill", extra={"path": self.path})

    def _read_bytes(self, count: int) -> bytes:
        stdout = self._proc.stdout
        if stdout is None or stdout.closed:
            return b""
        chunks: list[bytes] = []
        remaining = count
        while remaining > 0:
            try:
                chunk = stdout.read(remaining)
            except (OSError, ValueError):
                break
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def _wait(self) -> int:
        try:
            return self._proc.wait(timeout=_FFMPEG_EXIT_TIMEOUT_S)
        except subprocess.TimeoutExpired:
            return -1


def probe_stream_format(path: str) -> tuple[int, int]:
    """Return `(sample_rate, channels)` from stream metadata, else 44.1k stereo."""
    try:
        audio = MutagenFile(path)
    except (MutagenError, OSError) as exc:
        logger.debug("Stream info unavailable for %s: %s", path, exc)
        audio = None
    info = getattr(audio, "info", None)
    rate = _sane_rate(getattr(info, "sample_rate", None))
    channels = _sane_channels(getattr(info, "channels", None))
    return rate, channels


def _sane_rate(value: object) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return FALLBACK_SAMPLE_RATE


def _sane_channels(value: object) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and 0 < value <= 8:
        return value
    return FALLBACK_CHANNELS
