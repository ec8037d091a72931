"""Fake output device and synthetic sources for deterministic testing."""

from __future__ import annotations

import threading
from collections.abc import Mapping

import numpy as np

from tz_tracks.media_formats import source_kind
from tz_tracks.runtime_config import normalize_device_name
from tz_tracks.services.audio_output import (
    OutputUnavailableError,
    SampleFeeder,
    output_channels_for,
)
from tz_tracks.services.audio_source import AudioSource, SourceOpenError, empty_block


class SilentSource:
    """Source of zeros with a fixed length, positioned at `start_s`."""

    def __init__(
        self,
        duration_s: float,
        *,
        start_s: float = 0.0,
        sample_rate: int = 8_000,
        channels: int = 2,
        supports_fast_seek: bool = True,
        seek_succeeds: bool = True,
        path: str = "silence",
    ) -> None:
        self.path = path
        self.sample_rate = sample_rate
        self.channels = channels
        self.supports_fast_seek = supports_fast_seek
        self.seek_succeeds = seek_succeeds
        self.start_s = start_s
        self.seeks: list[float] = []
        self.closed = False
        self._total = int(duration_s * sample_rate)
        self._position = min(self._total, max(0, int(start_s * sample_rate)))

    def read(self, frames: int) -> np.ndarray:
        count = max(0, min(frames, self._total - self._position))
        if count == 0 or self.closed:
            return empty_block(self.channels)
        self._position += count
        return np.zeros((count, self.channels), dtype=np.float32)

    def seek(self, position_s: float) -> bool:
        self.seeks.append(position_s)
        if not self.supports_fast_seek or not self.seek_succeeds:
            return False
        self._position = min(self._total, max(0, int(position_s * self.sample_rate)))
        return True

    def close(self) -> None:
        self.closed = True


class FakeSourceOpener:
    """Source factory backed by a path -> duration table.

    Unknown paths raise `SourceOpenError`, mirroring a missing or corrupt file.
    Fast seek support follows the real per-format strategy table.
    """

    def __init__(
        self,
        durations: Mapping[str, float],
        *,
        sample_rate: int = 8_000,
        seek_succeeds: bool = True,
    ) -> None:
        self._durations = dict(durations)
        self._sample_rate = sample_rate
        self.seek_succeeds = seek_succeeds
        self.opened: list[tuple[str, float]] = []
        self.sources: list[SilentSource] = []
        self._lock = threading.Lock()

    def __call__(self, path: str, start_s: float = 0.0) -> AudioSource:
        with self._lock:
            self.opened.append((path, start_s))
            if path not in self._durations:
                raise SourceOpenError(path, "unreadable")
            source = SilentSource(
                self._durations[path],
                start_s=start_s,
                sample_rate=self._sample_rate,
                supports_fast_seek=source_kind(path) == "native",
                seek_succeeds=self.seek_succeeds,
                path=path,
            )
            self.sources.append(source)
            return source


class FakeOutput:
    """In-memory device list; opened streams consume audio in real time."""

    def __init__(
        self,
        devices: tuple[str, ...] = ("Fake Speakers", "Fake Headphones"),
        *,
        tick_interval_ms: int = 20,
    ) -> None:
        self.devices = devices
        self.fail_open = False
        self.opened: list[str] = []
        self.streams: list[FakeStream] = []
        self._tick_interval_s = tick_interval_ms / 1000

    def list_devices(self) -> list[str]:
        return list(self.devices)

    def open(self, device_name: str | None) -> FakeStream:
        if self.fail_open or not self.devices:
            raise OutputUnavailableError("fake output unavailable")
        name = normalize_device_name(device_name)
        resolved = name if name in self.devices else self.devices[0]
        self.opened.append(resolved)
        stream = FakeStream(resolved, tick_interval_s=self._tick_interval_s)
        self.streams.append(stream)
        return stream


class FakeStream:
    def __init__(self, device_name: str, *, tick_interval_s: float) -> None:
        self.device_name = device_name
        self.closed = False
        self.sinks: list[FakeSink] = []
        self._tick_interval_s = tick_interval_s

    def create_sink(
        self,
        source: AudioSource,
        *,
        volume: float,
        speed: float,
        paused: bool = False,
    ) -> FakeSink:
        if self.closed:
            raise OutputUnavailableError("stream closed")
        feeder = SampleFeeder(
            source,
            channels=output_channels_for(source.channels, 2),
            volume=volume,
            speed=speed,
        )
        sink = FakeSink(feeder, tick_interval_s=self._tick_interval_s, paused=paused)
        self.sinks.append(sink)
        return sink

    def close(self) -> None:
        self.closed = True
        for sink in self.sinks:
            sink.stop()

    @property
    def active_sink(self) -> FakeSink | None:
        for sink in reversed(self.sinks):
            if not sink.stopped:
                return sink
        return None


class FakeSink:
    """Sink whose ticker thread pulls frames at the source's real-time rate."""

    def __init__(
        self,
        feeder: SampleFeeder,
        *,
        tick_interval_s: float,
        paused: bool = False,
    ) -> None:
        self.feeder = feeder
        self.paused = paused
        self.stopped = False
        self.seeks: list[float] = []
        self._frames_per_tick = max(1, int(feeder.sample_rate * tick_interval_s))
        self._tick_interval_s = tick_interval_s
        self._drained = threading.Event()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name="FakeSinkTicker", daemon=True
        )
        self._thread.start()

    @property
    def volume(self) -> float:
        return self.feeder.volume

    @property
    def speed(self) -> float:
        return self.feeder.speed

    def play(self) -> None:
        self.paused = False

    def pause(self) -> None:
        self.paused = True

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
        self.feeder.close()

    def set_volume(self, volume: float) -> None:
        self.feeder.set_volume(volume)

    def set_speed(self, speed: float) -> None:
        self.feeder.set_speed(speed)

    def try_seek(self, position_s: float) -> bool:
        self.seeks.append(position_s)
        if self.stopped or self._drained.is_set():
            return False
        return self.feeder.try_seek(position_s)

    def empty(self) -> bool:
        return self._drained.is_set()

    def _run(self) -> None:
        while not self._stop_event.wait(self._tick_interval_s):
            if self.paused:
                continue
            self.feeder.pull(self._frames_per_tick)
            if self.feeder.exhausted:
                self._drained.set()
                return
