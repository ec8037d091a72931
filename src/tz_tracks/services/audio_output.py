"""Output device access and sinks fed from decoded audio sources.

`PlaybackEngine` is the only caller: it opens one `OutputStream` per device
and builds one sink per loaded track. Sinks pull frames through a
`SampleFeeder`, which applies volume and playback speed and is the only
place where the source is read or repositioned once playback starts.
"""

from __future__ import annotations

import logging
import math
import threading
from types import ModuleType
from typing import Any, Protocol

import numpy as np

from tz_tracks.runtime_config import clamp_speed, clamp_volume, normalize_device_name
from tz_tracks.services.audio_source import AudioSource

logger = logging.getLogger(__name__)


class OutputUnavailableError(RuntimeError):
    """Raised when no usable output device or stream can be opened."""


class Sink(Protocol):
    """Live handle for one track enqueued on an output stream."""

    @property
    def volume(self) -> float: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def stop(self) -> None: ...

    def set_volume(self, volume: float) -> None: ...

    def set_speed(self, speed: float) -> None: ...

    def try_seek(self, position_s: float) -> bool: ...

    def empty(self) -> bool: ...


class OutputStream(Protocol):
    """An opened output device able to host sinks."""

    device_name: str

    def create_sink(
        self,
        source: AudioSource,
        *,
        volume: float,
        speed: float,
        paused: bool = False,
    ) -> Sink: ...

    def close(self) -> None: ...


class AudioOutput(Protocol):
    """Device enumeration and stream opening."""

    def list_devices(self) -> list[str]: ...

    def open(self, device_name: str | None) -> OutputStream: ...


class SampleFeeder:
    """Thread-safe pull adapter from a source to fixed-size output blocks."""

    def __init__(
        self,
        source: AudioSource,
        *,
        channels: int,
        volume: float = 1.0,
        speed: float = 1.0,
    ) -> None:
        self._source = source
        self._channels = channels
        self._volume = clamp_volume(volume)
        self._speed = clamp_speed(speed)
        self._exhausted = False
        self._closed = False
        self._lock = threading.Lock()

    @property
    def sample_rate(self) -> int:
        return self._source.sample_rate

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def speed(self) -> float:
        return self._speed

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def set_volume(self, volume: float) -> None:
        with self._lock:
            self._volume = clamp_volume(volume)

    def set_speed(self, speed: float) -> None:
        with self._lock:
            self._speed = clamp_speed(speed)

    def try_seek(self, position_s: float) -> bool:
        """Reposition the source in place; any doubtful outcome is a failure."""
        with self._lock:
            if self._closed or not self._source.supports_fast_seek:
                return False
            try:
                moved = self._source.seek(position_s)
            except (RuntimeError, OSError, ValueError) as exc:
                logger.debug("Fast seek raised for %s: %s", self._source.path, exc)
                return False
            if moved:
                self._exhausted = False
            return moved

    def pull(self, frames: int) -> np.ndarray:
        """Return exactly `frames` output frames, zero-padded past the end."""
        out = np.zeros((frames, self._channels), dtype=np.float32)
        with self._lock:
            if self._exhausted or self._closed or frames <= 0:
                return out
            speed = self._speed
            wanted = max(1, int(round(frames * speed)))
            block = self._source.read(wanted)
            got = len(block)
            if got < wanted:
                self._exhausted = True
            if got == 0:
                return out
            block = fit_channels(block, self._channels)
            if speed == 1.0:
                count = min(got, frames)
                out[:count] = block[:count]
            else:
                count = min(frames, int(math.ceil(got / speed)))
                positions = np.arange(count, dtype=np.float64) * speed
                source_index = np.arange(got, dtype=np.float64)
                for channel in range(self._channels):
                    out[:count, channel] = np.interp(
                        positions, source_index, block[:, channel]
                    )
            out *= self._volume
            return out

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._source.close()


def fit_channels(block: np.ndarray, channels: int) -> np.ndarray:
    """Duplicate mono, drop extra channels, or zero-pad missing ones."""
    current = block.shape[1]
    if current == channels:
        return block
    if current == 1:
        return np.repeat(block, channels, axis=1)
    if current > channels:
        return block[:, :channels]
    padded = np.zeros((len(block), channels), dtype=np.float32)
    padded[:, :current] = block
    return padded


def output_channels_for(source_channels: int, device_max: int) -> int:
    """Mono is played as stereo where the device allows it."""
    wanted = 2 if source_channels == 1 else source_channels
    if device_max > 0:
        return max(1, min(wanted, device_max))
    return wanted


def _load_sounddevice() -> ModuleType:
    try:
        import sounddevice
    except OSError as exc:  # pragma: no cover - depends on PortAudio install
        raise OutputUnavailableError(
            "PortAudio library not found; install PortAudio for audio output."
        ) from exc
    return sounddevice


class SoundDeviceOutput:
    """PortAudio output via `sounddevice`."""

    def __init__(self, *, blocksize: int = 2048, latency: str = "high") -> None:
        self._blocksize = blocksize
        self._latency = latency

    def list_devices(self) -> list[str]:
        sd = _load_sounddevice()
        try:
            devices = sd.query_devices()
        except sd.PortAudioError as exc:
            raise OutputUnavailableError(str(exc)) from exc
        names: list[str] = []
        for device in devices:
            name = str(device["name"])
            if int(device["max_output_channels"]) > 0 and name not in names:
                names.append(name)
        return names

    def open(self, device_name: str | None) -> SoundDeviceStream:
        sd = _load_sounddevice()
        info = self._resolve_device(sd, normalize_device_name(device_name))
        logger.info("Output device opened: %s", info["name"])
        return SoundDeviceStream(
            sd,
            index=int(info["index"]),
            device_name=str(info["name"]),
            max_channels=int(info["max_output_channels"]),
            blocksize=self._blocksize,
            latency=self._latency,
        )

    def _resolve_device(self, sd: ModuleType, name: str | None) -> dict[str, Any]:
        if name is not None:
            try:
                devices = [
                    dict(device)
                    for device in sd.query_devices()
                    if int(device["max_output_channels"]) > 0
                ]
            except sd.PortAudioError as exc:
                raise OutputUnavailableError(str(exc)) from exc
            match = _match_device(devices, name)
            if match is not None:
                return match
            logger.warning(
                "Output device not found; falling back to system default",
                extra={"device": name},
            )
        try:
            default = dict(sd.query_devices(kind="output"))
        except (sd.PortAudioError, ValueError) as exc:
            raise OutputUnavailableError(f"No default output device: {exc}") from exc
        if int(default.get("max_output_channels", 0)) <= 0:
            raise OutputUnavailableError("Default device has no output channels")
        return default


def _match_device(devices: list[dict[str, Any]], name: str) -> dict[str, Any] | None:
    folded = name.casefold()
    for device in devices:
        if device["name"] == name:
            return device
    for device in devices:
        if str(device["name"]).casefold() == folded:
            return device
    for device in devices:
        if folded in str(device["name"]).casefold():
            return device
    return None


class SoundDeviceStream:
    """A resolved PortAudio device; each sink owns its own callback stream."""

    def __init__(
        self,
        sd: ModuleType,
        *,
        index: int,
        device_name: str,
        max_channels: int,
        blocksize: int,
        latency: str,
    ) -> None:
        self._sd = sd
        self._index = index
        self.device_name = device_name
        self._max_channels = max_channels
        self._blocksize = blocksize
        self._latency = latency
        self._sinks: list[SoundDeviceSink] = []

    def create_sink(
        self,
        source: AudioSource,
        *,
        volume: float,
        speed: float,
        paused: bool = False,
    ) -> SoundDeviceSink:
        feeder = SampleFeeder(
            source,
            channels=output_channels_for(source.channels, self._max_channels),
            volume=volume,
            speed=speed,
        )
        sink = SoundDeviceSink(
            self._sd,
            feeder,
            device=self._index,
            blocksize=self._blocksize,
            latency=self._latency,
            paused=paused,
        )
        self._sinks = [item for item in self._sinks if not item.stopped]
        self._sinks.append(sink)
        return sink

    def close(self) -> None:
        for sink in self._sinks:
            sink.stop()
        self._sinks.clear()


class SoundDeviceSink:
    """Callback-driven PortAudio stream playing one feeder to completion."""

    def __init__(
        self,
        sd: ModuleType,
        feeder: SampleFeeder,
        *,
        device: int,
        blocksize: int,
        latency: str,
        paused: bool = False,
    ) -> None:
        self._sd = sd
        self._feeder = feeder
        self._paused = paused
        self._stopped = False
        self._ending = False
        self._drained = threading.Event()
        try:
            self._stream = sd.OutputStream(
                samplerate=feeder.sample_rate,
                channels=feeder.channels,
                dtype="float32",
                device=device,
                blocksize=blocksize,
                latency=latency,
                callback=self._callback,
                finished_callback=self._on_finished,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            self._stopped = True
            feeder.close()
            raise OutputUnavailableError(f"Cannot start output stream: {exc}") from exc

    @property
    def volume(self) -> float:
        return self._feeder.volume

    @property
    def stopped(self) -> bool:
        return self._stopped

    def play(self) -> None:
        self._paused = False

    def pause(self) -> None:
        self._paused = True

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        try:
            self._stream.abort()
            self._stream.close()
        except self._sd.PortAudioError as exc:
            logger.warning("Output stream did not close cleanly: %s", exc)
        self._feeder.close()

    def set_volume(self, volume: float) -> None:
        self._feeder.set_volume(volume)

    def set_speed(self, speed: float) -> None:
        self._feeder.set_speed(speed)

    def try_seek(self, position_s: float) -> bool:
        # Once the callback has stopped, only a rebuild restarts the stream.
        if self._stopped or self._ending or self._drained.is_set():
            return False
        return self._feeder.try_seek(position_s)

    def empty(self) -> bool:
        return self._drained.is_set()

    def _callback(
        self, outdata: np.ndarray, frames: int, _time: Any, status: Any
    ) -> None:
        if status:
            logger.debug("Output stream status: %s", status)
        if self._paused:
            outdata.fill(0)
            return
        outdata[:] = self._feeder.pull(frames)
        if self._feeder.exhausted:
            self._ending = True
            raise self._sd.CallbackStop

    def _on_finished(self) -> None:
        if not self._stopped:
            self._drained.set()
