"""Single-threaded playback engine owning the output device.

Callers talk to the engine only through `send()`, which enqueues a command
and returns immediately. The worker thread applies commands strictly in
order, keeps the `PlaybackClock` current and flags a track as finished when
its sink runs dry. Between commands the worker wakes every `poll_interval_s`
so end-of-track detection never depends on incoming traffic.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Union

from tz_tracks.runtime_config import (
    POLL_INTERVAL_DEFAULT_S,
    clamp_poll_interval,
    clamp_speed,
    clamp_volume,
    normalize_device_name,
)
from tz_tracks.services.audio_output import (
    AudioOutput,
    OutputStream,
    OutputUnavailableError,
    Sink,
)
from tz_tracks.services.audio_source import (
    AudioSource,
    SourceOpener,
    SourceOpenError,
    open_source,
)
from tz_tracks.services.playback_clock import PlaybackClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Play:
    path: str
    volume: float
    start_s: float = 0.0


@dataclass(frozen=True)
class Pause:
    pass


@dataclass(frozen=True)
class Resume:
    pass


@dataclass(frozen=True)
class Stop:
    pass


@dataclass(frozen=True)
class SetVolume:
    level: float


@dataclass(frozen=True)
class SetSpeed:
    multiplier: float


@dataclass(frozen=True)
class Seek:
    target_s: float


@dataclass(frozen=True)
class SetOutputDevice:
    """Switch output; `None` selects the system default device."""

    device_name: str | None


@dataclass(frozen=True)
class _Shutdown:
    pass


PlaybackCommand = Union[
    Play, Pause, Resume, Stop, SetVolume, SetSpeed, Seek, SetOutputDevice
]


@dataclass(frozen=True)
class EngineSnapshot:
    """Point-in-time view of engine-owned playback state."""

    elapsed_s: float
    finished: bool
    current_path: str | None
    paused: bool
    applied_ticket: int
    output_device: str | None

    @property
    def elapsed_seconds(self) -> int:
        return int(self.elapsed_s)


@dataclass
class _SharedStatus:
    """Engine-written, reader-visible fields guarded by `PlaybackEngine._lock`."""

    clock: PlaybackClock
    current_path: str | None = None
    finished: bool = False
    applied_ticket: int = 0
    output_device: str | None = None


@dataclass
class _ActiveContext:
    """Engine-thread-only resources. Never handed to other threads."""

    stream: OutputStream | None = None
    sink: Sink | None = None
    path: str | None = None
    volume: float = 1.0
    speed: float = 1.0
    device_name: str | None = None


class PlaybackEngine:
    """Owns the output stream and active sink on a dedicated worker thread."""

    def __init__(
        self,
        output: AudioOutput,
        *,
        source_opener: SourceOpener = open_source,
        device_name: str | None = None,
        speed: float = 1.0,
        poll_interval_s: float = POLL_INTERVAL_DEFAULT_S,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self._output = output
        self._source_opener = source_opener
        self._poll_interval = clamp_poll_interval(poll_interval_s)
        self._queue: queue.Queue[tuple[int, PlaybackCommand | _Shutdown]] = (
            queue.Queue()
        )
        self._tickets = itertools.count(1)
        self._last_ticket = 0
        self._send_lock = threading.Lock()
        self._lock = threading.Lock()
        self._status = _SharedStatus(clock=PlaybackClock(now=time_source))
        self._ctx = _ActiveContext(
            speed=clamp_speed(speed),
            device_name=normalize_device_name(device_name),
        )
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, *, timeout: float = 5.0) -> None:
        """Spawn the worker and wait until it has tried to open the device."""
        if self._thread is not None:
            return
        self._ready.clear()
        self._thread = threading.Thread(
            target=self._thread_main,
            name="PlaybackEngineThread",
            daemon=True,
        )
        self._thread.start()
        self._ready.wait(timeout)

    def shutdown(self, *, timeout: float = 2.0) -> None:
        if self._thread is None:
            return
        self._enqueue(_Shutdown())
        self._thread.join(timeout=timeout)
        self._thread = None

    def send(self, command: PlaybackCommand) -> int:
        """Queue `command` without waiting; returns its ticket number."""
        return self._enqueue(command)

    def snapshot(self) -> EngineSnapshot:
        with self._lock:
            status = self._status
            return EngineSnapshot(
                elapsed_s=status.clock.elapsed_s(),
                finished=status.finished,
                current_path=status.current_path,
                paused=status.clock.paused,
                applied_ticket=status.applied_ticket,
                output_device=status.output_device,
            )

    def elapsed_seconds(self) -> int:
        with self._lock:
            return self._status.clock.elapsed_seconds()

    def is_finished(self) -> bool:
        with self._lock:
            return self._status.finished

    def wait_idle(self, timeout: float = 2.0) -> bool:
        """Block until every command sent so far has been applied."""
        with self._send_lock:
            target = self._last_ticket
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.snapshot().applied_ticket >= target:
                return True
            time.sleep(0.005)
        return False

    def list_output_devices(self) -> list[str]:
        try:
            return self._output.list_devices()
        except OutputUnavailableError as exc:
            logger.warning("Could not list output devices: %s", exc)
            return []

    def _enqueue(self, command: PlaybackCommand | _Shutdown) -> int:
        # Ticket order must match queue order.
        with self._send_lock:
            ticket = next(self._tickets)
            self._last_ticket = ticket
            self._queue.put((ticket, command))
        return ticket

    def _thread_main(self) -> None:
        self._open_output(self._ctx.device_name)
        self._ready.set()
        while True:
            self._check_finished()
            try:
                ticket, command = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                continue
            if isinstance(command, _Shutdown):
                self._mark_applied(ticket)
                break
            try:
                self._apply(command)
            except Exception:  # pragma: no cover - worker safety net
                logger.exception(
                    "Playback command failed",
                    extra={"command": type(command).__name__},
                )
            finally:
                self._mark_applied(ticket)
        self._discard_sink()
        self._close_stream()
        logger.debug("Playback engine stopped")

    def _mark_applied(self, ticket: int) -> None:
        with self._lock:
            self._status.applied_ticket = ticket

    def _apply(self, command: PlaybackCommand) -> None:
        logger.debug("Applying %s", command)
        if isinstance(command, Play):
            self._play(command)
        elif isinstance(command, Pause):
            self._pause()
        elif isinstance(command, Resume):
            self._resume()
        elif isinstance(command, Stop):
            self._stop()
        elif isinstance(command, SetVolume):
            self._ctx.volume = clamp_volume(command.level)
            if self._ctx.sink is not None:
                self._ctx.sink.set_volume(self._ctx.volume)
        elif isinstance(command, SetSpeed):
            self._ctx.speed = clamp_speed(command.multiplier)
            if self._ctx.sink is not None:
                self._ctx.sink.set_speed(self._ctx.speed)
        elif isinstance(command, Seek):
            self._seek(max(0.0, float(command.target_s)))
        elif isinstance(command, SetOutputDevice):
            self._switch_output(command.device_name)
        else:
            raise ValueError(f"Unknown command {command!r}")

    def _check_finished(self) -> None:
        sink = self._ctx.sink
        if sink is None or self._ctx.path is None or not self._queue.empty():
            return
        if not sink.empty():
            return
        with self._lock:
            status = self._status
            if status.finished or status.clock.reference_at is None:
                return
            status.finished = True
        logger.info("Track finished", extra={"path": self._ctx.path})

    def _play(self, command: Play) -> None:
        volume = clamp_volume(command.volume)
        start_s = max(0.0, float(command.start_s))
        if not self._load(command.path, start_s, volume=volume, paused=False):
            return
        self._ctx.volume = volume
        logger.info("Playing track", extra={"path": command.path, "start_s": start_s})

    def _pause(self) -> None:
        if self._ctx.sink is None:
            return
        self._ctx.sink.pause()
        with self._lock:
            self._status.clock.pause()

    def _resume(self) -> None:
        if self._ctx.sink is None:
            return
        with self._lock:
            self._status.clock.resume()
        self._ctx.sink.play()

    def _stop(self) -> None:
        self._discard_sink()
        self._ctx.path = None
        with self._lock:
            self._status.clock.reset()
            self._status.current_path = None
            self._status.finished = False

    def _seek(self, target_s: float) -> None:
        path = self._ctx.path
        if path is None:
            return
        sink = self._ctx.sink
        if sink is not None and sink.try_seek(target_s):
            with self._lock:
                self._status.clock.seek(target_s)
                self._status.finished = False
            logger.debug("Fast seek", extra={"path": path, "target_s": target_s})
            return
        with self._lock:
            paused = self._status.clock.paused
        if self._load(path, target_s, volume=self._ctx.volume, paused=paused):
            logger.debug("Seek rebuilt sink", extra={"path": path, "target_s": target_s})

    def _switch_output(self, device_name: str | None) -> None:
        with self._lock:
            position_s = self._status.clock.elapsed_s()
            paused = self._status.clock.paused
            finished = self._status.finished
        path = self._ctx.path
        was_active = self._ctx.sink is not None and path is not None and not finished
        self._discard_sink()
        self._close_stream()
        self._ctx.device_name = normalize_device_name(device_name)
        if not self._open_output(self._ctx.device_name):
            return
        if was_active and path is not None:
            self._load(path, position_s, volume=self._ctx.volume, paused=paused)

    def _load(self, path: str, start_s: float, *, volume: float, paused: bool) -> bool:
        """Open `path` at `start_s` on a fresh sink and swap it in.

        On any failure the previous sink, path and clock are left untouched.
        """
        if not self._ensure_output():
            logger.warning("No output device; cannot play", extra={"path": path})
            return False
        try:
            source = self._source_opener(path, start_s)
        except SourceOpenError as exc:
            logger.warning(
                "Failed to open track", extra={"path": path, "reason": exc.reason}
            )
            return False
        sink = self._create_sink(source, volume=volume)
        if sink is None:
            return False
        self._discard_sink()
        self._ctx.sink = sink
        self._ctx.path = path
        if not paused:
            sink.play()
        with self._lock:
            self._status.clock.start(start_s, paused=paused)
            self._status.current_path = path
            self._status.finished = False
        return True

    def _create_sink(self, source: AudioSource, *, volume: float) -> Sink | None:
        stream = self._ctx.stream
        if stream is None:
            source.close()
            return None
        try:
            # Created paused so the old sink can stop before the new one sounds.
            return stream.create_sink(
                source, volume=volume, speed=self._ctx.speed, paused=True
            )
        except OutputUnavailableError as exc:
            logger.warning("Could not create sink: %s", exc)
            source.close()
            return None

    def _discard_sink(self) -> None:
        sink = self._ctx.sink
        self._ctx.sink = None
        if sink is not None:
            sink.stop()

    def _ensure_output(self) -> bool:
        if self._ctx.stream is not None:
            return True
        return self._open_output(self._ctx.device_name)

    def _open_output(self, device_name: str | None) -> bool:
        try:
            stream = self._output.open(device_name)
        except OutputUnavailableError as exc:
            logger.warning(
                "Output device unavailable: %s", exc, extra={"device": device_name}
            )
            with self._lock:
                self._status.output_device = None
            return False
        self._ctx.stream = stream
        with self._lock:
            self._status.output_device = stream.device_name
        return True

    def _close_stream(self) -> None:
        stream = self._ctx.stream
        self._ctx.stream = None
        if stream is not None:
            stream.close()
        with self._lock:
            self._status.output_device = None
