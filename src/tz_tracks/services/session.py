"""Caller-facing transport API over the playback engine.

`PlayerSession` owns the playlist and the user-visible transport flags. It
validates requests synchronously, updates its own state, then forwards a
command to the engine without waiting for it. Reads combine that state with
an engine snapshot, so `status()` is safe to call from any thread.
"""

from __future__ import annotations

import logging
import math
import random
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Literal

from tz_tracks.events import PlayerStateChanged, TrackChanged
from tz_tracks.runtime_config import clamp_speed, clamp_volume, normalize_device_name
from tz_tracks.services.duration_probe import probe_duration_s
from tz_tracks.services.library import scan_folder
from tz_tracks.services.playback_engine import (
    EngineSnapshot,
    Pause,
    Play,
    PlaybackCommand,
    PlaybackEngine,
    Resume,
    Seek,
    SetOutputDevice,
    SetSpeed,
    SetVolume,
    Stop,
)

logger = logging.getLogger(__name__)

MediaAction = Literal["play", "pause", "toggle", "next", "prev", "stop"]
RepeatMode = Literal["off", "one", "all"]
REPEAT_MODES: tuple[RepeatMode, ...] = ("off", "one", "all")
AUTO_ADVANCE_INTERVAL_S = 0.5


class PlayerError(Exception):
    """Base class for transport requests rejected before reaching the engine."""


class InvalidIndexError(PlayerError):
    pass


class EmptyPlaylistError(PlayerError):
    pass


class NothingPlayingError(PlayerError):
    pass


@dataclass(frozen=True)
class TrackInfo:
    path: str
    name: str
    index: int
    duration_s: int | None = None


@dataclass(frozen=True)
class PlayerStatus:
    """Snapshot returned by `PlayerSession.status()`."""

    is_playing: bool
    is_paused: bool
    is_finished: bool
    current_track: str | None
    current_index: int
    volume: float
    speed: float
    playlist_length: int
    elapsed_s: int
    duration_s: int | None
    output_device: str | None = None
    repeat_mode: RepeatMode = "off"
    shuffle: bool = False
    queue_length: int = 0


@dataclass(frozen=True)
class SessionState:
    playlist: tuple[str, ...] = ()
    current_index: int = 0
    current_track: str | None = None
    duration_s: int | None = None
    volume: float = 1.0
    speed: float = 1.0
    is_playing: bool = False
    is_paused: bool = False
    output_device: str | None = None
    repeat_mode: RepeatMode = "off"
    shuffle: bool = False
    queue: tuple[int, ...] = ()


@dataclass(frozen=True)
class _PositionHint:
    """Requested position for a command the engine has not applied yet."""

    ticket: int
    position_s: float
    issued_at: float
    paused: bool


@dataclass(frozen=True)
class _PendingPlay:
    ticket: int
    path: str
    previous: SessionState


def track_name(path: str) -> str:
    return Path(path).name


class PlayerSession:
    """Lock-protected session facade forwarding transport commands."""

    def __init__(
        self,
        engine: PlaybackEngine,
        *,
        duration_probe: Callable[[str], int | None] = probe_duration_s,
        emit_event: Callable[[object], None] | None = None,
        initial_state: SessionState | None = None,
        time_source: Callable[[], float] = time.monotonic,
        shuffle_random: random.Random | None = None,
    ) -> None:
        self._engine = engine
        self._duration_probe = duration_probe
        self._emit_event = emit_event
        self._now = time_source
        state = initial_state or SessionState()
        self._state = replace(
            state,
            volume=clamp_volume(state.volume),
            speed=clamp_speed(state.speed),
        )
        # Serializes transport operations; `_lock` only guards field access.
        self._transport_lock = threading.RLock()
        self._lock = threading.Lock()
        self._hint: _PositionHint | None = None
        self._pending_play: _PendingPlay | None = None
        self._last_ticket = 0
        self._shuffle_random = shuffle_random or random.Random()
        # Indices played in shuffle order; `_shuffle_pos` is the current entry.
        self._shuffle_history: list[int] = []
        self._shuffle_pos = -1

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    def load_playlist(self, paths: Iterable[str | Path]) -> list[TrackInfo]:
        """Replace the playlist; playback of the current track is not touched.

        Queued indices and shuffle history refer to the old playlist and are
        dropped.
        """
        playlist = tuple(str(path) for path in paths)
        with self._transport_lock:
            with self._lock:
                self._state = replace(
                    self._state, playlist=playlist, current_index=0, queue=()
                )
            self._reset_shuffle_history()
        logger.info("Playlist loaded", extra={"tracks": len(playlist)})
        return self.tracks()

    def load_folder(self, folder: str | Path) -> list[TrackInfo]:
        """Scan `folder` into the playlist and return rows with durations."""
        self.load_playlist(scan_folder(folder))
        return self.tracks(probe=True)

    def tracks(self, *, probe: bool = False) -> list[TrackInfo]:
        playlist = self.state.playlist
        return [
            TrackInfo(
                path=path,
                name=track_name(path),
                index=index,
                duration_s=self._duration_probe(path) if probe else None,
            )
            for index, path in enumerate(playlist)
        ]

    def play(self, index: int, start_s: float = 0.0) -> TrackInfo:
        with self._transport_lock:
            self._check_index(index)
            return self._start_track(index, start_s)

    def toggle_pause(self) -> bool:
        """Pause or resume; returns the new paused flag."""
        with self._transport_lock:
            state = self._require_playing()
            paused = not state.is_paused
            snapshot = self._engine.snapshot()
            ticket = self._send(Pause() if paused else Resume())
            with self._lock:
                # Carry the position reported so far over to the new flag.
                self._hint = _PositionHint(
                    ticket=ticket,
                    position_s=self._elapsed_locked(snapshot),
                    issued_at=self._now(),
                    paused=paused,
                )
                self._state = replace(self._state, is_paused=paused)
            self._emit_state()
            return paused

    def stop(self) -> None:
        with self._transport_lock:
            ticket = self._send(Stop())
            with self._lock:
                self._state = replace(
                    self._state,
                    is_playing=False,
                    is_paused=False,
                    current_track=None,
                    duration_s=None,
                )
                self._hint = _PositionHint(ticket, 0.0, self._now(), paused=True)
                self._pending_play = None
            self._emit(TrackChanged(None))
            self._emit_state()

    def next(self) -> TrackInfo:
        with self._transport_lock:
            state = self.state
            count = self._require_tracks(state)
            if state.shuffle and state.is_playing:
                return self._next_shuffle(state, count)
            return self._start_track((state.current_index + 1) % count, 0.0)

    def previous(self) -> TrackInfo | None:
        """Step back; in shuffle, None at the start of the shuffle history."""
        with self._transport_lock:
            state = self.state
            count = self._require_tracks(state)
            if state.shuffle and state.is_playing:
                if self._shuffle_pos <= 0:
                    return None
                self._shuffle_pos -= 1
                index = self._shuffle_history[self._shuffle_pos]
                return self._start_track(index, 0.0)
            return self._start_track((state.current_index - 1 + count) % count, 0.0)

    def cycle_repeat(self) -> RepeatMode:
        """Step through off, one and all; returns the new mode."""
        with self._transport_lock:
            position = REPEAT_MODES.index(self.state.repeat_mode)
            return self.set_repeat_mode(
                REPEAT_MODES[(position + 1) % len(REPEAT_MODES)]
            )

    def set_repeat_mode(self, mode: RepeatMode) -> RepeatMode:
        if mode not in REPEAT_MODES:
            raise ValueError(f"Unknown repeat mode: {mode!r}")
        with self._transport_lock:
            with self._lock:
                # Repeat-one and shuffle exclude each other.
                shuffle = self._state.shuffle and mode != "one"
                self._state = replace(self._state, repeat_mode=mode, shuffle=shuffle)
            logger.info("Repeat mode set", extra={"repeat": mode})
            self._emit_state()
            return mode

    def toggle_shuffle(self) -> bool:
        """Flip shuffle; enabling it starts a fresh history."""
        with self._transport_lock:
            with self._lock:
                shuffle = not self._state.shuffle
                repeat = self._state.repeat_mode
                if shuffle and repeat == "one":
                    repeat = "off"
                self._state = replace(self._state, shuffle=shuffle, repeat_mode=repeat)
            if shuffle:
                self._reset_shuffle_history()
            logger.info("Shuffle toggled", extra={"shuffle": shuffle})
            self._emit_state()
            return shuffle

    def enqueue(self, index: int) -> int:
        """Queue a playlist index to play next; returns the queue length."""
        with self._transport_lock:
            self._check_index(index)
            with self._lock:
                self._state = replace(self._state, queue=(*self._state.queue, index))
                return len(self._state.queue)

    def clear_queue(self) -> None:
        with self._transport_lock:
            with self._lock:
                self._state = replace(self._state, queue=())

    def queued_tracks(self) -> list[TrackInfo]:
        state = self.state
        return [
            TrackInfo(
                path=state.playlist[index],
                name=track_name(state.playlist[index]),
                index=index,
            )
            for index in state.queue
        ]

    def set_volume(self, level: float) -> float:
        with self._transport_lock:
            volume = clamp_volume(level)
            self._send(SetVolume(volume))
            with self._lock:
                self._state = replace(self._state, volume=volume)
            self._emit_state()
            return volume

    def set_speed(self, multiplier: float) -> float:
        with self._transport_lock:
            speed = clamp_speed(multiplier)
            self._send(SetSpeed(speed))
            with self._lock:
                self._state = replace(self._state, speed=speed)
            self._emit_state()
            return speed

    def seek(self, seconds: float) -> int:
        """Seek to an absolute position; returns the clamped target."""
        with self._transport_lock:
            state = self._require_playing()
            target = _clamp_position(seconds, state.duration_s)
            self._seek_to(target, state)
            return target

    def seek_relative(self, delta_s: float) -> int:
        with self._transport_lock:
            state = self._require_playing()
            current = self._elapsed_s(self._engine.snapshot())
            target = _clamp_position(current + delta_s, state.duration_s)
            self._seek_to(target, state)
            return target

    def jump_to_percent(self, percent: float) -> int | None:
        """Seek to a share of the known duration; None when it is unknown."""
        with self._transport_lock:
            state = self._require_playing()
            if state.duration_s is None:
                return None
            ratio = max(0.0, min(100.0, float(percent))) / 100.0
            return self.seek(state.duration_s * ratio)

    def status(self) -> PlayerStatus:
        snapshot = self._engine.snapshot()
        self._reconcile(snapshot)
        with self._lock:
            state = self._state
            elapsed = self._elapsed_locked(snapshot)
        if snapshot.finished and state.duration_s is not None:
            elapsed = min(elapsed, float(state.duration_s))
        return PlayerStatus(
            is_playing=state.is_playing,
            is_paused=state.is_paused,
            is_finished=snapshot.finished,
            current_track=state.current_track,
            current_index=state.current_index,
            volume=state.volume,
            speed=state.speed,
            playlist_length=len(state.playlist),
            elapsed_s=int(elapsed),
            duration_s=state.duration_s,
            output_device=snapshot.output_device,
            repeat_mode=state.repeat_mode,
            shuffle=state.shuffle,
            queue_length=len(state.queue),
        )

    def list_output_devices(self) -> list[str]:
        return self._engine.list_output_devices()

    def set_output_device(self, name: str | None) -> str | None:
        """Switch output device; blank or "default" selects the system default."""
        device = normalize_device_name(name)
        with self._transport_lock:
            self._send(SetOutputDevice(device))
            with self._lock:
                self._state = replace(self._state, output_device=device)
        logger.info("Output device requested", extra={"device": device or "default"})
        return device

    def advance_if_finished(self) -> TrackInfo | None:
        """Pick what plays after the current track ends.

        The play-next queue wins unless repeat-one is set. Otherwise repeat-one
        replays the track, shuffle picks a random one, repeat-all wraps and
        "off" stops after the last track.
        """
        with self._transport_lock:
            snapshot = self._engine.snapshot()
            state = self.state
            if not state.is_playing or state.is_paused or not snapshot.finished:
                return None
            # Commands still in flight may replace the finished track.
            if snapshot.applied_ticket < self._last_ticket:
                return None
            if not state.playlist:
                return None
            count = len(state.playlist)
            if state.repeat_mode != "one" and state.queue:
                with self._lock:
                    self._state = replace(self._state, queue=state.queue[1:])
                logger.info("Playing next queued track")
                return self._start_track(state.queue[0], 0.0)
            if state.repeat_mode == "one":
                return self._start_track(state.current_index, 0.0)
            if state.shuffle:
                return self._next_shuffle(state, count)
            if state.repeat_mode == "all" or state.current_index < count - 1:
                logger.info("Auto-advancing after track end")
                return self._start_track((state.current_index + 1) % count, 0.0)
            logger.info("End of playlist")
            with self._lock:
                self._state = replace(self._state, is_playing=False, is_paused=False)
            self._emit_state()
            return None

    def handle_media_control(self, action: MediaAction) -> None:
        """Apply an OS media-key style action using the same transport rules."""
        with self._transport_lock:
            state = self.state
            if action == "play":
                if state.is_playing and state.is_paused:
                    self.toggle_pause()
                elif not state.is_playing and state.playlist:
                    self.play(min(state.current_index, len(state.playlist) - 1))
            elif action == "pause":
                if state.is_playing and not state.is_paused:
                    self.toggle_pause()
            elif action == "toggle":
                if state.is_playing:
                    self.toggle_pause()
            elif action == "next":
                if state.playlist:
                    self.next()
            elif action == "prev":
                if state.playlist:
                    self.previous()
            elif action == "stop":
                self.stop()
            else:
                logger.warning("Ignoring unknown media action: %s", action)

    def _start_track(self, index: int, start_s: float) -> TrackInfo:
        state = self.state
        path = state.playlist[index]
        duration = self._duration_probe(path)
        start = float(_clamp_position(start_s, duration))
        ticket = self._send(Play(path, state.volume, start))
        name = track_name(path)
        with self._lock:
            previous = self._state
            self._state = replace(
                self._state,
                current_index=index,
                current_track=name,
                duration_s=duration,
                is_playing=True,
                is_paused=False,
            )
            self._hint = _PositionHint(ticket, start, self._now(), paused=False)
            self._pending_play = _PendingPlay(ticket, path, previous)
        info = TrackInfo(path=path, name=name, index=index, duration_s=duration)
        self._emit(TrackChanged(info))
        self._emit_state()
        return info

    def _seek_to(self, target: int, state: SessionState) -> None:
        ticket = self._send(Seek(float(target)))
        with self._lock:
            self._hint = _PositionHint(
                ticket, float(target), self._now(), paused=state.is_paused
            )
        self._emit_state()

    def _send(self, command: PlaybackCommand) -> int:
        ticket = self._engine.send(command)
        self._last_ticket = ticket
        return ticket

    def _require_playing(self) -> SessionState:
        state = self.state
        if not state.is_playing:
            raise NothingPlayingError("No track is playing")
        return state

    def _require_tracks(self, state: SessionState) -> int:
        if not state.playlist:
            raise EmptyPlaylistError("Playlist is empty")
        return len(state.playlist)

    def _check_index(self, index: int) -> None:
        playlist_length = len(self.state.playlist)
        if index < 0 or index >= playlist_length:
            raise InvalidIndexError(
                f"Invalid track index {index} (playlist has {playlist_length})"
            )

    def _next_shuffle(self, state: SessionState, count: int) -> TrackInfo:
        if self._shuffle_pos < len(self._shuffle_history) - 1:
            self._shuffle_pos += 1
            return self._start_track(self._shuffle_history[self._shuffle_pos], 0.0)
        if not self._shuffle_history:
            self._shuffle_history.append(state.current_index)
        if count == 1:
            index = 0
        else:
            # Draw from every index except the current one.
            index = self._shuffle_random.randrange(count - 1)
            if index >= state.current_index:
                index += 1
        self._shuffle_history.append(index)
        self._shuffle_pos = len(self._shuffle_history) - 1
        return self._start_track(index, 0.0)

    def _reset_shuffle_history(self) -> None:
        self._shuffle_history = []
        self._shuffle_pos = -1

    def _elapsed_s(self, snapshot: EngineSnapshot) -> float:
        with self._lock:
            return self._elapsed_locked(snapshot)

    def _elapsed_locked(self, snapshot: EngineSnapshot) -> float:
        hint = self._hint
        if hint is not None and snapshot.applied_ticket < hint.ticket:
            return self._hint_position(hint, self._now())
        return snapshot.elapsed_s

    def _hint_position(self, hint: _PositionHint, now: float) -> float:
        if hint.paused:
            return hint.position_s
        return hint.position_s + max(0.0, now - hint.issued_at)

    def _reconcile(self, snapshot: EngineSnapshot) -> None:
        """Roll back track fields when the engine could not start a Play."""
        with self._lock:
            pending = self._pending_play
            if pending is None or snapshot.applied_ticket < pending.ticket:
                return
            self._pending_play = None
            if snapshot.current_path == pending.path:
                return
            restored = pending.previous
            self._state = replace(
                self._state,
                current_index=restored.current_index,
                current_track=restored.current_track,
                duration_s=restored.duration_s,
                is_playing=restored.is_playing,
                is_paused=restored.is_paused,
            )
        logger.warning(
            "Track could not be played; keeping previous state",
            extra={"path": pending.path},
        )

    def _emit(self, event: object) -> None:
        if self._emit_event is None:
            return
        try:
            self._emit_event(event)
        except Exception:  # pragma: no cover - subscriber safety net
            logger.exception("Session event handler failed")

    def _emit_state(self) -> None:
        if self._emit_event is None:
            return
        self._emit(PlayerStateChanged(self.status()))


class AutoAdvancer:
    """Background poller that moves to the next track at end of track."""

    def __init__(
        self,
        session: PlayerSession,
        *,
        interval_s: float = AUTO_ADVANCE_INTERVAL_S,
        on_advance: Callable[[TrackInfo], None] | None = None,
    ) -> None:
        self._session = session
        self._interval_s = interval_s
        self._on_advance = on_advance
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="AutoAdvanceThread", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=2.0)
        self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval_s):
            try:
                info = self._session.advance_if_finished()
            except PlayerError as exc:
                logger.debug("Auto-advance skipped: %s", exc)
                continue
            if info is not None and self._on_advance is not None:
                self._on_advance(info)


def _clamp_position(seconds: float, duration_s: int | None) -> int:
    numeric = float(seconds)
    if math.isnan(numeric):
        return 0
    upper = math.inf if duration_s is None else float(duration_s)
    clamped = max(0.0, min(numeric, upper))
    if math.isinf(clamped):
        raise ValueError("Seek target must be finite when duration is unknown")
    return int(clamped)
