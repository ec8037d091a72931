"""Line-oriented command mode over a `PlayerSession`.

Commands mirror the vim-style command line of the desktop player, e.g.
`:play 3`, `:jump 1:30`, `:jump 50`, `:+10`, `:device 2`. A leading colon is
optional.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from tz_tracks.services.session import REPEAT_MODES, PlayerError, PlayerSession
from tz_tracks.utils.time_format import format_progress, format_time_s, parse_clock_time

logger = logging.getLogger(__name__)

HELP_TEXT = """\
play|p [N]          play track N (1-based) or the current track
pause|toggle        pause / resume
stop                stop playback
next|n, prev        next / previous track (wraps around; shuffle order when on)
repeat|r [MODE]     cycle or set repeat: off, one, all
shuffle|sh          toggle shuffle
add|a N             queue track N to play next
queue|qu            show the play-next queue
clearqueue|cq       empty the play-next queue
vol N               volume in percent (0-100)
speed X             playback speed multiplier (0.25-3.0)
seek m:ss|SECONDS   seek to an absolute position
jump m:ss|PERCENT   seek to a time or to a percentage of the track
+N / -N             seek forward / back N seconds
status|st           show transport status
list|ls             show the playlist
devices|dev         list output devices
device|d N|NAME     switch output device (no argument or 'default' = system default)
open|o FOLDER       load a folder into the playlist
setdefault|sd [DIR] remember a folder to open at startup
cleardefault|cd     forget the default folder
help|h              this text
quit|q              exit"""


class CommandShell:
    """Parses one command line at a time and returns the text to show."""

    def __init__(
        self,
        session: PlayerSession,
        *,
        default_folder: str | None = None,
        save_default_folder: Callable[[str | None], None] | None = None,
    ) -> None:
        self._session = session
        self._save_default_folder = save_default_folder
        self.default_folder = default_folder
        self.last_folder: str | None = default_folder
        self.done = False

    def execute(self, line: str) -> str:
        text = line.strip().lstrip(":").strip()
        if not text:
            return ""
        if text[0] in "+-" and len(text) > 1:
            return self._seek_relative(text)
        command, _, rest = text.partition(" ")
        command = command.lower()
        arg = rest.strip()
        handler = self._handlers().get(command)
        if handler is None:
            return f"Unknown command: {command} (try :help)"
        try:
            return handler(arg)
        except PlayerError as exc:
            return str(exc)

    def _handlers(self) -> dict[str, Callable[[str], str]]:
        return {
            "q": self._quit,
            "quit": self._quit,
            "p": self._play,
            "play": self._play,
            "pause": self._toggle,
            "toggle": self._toggle,
            "stop": self._stop,
            "n": self._next,
            "next": self._next,
            "prev": self._prev,
            "previous": self._prev,
            "r": self._repeat,
            "repeat": self._repeat,
            "sh": self._shuffle,
            "shuffle": self._shuffle,
            "a": self._enqueue,
            "add": self._enqueue,
            "qu": self._queue,
            "queue": self._queue,
            "cq": self._clear_queue,
            "clearqueue": self._clear_queue,
            "vol": self._volume,
            "volume": self._volume,
            "speed": self._speed,
            "seek": self._seek,
            "j": self._jump,
            "jump": self._jump,
            "st": self._status,
            "status": self._status,
            "ls": self._list,
            "list": self._list,
            "dev": self._devices,
            "devices": self._devices,
            "d": self._device,
            "device": self._device,
            "o": self._open,
            "open": self._open,
            "sd": self._set_default,
            "setdefault": self._set_default,
            "cd": self._clear_default,
            "cleardefault": self._clear_default,
            "h": self._help,
            "help": self._help,
        }

    def _quit(self, _arg: str) -> str:
        self.done = True
        return "Bye."

    def _play(self, arg: str) -> str:
        if arg:
            number = _parse_int(arg)
            if number is None:
                return "Usage: :play <track number>"
            info = self._session.play(number - 1)
        else:
            info = self._session.play(self._session.state.current_index)
        return f"Playing {info.index + 1}. {info.name} [{format_time_s(info.duration_s)}]"

    def _toggle(self, _arg: str) -> str:
        return "Paused" if self._session.toggle_pause() else "Resumed"

    def _stop(self, _arg: str) -> str:
        self._session.stop()
        return "Stopped"

    def _next(self, _arg: str) -> str:
        info = self._session.next()
        return f"Playing {info.index + 1}. {info.name}"

    def _prev(self, _arg: str) -> str:
        info = self._session.previous()
        if info is None:
            return "Start of shuffle history"
        return f"Playing {info.index + 1}. {info.name}"

    def _repeat(self, arg: str) -> str:
        if not arg:
            return f"Repeat: {self._session.cycle_repeat()}"
        for mode in REPEAT_MODES:
            if mode == arg.lower():
                return f"Repeat: {self._session.set_repeat_mode(mode)}"
        return "Usage: :repeat [off|one|all]"

    def _shuffle(self, _arg: str) -> str:
        return "Shuffle: on" if self._session.toggle_shuffle() else "Shuffle: off"

    def _enqueue(self, arg: str) -> str:
        number = _parse_int(arg)
        if number is None:
            return "Usage: :add <track number>"
        count = self._session.enqueue(number - 1)
        name = self._session.tracks()[number - 1].name
        return f"Added to queue: {name} ({count} in queue)"

    def _queue(self, _arg: str) -> str:
        queued = self._session.queued_tracks()
        if not queued:
            return "Queue is empty"
        return "\n".join(
            f"{position:>4}. {track.name}"
            for position, track in enumerate(queued, start=1)
        )

    def _clear_queue(self, _arg: str) -> str:
        self._session.clear_queue()
        return "Queue cleared"

    def _volume(self, arg: str) -> str:
        if not arg:
            return f"Volume: {round(self._session.state.volume * 100)}%"
        percent = _parse_float(arg.rstrip("%"))
        if percent is None:
            return "Usage: :vol <0-100>"
        volume = self._session.set_volume(percent / 100)
        return f"Volume: {round(volume * 100)}%"

    def _speed(self, arg: str) -> str:
        if not arg:
            return f"Speed: {self._session.state.speed:g}x"
        multiplier = _parse_float(arg.rstrip("x"))
        if multiplier is None:
            return "Usage: :speed <0.25-3.0>"
        return f"Speed: {self._session.set_speed(multiplier):g}x"

    def _seek(self, arg: str) -> str:
        seconds = parse_clock_time(arg)
        if seconds is None:
            return "Usage: :seek m:ss or :seek <seconds>"
        return f"Seek: {format_time_s(self._session.seek(seconds))}"

    def _jump(self, arg: str) -> str:
        if ":" in arg:
            return self._seek(arg)
        percent = _parse_float(arg.rstrip("%"))
        if percent is None or not 0 <= percent <= 100:
            return "Usage: :jump <0-100> or :jump m:ss"
        target = self._session.jump_to_percent(percent)
        if target is None:
            return "Track length unknown; use :seek m:ss"
        return f"Seek: {format_time_s(target)}"

    def _seek_relative(self, text: str) -> str:
        delta = _parse_int(text)
        if delta is None:
            return "Usage: :+<seconds> or :-<seconds>"
        try:
            target = self._session.seek_relative(delta)
        except PlayerError as exc:
            return str(exc)
        return f"Seek: {format_time_s(target)}"

    def _status(self, _arg: str) -> str:
        status = self._session.status()
        if not status.is_playing:
            state = "finished" if status.is_finished else "stopped"
            return f"[{state}] {status.playlist_length} track(s) loaded"
        flag = "paused" if status.is_paused else "playing"
        if status.is_finished:
            flag = "finished"
        line = (
            f"[{flag}] {status.current_index + 1}/{status.playlist_length} "
            f"{status.current_track} {format_progress(status.elapsed_s, status.duration_s)}"
            f" vol {round(status.volume * 100)}% speed {status.speed:g}x"
            f" repeat {status.repeat_mode}"
        )
        if status.shuffle:
            line += " shuffle"
        if status.queue_length:
            line += f" queued {status.queue_length}"
        return line

    def _list(self, _arg: str) -> str:
        state = self._session.state
        if not state.playlist:
            return "Playlist is empty"
        lines = []
        for track in self._session.tracks():
            marker = ">" if track.index == state.current_index else " "
            lines.append(f"{marker}{track.index + 1:>4}. {track.name}")
        return "\n".join(lines)

    def _devices(self, _arg: str) -> str:
        devices = self._session.list_output_devices()
        if not devices:
            return "No audio output devices found"
        lines = [f"{index}. {name}" for index, name in enumerate(devices, start=1)]
        lines.append("Use :device <number> to switch")
        return "\n".join(lines)

    def _device(self, arg: str) -> str:
        if not arg:
            return self._devices(arg)
        name: str | None = arg
        number = _parse_int(arg)
        if number is not None:
            devices = self._session.list_output_devices()
            if not 1 <= number <= len(devices):
                return "Invalid device number. Use :devices to see the list"
            name = devices[number - 1]
        device = self._session.set_output_device(name)
        return f"Audio output: {device or 'Default'}"

    def _open(self, arg: str) -> str:
        if not arg:
            return "Usage: :open <folder>"
        folder = str(Path(arg).expanduser())
        try:
            tracks = self._session.load_folder(folder)
        except OSError as exc:
            logger.warning("Cannot open folder %s: %s", folder, exc)
            return f"Cannot open folder: {exc}"
        self.last_folder = folder
        return f"Loaded {len(tracks)} track(s) from {folder}"

    def _set_default(self, arg: str) -> str:
        folder = str(Path(arg).expanduser()) if arg else self.last_folder
        if folder is None:
            return "Usage: :setdefault <folder> (or open a folder first)"
        self.default_folder = folder
        if self._save_default_folder is not None:
            self._save_default_folder(folder)
        return f"Default folder: {folder}"

    def _clear_default(self, _arg: str) -> str:
        self.default_folder = None
        if self._save_default_folder is not None:
            self._save_default_folder(None)
        return "Default folder cleared"

    def _help(self, _arg: str) -> str:
        return HELP_TEXT


def run_interactive(
    shell: CommandShell,
    *,
    read_line: Callable[[str], str] = input,
    write: Callable[[str], None] = print,
    prompt: str = ":",
) -> None:
    """Read commands until `quit` or end of input."""
    while not shell.done:
        try:
            line = read_line(prompt)
        except (EOFError, KeyboardInterrupt):
            write("")
            return
        reply = shell.execute(line)
        if reply:
            write(reply)


def _parse_int(text: str) -> int | None:
    try:
        return int(text)
    except ValueError:
        return None


def _parse_float(text: str) -> float | None:
    try:
        return float(text)
    except ValueError:
        return None
