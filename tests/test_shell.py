"""Tests for the line-oriented command shell."""

from __future__ import annotations

import pytest
from conftest import TRACK_A, TRACK_B

from tz_tracks.services.session import PlayerSession
from tz_tracks.shell import CommandShell, run_interactive

DURATIONS = {TRACK_A: 30, TRACK_B: 45}


@pytest.fixture
def session(engine) -> PlayerSession:
    player = PlayerSession(engine, duration_probe=DURATIONS.get)
    player.load_playlist([TRACK_A, TRACK_B])
    return player


@pytest.fixture
def shell(session) -> CommandShell:
    return CommandShell(session)


def test_blank_and_unknown_commands(shell) -> None:
    assert shell.execute("   ") == ""
    assert shell.execute(":") == ""
    assert "Unknown command: bogus" in shell.execute(":bogus")


def test_play_by_number_and_current(shell, session) -> None:
    assert shell.execute(":play 2") == "Playing 2. b.ogg [00:45]"
    assert session.state.current_index == 1
    assert shell.execute("p").startswith("Playing 2.")


def test_play_rejects_bad_numbers(shell) -> None:
    assert "Usage" in shell.execute("play two")
    assert "Invalid track index" in shell.execute("play 9")


def test_transport_commands(shell, session) -> None:
    assert shell.execute("toggle") == "No track is playing"
    shell.execute("play 1")
    assert shell.execute("pause") == "Paused"
    assert shell.execute("pause") == "Resumed"
    assert shell.execute("n") == "Playing 2. b.ogg"
    assert shell.execute("next") == "Playing 1. a.mp3"
    assert shell.execute("prev") == "Playing 2. b.ogg"
    assert shell.execute("stop") == "Stopped"
    assert not session.state.is_playing


def test_repeat_shuffle_and_queue_commands(shell, session) -> None:
    assert shell.execute("repeat") == "Repeat: one"
    assert shell.execute("r ALL") == "Repeat: all"
    assert "Usage" in shell.execute("repeat twice")
    assert shell.execute("sh") == "Shuffle: on"
    assert shell.execute("shuffle") == "Shuffle: off"
    assert shell.execute("queue") == "Queue is empty"
    assert shell.execute("add 2") == "Added to queue: b.ogg (1 in queue)"
    assert shell.execute("a 1") == "Added to queue: a.mp3 (2 in queue)"
    assert "Invalid track index" in shell.execute("add 5")
    assert "Usage" in shell.execute("add")
    assert shell.execute("qu").splitlines() == ["   1. b.ogg", "   2. a.mp3"]
    shell.execute("play 1")
    status = shell.execute("status")
    assert "repeat all" in status
    assert "queued 2" in status
    assert shell.execute("cq") == "Queue cleared"
    assert session.state.queue == ()


def test_prev_at_start_of_shuffle_history(shell) -> None:
    shell.execute("shuffle")
    shell.execute("play 1")
    assert shell.execute("prev") == "Start of shuffle history"


def test_volume_and_speed(shell, session) -> None:
    assert shell.execute("vol 40") == "Volume: 40%"
    assert shell.execute("vol 250") == "Volume: 100%"
    assert shell.execute("vol") == "Volume: 100%"
    assert "Usage" in shell.execute("vol loud")
    assert shell.execute("speed 1.5") == "Speed: 1.5x"
    assert shell.execute("speed 0.1x") == "Speed: 0.25x"
    assert shell.execute("speed") == "Speed: 0.25x"
    assert session.state.speed == 0.25


def test_seek_and_jump(shell) -> None:
    assert shell.execute("seek 0:10") == "No track is playing"
    shell.execute("play 1")
    assert shell.execute("seek 0:10") == "Seek: 00:10"
    assert shell.execute("seek 95") == "Seek: 00:30"
    assert shell.execute("jump 1:00") == "Seek: 00:30"
    assert shell.execute("jump 50") == "Seek: 00:15"
    assert shell.execute("j 0%") == "Seek: 00:00"
    assert "Usage" in shell.execute("jump 150")
    assert "Usage" in shell.execute("seek later")


def test_relative_seek(shell) -> None:
    assert shell.execute("+10") == "No track is playing"
    shell.execute("play 2")
    shell.execute("seek 20")
    assert shell.execute(":+10") == "Seek: 00:30"
    assert shell.execute("-100") == "Seek: 00:00"
    assert "Usage" in shell.execute("+ten")


def test_status_and_list(shell) -> None:
    assert shell.execute("status") == "[stopped] 2 track(s) loaded"
    shell.execute("play 1")
    line = shell.execute("st")
    assert line.startswith("[playing] 1/2 a.mp3 00:0")
    assert "/ 00:30" in line
    assert "vol 100%" in line
    listing = shell.execute("ls").splitlines()
    assert listing[0].startswith(">")
    assert "a.mp3" in listing[0]
    assert "b.ogg" in listing[1]


def test_devices(shell, engine) -> None:
    listing = shell.execute("devices")
    assert "1. Fake Speakers" in listing
    assert "2. Fake Headphones" in listing
    assert shell.execute("device 2") == "Audio output: Fake Headphones"
    assert engine.wait_idle()
    assert engine.snapshot().output_device == "Fake Headphones"
    assert shell.execute("d default") == "Audio output: Default"
    assert "Invalid device number" in shell.execute("device 7")
    assert shell.execute("device Fake Speakers") == "Audio output: Fake Speakers"


def test_open_and_default_folder(shell, session, tmp_path) -> None:
    saved: list[str | None] = []
    folder_shell = CommandShell(session, save_default_folder=saved.append)
    (tmp_path / "x.mp3").write_bytes(b"")

    assert "Usage" in folder_shell.execute("sd")
    assert folder_shell.execute(f"open {tmp_path}").startswith("Loaded 1 track(s)")
    assert session.state.playlist == (str(tmp_path / "x.mp3"),)
    assert folder_shell.execute("sd") == f"Default folder: {tmp_path}"
    assert folder_shell.execute("cd") == "Default folder cleared"
    assert saved == [str(tmp_path), None]
    assert "Cannot open folder" in folder_shell.execute(f"o {tmp_path / 'nope'}")


def test_help_and_quit(shell) -> None:
    assert "play|p" in shell.execute("h")
    assert not shell.done
    assert shell.execute("q") == "Bye."
    assert shell.done


def test_run_interactive_until_quit(shell) -> None:
    lines = iter(["vol 50", "", "quit", "never read"])
    written: list[str] = []
    run_interactive(shell, read_line=lambda _prompt: next(lines), write=written.append)
    assert written == ["Volume: 50%", "Bye."]


def test_run_interactive_stops_on_eof(shell) -> None:
    def eof(_prompt: str) -> str:
        raise EOFError

    written: list[str] = []
    run_interactive(shell, read_line=eof, write=written.append)
    assert written == [""]
