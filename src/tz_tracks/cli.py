"""Command-line interface for tz-tracks."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from . import __version__
from .doctor import render_report, run_doctor
from .events import TrackChanged
from .logging_utils import setup_logging
from .paths import log_dir, state_path
from .runtime_config import (
    OUTPUT_NAMES,
    clamp_speed,
    clamp_volume,
    normalize_device_name,
    resolve_log_level,
    resolve_output_name,
)
from .services.audio_output import AudioOutput, SoundDeviceOutput
from .services.fake_output import FakeOutput
from .services.library import scan_folder
from .services.playback_engine import PlaybackEngine
from .services.session import AutoAdvancer, PlayerSession, SessionState, TrackInfo
from .shell import CommandShell, run_interactive
from .state_store import AppState, load_state_with_notice, save_state
from .version import build_help_epilog

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tz-tracks",
        description="Play a folder of audio tracks from the terminal.",
        epilog=build_help_epilog(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "paths",
        nargs="*",
        help="Audio files or folders to load into the playlist.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument(
        "--quiet", action="store_true", help="Only show warnings and errors"
    )
    parser.add_argument("--log-file", help="Write logs to a file path")
    parser.add_argument(
        "--output",
        choices=OUTPUT_NAMES,
        help="Audio output implementation (sounddevice or fake).",
    )
    parser.add_argument("--device", help="Output device name to start on.")
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List output devices and exit.",
    )
    parser.add_argument(
        "--volume",
        type=float,
        help="Starting volume in percent (0-100).",
    )
    parser.add_argument(
        "--doctor",
        action="store_true",
        help="Check audio libraries and tooling, then exit.",
    )
    return parser


def build_output(name: str) -> AudioOutput:
    if name == "fake":
        return FakeOutput()
    return SoundDeviceOutput()


def collect_tracks(paths: list[str]) -> list[str]:
    """Expand folders to their audio files; files are kept as given."""
    tracks: list[str] = []
    for raw in paths:
        path = Path(raw).expanduser()
        if path.is_dir():
            tracks.extend(scan_folder(path))
        else:
            tracks.append(str(path))
    return tracks


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        path = state_path()
        state, notice = load_state_with_notice(path)
        level = resolve_log_level(
            verbose=args.verbose, quiet=args.quiet, default=state.log_level
        )
        setup_logging(
            log_dir=log_dir(),
            level=level,
            log_file=Path(args.log_file) if args.log_file else None,
        )
        logger.info("Starting tz-tracks CLI")
        if notice:
            print(notice, file=sys.stderr)
        output_name = resolve_output_name(args.output, state.output)

        if args.doctor:
            report = run_doctor(output_name)
            print(render_report(report))
            return report.exit_code

        output = build_output(output_name)
        if args.list_devices:
            for index, name in enumerate(output.list_devices(), start=1):
                print(f"{index}. {name}")
            return 0

        if args.volume is not None:
            state = replace(state, volume=clamp_volume(args.volume / 100))
        if args.device is not None:
            state = replace(state, output_device=normalize_device_name(args.device))
        final_state = run_player(state, output, args.paths, path)
        save_state(path, final_state)
        return 0
    except Exception as exc:  # pragma: no cover - top-level safety net
        logger.exception("Unhandled error: %s", exc)
        print("Unexpected error. Re-run with --verbose for details.", file=sys.stderr)
        return 1


def run_player(
    state: AppState,
    output: AudioOutput,
    paths: list[str],
    state_file: Path,
) -> AppState:
    """Run the interactive shell and return the settings to persist."""
    engine = PlaybackEngine(
        output, device_name=state.output_device, speed=state.speed
    )
    session = PlayerSession(
        engine,
        emit_event=_log_event,
        initial_state=SessionState(
            volume=state.volume,
            speed=state.speed,
            output_device=state.output_device,
        ),
    )
    current = state

    def save_default_folder(folder: str | None) -> None:
        nonlocal current
        current = replace(current, default_folder=folder)
        save_state(state_file, current)

    shell = CommandShell(
        session,
        default_folder=state.default_folder,
        save_default_folder=save_default_folder,
    )
    advancer = AutoAdvancer(session, on_advance=_announce)
    engine.start()
    try:
        if paths:
            tracks = session.load_playlist(collect_tracks(paths))
            print(f"Loaded {len(tracks)} track(s)")
        elif state.default_folder:
            print(shell.execute(f"open {state.default_folder}"))
        print("Type :help for commands.")
        advancer.start()
        run_interactive(shell)
    finally:
        advancer.stop()
        session.stop()
        engine.shutdown()
    final = session.state
    return replace(
        current,
        volume=clamp_volume(final.volume),
        speed=clamp_speed(final.speed),
        output_device=final.output_device,
    )


def _announce(info: TrackInfo) -> None:
    print(f"\nNow playing {info.index + 1}. {info.name}")


def _log_event(event: object) -> None:
    if isinstance(event, TrackChanged) and event.track_info is not None:
        logger.info(
            "Track changed",
            extra={"track": event.track_info.name, "index": event.track_info.index},
        )


if __name__ == "__main__":
    raise SystemExit(main())
