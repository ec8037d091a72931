"""Runtime diagnostics for audio libraries and external tooling."""

from __future__ import annotations

import importlib
import shutil
import subprocess
from dataclasses import dataclass
from typing import Literal

DoctorStatus = Literal["ok", "missing", "error"]

_STATUS_TOKENS: dict[str, str] = {"ok": "[OK]", "missing": "[MISS]", "error": "[ERR]"}


@dataclass(frozen=True)
class DoctorCheck:
    """Outcome of one dependency probe."""

    name: str
    status: DoctorStatus
    required: bool
    detail: str
    hint: str | None = None


@dataclass(frozen=True)
class DoctorReport:
    output: str
    checks: list[DoctorCheck]

    @property
    def exit_code(self) -> int:
        """2 when a required probe did not pass, else 0."""
        failed = [c for c in self.checks if c.required and c.status != "ok"]
        return 2 if failed else 0


def run_doctor(output: str) -> DoctorReport:
    """Probe what the chosen output needs; ffmpeg is always optional."""
    return DoctorReport(
        output=output,
        checks=[
            probe_soundfile(),
            probe_sounddevice(required=output == "sounddevice"),
            probe_ffmpeg(required=False),
        ],
    )


def render_report(report: DoctorReport) -> str:
    lines = [f"tz-tracks doctor (output={report.output})", ""]
    for check in report.checks:
        need = "required" if check.required else "optional"
        token = _STATUS_TOKENS.get(check.status, "[ERR]")
        lines.append(f"{token} {check.name:<12} [{need}] {check.detail}")
        if check.hint:
            lines.append(f"      hint: {check.hint}")
    lines.extend(["", "Result: FAIL" if report.exit_code else "Result: OK"])
    return "\n".join(lines)


def probe_soundfile() -> DoctorCheck:
    """libsndfile decodes every native and FLAC track, so it is always required."""
    try:
        soundfile = importlib.import_module("soundfile")
    except (ImportError, OSError) as exc:
        return DoctorCheck(
            "libsndfile",
            "missing",
            True,
            f"soundfile import failed ({type(exc).__name__})",
            "Reinstall tz-tracks so the soundfile wheel is present.",
        )
    return DoctorCheck(
        "libsndfile",
        "ok",
        True,
        f"soundfile {getattr(soundfile, '__version__', '?')}; "
        f"libsndfile {getattr(soundfile, '__libsndfile_version__', '?')}",
    )


def probe_sounddevice(*, required: bool) -> DoctorCheck:
    try:
        sd = importlib.import_module("sounddevice")
    except (ImportError, OSError) as exc:
        return DoctorCheck(
            "portaudio",
            "missing",
            required,
            f"sounddevice import failed ({type(exc).__name__})",
            "Install the PortAudio runtime (libportaudio2 on Debian/Ubuntu).",
        )
    try:
        devices = list(sd.query_devices())
    except Exception as exc:
        # PortAudioError lives on the module we may have failed to load fully.
        return DoctorCheck(
            "portaudio",
            "error",
            required,
            f"listing devices failed ({type(exc).__name__})",
            "Make sure the sound server is running for this user.",
        )
    outputs = sum(1 for dev in devices if int(dev["max_output_channels"]) > 0)
    if outputs == 0:
        return DoctorCheck(
            "portaudio",
            "error",
            required,
            "no output devices found",
            "Plug in an output device, or run with --output fake.",
        )
    return DoctorCheck(
        "portaudio",
        "ok",
        required,
        f"{sd.get_portaudio_version()[1]}; {outputs} output device(s)",
    )


def probe_ffmpeg(*, required: bool) -> DoctorCheck:
    """ffmpeg decodes the container formats libsndfile cannot read."""
    hint = "Install ffmpeg and put it on PATH to play M4A, AAC, Opus or WMA."
    binary = shutil.which("ffmpeg")
    if binary is None:
        return DoctorCheck("ffmpeg", "missing", required, "not found on PATH", hint)
    try:
        proc = subprocess.run(
            [binary, "-version"],
            capture_output=True,
            text=True,
            timeout=2,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        return DoctorCheck(
            "ffmpeg", "error", required, f"could not run ({type(exc).__name__})", hint
        )
    if proc.returncode != 0:
        return DoctorCheck(
            "ffmpeg",
            "error",
            required,
            f"ffmpeg -version failed (exit={proc.returncode})",
            hint,
        )
    banner = proc.stdout.strip().splitlines()[0] if proc.stdout.strip() else binary
    return DoctorCheck("ffmpeg", "ok", required, banner)
