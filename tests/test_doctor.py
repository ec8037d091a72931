"""Tests for environment diagnostics probes and report behavior."""

from __future__ import annotations

import types

import tz_tracks.doctor as doctor_module


def test_run_doctor_fake_output_allows_missing_portaudio(monkeypatch) -> None:
    monkeypatch.setattr(
        doctor_module, "probe_soundfile", lambda: _check("libsndfile", "ok", True)
    )
    monkeypatch.setattr(
        doctor_module,
        "probe_sounddevice",
        lambda **kwargs: _check("portaudio", "missing", kwargs["required"]),
    )
    monkeypatch.setattr(
        doctor_module,
        "probe_ffmpeg",
        lambda **kwargs: _check("ffmpeg", "missing", kwargs["required"]),
    )

    report = doctor_module.run_doctor("fake")
    assert report.exit_code == 0


def test_run_doctor_sounddevice_output_fails_when_portaudio_missing(
    monkeypatch,
) -> None:
    monkeypatch.setattr(
        doctor_module, "probe_soundfile", lambda: _check("libsndfile", "ok", True)
    )
    monkeypatch.setattr(
        doctor_module,
        "probe_sounddevice",
        lambda **kwargs: _check("portaudio", "missing", kwargs["required"]),
    )
    monkeypatch.setattr(
        doctor_module,
        "probe_ffmpeg",
        lambda **kwargs: _check("ffmpeg", "ok", kwargs["required"]),
    )

    report = doctor_module.run_doctor("sounddevice")
    assert report.exit_code == 2


def test_missing_ffmpeg_never_fails_report(monkeypatch) -> None:
    monkeypatch.setattr(
        doctor_module, "probe_soundfile", lambda: _check("libsndfile", "ok", True)
    )
    monkeypatch.setattr(
        doctor_module,
        "probe_sounddevice",
        lambda **kwargs: _check("portaudio", "ok", kwargs["required"]),
    )
    monkeypatch.setattr(doctor_module.shutil, "which", lambda _name: None)

    report = doctor_module.run_doctor("sounddevice")
    assert report.exit_code == 0
    assert report.checks[-1].status == "missing"


def test_probe_ffmpeg_missing(monkeypatch) -> None:
    monkeypatch.setattr(doctor_module.shutil, "which", lambda _name: None)
    check = doctor_module.probe_ffmpeg(required=False)
    assert check.status == "missing"
    assert check.required is False


def test_probe_ffmpeg_nonzero_version_exit_is_error(monkeypatch) -> None:
    monkeypatch.setattr(doctor_module.shutil, "which", lambda _name: "/usr/bin/ffmpeg")
    monkeypatch.setattr(
        doctor_module.subprocess,
        "run",
        lambda *args, **kwargs: types.SimpleNamespace(
            returncode=1,
            stdout="",
            stderr="ffmpeg: broken install",
        ),
    )
    check = doctor_module.probe_ffmpeg(required=False)
    assert check.status == "error"
    assert "exit=1" in check.detail


def test_probe_soundfile_ok(monkeypatch) -> None:
    fake = types.SimpleNamespace(__version__="9.9.9", __libsndfile_version__="1.2.2")
    monkeypatch.setattr(doctor_module.importlib, "import_module", lambda name: fake)
    check = doctor_module.probe_soundfile()
    assert check.status == "ok"
    assert "9.9.9" in check.detail
    assert "1.2.2" in check.detail


def test_probe_sounddevice_import_failure(monkeypatch) -> None:
    def fail_import(name: str):
        raise OSError("PortAudio library not found")

    monkeypatch.setattr(doctor_module.importlib, "import_module", fail_import)
    check = doctor_module.probe_sounddevice(required=True)
    assert check.status == "missing"
    assert check.required is True
    assert check.hint is not None


def test_probe_sounddevice_counts_output_devices(monkeypatch) -> None:
    fake = types.SimpleNamespace(
        query_devices=lambda: [
            {"name": "Mic", "max_output_channels": 0},
            {"name": "Speakers", "max_output_channels": 2},
        ],
        get_portaudio_version=lambda: (1246720, "PortAudio V19.7.0"),
    )
    monkeypatch.setattr(doctor_module.importlib, "import_module", lambda name: fake)
    check = doctor_module.probe_sounddevice(required=True)
    assert check.status == "ok"
    assert "1 output device(s)" in check.detail


def test_probe_sounddevice_without_outputs_is_error(monkeypatch) -> None:
    fake = types.SimpleNamespace(
        query_devices=lambda: [{"name": "Mic", "max_output_channels": 0}],
        get_portaudio_version=lambda: (0, "PortAudio"),
    )
    monkeypatch.setattr(doctor_module.importlib, "import_module", lambda name: fake)
    check = doctor_module.probe_sounddevice(required=False)
    assert check.status == "error"
    assert "no output devices" in check.detail


def test_render_report_includes_result_and_hint() -> None:
    report = doctor_module.DoctorReport(
        output="sounddevice",
        checks=[
            _check("libsndfile", "ok", True),
            doctor_module.DoctorCheck(
                name="portaudio",
                status="missing",
                required=True,
                detail="missing",
                hint="install portaudio",
            ),
        ],
    )
    text = doctor_module.render_report(report)
    assert "output=sounddevice" in text
    assert "[MISS]" in text
    assert "Result: FAIL" in text
    assert "install portaudio" in text


def _check(name: str, status: str, required: bool) -> doctor_module.DoctorCheck:
    return doctor_module.DoctorCheck(
        name=name,
        status=status,  # type: ignore[arg-type]
        required=required,
        detail="detail",
    )
