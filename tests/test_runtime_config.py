"""Tests for runtime config normalization helpers."""

from __future__ import annotations

import math

import pytest

from tz_tracks.runtime_config import (
    clamp_poll_interval,
    clamp_speed,
    clamp_volume,
    normalize_device_name,
    resolve_log_level,
    resolve_output_name,
)


def test_resolve_log_level_precedence() -> None:
    assert resolve_log_level(verbose=False, quiet=False) == "INFO"
    assert resolve_log_level(verbose=True, quiet=False) == "DEBUG"
    assert resolve_log_level(verbose=False, quiet=True) == "WARNING"
    assert resolve_log_level(verbose=True, quiet=True) == "WARNING"


def test_resolve_log_level_falls_back_to_persisted_level() -> None:
    assert resolve_log_level(verbose=False, quiet=False, default="debug") == "DEBUG"
    assert resolve_log_level(verbose=False, quiet=False, default="ERROR") == "ERROR"
    assert resolve_log_level(verbose=False, quiet=False, default="loud") == "INFO"
    assert resolve_log_level(verbose=False, quiet=True, default="DEBUG") == "WARNING"
    assert resolve_log_level(verbose=True, quiet=False, default="ERROR") == "DEBUG"


def test_resolve_output_name_prefers_cli_then_state() -> None:
    assert resolve_output_name("fake", "sounddevice") == "fake"
    assert resolve_output_name(None, "FAKE") == "fake"
    assert resolve_output_name(None, "vlc") == "sounddevice"
    assert resolve_output_name("bogus", None) == "sounddevice"
    assert resolve_output_name(None, None) == "sounddevice"


@pytest.mark.parametrize("name", [None, "", "  ", "default", "System", " DEFAULT "])
def test_default_device_aliases_map_to_none(name) -> None:
    assert normalize_device_name(name) is None


def test_device_name_is_trimmed() -> None:
    assert normalize_device_name("  USB DAC ") == "USB DAC"


def test_volume_and_speed_bounds() -> None:
    assert clamp_volume(-1.0) == 0.0
    assert clamp_volume(2.0) == 1.0
    assert clamp_volume(0.5) == 0.5
    assert clamp_volume(math.nan) == 1.0
    assert clamp_speed(0.0) == 0.25
    assert clamp_speed(4.0) == 3.0
    assert clamp_speed(math.inf) == 3.0
    assert clamp_speed(math.nan) == 1.0


def test_poll_interval_bounds() -> None:
    assert clamp_poll_interval(0.0) == 0.05
    assert clamp_poll_interval(1.0) == 0.25
    assert clamp_poll_interval(0.1) == 0.1
    assert clamp_poll_interval(math.nan) == 0.1
