"""Tests for time formatting helpers."""

from __future__ import annotations

import math

from tz_tracks.utils.time_format import format_progress, format_time_s, parse_clock_time


def test_format_time_s() -> None:
    assert format_time_s(None) == "--:--"
    assert format_time_s(0) == "00:00"
    assert format_time_s(59.9) == "00:59"
    assert format_time_s(61) == "01:01"
    assert format_time_s(3599) == "59:59"
    assert format_time_s(3661) == "1:01:01"


def test_format_time_s_invalid_values_render_zero() -> None:
    assert format_time_s(-5) == "00:00"
    assert format_time_s(math.nan) == "00:00"
    assert format_time_s(math.inf) == "00:00"


def test_format_progress() -> None:
    assert format_progress(5, 30) == "00:05 / 00:30"
    assert format_progress(5, None) == "00:05 / --:--"


def test_parse_clock_time() -> None:
    assert parse_clock_time("90") == 90
    assert parse_clock_time("1:30") == 90
    assert parse_clock_time(" 0:05 ") == 5
    assert parse_clock_time("1:02:03") == 3723


def test_parse_clock_time_rejects_invalid_text() -> None:
    assert parse_clock_time("") is None
    assert parse_clock_time("abc") is None
    assert parse_clock_time("1:60") is None
    assert parse_clock_time("-1:00") is None
    assert parse_clock_time("1:2:3:4") is None
