"""Time formatting and parsing helpers for the command shell."""

from __future__ import annotations

import math


def format_time_s(seconds: float | None) -> str:
    """Format seconds as MM:SS or H:MM:SS; unknown durations render as --:--."""
    if seconds is None:
        return "--:--"
    total = _coerce_s(seconds)
    hours = total // 3600
    minutes = (total // 60) % 60 if hours else total // 60
    secs = total % 60
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_progress(elapsed_s: int, duration_s: int | None) -> str:
    return f"{format_time_s(elapsed_s)} / {format_time_s(duration_s)}"


def parse_clock_time(text: str) -> int | None:
    """Parse `m:ss`, `h:mm:ss` or plain seconds into whole seconds."""
    parts = text.strip().split(":")
    if not parts or len(parts) > 3:
        return None
    try:
        values = [int(part) for part in parts]
    except ValueError:
        return None
    if any(value < 0 for value in values):
        return None
    if len(values) > 1 and any(value >= 60 for value in values[1:]):
        return None
    total = 0
    for value in values:
        total = total * 60 + value
    return total


def _coerce_s(value: float) -> int:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(numeric):
        return 0
    return max(0, int(numeric))
