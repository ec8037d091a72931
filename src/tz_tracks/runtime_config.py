"""Runtime configuration normalization helpers.

CLI flags and persisted state are merged here so every entrypoint resolves
the same effective settings.
"""

from __future__ import annotations

import math

OUTPUT_NAMES = ("sounddevice", "fake")
DEFAULT_OUTPUT = "sounddevice"
DEFAULT_DEVICE_ALIASES = frozenset({"", "default", "system"})
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

VOLUME_MIN = 0.0
VOLUME_MAX = 1.0
SPEED_MIN = 0.25
SPEED_MAX = 3.0
POLL_INTERVAL_MIN_S = 0.05
POLL_INTERVAL_MAX_S = 0.25
POLL_INTERVAL_DEFAULT_S = 0.1


def resolve_log_level(
    *, verbose: bool, quiet: bool, default: str | None = None
) -> str:
    """Resolve effective log level from CLI flags, then the persisted level.

    Precedence is deterministic: --quiet overrides --verbose, and either flag
    overrides `default`. Unknown level names fall back to INFO.
    """
    if quiet:
        return "WARNING"
    if verbose:
        return "DEBUG"
    if default is not None and default.strip().upper() in LOG_LEVELS:
        return default.strip().upper()
    return "INFO"


def resolve_output_name(cli_output: str | None, state_output: str | None) -> str:
    """Pick the output implementation; CLI wins over persisted state."""
    for candidate in (cli_output, state_output):
        if candidate is None:
            continue
        normalized = candidate.strip().lower()
        if normalized in OUTPUT_NAMES:
            return normalized
    return DEFAULT_OUTPUT


def normalize_device_name(name: str | None) -> str | None:
    """Map blank/"default" device names to None (use the system default)."""
    if name is None:
        return None
    stripped = name.strip()
    if stripped.lower() in DEFAULT_DEVICE_ALIASES:
        return None
    return stripped


def clamp_volume(value: float) -> float:
    return _clamp_finite(value, VOLUME_MIN, VOLUME_MAX, default=VOLUME_MAX)


def clamp_speed(value: float) -> float:
    return _clamp_finite(value, SPEED_MIN, SPEED_MAX, default=1.0)


def clamp_poll_interval(value: float) -> float:
    return _clamp_finite(
        value,
        POLL_INTERVAL_MIN_S,
        POLL_INTERVAL_MAX_S,
        default=POLL_INTERVAL_DEFAULT_S,
    )


def _clamp_finite(value: float, low: float, high: float, *, default: float) -> float:
    numeric = float(value)
    if math.isnan(numeric):
        return default
    return max(low, min(high, numeric))
