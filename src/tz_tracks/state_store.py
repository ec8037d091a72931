"""JSON persistence for user settings carried between runs.

The store is tolerant of invalid or missing values so upgrades and partial
writes degrade to safe defaults instead of aborting startup.
"""

from __future__ import annotations

import errno
import json
import logging
import math
import time
from contextlib import suppress
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

from .runtime_config import (
    DEFAULT_OUTPUT,
    clamp_speed,
    clamp_volume,
    normalize_device_name,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppState:
    """Persisted settings loaded at startup and saved on exit."""

    volume: float = 1.0
    speed: float = 1.0
    output: str = DEFAULT_OUTPUT
    output_device: str | None = None
    default_folder: str | None = None
    log_level: str = "INFO"


def _coerce_state(data: dict[str, Any]) -> AppState:
    """Coerce an untyped JSON object into a validated `AppState`."""

    def _float_or_default(value: Any, default: float) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return default
        normalized = float(value)
        return normalized if math.isfinite(normalized) else default

    def _str_or_default(value: Any, default: str) -> str:
        return value if isinstance(value, str) else default

    def _str_or_none(value: Any) -> str | None:
        if isinstance(value, str) and value.strip():
            return value
        return None

    device = data.get("output_device")
    return AppState(
        volume=clamp_volume(_float_or_default(data.get("volume"), 1.0)),
        speed=clamp_speed(_float_or_default(data.get("speed"), 1.0)),
        output=_str_or_default(data.get("output"), DEFAULT_OUTPUT),
        output_device=normalize_device_name(device)
        if isinstance(device, str)
        else None,
        default_folder=_str_or_none(data.get("default_folder")),
        log_level=_str_or_default(data.get("log_level"), "INFO"),
    )


_REPLACE_ATTEMPTS = 4
_REPLACE_BACKOFF_S = (0.02, 0.05, 0.1)


def _reset_notice(path: Path, cause: str, remedy: str) -> str:
    return (
        "Settings were reset to defaults.\n"
        f"Cause: {cause}.\n"
        f"To fix: {remedy} '{path}', then restart tz-tracks."
    )


def load_state_with_notice(path: Path) -> tuple[AppState, str | None]:
    """Read `path`; the notice is set only when an existing file was unusable."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info("No settings file at %s; starting with defaults", path)
        return AppState(), None
    except OSError as exc:
        logger.warning("Cannot read settings file %s (%s); using defaults", path, exc)
        return AppState(), _reset_notice(
            path, "the settings file could not be read", "check permissions on"
        )

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Settings file %s is invalid JSON (%s); using defaults", path, exc)
        return AppState(), _reset_notice(
            path, "the settings file is corrupt or truncated", "delete or repair"
        )
    if not isinstance(data, dict):
        logger.warning("Settings file %s does not hold an object; using defaults", path)
        return AppState(), _reset_notice(
            path, "the settings file has an unexpected layout", "delete"
        )
    return _coerce_state(data), None


def load_state(path: Path) -> AppState:
    state, _notice = load_state_with_notice(path)
    return state


def save_state(path: Path, state: AppState) -> None:
    """Write `state` next to `path` and swap it in, so readers never see half a file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(f"{path.name}.{uuid4().hex}.tmp")
    text = json.dumps(asdict(state), indent=2, sort_keys=True)
    try:
        staging.write_text(text, encoding="utf-8")
        for attempt in range(_REPLACE_ATTEMPTS):
            try:
                staging.replace(path)
                return
            except OSError as exc:
                last_try = attempt == _REPLACE_ATTEMPTS - 1
                if last_try or not _replace_may_succeed_later(exc):
                    raise
                time.sleep(_REPLACE_BACKOFF_S[min(attempt, len(_REPLACE_BACKOFF_S) - 1)])
    finally:
        with suppress(OSError):
            staging.unlink()


def _replace_may_succeed_later(exc: OSError) -> bool:
    # Windows refuses the swap while an editor or scanner holds the target open.
    if getattr(exc, "winerror", None) in {5, 32}:
        return True
    return getattr(exc, "errno", None) in {errno.EACCES, errno.EBUSY}
