"""Folder enumeration producing playlist paths."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from tz_tracks.media_formats import is_supported_audio_file

logger = logging.getLogger(__name__)


def scan_folder(folder: Path | str) -> list[str]:
    """Return supported audio files under `folder`, recursively, sorted by path."""
    root = Path(folder).expanduser()
    if not root.is_dir():
        raise NotADirectoryError(f"Not a folder: {root}")
    found: list[str] = []
    for dirpath, _dirnames, filenames in os.walk(root, onerror=_log_walk_error):
        for filename in filenames:
            candidate = Path(dirpath) / filename
            if candidate.is_file() and is_supported_audio_file(candidate):
                found.append(str(candidate))
    found.sort()
    logger.info("Scanned folder", extra={"folder": str(root), "tracks": len(found)})
    return found


def _log_walk_error(exc: OSError) -> None:
    logger.warning("Skipping unreadable folder: %s", exc)
