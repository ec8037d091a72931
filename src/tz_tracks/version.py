"""Project metadata shown in CLI help."""

from __future__ import annotations

import platform

from . import __version__

__all__ = ["PROJECT_URL", "build_help_epilog"]

PROJECT_URL = "https://github.com/taggedzi/tz-tracks"


def build_help_epilog() -> str:
    return (
        f"Project URL: {PROJECT_URL}\n"
        f"Platform: {platform.platform()}\n"
        f"Version: {__version__}"
    )
