"""Test configuration."""

from __future__ import annotations

import sys
import time
from collections.abc import Callable
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from tz_tracks.services.fake_output import FakeOutput, FakeSourceOpener  # noqa: E402
from tz_tracks.services.playback_engine import PlaybackEngine  # noqa: E402

TRACK_A = "/music/a.mp3"
TRACK_B = "/music/b.ogg"
TRACK_FLAC = "/music/c.flac"


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll `predicate` until it holds or `timeout` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def fake_output() -> FakeOutput:
    return FakeOutput(tick_interval_ms=10)


@pytest.fixture
def source_opener() -> FakeSourceOpener:
    return FakeSourceOpener({TRACK_A: 30.0, TRACK_B: 45.0, TRACK_FLAC: 20.0})


@pytest.fixture
def engine(fake_output: FakeOutput, source_opener: FakeSourceOpener):
    instance = PlaybackEngine(
        fake_output,
        source_opener=source_opener,
        poll_interval_s=0.05,
    )
    instance.start()
    try:
        yield instance
    finally:
        instance.shutdown()
