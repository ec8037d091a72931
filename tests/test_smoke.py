"""Basic smoke tests."""

import tz_tracks
import tz_tracks.version


def test_version_defined() -> None:
    assert isinstance(tz_tracks.__version__, str)


def test_version_single_source_of_truth() -> None:
    assert tz_tracks.__version__ == tz_tracks.version.__version__
