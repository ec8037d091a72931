"""Session events delivered to subscribers (shell, auto-advance, tests)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tz_tracks.services.session import PlayerStatus, TrackInfo


@dataclass(frozen=True)
class PlayerStateChanged:
    """Emitted after a transport operation changes the session state."""

    status: PlayerStatus


@dataclass(frozen=True)
class TrackChanged:
    """Emitted when a new track is requested, or None after stop."""

    track_info: TrackInfo | None
