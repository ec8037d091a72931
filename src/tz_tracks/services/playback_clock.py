"""Wall-clock playback position bookkeeping.

Elapsed time is derived from a monotonic reference instant instead of the
decoder position, so readers never have to touch the audio pipeline.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class PlaybackClock:
    """Elapsed-position tracker owned by the playback engine thread."""

    reference_at: float | None = None
    base_position_s: float = 0.0
    paused: bool = False
    paused_at: float | None = None
    now: Callable[[], float] = field(default=time.monotonic, repr=False)

    def elapsed_s(self, at: float | None = None) -> float:
        if self.reference_at is None:
            return 0.0
        if self.paused and self.paused_at is not None:
            return self.base_position_s + max(0.0, self.paused_at - self.reference_at)
        current = self.now() if at is None else at
        return self.base_position_s + max(0.0, current - self.reference_at)

    def elapsed_seconds(self, at: float | None = None) -> int:
        """Whole seconds played so far (frozen while paused)."""
        return int(math.floor(self.elapsed_s(at)))

    def start(self, position_s: float, *, paused: bool = False) -> None:
        """Restart the clock at `position_s`, e.g. after Play or a rebuild."""
        instant = self.now()
        self.reference_at = instant
        self.base_position_s = max(0.0, float(position_s))
        self.paused = paused
        self.paused_at = instant if paused else None

    def pause(self) -> None:
        if self.reference_at is None or self.paused:
            return
        self.paused = True
        self.paused_at = self.now()

    def resume(self) -> None:
        if not self.paused:
            return
        if self.reference_at is not None and self.paused_at is not None:
            self.base_position_s += max(0.0, self.paused_at - self.reference_at)
        self.reference_at = self.now()
        self.paused = False
        self.paused_at = None

    def seek(self, position_s: float) -> None:
        """Move to `position_s` in place; a paused clock stays frozen there."""
        self.start(position_s, paused=self.paused)

    def reset(self) -> None:
        self.reference_at = None
        self.base_position_s = 0.0
        self.paused = False
        self.paused_at = None
