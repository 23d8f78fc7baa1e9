"""Wall-clock budget for a fetch session."""

from __future__ import annotations

import time
from collections.abc import Callable


class Deadline:
    """A point in time after which no new work may start."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._started = clock()
        self._expires_at = self._started + seconds

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self._expires_at - self._clock())

    def elapsed(self) -> float:
        return self._clock() - self._started

    def expired(self) -> bool:
        return self._clock() >= self._expires_at
