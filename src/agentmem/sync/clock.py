"""Time source for debouncing and periodic sweeps."""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Seconds on a monotonic scale."""
        ...


class SystemClock:
    """Wall-independent clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()
