from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int:
        """Current wall-clock time in epoch milliseconds."""


class SystemClock:
    """Wall clock; unlike ``time.monotonic`` it survives process restarts."""

    def now(self) -> int:
        return time.time_ns() // 1_000_000


class ManualClock:
    """Clock moved explicitly by its owner, for hosts that drive time themselves."""

    def __init__(self, start: int = 0) -> None:
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def set(self, value: int) -> None:
        self._now = int(value)

    def advance(self, milliseconds: int) -> int:
        self._now += int(milliseconds)
        return self._now
