from __future__ import annotations

from typing import Iterable

from flexpomo.common.logger import log
from flexpomo.core.models import ContinuousFocusStreak, SessionRecord, TimerState


def replay(records: Iterable[SessionRecord]) -> int:
    """Length of the trailing run of non-failed focus closures."""
    count = 0
    for record in records:
        if record.type is not TimerState.FOCUS:
            continue
        if record.is_failed:
            count = 0
        elif record.is_completed:
            count += 1
    return count


class StreakTracker:
    """Counts consecutive successful focus sessions.

    Only reacts to closed records handed in by the caller and never reads a
    clock of its own.
    """

    def __init__(self, streak: ContinuousFocusStreak | None = None) -> None:
        self._streak = streak or ContinuousFocusStreak()

    @property
    def streak(self) -> ContinuousFocusStreak:
        return self._streak

    @property
    def count(self) -> int:
        return self._streak.count

    def on_session_closed(self, record: SessionRecord, now: int) -> bool:
        if record.type is not TimerState.FOCUS:
            return False
        if record.is_failed:
            self._streak = ContinuousFocusStreak(count=0, last_update_time=now, last_session_id=record.id)
            log.info(f"Focus session {record.id} failed, streak reset")
            return True
        if not record.is_completed or record.id == self._streak.last_session_id:
            return False
        self._streak = ContinuousFocusStreak(
            count=self._streak.count + 1,
            last_update_time=now,
            last_session_id=record.id,
        )
        log.info(f"Focus streak is now {self._streak.count}")
        return True

    def reset(self, now: int) -> None:
        self._streak = ContinuousFocusStreak(count=0, last_update_time=now)

    @classmethod
    def rebuild(cls, records: Iterable[SessionRecord], now: int) -> StreakTracker:
        records = list(records)
        last_focus = next((r for r in reversed(records) if r.type is TimerState.FOCUS), None)
        return cls(
            ContinuousFocusStreak(
                count=replay(records),
                last_update_time=now,
                last_session_id=last_focus.id if last_focus else None,
            )
        )
