from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Iterable, Literal

from flexpomo.common.logger import log
from flexpomo.core.clock import Clock, SystemClock
from flexpomo.core.errors import InvalidTransition
from flexpomo.core.models import ReflectionSummary, SessionRecord, TimerState

MAX_RECORDS = 10000
EXPORT_VERSION = 1

Period = Literal["today", "week", "month", "all"]


@dataclass(frozen=True)
class Statistics:
    total_focus_time: int
    total_reflection_time: int
    total_rest_time: int
    focus_session_count: int
    failed_focus_count: int
    average_focus_time: float
    longest_focus_streak: int


def _to_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def period_bounds(period: Period, now: int) -> tuple[int, int]:
    """Half-open ``[start, end)`` range of the local calendar period containing ``now``."""
    local_now = datetime.fromtimestamp(now / 1000)
    day_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return _to_ms(day_start), _to_ms(day_start + timedelta(days=1))
    if period == "week":
        week_start = day_start - timedelta(days=day_start.weekday())
        return _to_ms(week_start), _to_ms(week_start + timedelta(days=7))
    if period == "month":
        month_start = day_start.replace(day=1)
        if month_start.month == 12:
            next_month = month_start.replace(year=month_start.year + 1, month=1)
        else:
            next_month = month_start.replace(month=month_start.month + 1)
        return _to_ms(month_start), _to_ms(next_month)
    raise ValueError(f"Unknown period '{period}'")


def calculate_statistics(records: Iterable[SessionRecord]) -> Statistics:
    ordered = sorted(records, key=lambda r: r.start_time)
    focus = [r for r in ordered if r.type is TimerState.FOCUS]
    completed_focus = [r for r in focus if r.is_completed and not r.is_failed]

    longest = current = 0
    for record in focus:
        if record.is_failed:
            current = 0
        elif record.is_completed:
            current += 1
            longest = max(longest, current)

    return Statistics(
        total_focus_time=sum(r.duration for r in focus),
        total_reflection_time=sum(r.duration for r in ordered if r.type is TimerState.REFLECTION),
        total_rest_time=sum(r.duration for r in ordered if r.type is TimerState.REST),
        focus_session_count=len(completed_focus),
        failed_focus_count=sum(1 for r in focus if r.is_failed),
        average_focus_time=(
            sum(r.duration for r in completed_focus) / len(completed_focus) if completed_focus else 0.0
        ),
        longest_focus_streak=longest,
    )


class HistoryRecorder:
    """Append-only log of closed sessions.

    Records are frozen; the only after-the-fact change allowed is attaching a
    reflection summary to the latest record while it is a reflection session.
    """

    def __init__(self, records: Iterable[SessionRecord] = (), clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._records: list[SessionRecord] = []
        self._ids: set[str] = set()
        for record in records:
            self.record(record)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> tuple[SessionRecord, ...]:
        return tuple(self._records)

    def record(self, record: SessionRecord) -> SessionRecord:
        record.validate()
        if record.id in self._ids:
            raise ValueError(f"Session record '{record.id}' is already recorded")
        self._records.append(record)
        self._ids.add(record.id)
        if len(self._records) > MAX_RECORDS:
            dropped = self._records[: len(self._records) - MAX_RECORDS]
            del self._records[: len(dropped)]
            self._ids.difference_update(r.id for r in dropped)
            log.info(f"History capped at {MAX_RECORDS} records, dropped {len(dropped)} oldest")
        log.debug(f"Recorded {record.type.value} session {record.id}")
        return record

    def latest(self) -> SessionRecord | None:
        return self._records[-1] if self._records else None

    def get_all(self) -> list[SessionRecord]:
        return list(self._records)

    def get_by_id(self, record_id: str) -> SessionRecord | None:
        return next((r for r in self._records if r.id == record_id), None)

    def get_by_type(self, session_type: TimerState) -> list[SessionRecord]:
        return [r for r in self._records if r.type is session_type]

    def get_in_range(self, start: int, end: int) -> list[SessionRecord]:
        return [r for r in self._records if start <= r.start_time < end]

    def get_period(self, period: Period, now: int | None = None) -> list[SessionRecord]:
        if period == "all":
            return self.get_all()
        start, end = period_bounds(period, self._clock.now() if now is None else now)
        return self.get_in_range(start, end)

    def get_today(self, now: int | None = None) -> list[SessionRecord]:
        return self.get_period("today", now)

    def get_week(self, now: int | None = None) -> list[SessionRecord]:
        return self.get_period("week", now)

    def get_month(self, now: int | None = None) -> list[SessionRecord]:
        return self.get_period("month", now)

    def statistics(self, period: Period = "all", now: int | None = None) -> Statistics:
        return calculate_statistics(self.get_period(period, now))

    def attach_reflection_summary(self, content: str, now: int) -> SessionRecord:
        latest = self.latest()
        if latest is None or latest.type is not TimerState.REFLECTION:
            raise InvalidTransition("Only the most recent reflection session can take a summary")
        # Blank content clears the summary, as it clears a draft during reflection.
        if not content.strip():
            summary = None
        elif latest.reflection_summary is None:
            summary = ReflectionSummary(content=content, created_at=now, updated_at=now)
        else:
            summary = latest.reflection_summary.revised(content, now)
        updated = replace(latest, reflection_summary=summary)
        self._records[-1] = updated
        log.info(f"{'Attached' if summary else 'Cleared'} reflection summary of session {latest.id}")
        return updated

    def export_json(self) -> str:
        return json.dumps(
            {
                "version": EXPORT_VERSION,
                "records": [r.to_dict() for r in self._records],
                "exported_at": self._clock.now(),
            },
            indent=2,
        )

    def import_json(self, payload: str, merge: bool = False) -> int:
        """Import exported records; invalid entries are skipped. Returns how many were added."""
        data = json.loads(payload)
        if not isinstance(data, dict) or not isinstance(data.get("records"), list):
            raise ValueError("Export payload has no 'records' list")

        incoming: list[SessionRecord] = []
        for raw in data["records"]:
            try:
                incoming.append(SessionRecord.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                log.warning(f"Skipping invalid record during import: {exc}")

        if not merge:
            self._records.clear()
            self._ids.clear()
        added = 0
        for record in sorted(incoming, key=lambda r: r.start_time):
            if record.id in self._ids:
                continue
            self.record(record)
            added += 1
        log.info(f"Imported {added} session records (merge={merge})")
        return added
