"""Value types shared by the engine, the recorder and the persistence layer."""

from __future__ import annotations

import math
import uuid
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Mapping

from flexpomo.core.errors import ConfigValidationFailure

MINUTE_MS = 60 * 1000
MAX_DURATION_MINUTES = 7 * 24 * 60
DURATION_TOLERANCE_MS = 1000


class TimerState(str, Enum):
    IDLE = "idle"
    FOCUS = "focus"
    REFLECTION = "reflection"
    REST = "rest"


ACTIVE_STATES = (TimerState.FOCUS, TimerState.REFLECTION, TimerState.REST)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def _require_int(data: Mapping[str, Any], key: str, minimum: int = 0) -> int:
    value = data[key]
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"'{key}' must be an integer, got {type(value).__name__}")
    if value < minimum:
        raise ValueError(f"'{key}' must be >= {minimum}, got {value}")
    return value


def _require_bool(data: Mapping[str, Any], key: str) -> bool:
    value = data[key]
    if not isinstance(value, bool):
        raise TypeError(f"'{key}' must be a boolean, got {type(value).__name__}")
    return value


def _require_mapping(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise TypeError(f"{what} must be an object, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class TimerConfig:
    # Durations are in minutes.
    focus_duration: float = 25
    reflection_duration: float = 3
    rest_duration: float = 5
    focus_failure_time: float = 2
    enable_sound: bool = True
    enable_notification: bool = True

    def validate(self) -> TimerConfig:
        errors: list[str] = []
        for name in ("focus_duration", "reflection_duration", "rest_duration", "focus_failure_time"):
            value = getattr(self, name)
            if not _is_number(value) or value <= 0:
                errors.append(f"{name} must be a positive finite number")
            elif value > MAX_DURATION_MINUTES:
                errors.append(f"{name} cannot exceed {MAX_DURATION_MINUTES} minutes")
        for name in ("enable_sound", "enable_notification"):
            if not isinstance(getattr(self, name), bool):
                errors.append(f"{name} must be a boolean")
        if (
            _is_number(self.focus_failure_time)
            and _is_number(self.focus_duration)
            and self.focus_failure_time > self.focus_duration
        ):
            errors.append("focus_failure_time cannot exceed focus_duration")
        if errors:
            raise ConfigValidationFailure(errors)
        return self

    def merged(self, changes: Mapping[str, Any]) -> TimerConfig:
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ConfigValidationFailure([f"unknown config key '{key}'" for key in unknown])
        values = asdict(self)
        values.update(changes)
        return TimerConfig(**values).validate()

    def target_duration_ms(self, state: TimerState) -> int:
        minutes = {
            TimerState.FOCUS: self.focus_duration,
            TimerState.REFLECTION: self.reflection_duration,
            TimerState.REST: self.rest_duration,
        }.get(state, 0)
        return int(round(minutes * MINUTE_MS))

    @property
    def focus_failure_ms(self) -> int:
        return int(round(self.focus_failure_time * MINUTE_MS))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> TimerConfig:
        """Missing keys fall back to defaults, unknown keys are ignored."""
        data = _require_mapping(data, "config")
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known}).validate()


DEFAULT_CONFIG = TimerConfig()


@dataclass(frozen=True)
class ReflectionSummary:
    content: str
    created_at: int
    updated_at: int

    def revised(self, content: str, now: int) -> ReflectionSummary:
        return ReflectionSummary(content=content, created_at=self.created_at, updated_at=now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> ReflectionSummary:
        data = _require_mapping(data, "reflection_summary")
        content = data["content"]
        if not isinstance(content, str):
            raise TypeError("reflection summary content must be a string")
        return cls(
            content=content,
            created_at=_require_int(data, "created_at"),
            updated_at=_require_int(data, "updated_at"),
        )


@dataclass(frozen=True)
class SessionMetadata:
    target_duration: int
    was_interrupted: bool
    time_jumps: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> SessionMetadata:
        data = _require_mapping(data, "metadata")
        return cls(
            target_duration=_require_int(data, "target_duration"),
            was_interrupted=_require_bool(data, "was_interrupted"),
            time_jumps=_require_int(data, "time_jumps") if "time_jumps" in data else 0,
        )


def new_session_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class SessionRecord:
    id: str
    type: TimerState
    start_time: int
    end_time: int
    duration: int
    is_completed: bool
    is_failed: bool = False
    metadata: SessionMetadata | None = None
    reflection_summary: ReflectionSummary | None = None

    def validate(self) -> SessionRecord:
        if not isinstance(self.id, str) or not self.id:
            raise ValueError("record id must be a non-empty string")
        if self.type not in ACTIVE_STATES:
            raise ValueError(f"record type must be an active state, got {self.type!r}")
        if self.end_time < self.start_time:
            raise ValueError("record end_time precedes start_time")
        if abs((self.end_time - self.start_time) - self.duration) > DURATION_TOLERANCE_MS:
            raise ValueError("record duration does not match its start and end times")
        if self.is_failed and self.type is not TimerState.FOCUS:
            raise ValueError("only focus sessions can fail")
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
            "is_completed": self.is_completed,
            "is_failed": self.is_failed,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "reflection_summary": self.reflection_summary.to_dict() if self.reflection_summary else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> SessionRecord:
        data = _require_mapping(data, "session record")
        metadata = data.get("metadata")
        summary = data.get("reflection_summary")
        return cls(
            id=data["id"],
            type=TimerState(data["type"]),
            start_time=_require_int(data, "start_time"),
            end_time=_require_int(data, "end_time"),
            duration=_require_int(data, "duration"),
            is_completed=_require_bool(data, "is_completed"),
            is_failed=_require_bool(data, "is_failed") if "is_failed" in data else False,
            metadata=SessionMetadata.from_dict(metadata) if metadata is not None else None,
            reflection_summary=ReflectionSummary.from_dict(summary) if summary is not None else None,
        ).validate()


@dataclass(frozen=True)
class ContinuousFocusStreak:
    count: int = 0
    last_update_time: int = 0
    last_session_id: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> ContinuousFocusStreak:
        """Lenient decode: out-of-range values are clamped instead of rejected."""
        data = _require_mapping(data, "streak")
        count = data.get("count", 0)
        if not _is_number(count):
            raise ValueError("streak count must be a finite number")
        last_update_time = data.get("last_update_time", 0)
        if not _is_number(last_update_time):
            raise ValueError("streak last_update_time must be a finite number")
        last_session_id = data.get("last_session_id")
        return cls(
            count=max(0, int(count)),
            last_update_time=max(0, int(last_update_time)),
            last_session_id=last_session_id if isinstance(last_session_id, str) else None,
        )
