from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from flexpomo.common.logger import log
from flexpomo.core.anomaly import (
    BACKWARD_JUMP_THRESHOLD_MS,
    FORWARD_JUMP_THRESHOLD_MS,
    TimeJump,
    classify,
)
from flexpomo.core.errors import InvalidTransition
from flexpomo.core.models import (
    DEFAULT_CONFIG,
    ReflectionSummary,
    SessionMetadata,
    SessionRecord,
    TimerConfig,
    TimerState,
    new_session_id,
)


@dataclass(frozen=True)
class AvailableActions:
    can_start_focus: bool
    can_switch_to_reflection: bool
    can_switch_to_rest: bool
    can_cancel: bool


@dataclass(frozen=True)
class TimerStateData:
    current_state: TimerState
    start_time: int | None
    elapsed_time: int
    is_default_time_reached: bool
    can_switch_state: bool
    available_actions: AvailableActions

    def to_dict(self) -> dict[str, Any]:
        actions = self.available_actions
        return {
            "current_state": self.current_state.value,
            "start_time": self.start_time,
            "elapsed_time": self.elapsed_time,
            "is_default_time_reached": self.is_default_time_reached,
            "can_switch_state": self.can_switch_state,
            "available_actions": {
                "can_start_focus": actions.can_start_focus,
                "can_switch_to_reflection": actions.can_switch_to_reflection,
                "can_switch_to_rest": actions.can_switch_to_rest,
                "can_cancel": actions.can_cancel,
            },
        }


def is_default_time_reached(state: TimerState, elapsed_ms: int, config: TimerConfig) -> bool:
    if state is TimerState.IDLE:
        return False
    return elapsed_ms >= config.target_duration_ms(state)


def can_switch_state(state: TimerState, elapsed_ms: int, config: TimerConfig) -> bool:
    if state is TimerState.IDLE:
        return False
    if state is TimerState.FOCUS:
        return elapsed_ms >= config.focus_failure_ms
    return True


def available_actions(state: TimerState, can_switch: bool) -> AvailableActions:
    focus_switch = state is TimerState.FOCUS and can_switch
    return AvailableActions(
        can_start_focus=state in (TimerState.IDLE, TimerState.REST),
        can_switch_to_reflection=focus_switch,
        can_switch_to_rest=focus_switch or state is TimerState.REFLECTION,
        can_cancel=state is not TimerState.IDLE,
    )


def project(state: TimerState, start_time: int | None, elapsed_ms: int, config: TimerConfig) -> TimerStateData:
    switchable = can_switch_state(state, elapsed_ms, config)
    return TimerStateData(
        current_state=state,
        start_time=start_time,
        elapsed_time=elapsed_ms,
        is_default_time_reached=is_default_time_reached(state, elapsed_ms, config),
        can_switch_state=switchable,
        available_actions=available_actions(state, switchable),
    )


@dataclass(frozen=True)
class TimerSnapshot:
    """Primitive, persistable state of the engine. Derived flags are not part of it."""

    state: TimerState = TimerState.IDLE
    start_time: int | None = None
    elapsed_time: int = 0
    session_config: TimerConfig | None = None
    time_jumps: int = 0
    reflection_draft: ReflectionSummary | None = None

    def to_dict(self, config: TimerConfig = DEFAULT_CONFIG) -> dict[str, Any]:
        # Derived flags are written for readers of the raw store and ignored on load.
        payload = project(self.state, self.start_time, self.elapsed_time, self.session_config or config).to_dict()
        payload["session"] = None
        if self.state is not TimerState.IDLE:
            payload["session"] = {
                "config": self.session_config.to_dict() if self.session_config else None,
                "time_jumps": self.time_jumps,
                "reflection_draft": self.reflection_draft.to_dict() if self.reflection_draft else None,
            }
        return payload

    @classmethod
    def from_dict(cls, data: Any, config: TimerConfig = DEFAULT_CONFIG) -> TimerSnapshot:
        if not isinstance(data, Mapping):
            raise TypeError("timer state must be an object")
        state = TimerState(data["current_state"])
        start_time = data.get("start_time")
        elapsed = data.get("elapsed_time", 0)
        if not isinstance(elapsed, int) or isinstance(elapsed, bool) or elapsed < 0:
            raise ValueError("elapsed_time must be a non-negative integer")
        if state is TimerState.IDLE:
            if start_time is not None:
                raise ValueError("idle timer state cannot carry a start_time")
            return cls()
        if not isinstance(start_time, int) or isinstance(start_time, bool) or start_time < 0:
            raise ValueError(f"{state.value} timer state requires an integer start_time")
        session = data.get("session") or {}
        if not isinstance(session, Mapping):
            raise TypeError("session must be an object")
        raw_config = session.get("config")
        draft = session.get("reflection_draft")
        time_jumps = session.get("time_jumps", 0)
        if not isinstance(time_jumps, int) or isinstance(time_jumps, bool) or time_jumps < 0:
            raise ValueError("time_jumps must be a non-negative integer")
        return cls(
            state=state,
            start_time=start_time,
            elapsed_time=elapsed,
            session_config=TimerConfig.from_dict(raw_config) if raw_config is not None else config,
            time_jumps=time_jumps,
            reflection_draft=ReflectionSummary.from_dict(draft) if draft is not None else None,
        )


class TimerEngine:
    """Idle/Focus/Reflection/Rest state machine driven by explicit clock samples.

    The engine never reads a clock itself: every operation takes ``now`` in epoch
    milliseconds. Closing a session returns its ``SessionRecord``; recording it is
    the caller's job.
    """

    def __init__(
        self,
        config: TimerConfig = DEFAULT_CONFIG,
        *,
        backward_threshold_ms: int = BACKWARD_JUMP_THRESHOLD_MS,
        forward_threshold_ms: int = FORWARD_JUMP_THRESHOLD_MS,
    ) -> None:
        self._config = config.validate()
        self._backward_threshold_ms = backward_threshold_ms
        self._forward_threshold_ms = forward_threshold_ms
        self._state = TimerState.IDLE
        self._start_time: int | None = None
        self._elapsed = 0
        self._session_config: TimerConfig | None = None
        self._time_jumps = 0
        self._reflection_draft: ReflectionSummary | None = None
        self._last_sample: int | None = None

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is not TimerState.IDLE

    @property
    def start_time(self) -> int | None:
        return self._start_time

    @property
    def elapsed_time(self) -> int:
        return self._elapsed

    @property
    def config(self) -> TimerConfig:
        return self._config

    @property
    def effective_config(self) -> TimerConfig:
        """Config pinned to the open session, or the current one when idle."""
        return self._session_config or self._config

    @property
    def reflection_draft(self) -> ReflectionSummary | None:
        return self._reflection_draft

    def configure(self, config: TimerConfig) -> None:
        # Applies from the next session on; the open one keeps its pinned config.
        self._config = config.validate()

    def status(self) -> TimerStateData:
        return project(self._state, self._start_time, self._elapsed, self.effective_config)

    def snapshot(self) -> TimerSnapshot:
        if self._state is TimerState.IDLE:
            return TimerSnapshot()
        return TimerSnapshot(
            state=self._state,
            start_time=self._start_time,
            elapsed_time=self._elapsed,
            session_config=self._session_config,
            time_jumps=self._time_jumps,
            reflection_draft=self._reflection_draft,
        )

    def restore(self, snapshot: TimerSnapshot, now: int) -> TimeJump:
        """Resume a persisted session, counting the time spent unloaded."""
        self._reset()
        self._last_sample = now
        if snapshot.state is TimerState.IDLE or snapshot.start_time is None:
            return TimeJump.NORMAL

        self._state = snapshot.state
        self._session_config = snapshot.session_config or self._config
        self._time_jumps = snapshot.time_jumps
        self._reflection_draft = snapshot.reflection_draft
        self._start_time = snapshot.start_time

        jump = self._classify(snapshot.start_time, now)
        if jump is TimeJump.NORMAL:
            self._elapsed = max(0, now - snapshot.start_time)
        else:
            if jump is TimeJump.FORWARD:
                self._elapsed = self._forward_threshold_ms
            else:
                self._elapsed = snapshot.elapsed_time
            self._start_time = now - self._elapsed
            self._time_jumps += 1
            log.warning(
                f"Resumed {self._state.value} session across a {jump.value} "
                f"(persisted start {snapshot.start_time}, now {now}); elapsed clamped to {self._elapsed} ms"
            )
        log.info(f"Resumed {self._state.value} session at {self._elapsed} ms elapsed")
        return jump

    def tick(self, now: int) -> TimeJump:
        previous = self._last_sample if self._last_sample is not None else now
        self._last_sample = now
        if self._state is TimerState.IDLE or self._start_time is None:
            return TimeJump.NORMAL

        jump = self._classify(previous, now)
        if jump is TimeJump.NORMAL:
            self._elapsed = max(self._elapsed, now - self._start_time, 0)
        else:
            # Drop the jumped interval: keep elapsed as it was and rebase the start.
            self._start_time = now - self._elapsed
            self._time_jumps += 1
            log.warning(
                f"Detected {jump.value} of {now - previous} ms during {self._state.value}; "
                f"elapsed kept at {self._elapsed} ms"
            )
        return jump

    def start_focus(self, now: int) -> SessionRecord | None:
        self.tick(now)
        if not self.status().available_actions.can_start_focus:
            raise InvalidTransition(f"Cannot start focus from {self._state.value}")
        closed = self._close() if self._state is TimerState.REST else None
        self._open(TimerState.FOCUS, now)
        return closed

    def start_reflection(self, now: int) -> SessionRecord:
        self.tick(now)
        if not self.status().available_actions.can_switch_to_reflection:
            raise InvalidTransition(self._rejection("reflection"))
        closed = self._close()
        self._open(TimerState.REFLECTION, now)
        return closed

    def start_rest(self, now: int) -> SessionRecord:
        self.tick(now)
        if not self.status().available_actions.can_switch_to_rest:
            raise InvalidTransition(self._rejection("rest"))
        closed = self._close()
        self._open(TimerState.REST, now)
        return closed

    def cancel(self, now: int) -> SessionRecord | None:
        # Never blocked: the user must always be able to get back to idle.
        if self._state is TimerState.IDLE:
            return None
        self.tick(now)
        closed = self._close()
        self._reset()
        self._last_sample = now
        return closed

    def set_reflection_draft(self, content: str, now: int) -> ReflectionSummary | None:
        if self._state is not TimerState.REFLECTION:
            raise InvalidTransition("A reflection draft can only be written during reflection")
        if not content.strip():
            self._reflection_draft = None
        elif self._reflection_draft is None:
            self._reflection_draft = ReflectionSummary(content=content, created_at=now, updated_at=now)
        else:
            self._reflection_draft = self._reflection_draft.revised(content, now)
        return self._reflection_draft

    def _classify(self, previous: int, current: int) -> TimeJump:
        return classify(
            previous,
            current,
            backward_threshold_ms=self._backward_threshold_ms,
            forward_threshold_ms=self._forward_threshold_ms,
        )

    def _rejection(self, target: str) -> str:
        if self._state is TimerState.FOCUS:
            remaining = self.effective_config.focus_failure_ms - self._elapsed
            return f"Cannot switch to {target} yet: {remaining} ms of focus left before the failure time"
        return f"Cannot switch to {target} from {self._state.value}"

    def _close(self) -> SessionRecord:
        if self._state is TimerState.IDLE or self._start_time is None:
            raise InvalidTransition("There is no open session to close")
        state = self._state
        config = self.effective_config
        failed = state is TimerState.FOCUS and not can_switch_state(state, self._elapsed, config)
        target = config.target_duration_ms(state)
        end_time = self._start_time + self._elapsed
        record = SessionRecord(
            id=new_session_id(),
            type=state,
            start_time=self._start_time,
            end_time=end_time,
            duration=end_time - self._start_time,
            is_completed=not failed,
            is_failed=failed,
            metadata=SessionMetadata(
                target_duration=target,
                was_interrupted=self._elapsed < target,
                time_jumps=self._time_jumps,
            ),
            reflection_summary=self._reflection_draft if state is TimerState.REFLECTION else None,
        )
        log.info(
            f"Closed {state.value} session {record.id} after {record.duration} ms "
            f"(completed={record.is_completed}, failed={record.is_failed})"
        )
        return record

    def _open(self, state: TimerState, now: int) -> None:
        self._state = state
        self._start_time = now
        self._elapsed = 0
        self._session_config = self._config
        self._time_jumps = 0
        self._reflection_draft = None
        self._last_sample = now
        log.info(f"Opened {state.value} session at {now}")

    def _reset(self) -> None:
        self._state = TimerState.IDLE
        self._start_time = None
        self._elapsed = 0
        self._session_config = None
        self._time_jumps = 0
        self._reflection_draft = None
