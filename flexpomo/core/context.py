from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Mapping

from PyQt6.QtCore import QObject, pyqtSignal

from flexpomo.common.logger import log
from flexpomo.core.clock import Clock, SystemClock
from flexpomo.core.errors import InvalidTransition, StorageWriteFailure, TimerException
from flexpomo.core.history import HistoryRecorder, Period, Statistics
from flexpomo.core.models import ContinuousFocusStreak, SessionRecord, TimerConfig, TimerState
from flexpomo.core.streak import StreakTracker
from flexpomo.core.timer import TimerEngine, TimerStateData
from flexpomo.data.persistence import (
    ALL_KEYS,
    CONFIG_KEY,
    HISTORY_KEY,
    STREAK_KEY,
    TIMER_STATE_KEY,
    PersistenceAdapter,
    Snapshot,
)


class Action(str, Enum):
    START_FOCUS = "start_focus"
    START_REFLECTION = "start_reflection"
    START_REST = "start_rest"
    CANCEL = "cancel"
    ATTACH_REFLECTION_SUMMARY = "attach_reflection_summary"
    UPDATE_CONFIG = "update_config"


class TimerContext(QObject):
    """Owns one timer and wires it to history, streak and persistence.

    Lifecycle: construct, call ``load()`` once, then every tick and action is
    persisted as it happens. There is no teardown; the last save is the state.
    """

    state_changed = pyqtSignal(object)
    default_time_reached = pyqtSignal(object)
    session_closed = pyqtSignal(object)
    streak_changed = pyqtSignal(object)
    config_changed = pyqtSignal(object)
    data_recovered = pyqtSignal(object)
    storage_write_failed = pyqtSignal(str)

    def __init__(
        self,
        persistence: PersistenceAdapter | None = None,
        clock: Clock | None = None,
        engine: TimerEngine | None = None,
    ) -> None:
        super().__init__()
        self._persistence = persistence
        self._clock = clock or SystemClock()
        self._engine = engine or TimerEngine()
        self._history = HistoryRecorder(clock=self._clock)
        self._streak = StreakTracker()
        self._default_reached = False
        self._dirty: set[str] = set()
        self.last_error: TimerException | None = None

    @property
    def state(self) -> TimerStateData:
        return self._engine.status()

    @property
    def config(self) -> TimerConfig:
        return self._engine.config

    @property
    def history(self) -> HistoryRecorder:
        return self._history

    @property
    def streak(self) -> ContinuousFocusStreak:
        return self._streak.streak

    @property
    def engine(self) -> TimerEngine:
        return self._engine

    def snapshot(self) -> Snapshot:
        return Snapshot(
            timer=self._engine.snapshot(),
            config=self._engine.config,
            history=self._history.records,
            streak=self._streak.streak,
        )

    def statistics(self, period: Period = "all") -> Statistics:
        return self._history.statistics(period, self._clock.now())

    def load(self, now: int | None = None) -> TimerStateData:
        now = self._now(now)
        if self._persistence is None:
            snapshot, issues, corrupted = Snapshot(), (), frozenset()
        else:
            result = self._persistence.load()
            snapshot, issues, corrupted = result.snapshot, result.issues, result.corrupted_keys

        self._engine.configure(snapshot.config)
        self._history = HistoryRecorder(snapshot.history, clock=self._clock)
        if STREAK_KEY in corrupted:
            self._streak = StreakTracker.rebuild(self._history.records, now)
        else:
            self._streak = StreakTracker(snapshot.streak)
        self._engine.restore(snapshot.timer, now)
        status = self._engine.status()
        self._default_reached = status.is_default_time_reached

        if issues:
            self.data_recovered.emit(tuple(issues))
        self._persist(*ALL_KEYS)
        self.config_changed.emit(self._engine.config)
        self.streak_changed.emit(self._streak.streak)
        self.state_changed.emit(status)
        return status

    def tick(self, now: int | None = None) -> TimerStateData:
        self._engine.tick(self._now(now))
        status = self._engine.status()
        log.debug(f"Tick {status.current_state.value} at {status.elapsed_time} ms")
        self._persist(TIMER_STATE_KEY)
        self.state_changed.emit(status)
        self._check_default_time(status)
        return status

    def dispatch(self, action: Action | str, payload: Any = None, now: int | None = None) -> Any:
        handlers: dict[Action, Callable[..., Any]] = {
            Action.START_FOCUS: lambda: self.start_focus(now),
            Action.START_REFLECTION: lambda: self.start_reflection(now),
            Action.START_REST: lambda: self.start_rest(now),
            Action.CANCEL: lambda: self.cancel(now),
            Action.ATTACH_REFLECTION_SUMMARY: lambda: self.attach_reflection_summary(payload, now),
            Action.UPDATE_CONFIG: lambda: self.update_config(payload),
        }
        return handlers[Action(action)]()

    def start_focus(self, now: int | None = None) -> TimerStateData:
        return self._transition(self._engine.start_focus, now)

    def start_reflection(self, now: int | None = None) -> TimerStateData:
        return self._transition(self._engine.start_reflection, now)

    def start_rest(self, now: int | None = None) -> TimerStateData:
        return self._transition(self._engine.start_rest, now)

    def cancel(self, now: int | None = None) -> TimerStateData:
        if not self._engine.is_active:
            return self._engine.status()
        return self._transition(self._engine.cancel, now)

    def attach_reflection_summary(self, content: str, now: int | None = None) -> SessionRecord | None:
        """During reflection the text is kept as a draft; afterwards it goes onto the last reflection record."""
        now = self._now(now)
        try:
            if self._engine.state is TimerState.REFLECTION:
                self._engine.set_reflection_draft(content, now)
                updated = None
            else:
                updated = self._history.attach_reflection_summary(content, now)
        except InvalidTransition as exc:
            self._reject(exc)
            raise
        self._persist(TIMER_STATE_KEY if updated is None else HISTORY_KEY)
        self.state_changed.emit(self._engine.status())
        return updated

    def update_config(self, changes: Mapping[str, Any] | TimerConfig) -> TimerConfig:
        try:
            if isinstance(changes, TimerConfig):
                config = changes.validate()
            else:
                config = self._engine.config.merged(changes)
        except TimerException as exc:
            log.warning(f"Rejected config update: {exc}")
            self.last_error = exc
            raise
        self._engine.configure(config)
        log.info(f"Config updated: {config}")
        self._persist(CONFIG_KEY, TIMER_STATE_KEY)
        self.config_changed.emit(config)
        return config

    def _transition(self, operation: Callable[[int], SessionRecord | None], now: int | None) -> TimerStateData:
        now = self._now(now)
        previous = self._engine.state
        try:
            closed = operation(now)
        except InvalidTransition as exc:
            self._reject(exc)
            raise

        if closed is not None:
            self._history.record(closed)
            if self._streak.on_session_closed(closed, now):
                self.streak_changed.emit(self._streak.streak)
        status = self._engine.status()
        self._default_reached = status.is_default_time_reached
        log.info(f"Transition {previous.value} -> {status.current_state.value}")
        self._persist(TIMER_STATE_KEY, *([] if closed is None else [HISTORY_KEY, STREAK_KEY]))
        if closed is not None:
            self.session_closed.emit(closed)
        self.state_changed.emit(status)
        return status

    def _check_default_time(self, status: TimerStateData) -> None:
        reached = status.is_default_time_reached
        if reached and not self._default_reached:
            log.info(f"Default time reached for {status.current_state.value}")
            self.default_time_reached.emit(status)
        self._default_reached = reached

    def _persist(self, *keys: str) -> None:
        """Save the parts named by ``keys`` plus any left over from a failed save."""
        if self._persistence is None:
            return
        self._dirty.update(keys)
        try:
            self._persistence.save(self.snapshot(), self._dirty)
        except StorageWriteFailure as exc:
            # In-memory state stays authoritative until the next successful save.
            self.last_error = exc
            self.storage_write_failed.emit(exc.message)
            return
        self._dirty.clear()

    def _reject(self, exc: TimerException) -> None:
        log.warning(f"Rejected action in {self._engine.state.value}: {exc}")
        self.last_error = exc

    def _now(self, now: int | None) -> int:
        return self._clock.now() if now is None else now
