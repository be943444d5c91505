import pytest

from flexpomo.core.anomaly import FORWARD_JUMP_THRESHOLD_MS
from flexpomo.core.errors import InvalidTransition
from flexpomo.core.models import TimerConfig, TimerState
from flexpomo.core.timer import (
    TimerEngine,
    TimerSnapshot,
    available_actions,
    can_switch_state,
    is_default_time_reached,
)

MINUTE = 60 * 1000
T0 = 1_700_000_000_000


def make_engine(**config) -> TimerEngine:
    return TimerEngine(TimerConfig(**config))


def assert_consistent(engine: TimerEngine) -> None:
    status = engine.status()
    assert (status.current_state == TimerState.IDLE) == (status.start_time is None)
    assert status.elapsed_time >= 0


def test_derived_flags_are_pure_functions_of_primitives() -> None:
    config = TimerConfig(focus_duration=25, focus_failure_time=2)

    assert can_switch_state(TimerState.FOCUS, 2 * MINUTE - 1, config) is False
    assert can_switch_state(TimerState.FOCUS, 2 * MINUTE, config) is True
    assert can_switch_state(TimerState.REST, 0, config) is True
    assert can_switch_state(TimerState.IDLE, 0, config) is False
    assert is_default_time_reached(TimerState.FOCUS, 25 * MINUTE, config) is True
    assert is_default_time_reached(TimerState.IDLE, 10**9, config) is False

    idle = available_actions(TimerState.IDLE, False)
    assert idle.can_start_focus and not idle.can_cancel
    reflection = available_actions(TimerState.REFLECTION, True)
    assert reflection.can_switch_to_rest and not reflection.can_start_focus
    rest = available_actions(TimerState.REST, True)
    assert rest.can_start_focus and not rest.can_switch_to_rest


def test_switch_unlocks_exactly_at_focus_failure_time() -> None:
    engine = make_engine(focus_failure_time=2)
    engine.start_focus(T0)

    engine.tick(T0 + 2 * MINUTE - 1)
    assert engine.status().available_actions.can_switch_to_reflection is False

    engine.tick(T0 + 2 * MINUTE)
    assert engine.status().available_actions.can_switch_to_reflection is True


def test_cancel_before_failure_time_fails_focus() -> None:
    engine = make_engine(focus_failure_time=2)
    engine.start_focus(T0)

    record = engine.cancel(T0 + 10_000)

    assert record is not None
    assert record.type == TimerState.FOCUS
    assert record.is_failed is True
    assert record.is_completed is False
    assert record.duration == 10_000
    assert engine.state == TimerState.IDLE
    assert_consistent(engine)


def test_cancel_after_failure_time_completes_focus() -> None:
    engine = make_engine(focus_failure_time=2)
    engine.start_focus(T0)

    record = engine.cancel(T0 + 3 * MINUTE)

    assert record.is_completed is True
    assert record.is_failed is False
    assert record.metadata.was_interrupted is True


def test_cancel_when_idle_is_a_noop() -> None:
    engine = make_engine()
    assert engine.cancel(T0) is None
    assert engine.state == TimerState.IDLE


def test_default_time_reached_then_reflection_closes_successful_focus() -> None:
    engine = make_engine(focus_duration=25)
    engine.start_focus(T0)

    engine.tick(T0 + 25 * MINUTE)
    assert engine.status().is_default_time_reached is True

    record = engine.start_reflection(T0 + 25 * MINUTE)
    assert record.is_failed is False
    assert record.is_completed is True
    assert record.metadata.target_duration == 25 * MINUTE
    assert record.metadata.was_interrupted is False
    assert engine.state == TimerState.REFLECTION
    assert engine.elapsed_time == 0


def test_full_cycle_closes_each_session() -> None:
    engine = make_engine(focus_failure_time=1)
    engine.start_focus(T0)
    focus = engine.start_rest(T0 + 5 * MINUTE)
    rest = engine.start_focus(T0 + 10 * MINUTE)

    assert focus.type == TimerState.FOCUS and rest.type == TimerState.REST
    assert rest.start_time == focus.end_time
    assert engine.state == TimerState.FOCUS
    assert engine.start_time == T0 + 10 * MINUTE


@pytest.mark.parametrize(
    "prepare, action",
    [
        (lambda e: None, "start_reflection"),
        (lambda e: None, "start_rest"),
        (lambda e: e.start_focus(T0), "start_focus"),
        (lambda e: e.start_focus(T0), "start_reflection"),
    ],
)
def test_invalid_transitions_leave_state_unchanged(prepare, action) -> None:
    engine = make_engine(focus_failure_time=2)
    prepare(engine)
    before = engine.snapshot()

    with pytest.raises(InvalidTransition):
        getattr(engine, action)(T0 + 1000)

    after = engine.snapshot()
    assert after.state == before.state
    assert after.start_time == before.start_time
    assert_consistent(engine)


def test_reflection_cannot_start_focus_directly() -> None:
    engine = make_engine(focus_failure_time=1)
    engine.start_focus(T0)
    engine.start_reflection(T0 + 2 * MINUTE)

    with pytest.raises(InvalidTransition):
        engine.start_focus(T0 + 3 * MINUTE)


def test_small_backward_drift_never_shrinks_elapsed() -> None:
    engine = make_engine()
    engine.start_focus(T0)
    engine.tick(T0 + 10 * MINUTE)

    jump = engine.tick(T0 + 8 * MINUTE)

    assert jump.value == "normal"
    assert engine.elapsed_time == 10 * MINUTE


def test_long_sleep_inside_band_counts_as_elapsed() -> None:
    engine = make_engine()
    engine.start_focus(T0)

    engine.tick(T0 + 8 * 60 * MINUTE)

    assert engine.elapsed_time == 8 * 60 * MINUTE
    assert engine.snapshot().time_jumps == 0


def test_backward_jump_rebases_start_and_flags_session() -> None:
    engine = make_engine()
    engine.start_focus(T0)
    engine.tick(T0 + 10 * MINUTE)

    jump = engine.tick(T0 - 60 * MINUTE)

    assert jump.value == "backward_jump"
    assert engine.elapsed_time == 10 * MINUTE
    assert engine.start_time == T0 - 70 * MINUTE
    assert engine.state == TimerState.FOCUS

    engine.tick(T0 - 59 * MINUTE)
    assert engine.elapsed_time == 11 * MINUTE
    record = engine.cancel(T0 - 59 * MINUTE)
    assert record.metadata.time_jumps == 1


def test_forward_jump_is_not_counted() -> None:
    engine = make_engine()
    engine.start_focus(T0)
    engine.tick(T0 + MINUTE)

    jump = engine.tick(T0 + MINUTE + FORWARD_JUMP_THRESHOLD_MS + 1)

    assert jump.value == "forward_jump"
    assert engine.elapsed_time == MINUTE
    assert engine.state == TimerState.FOCUS


def test_restore_recomputes_elapsed_from_start_time() -> None:
    config = TimerConfig()
    stale = TimerSnapshot(
        state=TimerState.FOCUS,
        start_time=T0 - 10 * MINUTE,
        elapsed_time=1000,
        session_config=config,
    )
    engine = TimerEngine(config)

    engine.restore(stale, T0)

    assert engine.elapsed_time == 600_000
    assert engine.state == TimerState.FOCUS
    assert engine.start_time == T0 - 10 * MINUTE


def test_restore_far_future_start_uses_persisted_elapsed() -> None:
    engine = TimerEngine()
    snapshot = TimerSnapshot(
        state=TimerState.REST,
        start_time=T0 + 60 * MINUTE,
        elapsed_time=2 * MINUTE,
        session_config=TimerConfig(),
    )

    engine.restore(snapshot, T0)

    assert engine.elapsed_time == 2 * MINUTE
    assert engine.start_time == T0 - 2 * MINUTE
    assert engine.snapshot().time_jumps == 1


def test_restore_clamps_sessions_older_than_forward_threshold() -> None:
    engine = TimerEngine()
    snapshot = TimerSnapshot(
        state=TimerState.REST,
        start_time=T0 - 3 * FORWARD_JUMP_THRESHOLD_MS,
        session_config=TimerConfig(),
    )

    engine.restore(snapshot, T0)

    assert engine.elapsed_time == FORWARD_JUMP_THRESHOLD_MS
    assert engine.state == TimerState.REST


def test_config_change_applies_to_next_session_only() -> None:
    engine = make_engine(focus_duration=25, focus_failure_time=2)
    engine.start_focus(T0)
    engine.configure(TimerConfig(focus_duration=50, focus_failure_time=10))

    engine.tick(T0 + 3 * MINUTE)
    assert engine.status().can_switch_state is True

    engine.cancel(T0 + 3 * MINUTE)
    engine.start_focus(T0 + 4 * MINUTE)
    engine.tick(T0 + 7 * MINUTE)
    assert engine.status().can_switch_state is False


def test_reflection_draft_travels_with_reflection_record() -> None:
    engine = make_engine(focus_failure_time=1)
    engine.start_focus(T0)
    engine.start_reflection(T0 + 2 * MINUTE)

    engine.set_reflection_draft("first thoughts", T0 + 3 * MINUTE)
    engine.set_reflection_draft("final thoughts", T0 + 4 * MINUTE)
    record = engine.start_rest(T0 + 5 * MINUTE)

    assert record.type == TimerState.REFLECTION
    assert record.reflection_summary.content == "final thoughts"
    assert record.reflection_summary.created_at == T0 + 3 * MINUTE
    assert record.reflection_summary.updated_at == T0 + 4 * MINUTE
    assert engine.reflection_draft is None


def test_reflection_draft_outside_reflection_is_rejected() -> None:
    engine = make_engine()
    engine.start_focus(T0)
    with pytest.raises(InvalidTransition):
        engine.set_reflection_draft("too early", T0)


def test_snapshot_round_trips_through_dict() -> None:
    engine = make_engine(focus_failure_time=1)
    engine.start_focus(T0)
    engine.start_reflection(T0 + 2 * MINUTE)
    engine.set_reflection_draft("notes", T0 + 3 * MINUTE)
    engine.tick(T0 + 3 * MINUTE)
    snapshot = engine.snapshot()

    payload = snapshot.to_dict()

    assert payload["current_state"] == "reflection"
    assert payload["available_actions"]["can_switch_to_rest"] is True
    assert TimerSnapshot.from_dict(payload) == snapshot


def test_snapshot_rejects_idle_with_start_time() -> None:
    with pytest.raises(ValueError):
        TimerSnapshot.from_dict({"current_state": "idle", "start_time": T0, "elapsed_time": 0})


def test_blank_draft_clears_reflection_summary() -> None:
    engine = make_engine(focus_failure_time=1)
    engine.start_focus(T0)
    engine.start_reflection(T0 + 2 * MINUTE)
    engine.set_reflection_draft("thoughts", T0 + 3 * MINUTE)

    assert engine.set_reflection_draft("  ", T0 + 4 * MINUTE) is None
    assert engine.start_rest(T0 + 5 * MINUTE).reflection_summary is None


def test_closing_idle_engine_is_an_invalid_transition() -> None:
    engine = make_engine()
    with pytest.raises(InvalidTransition):
        engine._close()
    assert_consistent(engine)
