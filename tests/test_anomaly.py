from flexpomo.core.anomaly import (
    BACKWARD_JUMP_THRESHOLD_MS,
    FORWARD_JUMP_THRESHOLD_MS,
    TimeJump,
    classify,
)

T0 = 1_700_000_000_000


def test_thresholds_are_five_minutes_back_and_two_days_forward() -> None:
    assert BACKWARD_JUMP_THRESHOLD_MS == 5 * 60 * 1000
    assert FORWARD_JUMP_THRESHOLD_MS == 48 * 60 * 60 * 1000


def test_band_edges_are_normal() -> None:
    assert classify(T0, T0) == TimeJump.NORMAL
    assert classify(T0, T0 + 1000) == TimeJump.NORMAL
    assert classify(T0, T0 - BACKWARD_JUMP_THRESHOLD_MS) == TimeJump.NORMAL
    assert classify(T0, T0 + FORWARD_JUMP_THRESHOLD_MS) == TimeJump.NORMAL


def test_outside_band_is_a_jump() -> None:
    assert classify(T0, T0 - BACKWARD_JUMP_THRESHOLD_MS - 1) == TimeJump.BACKWARD
    assert classify(T0, T0 + FORWARD_JUMP_THRESHOLD_MS + 1) == TimeJump.FORWARD


def test_thresholds_can_be_overridden() -> None:
    assert classify(T0, T0 + 5000, forward_threshold_ms=2000) == TimeJump.FORWARD
    assert classify(T0, T0 - 5000, backward_threshold_ms=2000) == TimeJump.BACKWARD
