from __future__ import annotations

from enum import Enum

BACKWARD_JUMP_THRESHOLD_MS = 5 * 60 * 1000
FORWARD_JUMP_THRESHOLD_MS = 48 * 60 * 60 * 1000


class TimeJump(str, Enum):
    NORMAL = "normal"
    FORWARD = "forward_jump"
    BACKWARD = "backward_jump"


def classify(
    previous: int,
    current: int,
    *,
    backward_threshold_ms: int = BACKWARD_JUMP_THRESHOLD_MS,
    forward_threshold_ms: int = FORWARD_JUMP_THRESHOLD_MS,
) -> TimeJump:
    """Classify the delta between two consecutive clock samples.

    Deltas in ``[-backward_threshold_ms, forward_threshold_ms]`` are normal, which covers
    laptop sleep of up to two days.
    """
    delta = current - previous
    if delta < -backward_threshold_ms:
        return TimeJump.BACKWARD
    if delta > forward_threshold_ms:
        return TimeJump.FORWARD
    return TimeJump.NORMAL
