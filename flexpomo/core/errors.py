from __future__ import annotations

from enum import Enum


class TimerError(str, Enum):
    INVALID_TRANSITION = "invalid_transition"
    STORAGE_WRITE_FAILURE = "storage_write_failure"
    STORAGE_READ_CORRUPTION = "storage_read_corruption"
    CONFIG_VALIDATION_FAILURE = "config_validation_failure"


class TimerException(Exception):
    """Base error of the timer core; ``kind`` tells the host how to react."""

    kind = TimerError.INVALID_TRANSITION

    def __init__(self, message: str, recoverable: bool = True) -> None:
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


class InvalidTransition(TimerException):
    kind = TimerError.INVALID_TRANSITION


class StorageWriteFailure(TimerException):
    kind = TimerError.STORAGE_WRITE_FAILURE


class StorageReadCorruption(TimerException):
    kind = TimerError.STORAGE_READ_CORRUPTION


class ConfigValidationFailure(TimerException):
    kind = TimerError.CONFIG_VALIDATION_FAILURE

    def __init__(self, errors: list[str]) -> None:
        super().__init__("Invalid timer config: " + "; ".join(errors))
        self.errors = list(errors)
