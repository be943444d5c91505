"""Snapshot codec and best-effort persistence of the timer state."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from flexpomo.common.logger import log
from flexpomo.core.errors import ConfigValidationFailure, StorageReadCorruption, StorageWriteFailure
from flexpomo.core.models import DEFAULT_CONFIG, ContinuousFocusStreak, SessionRecord, TimerConfig
from flexpomo.core.timer import TimerSnapshot
from flexpomo.data.storage import KvRow, Storage


TIMER_STATE_KEY = "flexpomo.timer-state"
CONFIG_KEY = "flexpomo.config"
HISTORY_KEY = "flexpomo.history"
STREAK_KEY = "flexpomo.streak"
ALL_KEYS = (TIMER_STATE_KEY, CONFIG_KEY, HISTORY_KEY, STREAK_KEY)

DECODE_ERRORS = (
    json.JSONDecodeError,
    KeyError,
    TypeError,
    ValueError,
    ArithmeticError,
    ConfigValidationFailure,
    StorageReadCorruption,
)


@dataclass(frozen=True)
class Snapshot:
    timer: TimerSnapshot = field(default_factory=TimerSnapshot)
    config: TimerConfig = DEFAULT_CONFIG
    history: tuple[SessionRecord, ...] = ()
    streak: ContinuousFocusStreak = field(default_factory=ContinuousFocusStreak)


@dataclass(frozen=True)
class LoadResult:
    snapshot: Snapshot
    issues: tuple[str, ...] = ()
    corrupted_keys: frozenset[str] = frozenset()

    @property
    def recovered(self) -> bool:
        return bool(self.issues)


_ENCODERS: dict[str, Callable[[Snapshot], Any]] = {
    TIMER_STATE_KEY: lambda s: s.timer.to_dict(s.config),
    CONFIG_KEY: lambda s: s.config.to_dict(),
    HISTORY_KEY: lambda s: {"records": [r.to_dict() for r in s.history]},
    STREAK_KEY: lambda s: s.streak.to_dict(),
}


def encode(snapshot: Snapshot, keys: Iterable[str] = ALL_KEYS) -> dict[str, str]:
    """JSON payloads of the requested parts only; NaN and infinities are refused."""
    wanted = set(keys)
    return {
        key: json.dumps(_ENCODERS[key](snapshot), allow_nan=False)
        for key in ALL_KEYS
        if key in wanted
    }


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number '{name}' in stored document")


def _decode_row(row: KvRow, decode: Callable[[Any], Any]) -> Any:
    if not row.is_intact:
        raise StorageReadCorruption("checksum mismatch")
    return decode(json.loads(row.value, parse_constant=_reject_constant))


def _decode_history(data: Any, issues: list[str]) -> tuple[SessionRecord, ...]:
    if not isinstance(data, dict) or not isinstance(data.get("records"), list):
        raise StorageReadCorruption("history document has no 'records' list")
    records: list[SessionRecord] = []
    seen: set[str] = set()
    for index, raw in enumerate(data["records"]):
        try:
            record = SessionRecord.from_dict(raw)
        except (KeyError, TypeError, ValueError) as exc:
            issues.append(f"{HISTORY_KEY}: dropped invalid record #{index} ({exc})")
            continue
        if record.id in seen:
            issues.append(f"{HISTORY_KEY}: dropped duplicate record '{record.id}'")
            continue
        seen.add(record.id)
        records.append(record)
    return tuple(records)


class PersistenceAdapter:
    """Reads and writes the snapshot ``{timer, config, history, streak}``.

    Each part lives under its own key and is decoded on its own, so one corrupt
    document does not take the others down with it. A part that fails to
    decode is taken from the newest usable backup before falling back to its
    default.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._written: dict[str, str] = {}

    def save(self, snapshot: Snapshot, keys: Iterable[str] = ALL_KEYS) -> int:
        """Write those of ``keys`` that changed since the last successful save; returns how many."""
        try:
            payloads = encode(snapshot, keys)
            changed = {k: v for k, v in payloads.items() if self._written.get(k) != v}
            if changed:
                self._storage.set_many(changed)
        except (sqlite3.Error, OSError, TypeError, ValueError) as exc:
            log.error(f"Failed to save timer snapshot to '{self._storage.db_path}': {exc}", exc_info=True)
            raise StorageWriteFailure(f"Could not save timer snapshot: {exc}") from exc
        self._written.update(changed)
        if changed:
            log.debug(f"Saved {', '.join(sorted(changed))}")
        return len(changed)

    def load(self) -> LoadResult:
        issues: list[str] = []
        corrupted: set[str] = set()

        def read(key: str, decode: Callable[[Any], Any], default: Any) -> Any:
            try:
                row = self._storage.get_row(key)
            except (sqlite3.Error, OSError) as exc:
                issues.append(f"{key}: unreadable ({exc})")
                corrupted.add(key)
                return self._from_backup(key, decode, default, issues)
            if row is None:
                return default
            try:
                value = _decode_row(row, decode)
            except DECODE_ERRORS as exc:
                issues.append(f"{key}: {exc}")
                corrupted.add(key)
                return self._from_backup(key, decode, default, issues, skip=row.value)
            self._written[key] = row.value
            return value

        config = read(CONFIG_KEY, TimerConfig.from_dict, DEFAULT_CONFIG)
        timer = read(TIMER_STATE_KEY, lambda data: TimerSnapshot.from_dict(data, config), TimerSnapshot())
        history = read(HISTORY_KEY, lambda data: _decode_history(data, issues), ())
        streak = read(STREAK_KEY, ContinuousFocusStreak.from_dict, ContinuousFocusStreak())

        snapshot = Snapshot(timer=timer, config=config, history=history, streak=streak)
        if issues:
            log.warning(f"Recovered timer snapshot: {'; '.join(issues)}")
        else:
            log.info(f"Loaded timer snapshot from '{self._storage.db_path}'")
        return LoadResult(snapshot=snapshot, issues=tuple(issues), corrupted_keys=frozenset(corrupted))

    def _from_backup(
        self,
        key: str,
        decode: Callable[[Any], Any],
        default: Any,
        issues: list[str],
        skip: str | None = None,
    ) -> Any:
        try:
            candidates = self._storage.backups(key)
        except (sqlite3.Error, OSError) as exc:
            log.warning(f"Backups of '{key}' are unreadable: {exc}")
            return default
        for index, row in enumerate(candidates):
            if row.value == skip:
                continue
            try:
                value = _decode_row(row, decode)
            except DECODE_ERRORS as exc:
                log.debug(f"Backup #{index} of '{key}' is unusable: {exc}")
                continue
            issues.append(f"{key}: restored backup #{index} saved at {row.updated_at}")
            return value
        log.warning(f"No usable backup of '{key}', using defaults")
        return default

    def backup_list(self, key: str) -> list[str]:
        """Save times of the backups held for ``key``, newest first."""
        return [row.updated_at for row in self._storage.backups(key)]

    def restore_from_backup(self, key: str, index: int = 0) -> bool:
        """Overwrite ``key`` with one of its backups; takes effect on the next ``load``."""
        if key not in ALL_KEYS:
            raise ValueError(f"Unknown snapshot key '{key}'")
        restored = self._storage.restore_backup(key, index)
        if restored:
            self._written.pop(key, None)
            log.info(f"Restored backup #{index} of '{key}'")
        return restored

    def clear(self) -> None:
        for key in ALL_KEYS:
            self._storage.delete(key)
        self._written.clear()
        log.info("Cleared persisted timer snapshot")
