"""SQLite key-value store holding the timer's JSON documents."""

from __future__ import annotations

import hashlib
import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Mapping


SCHEMA_VERSION = 2
MAX_BACKUP_COUNT = 5


def checksum(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class KvRow:
    key: str
    value: str
    checksum: str | None
    updated_at: str

    @property
    def is_intact(self) -> bool:
        # Rows written before checksums existed carry none and are trusted.
        return self.checksum is None or self.checksum == checksum(self.value)


class Storage:
    """Wraps the SQLite connection; each key holds one JSON document.

    Overwriting a key first copies its previous payload into ``kv_backup``,
    which keeps the newest ``MAX_BACKUP_COUNT`` copies per key.
    """
    def __init__(self, db_path: str | Path, max_backups: int = MAX_BACKUP_COUNT) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.max_backups = max_backups

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode = WAL;")
        except sqlite3.DatabaseError:
            pass
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """Creates the tables on first start and upgrades a version 1 store."""
        with self._transaction() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv(
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    checksum TEXT,
                    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_backup(
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    checksum TEXT,
                    created_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS kv_backup_key ON kv_backup(key, id)")

            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if not row:
                conn.execute("INSERT INTO schema_version(version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] < SCHEMA_VERSION:
                columns = {c["name"] for c in conn.execute("PRAGMA table_info(kv)").fetchall()}
                if "checksum" not in columns:
                    conn.execute("ALTER TABLE kv ADD COLUMN checksum TEXT")
                conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))

    def get_row(self, key: str) -> KvRow | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT key, value, checksum, updated_at FROM kv WHERE key = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        return KvRow(**dict(row)) if row else None

    def get_raw(self, key: str) -> str | None:
        row = self.get_row(key)
        return row.value if row else None

    def set_raw(self, key: str, payload: str) -> None:
        self.set_many({key: payload})

    def set_many(self, payloads: Mapping[str, str], backup: bool = True) -> None:
        """Writes all payloads in one transaction, backing up what they replace."""
        with self._transaction() as conn:
            for key, payload in payloads.items():
                if backup:
                    self._backup_current(conn, key)
                conn.execute(
                    """
                    INSERT INTO kv(key, value, checksum, updated_at) VALUES(?, ?, ?, datetime('now'))
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        checksum=excluded.checksum,
                        updated_at=excluded.updated_at
                    """,
                    (key, payload, checksum(payload)),
                )

    def _backup_current(self, conn: sqlite3.Connection, key: str) -> None:
        conn.execute(
            "INSERT INTO kv_backup(key, value, checksum) SELECT key, value, checksum FROM kv WHERE key = ?",
            (key,),
        )
        conn.execute(
            """
            DELETE FROM kv_backup WHERE key = ? AND id NOT IN (
                SELECT id FROM kv_backup WHERE key = ? ORDER BY id DESC LIMIT ?
            )
            """,
            (key, key, self.max_backups),
        )

    def backups(self, key: str) -> list[KvRow]:
        """Backed-up payloads of ``key``, newest first."""
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT key, value, checksum, created_at AS updated_at
                FROM kv_backup WHERE key = ? ORDER BY id DESC
                """,
                (key,),
            ).fetchall()
        finally:
            conn.close()
        return [KvRow(**dict(row)) for row in rows]

    def restore_backup(self, key: str, index: int = 0) -> bool:
        """Puts the ``index``-th newest backup back under ``key``."""
        candidates = self.backups(key)
        if not 0 <= index < len(candidates):
            return False
        self.set_many({key: candidates[index].value}, backup=False)
        return True

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self.get_raw(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set_raw(key, json.dumps(value))

    def delete(self, key: str, with_backups: bool = True) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            if with_backups:
                conn.execute("DELETE FROM kv_backup WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT key FROM kv ORDER BY key ASC").fetchall()
        finally:
            conn.close()
        return [row["key"] for row in rows]
