from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class SQLiteReminderDB:
    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Single-writer transaction: holds the process lock and SQLite's write lock."""
        with self._lock, self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            yield conn

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS scheduled_notifications (
                  id TEXT PRIMARY KEY,
                  rule_id TEXT NOT NULL,
                  patient_id TEXT NOT NULL,
                  appointment_key TEXT NOT NULL DEFAULT '',
                  scheduled_for TEXT NOT NULL,
                  message TEXT NOT NULL,
                  priority TEXT NOT NULL,
                  channel TEXT NOT NULL,
                  status TEXT NOT NULL DEFAULT 'pending',
                  sent_at TEXT,
                  cancelled_at TEXT,
                  read_at TEXT,
                  delivery_outcome TEXT,
                  delivery_error TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL,
                  UNIQUE(rule_id, patient_id, appointment_key)
                );

                CREATE INDEX IF NOT EXISTS idx_notifications_status_due
                  ON scheduled_notifications(status, scheduled_for);
                CREATE INDEX IF NOT EXISTS idx_notifications_appointment
                  ON scheduled_notifications(appointment_key, status);
                CREATE INDEX IF NOT EXISTS idx_notifications_patient
                  ON scheduled_notifications(patient_id, scheduled_for DESC);
                """
            )
