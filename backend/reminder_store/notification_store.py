from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .database import SQLiteReminderDB
from .time_utils import parse_iso, to_iso

NOTIFICATION_STATES = {"pending", "sent", "cancelled"}
TERMINAL_STATES = {"sent", "cancelled"}
DELIVERY_OUTCOMES = {"delivered", "failed", "timed_out"}

_COLUMNS = """
    id, rule_id, patient_id, appointment_key, scheduled_for, message, priority, channel,
    status, sent_at, cancelled_at, read_at, delivery_outcome, delivery_error, created_at, updated_at
"""


class NotificationLifecycleError(Exception):
    pass


@dataclass
class ScheduledNotification:
    id: str
    rule_id: str
    patient_id: str
    appointment_id: str | None
    scheduled_for: datetime
    message: str
    priority: str
    channel: str
    status: str = "pending"
    sent_at: datetime | None = None
    cancelled_at: datetime | None = None
    read_at: datetime | None = None
    delivery_outcome: str | None = None
    delivery_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def sent(self) -> bool:
        return self.status == "sent"

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        return (self.rule_id, self.patient_id, self.appointment_id or "")

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "patient_id": self.patient_id,
            "appointment_id": self.appointment_id,
            "scheduled_for": to_iso(self.scheduled_for),
            "message": self.message,
            "priority": self.priority,
            "channel": self.channel,
            "status": self.status,
            "sent": self.sent,
            "sent_at": to_iso(self.sent_at) if self.sent_at else None,
            "cancelled_at": to_iso(self.cancelled_at) if self.cancelled_at else None,
            "read_at": to_iso(self.read_at) if self.read_at else None,
            "delivery_outcome": self.delivery_outcome,
            "delivery_error": self.delivery_error,
        }


@dataclass
class UpsertResult:
    notification: ScheduledNotification
    outcome: str  # created | unchanged | rederived | cancelled | terminal


def _from_row(row: sqlite3.Row) -> ScheduledNotification:
    return ScheduledNotification(
        id=row["id"],
        rule_id=row["rule_id"],
        patient_id=row["patient_id"],
        appointment_id=row["appointment_key"] or None,
        scheduled_for=parse_iso(row["scheduled_for"]),
        message=row["message"],
        priority=row["priority"],
        channel=row["channel"],
        status=row["status"],
        sent_at=parse_iso(row["sent_at"]),
        cancelled_at=parse_iso(row["cancelled_at"]),
        read_at=parse_iso(row["read_at"]),
        delivery_outcome=row["delivery_outcome"],
        delivery_error=row["delivery_error"],
        created_at=parse_iso(row["created_at"]),
        updated_at=parse_iso(row["updated_at"]),
    )


class NotificationStore:
    """Durable keyed collection of scheduled notifications.

    Owns the deduplication invariant: at most one record per
    ``(rule_id, patient_id, appointment_id)`` ever exists, whatever its status.
    The key is enforced by a UNIQUE constraint and every check-then-write
    sequence runs inside ``SQLiteReminderDB.transaction``.
    """

    _TRANSITIONS = {
        "pending": {"sent", "cancelled"},
        "sent": set(),
        "cancelled": set(),
    }

    def __init__(self, db: SQLiteReminderDB) -> None:
        self._db = db

    @classmethod
    def check_transition(cls, current: str, next_state: str) -> None:
        if next_state not in cls._TRANSITIONS.get(current, set()):
            raise NotificationLifecycleError(f"Invalid transition: {current} -> {next_state}")

    def _fetch_by_key(
        self, conn: sqlite3.Connection, rule_id: str, patient_id: str, appointment_key: str
    ) -> ScheduledNotification | None:
        row = conn.execute(
            f"""
            SELECT {_COLUMNS}
            FROM scheduled_notifications
            WHERE rule_id = ? AND patient_id = ? AND appointment_key = ?
            """,
            (rule_id, patient_id, appointment_key),
        ).fetchone()
        return _from_row(row) if row else None

    def _fetch(self, conn: sqlite3.Connection, notification_id: str) -> ScheduledNotification | None:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM scheduled_notifications WHERE id = ?",
            (notification_id,),
        ).fetchone()
        return _from_row(row) if row else None

    def insert_if_absent(
        self,
        *,
        rule_id: str,
        patient_id: str,
        appointment_id: str | None,
        scheduled_for: datetime,
        message: str,
        priority: str,
        channel: str,
        now: datetime,
    ) -> tuple[ScheduledNotification, bool]:
        appointment_key = appointment_id or ""
        stamp = to_iso(now)
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO scheduled_notifications (
                  id, rule_id, patient_id, appointment_key, scheduled_for, message,
                  priority, channel, status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
                ON CONFLICT(rule_id, patient_id, appointment_key) DO NOTHING
                """,
                (
                    uuid.uuid4().hex,
                    rule_id,
                    patient_id,
                    appointment_key,
                    to_iso(scheduled_for),
                    message,
                    priority,
                    channel,
                    stamp,
                    stamp,
                ),
            )
            created = cursor.rowcount == 1
            record = self._fetch_by_key(conn, rule_id, patient_id, appointment_key)
        if record is None:
            raise RuntimeError(f"Notification vanished after upsert: {rule_id}/{patient_id}/{appointment_key}")
        return record, created

    def upsert_pending(
        self,
        *,
        rule_id: str,
        patient_id: str,
        appointment_id: str | None,
        scheduled_for: datetime,
        message: str,
        priority: str,
        channel: str,
        now: datetime,
    ) -> UpsertResult:
        """Insert the record if absent, or re-derive a still-pending one in place.

        A pending record whose instant moved to a time no longer in the future
        is cancelled; an unmoved one stays pending until it is claimed. Sent
        and cancelled records are returned untouched.
        """
        appointment_key = appointment_id or ""
        stamp = to_iso(now)
        with self._db.transaction() as conn:
            existing = self._fetch_by_key(conn, rule_id, patient_id, appointment_key)
            if existing is None:
                if scheduled_for <= now:
                    raise NotificationLifecycleError("Refusing to create a past-due notification.")
                notification_id = uuid.uuid4().hex
                conn.execute(
                    """
                    INSERT INTO scheduled_notifications (
                      id, rule_id, patient_id, appointment_key, scheduled_for, message,
                      priority, channel, status, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
                    """,
                    (
                        notification_id,
                        rule_id,
                        patient_id,
                        appointment_key,
                        to_iso(scheduled_for),
                        message,
                        priority,
                        channel,
                        stamp,
                        stamp,
                    ),
                )
                return UpsertResult(self._fetch(conn, notification_id), "created")

            if existing.status in TERMINAL_STATES:
                return UpsertResult(existing, "terminal")

            if existing.scheduled_for == scheduled_for and existing.message == message and existing.channel == channel:
                return UpsertResult(existing, "unchanged")

            if scheduled_for != existing.scheduled_for and scheduled_for <= now:
                self.check_transition(existing.status, "cancelled")
                conn.execute(
                    """
                    UPDATE scheduled_notifications
                    SET status = 'cancelled', cancelled_at = ?, updated_at = ?
                    WHERE id = ? AND status = 'pending'
                    """,
                    (stamp, stamp, existing.id),
                )
                return UpsertResult(self._fetch(conn, existing.id), "cancelled")

            conn.execute(
                """
                UPDATE scheduled_notifications
                SET scheduled_for = ?, message = ?, priority = ?, channel = ?, updated_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (to_iso(scheduled_for), message, priority, channel, stamp, existing.id),
            )
            return UpsertResult(self._fetch(conn, existing.id), "rederived")

    def cancel_pending_for_appointment(self, appointment_id: str, now: datetime) -> list[ScheduledNotification]:
        stamp = to_iso(now)
        with self._db.transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM scheduled_notifications
                WHERE appointment_key = ? AND status = 'pending'
                """,
                (appointment_id,),
            ).fetchall()
            conn.execute(
                """
                UPDATE scheduled_notifications
                SET status = 'cancelled', cancelled_at = ?, updated_at = ?
                WHERE appointment_key = ? AND status = 'pending'
                """,
                (stamp, stamp, appointment_id),
            )
        cancelled = [_from_row(row) for row in rows]
        for record in cancelled:
            record.status = "cancelled"
            record.cancelled_at = now
        return cancelled

    def due_ids(self, now: datetime) -> list[str]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id
                FROM scheduled_notifications
                WHERE status = 'pending' AND scheduled_for <= ?
                ORDER BY scheduled_for ASC, created_at ASC
                """,
                (to_iso(now),),
            ).fetchall()
        return [row["id"] for row in rows]

    def claim(self, notification_id: str, now: datetime) -> ScheduledNotification | None:
        """Atomically move a due pending record to ``sent``.

        Returns ``None`` when the record is gone, not pending, or not yet due,
        so a second claimant can never deliver the same record.
        """
        stamp = to_iso(now)
        with self._db.transaction() as conn:
            updated = conn.execute(
                """
                UPDATE scheduled_notifications
                SET status = 'sent', sent_at = ?, updated_at = ?
                WHERE id = ? AND status = 'pending' AND scheduled_for <= ?
                """,
                (stamp, stamp, notification_id, stamp),
            ).rowcount
            if updated != 1:
                return None
            return self._fetch(conn, notification_id)

    def record_outcome(self, notification_id: str, outcome: str, error: str | None, now: datetime) -> None:
        if outcome not in DELIVERY_OUTCOMES:
            raise ValueError(f"Unknown delivery outcome: {outcome}")
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT status FROM scheduled_notifications WHERE id = ?",
                (notification_id,),
            ).fetchone()
            if not row:
                raise NotificationLifecycleError(f"Notification not found: {notification_id}")
            if row["status"] != "sent":
                raise NotificationLifecycleError(f"Outcome recorded for unsent notification: {notification_id}")
            conn.execute(
                """
                UPDATE scheduled_notifications
                SET delivery_outcome = ?, delivery_error = ?, updated_at = ?
                WHERE id = ?
                """,
                (outcome, error, to_iso(now), notification_id),
            )

    def mark_read(self, notification_id: str, now: datetime) -> ScheduledNotification | None:
        with self._db.transaction() as conn:
            record = self._fetch(conn, notification_id)
            if record is None:
                return None
            if record.status != "sent":
                raise NotificationLifecycleError("Only sent notifications can be marked read.")
            if record.read_at is None:
                stamp = to_iso(now)
                conn.execute(
                    "UPDATE scheduled_notifications SET read_at = ?, updated_at = ? WHERE id = ?",
                    (stamp, stamp, notification_id),
                )
                record = self._fetch(conn, notification_id)
            return record

    def get(self, notification_id: str) -> ScheduledNotification | None:
        with self._db.connection() as conn:
            return self._fetch(conn, notification_id)

    def get_by_key(
        self, rule_id: str, patient_id: str, appointment_id: str | None
    ) -> ScheduledNotification | None:
        with self._db.connection() as conn:
            return self._fetch_by_key(conn, rule_id, patient_id, appointment_id or "")

    def _select(self, where: str, params: tuple[Any, ...], order: str) -> list[ScheduledNotification]:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM scheduled_notifications WHERE {where} ORDER BY {order}",
                params,
            ).fetchall()
        return [_from_row(row) for row in rows]

    def list_upcoming(self, now: datetime) -> list[ScheduledNotification]:
        return self._select("status = 'pending' AND scheduled_for > ?", (to_iso(now),), "scheduled_for ASC")

    def list_history(self) -> list[ScheduledNotification]:
        return self._select("status = 'sent'", (), "sent_at DESC")

    def list_for_patient(self, patient_id: str) -> list[ScheduledNotification]:
        return self._select("patient_id = ?", (patient_id,), "scheduled_for DESC")

    def list_for_appointment(self, appointment_id: str) -> list[ScheduledNotification]:
        return self._select("appointment_key = ?", (appointment_id,), "scheduled_for ASC")

    def list_all(self) -> list[ScheduledNotification]:
        return self._select("1 = 1", (), "scheduled_for ASC")
