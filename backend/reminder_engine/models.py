from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from reminder_store import ScheduledNotification

TRIGGER_KINDS = {
    "before_appointment",
    "appointment_created",
    "appointment_updated",
    "appointment_cancelled",
    "high_risk_patient",
    "follow_up_due",
}
PRIORITIES = {"low", "medium", "high", "critical"}
CHANNELS = {"system", "email", "sms", "call"}
APPOINTMENT_STATUSES = {"pending", "booked", "completed", "cancelled"}
INACTIVE_APPOINTMENT_STATUSES = {"cancelled", "completed"}
EVENT_KINDS = {"created", "updated", "cancelled"}


@dataclass(frozen=True)
class Patient:
    id: str
    first_name: str = ""
    last_name: str = ""
    name: str | None = None
    age: Any = None
    medical_history: tuple[str, ...] = ()
    last_visit: str | None = None
    emergency_contact: str | None = None
    email: str | None = None
    phone: str | None = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        full = f"{self.first_name} {self.last_name}".strip()
        return full or self.id

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Patient":
        history = data.get("medical_history", data.get("medicalHistory")) or ()
        if isinstance(history, str):
            history = (history,)
        return cls(
            id=str(data["id"]),
            first_name=data.get("first_name", data.get("firstName")) or "",
            last_name=data.get("last_name", data.get("lastName")) or "",
            name=data.get("name"),
            age=data.get("age"),
            medical_history=tuple(str(item) for item in history if item is not None),
            last_visit=data.get("last_visit", data.get("lastVisit")),
            emergency_contact=data.get("emergency_contact", data.get("emergencyContact")),
            email=data.get("email"),
            phone=data.get("phone"),
        )


@dataclass(frozen=True)
class Appointment:
    id: str
    patient_id: str
    provider: str
    date: str
    time: str
    status: str = "booked"
    timezone: str | None = None
    patient_name: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_APPOINTMENT_STATUSES

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Appointment":
        status = str(data.get("status") or "booked").lower()
        if status not in APPOINTMENT_STATUSES:
            raise ValueError(f"Unknown appointment status: {status}")
        patient_id = data.get("patient_id", data.get("patientId"))
        if patient_id is None:
            raise ValueError("Appointment is missing patient_id")
        return cls(
            id=str(data["id"]),
            patient_id=str(patient_id),
            provider=data.get("provider") or "",
            date=str(data.get("date") or ""),
            time=str(data.get("time") or ""),
            status=status,
            timezone=data.get("timezone"),
            patient_name=data.get("patient_name", data.get("patientName")),
        )


@dataclass(frozen=True)
class AppointmentEvent:
    kind: str
    appointment: Appointment

    def __post_init__(self) -> None:
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"Unknown appointment event kind: {self.kind}")


@dataclass(frozen=True)
class NotificationRule:
    id: str
    name: str
    trigger: str
    template: str
    priority: str
    offset_minutes: int | None = None

    def __post_init__(self) -> None:
        if self.trigger not in TRIGGER_KINDS:
            raise ValueError(f"Unknown trigger kind: {self.trigger}")
        if self.priority not in PRIORITIES:
            raise ValueError(f"Unknown priority: {self.priority}")
        if self.trigger == "before_appointment":
            if self.offset_minutes is None or self.offset_minutes < 0:
                raise ValueError(f"Rule {self.id} needs a non-negative offset")
        elif self.offset_minutes is not None:
            raise ValueError(f"Offset is only meaningful for before_appointment rules ({self.id})")


@dataclass
class RiskResult:
    score: int
    alerts: list[str] = field(default_factory=list)
    recommended_actions: list[str] = field(default_factory=list)


@dataclass
class ScheduleReport:
    created: list[ScheduledNotification] = field(default_factory=list)
    rederived: list[ScheduledNotification] = field(default_factory=list)
    cancelled: list[ScheduledNotification] = field(default_factory=list)
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def merge(self, other: "ScheduleReport") -> None:
        self.created.extend(other.created)
        self.rederived.extend(other.rederived)
        self.cancelled.extend(other.cancelled)
        self.skipped += other.skipped
        self.errors.extend(other.errors)

    def as_dict(self) -> dict[str, Any]:
        return {
            "created": len(self.created),
            "rederived": len(self.rederived),
            "cancelled": len(self.cancelled),
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class DispatchOutcome:
    notification_id: str
    channel: str
    outcome: str  # delivered | failed | timed_out
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.outcome == "delivered"


@dataclass
class DeliveryReport:
    outcomes: list[DispatchOutcome] = field(default_factory=list)
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return sum(1 for item in self.outcomes if item.delivered)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.outcomes if not item.delivered)

    def as_dict(self) -> dict[str, Any]:
        return {
            "dispatched": len(self.outcomes),
            "delivered": self.delivered,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }
