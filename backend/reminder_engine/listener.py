from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field

from reminder_store import ScheduledNotification

from .directory import Directory
from .models import AppointmentEvent, ScheduleReport
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class EventResult:
    event: AppointmentEvent
    schedule: ScheduleReport = field(default_factory=ScheduleReport)
    announcement: ScheduledNotification | None = None
    cancelled: list[ScheduledNotification] = field(default_factory=list)
    skipped_reason: str | None = None


class ChangeListener:
    """Bridge from the appointment change feed to the scheduler.

    Producers call ``publish``; a consumer thread drains the queue and calls
    ``handle`` for each event. ``handle`` can also be called directly.
    """

    def __init__(self, *, scheduler: Scheduler, directory: Directory, maxsize: int = 0) -> None:
        self.scheduler = scheduler
        self.directory = directory
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def publish(self, event: AppointmentEvent) -> None:
        self._queue.put(event)

    def pending_events(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(target=self._consume, name="reminder-change-listener", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is None:
            return
        self._queue.put(_STOP)
        thread.join(timeout)
        self._thread = None

    def drain(self) -> list[EventResult]:
        """Handle every queued event on the calling thread."""
        results: list[EventResult] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return results
            try:
                if item is _STOP:
                    self._queue.put(_STOP)
                    return results
                results.append(self._handle_safely(item))
            finally:
                self._queue.task_done()

    def _consume(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._handle_safely(item)
            finally:
                self._queue.task_done()

    def _handle_safely(self, event: AppointmentEvent) -> EventResult:
        try:
            return self.handle(event)
        except Exception as exc:
            logger.exception("Failed to handle %s event for appointment %s", event.kind, event.appointment.id)
            return EventResult(event=event, skipped_reason=f"error: {exc}")

    def handle(self, event: AppointmentEvent) -> EventResult:
        appointment = event.appointment
        kind = event.kind
        if kind == "updated" and appointment.status == "cancelled":
            kind = "cancelled"

        if kind == "cancelled":
            result = EventResult(event=event)
            result.cancelled = self.scheduler.cancel_for_appointment(appointment.id)
            rule = self.scheduler.rules.first_for_trigger("appointment_cancelled")
            if rule is not None:
                patient = self.directory.get_patient_by_id(appointment.patient_id)
                record, created = self.scheduler.create_immediate(
                    rule, patient_id=appointment.patient_id, patient=patient, appointment=appointment
                )
                result.announcement = record if created else None
            return result

        if appointment.status == "completed":
            result = EventResult(event=event, skipped_reason="appointment completed")
            result.cancelled = self.scheduler.cancel_for_appointment(appointment.id)
            return result

        patient = self.directory.get_patient_by_id(appointment.patient_id)
        if patient is None:
            logger.warning(
                "Patient %s for appointment %s not found; ignoring %s event",
                appointment.patient_id,
                appointment.id,
                kind,
            )
            return EventResult(event=event, skipped_reason="patient not found")

        result = EventResult(event=event)
        result.schedule = self.scheduler.schedule_for_appointment(patient, appointment)
        result.cancelled = list(result.schedule.cancelled)
        trigger = "appointment_created" if kind == "created" else "appointment_updated"
        rule = self.scheduler.rules.first_for_trigger(trigger)
        if rule is not None:
            record, created = self.scheduler.create_immediate(
                rule, patient_id=patient.id, patient=patient, appointment=appointment
            )
            result.announcement = record if created else None
        return result
