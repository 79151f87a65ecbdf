from __future__ import annotations

import logging
from datetime import timedelta, timezone, tzinfo

from reminder_store import NotificationLifecycleError, NotificationStore, ScheduledNotification

from .clock import Clock
from .directory import Directory
from .models import Appointment, NotificationRule, Patient, ScheduleReport
from .risk import RiskScorer
from .rules import RuleSet
from .timeparse import AppointmentTimeError, appointment_instant, render_template

logger = logging.getLogger(__name__)

EMAIL_OFFSET_THRESHOLD_MINUTES = 60


def channel_for_offset(offset_minutes: int) -> str:
    return "email" if offset_minutes > EMAIL_OFFSET_THRESHOLD_MINUTES else "system"


class Scheduler:
    def __init__(
        self,
        *,
        store: NotificationStore,
        rules: RuleSet,
        directory: Directory,
        scorer: RiskScorer,
        clock: Clock,
        facility_zone: tzinfo,
    ) -> None:
        self.store = store
        self.rules = rules
        self.directory = directory
        self.scorer = scorer
        self.clock = clock
        self.facility_zone = facility_zone

    def schedule_for_appointment(self, patient: Patient, appointment: Appointment) -> ScheduleReport:
        report = ScheduleReport()
        if patient.id != appointment.patient_id:
            logger.warning(
                "Appointment %s belongs to %s, not %s; not scheduling",
                appointment.id,
                appointment.patient_id,
                patient.id,
            )
            report.skipped += 1
            return report
        if not appointment.is_active:
            logger.debug("Appointment %s is %s; nothing to schedule", appointment.id, appointment.status)
            report.skipped += 1
            return report

        for rule in self.rules.for_trigger("before_appointment"):
            try:
                self._schedule_reminder(rule, patient, appointment, report)
            except (AppointmentTimeError, NotificationLifecycleError) as exc:
                logger.warning("Skipping rule %s for appointment %s: %s", rule.id, appointment.id, exc)
                report.skipped += 1
                report.errors.append(f"{appointment.id}:{rule.id}: {exc}")
        return report

    def _schedule_reminder(
        self,
        rule: NotificationRule,
        patient: Patient,
        appointment: Appointment,
        report: ScheduleReport,
    ) -> None:
        offset = rule.offset_minutes or 0
        # Offsets are elapsed time: subtract on the UTC instant, not the wall clock.
        instant = appointment_instant(appointment, self.facility_zone).astimezone(timezone.utc)
        fire_at = instant - timedelta(minutes=offset)
        now = self.clock.now()
        existing = self.store.get_by_key(rule.id, patient.id, appointment.id)

        if fire_at <= now and (existing is None or existing.status != "pending"):
            logger.debug("Rule %s for appointment %s fires in the past; skipped", rule.id, appointment.id)
            report.skipped += 1
            return

        result = self.store.upsert_pending(
            rule_id=rule.id,
            patient_id=patient.id,
            appointment_id=appointment.id,
            scheduled_for=fire_at,
            message=render_template(rule.template, patient, appointment),
            priority=rule.priority,
            channel=channel_for_offset(offset),
            now=now,
        )
        if result.outcome == "created":
            logger.debug("Scheduled %s for appointment %s at %s", rule.id, appointment.id, fire_at.isoformat())
            report.created.append(result.notification)
        elif result.outcome == "rederived":
            logger.info("Re-derived %s for appointment %s to %s", rule.id, appointment.id, fire_at.isoformat())
            report.rederived.append(result.notification)
        elif result.outcome == "cancelled":
            logger.info("Cancelled %s for appointment %s: new fire time already passed", rule.id, appointment.id)
            report.cancelled.append(result.notification)
        else:
            report.skipped += 1

    def schedule_all(self) -> ScheduleReport:
        report = ScheduleReport()
        appointments = self.directory.get_appointments()
        patients = {patient.id: patient for patient in self.directory.get_patients()}
        for appointment in appointments:
            if not appointment.is_active:
                continue
            patient = patients.get(appointment.patient_id)
            if patient is None:
                logger.warning(
                    "Patient %s for appointment %s not found; skipping",
                    appointment.patient_id,
                    appointment.id,
                )
                report.skipped += 1
                continue
            report.merge(self.schedule_for_appointment(patient, appointment))
        return report

    def cancel_for_appointment(self, appointment_id: str) -> list[ScheduledNotification]:
        cancelled = self.store.cancel_pending_for_appointment(appointment_id, self.clock.now())
        if cancelled:
            logger.info("Cancelled %d pending notification(s) for appointment %s", len(cancelled), appointment_id)
        return cancelled

    def create_immediate(
        self,
        rule: NotificationRule,
        *,
        patient_id: str,
        patient: Patient | None = None,
        appointment: Appointment | None = None,
    ) -> tuple[ScheduledNotification, bool]:
        """Create a notification due now, unless its dedup key already exists."""
        now = self.clock.now()
        record, created = self.store.insert_if_absent(
            rule_id=rule.id,
            patient_id=patient_id,
            appointment_id=appointment.id if appointment else None,
            scheduled_for=now,
            message=render_template(rule.template, patient, appointment),
            priority=rule.priority,
            channel="system",
            now=now,
        )
        if not created:
            logger.debug("Notification %s for %s already exists; no-op", rule.id, patient_id)
        return record, created

    def schedule_patient_alerts(self) -> ScheduleReport:
        report = ScheduleReport()
        high_risk_rule = self.rules.first_for_trigger("high_risk_patient")
        follow_up_rule = self.rules.first_for_trigger("follow_up_due")
        now = self.clock.now()
        for patient in self.directory.get_patients():
            due_rules = []
            if high_risk_rule is not None and self.scorer.score_value(patient, now) > 7:
                due_rules.append(high_risk_rule)
            if follow_up_rule is not None and self.scorer.is_follow_up_overdue(patient, now):
                due_rules.append(follow_up_rule)
            for rule in due_rules:
                record, created = self.create_immediate(rule, patient_id=patient.id, patient=patient)
                if created:
                    report.created.append(record)
                else:
                    report.skipped += 1
        return report
