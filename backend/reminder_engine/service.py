from __future__ import annotations

import logging
import threading
from datetime import tzinfo
from typing import Any

from reminder_delivery import WebhookTransport
from reminder_store import NotificationStore, ScheduledNotification, SQLiteReminderDB

from .clock import Clock, SystemClock
from .config import EngineSettings
from .directory import Directory, InMemoryDirectory, JsonFileDirectory
from .dispatcher import DeliveryDispatcher
from .listener import ChangeListener
from .models import AppointmentEvent, DeliveryReport, Patient, ScheduleReport
from .risk import RiskScorer, recommended_follow_up_days, risk_level
from .rules import RuleSet
from .scheduler import Scheduler
from .ticker import DeliveryCheck, Ticker

logger = logging.getLogger(__name__)


class ReminderEngine:
    """Risk scoring and reminder scheduling engine.

    Built from explicit collaborators; nothing is started until ``start()``.
    """

    def __init__(
        self,
        *,
        store: NotificationStore,
        directory: Directory,
        dispatcher: DeliveryDispatcher,
        clock: Clock,
        facility_zone: tzinfo,
        rules: RuleSet | None = None,
        scorer: RiskScorer | None = None,
        tick_seconds: float = 60.0,
    ) -> None:
        self.store = store
        self.directory = directory
        self.dispatcher = dispatcher
        self.clock = clock
        self.rules = rules if rules is not None else dispatcher.rules
        self.scorer = scorer if scorer is not None else RiskScorer()
        self.scheduler = Scheduler(
            store=store,
            rules=self.rules,
            directory=directory,
            scorer=self.scorer,
            clock=clock,
            facility_zone=facility_zone,
        )
        self.listener = ChangeListener(scheduler=self.scheduler, directory=directory)
        self.delivery = DeliveryCheck(store=store, dispatcher=dispatcher, clock=clock)
        self.ticker = Ticker(self.delivery.run, tick_seconds)
        self._lifecycle_lock = threading.Lock()
        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        *,
        directory: Directory | None = None,
        clock: Clock | None = None,
    ) -> "ReminderEngine":
        rules = RuleSet()
        dispatcher = DeliveryDispatcher(rules=rules, timeout_seconds=settings.dispatch_timeout_seconds)
        if settings.webhook_url:
            webhook = WebhookTransport(settings.webhook_url, timeout_seconds=settings.dispatch_timeout_seconds)
            for channel in ("email", "sms", "call"):
                dispatcher.register(channel, webhook)
        if directory is None:
            directory = (
                JsonFileDirectory(settings.directory_path) if settings.directory_path else InMemoryDirectory()
            )
        return cls(
            store=NotificationStore(SQLiteReminderDB(settings.db_path)),
            directory=directory,
            dispatcher=dispatcher,
            clock=clock or SystemClock(),
            facility_zone=settings.facility_zone(),
            rules=rules,
            tick_seconds=settings.tick_seconds,
        )

    @property
    def running(self) -> bool:
        return self._started

    def start(self) -> None:
        with self._lifecycle_lock:
            if self._started:
                return
            self.listener.start()
            self.ticker.start()
            self._started = True
            logger.info("Reminder engine started (tick every %ss)", self.ticker.interval_seconds)

    def stop(self, timeout: float | None = None) -> None:
        with self._lifecycle_lock:
            if not self._started:
                return
            self.ticker.stop(timeout)
            self.listener.stop(timeout)
            self._started = False
            logger.info("Reminder engine stopped")

    def close(self) -> None:
        self.stop()
        self.dispatcher.close()

    def schedule_all(self) -> ScheduleReport:
        report = self.scheduler.schedule_all()
        report.merge(self.scheduler.schedule_patient_alerts())
        logger.info(
            "schedule_all: %d created, %d re-derived, %d skipped",
            len(report.created),
            len(report.rederived),
            report.skipped,
        )
        return report

    def trigger_delivery_check_now(self) -> DeliveryReport:
        return self.delivery.run()

    def publish_event(self, event: AppointmentEvent) -> None:
        self.listener.publish(event)

    def analyze_risks(self) -> list[dict[str, Any]]:
        now = self.clock.now()
        findings: list[dict[str, Any]] = []
        for patient in self.directory.get_patients():
            result = self.scorer.score(patient, now)
            if not result.alerts:
                continue
            findings.append(
                {
                    "patient": patient,
                    "risk_score": result.score,
                    "alerts": result.alerts,
                    "recommended_actions": result.recommended_actions,
                }
            )
        return findings

    def get_risk_assessment(self, patient_id: str) -> dict[str, Any] | None:
        patient = self.directory.get_patient_by_id(patient_id)
        if patient is None:
            return None
        return self.assess(patient)

    def assess(self, patient: Patient) -> dict[str, Any]:
        now = self.clock.now()
        score = self.scorer.score_value(patient, now)
        return {
            "patient_id": patient.id,
            "risk_score": score,
            "risk_level": risk_level(score),
            "is_follow_up_overdue": self.scorer.is_follow_up_overdue(patient, now),
            "recommended_follow_up_days": recommended_follow_up_days(score),
        }

    def get_upcoming(self) -> list[ScheduledNotification]:
        return self.store.list_upcoming(self.clock.now())

    def get_history(self) -> list[ScheduledNotification]:
        return self.store.list_history()

    def get_patient_notifications(self, patient_id: str) -> list[ScheduledNotification]:
        return self.store.list_for_patient(patient_id)

    def mark_read(self, notification_id: str) -> ScheduledNotification | None:
        return self.store.mark_read(notification_id, self.clock.now())
