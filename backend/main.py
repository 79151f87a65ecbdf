from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from reminder_engine import (
    Appointment,
    AppointmentEvent,
    EngineSettings,
    ReminderEngine,
)
from reminder_engine.config import bootstrap_local_env
from reminder_store import NotificationLifecycleError, ScheduledNotification

bootstrap_local_env()

settings = EngineSettings.from_env()
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)


class AppointmentPayload(BaseModel):
    id: str
    patient_id: str
    provider: str = ""
    date: str
    time: str
    status: str = "booked"
    timezone: str | None = None
    patient_name: str | None = None


class AppointmentEventPayload(BaseModel):
    kind: str = Field(pattern="^(created|updated|cancelled)$")
    appointment: AppointmentPayload


class ReminderApp:
    def __init__(self, engine_settings: EngineSettings) -> None:
        self.settings = engine_settings
        self.engine = ReminderEngine.from_settings(engine_settings)

    def start(self) -> None:
        if self.settings.autostart:
            self.engine.start()

    def stop(self) -> None:
        self.engine.close()


container = ReminderApp(settings)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    container.start()
    try:
        yield
    finally:
        container.stop()


app = FastAPI(title="CarePilot Reminders", lifespan=lifespan)

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _items(records: list[ScheduledNotification]) -> dict[str, Any]:
    return {"items": [record.as_dict() for record in records]}


@app.get("/health")
def health():
    engine = container.engine
    return {
        "ok": True,
        "running": engine.running,
        "tick_seconds": engine.ticker.interval_seconds,
        "queued_events": engine.listener.pending_events(),
    }


@app.post("/notifications/schedule")
def schedule_notifications():
    return container.engine.schedule_all().as_dict()


@app.post("/notifications/check")
def check_notifications():
    return container.engine.trigger_delivery_check_now().as_dict()


@app.get("/notifications/upcoming")
def upcoming_notifications():
    return _items(container.engine.get_upcoming())


@app.get("/notifications/history")
def notification_history():
    return _items(container.engine.get_history())


@app.post("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str):
    try:
        record = container.engine.mark_read(notification_id)
    except NotificationLifecycleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if record is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return record.as_dict()


@app.get("/patients/{patient_id}/notifications")
def patient_notifications(patient_id: str):
    return _items(container.engine.get_patient_notifications(patient_id))


@app.get("/risk/analysis")
def risk_analysis():
    findings = container.engine.analyze_risks()
    return {
        "items": [
            {
                "patient_id": item["patient"].id,
                "patient_name": item["patient"].display_name,
                "risk_score": item["risk_score"],
                "alerts": item["alerts"],
                "recommended_actions": item["recommended_actions"],
            }
            for item in findings
        ]
    }


@app.get("/risk/patients/{patient_id}")
def risk_assessment(patient_id: str):
    assessment = container.engine.get_risk_assessment(patient_id)
    if assessment is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    return assessment


@app.post("/events/appointments", status_code=202)
def appointment_event(payload: AppointmentEventPayload):
    try:
        appointment = Appointment.from_dict(payload.appointment.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    container.engine.publish_event(AppointmentEvent(kind=payload.kind, appointment=appointment))
    return {"accepted": True, "queued_events": container.engine.listener.pending_events()}
