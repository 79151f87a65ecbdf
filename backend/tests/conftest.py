from __future__ import annotations

import importlib
import json
import sys
from datetime import timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from reminder_engine import (  # noqa: E402
    Appointment,
    DeliveryDispatcher,
    InMemoryDirectory,
    ManualClock,
    Patient,
    ReminderEngine,
    RuleSet,
)
from reminder_store import NotificationStore, SQLiteReminderDB  # noqa: E402
from reminder_utils import FACILITY_TZ, START, RecordingTransport  # noqa: E402


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START.astimezone(timezone.utc))


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "reminders-test.sqlite")


@pytest.fixture
def patient() -> Patient:
    return Patient(
        id="pat-1",
        first_name="Ada",
        last_name="Moss",
        age=42,
        medical_history=("Seasonal allergies",),
        last_visit=(START - timedelta(days=20)).date().isoformat(),
        emergency_contact="Sam Moss",
    )


@pytest.fixture
def appointment() -> Appointment:
    return Appointment(
        id="apt-1",
        patient_id="pat-1",
        provider="Dr. Chen",
        date="2026-03-03",
        time="2:00 PM",
        status="booked",
    )


@pytest.fixture
def directory(patient, appointment) -> InMemoryDirectory:
    return InMemoryDirectory(patients=[patient], appointments=[appointment])


@pytest.fixture
def transports() -> dict[str, RecordingTransport]:
    return {channel: RecordingTransport() for channel in ("system", "email", "sms", "call")}


@pytest.fixture
def make_engine(db_path, clock, directory, transports) -> Callable[..., ReminderEngine]:
    engines: list[ReminderEngine] = []

    def _make(**overrides: Any) -> ReminderEngine:
        rules = overrides.pop("rules", None)
        if rules is None:
            rules = RuleSet()
        dispatcher = DeliveryDispatcher(
            rules=rules,
            timeout_seconds=overrides.pop("timeout_seconds", 2.0),
            transports=overrides.pop("transports", transports),
        )
        engine = ReminderEngine(
            store=NotificationStore(SQLiteReminderDB(overrides.pop("db_path", db_path))),
            directory=overrides.pop("directory", directory),
            dispatcher=dispatcher,
            clock=overrides.pop("clock", clock),
            facility_zone=FACILITY_TZ,
            rules=rules,
            tick_seconds=overrides.pop("tick_seconds", 60.0),
        )
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.close()


@pytest.fixture
def engine(make_engine) -> ReminderEngine:
    return make_engine()


@pytest.fixture
def directory_file(tmp_path) -> Path:
    path = tmp_path / "directory.json"
    path.write_text(
        json.dumps(
            {
                "patients": [
                    {
                        "id": "pat-1",
                        "firstName": "Ada",
                        "lastName": "Moss",
                        "age": 70,
                        "medicalHistory": ["Type 2 Diabetes", "Hypertension"],
                        "lastVisit": "2025-01-02",
                    },
                    {"id": "pat-2", "first_name": "Lee", "last_name": "Park", "age": 30},
                ],
                "appointments": [
                    {
                        "id": "apt-1",
                        "patientId": "pat-1",
                        "provider": "Dr. Chen",
                        "date": "2099-05-04",
                        "time": "10:30 AM",
                        "status": "booked",
                    }
                ],
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def backend_module(tmp_path, monkeypatch, directory_file):
    monkeypatch.setenv("REMINDERS_DB_PATH", str(tmp_path / "reminders-api.sqlite"))
    monkeypatch.setenv("REMINDERS_DIRECTORY_PATH", str(directory_file))
    monkeypatch.setenv("REMINDERS_FACILITY_TZ", "America/New_York")
    # Tests drive delivery and event handling explicitly.
    monkeypatch.setenv("REMINDERS_AUTOSTART", "false")
    monkeypatch.delenv("REMINDERS_WEBHOOK_URL", raising=False)

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    yield module
    module.container.engine.close()


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client
