from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Protocol

from .models import Appointment, Patient

logger = logging.getLogger(__name__)


class Directory(Protocol):
    """Read-only view of the external patient and appointment stores."""

    def get_patients(self) -> list[Patient]: ...

    def get_patient_by_id(self, patient_id: str) -> Patient | None: ...

    def get_appointments(self) -> list[Appointment]: ...


class InMemoryDirectory:
    def __init__(
        self,
        patients: list[Patient] | None = None,
        appointments: list[Appointment] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._patients: dict[str, Patient] = {p.id: p for p in patients or []}
        self._appointments: dict[str, Appointment] = {a.id: a for a in appointments or []}

    def put_patient(self, patient: Patient) -> None:
        with self._lock:
            self._patients[patient.id] = patient

    def put_appointment(self, appointment: Appointment) -> None:
        with self._lock:
            self._appointments[appointment.id] = appointment

    def get_patients(self) -> list[Patient]:
        with self._lock:
            return list(self._patients.values())

    def get_patient_by_id(self, patient_id: str) -> Patient | None:
        with self._lock:
            return self._patients.get(patient_id)

    def get_appointments(self) -> list[Appointment]:
        with self._lock:
            return list(self._appointments.values())


class JsonFileDirectory:
    """Directory backed by a JSON export ``{"patients": [...], "appointments": [...]}``.

    The file is re-read on every call so edits by the owning system are
    picked up without a restart. Malformed entries are logged and skipped.
    """

    def __init__(self, path: str) -> None:
        self._path = Path(path).expanduser().resolve()

    def _load(self) -> dict[str, Any]:
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning("Directory file %s does not exist", self._path)
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Could not read directory file %s: %s", self._path, exc)
            return {}

    def get_patients(self) -> list[Patient]:
        patients: list[Patient] = []
        for raw in self._load().get("patients") or []:
            try:
                patients.append(Patient.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed patient entry: %s", exc)
        return patients

    def get_patient_by_id(self, patient_id: str) -> Patient | None:
        for patient in self.get_patients():
            if patient.id == patient_id:
                return patient
        return None

    def get_appointments(self) -> list[Appointment]:
        appointments: list[Appointment] = []
        for raw in self._load().get("appointments") or []:
            try:
                appointments.append(Appointment.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed appointment entry: %s", exc)
        return appointments
