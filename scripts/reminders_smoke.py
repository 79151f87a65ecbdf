#!/usr/bin/env python3
from __future__ import annotations

import importlib
import json
import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from fastapi.testclient import TestClient


@dataclass
class Scenario:
  name: str
  check: Callable[[TestClient, Any], tuple[bool, dict[str, Any]]]


def seed_directory(path: Path) -> None:
  long_ago = (datetime.now(timezone.utc) - timedelta(days=200)).date().isoformat()
  path.write_text(
    json.dumps(
      {
        "patients": [
          {
            "id": "smoke-pat-1",
            "firstName": "Jane",
            "lastName": "Doe",
            "age": 78,
            "medicalHistory": ["Type 2 Diabetes", "COPD"],
            "lastVisit": long_ago,
          },
          {"id": "smoke-pat-2", "firstName": "Sam", "lastName": "Lee", "age": 35},
        ],
        "appointments": [
          {
            "id": "smoke-apt-1",
            "patientId": "smoke-pat-1",
            "provider": "Dr. Patel",
            "date": "2099-01-15",
            "time": "9:30 AM",
            "status": "booked",
          }
        ],
      }
    ),
    encoding="utf-8",
  )


def check_schedule(client: TestClient, _module: Any) -> tuple[bool, dict[str, Any]]:
  first = client.post("/notifications/schedule").json()
  second = client.post("/notifications/schedule").json()
  upcoming = client.get("/notifications/upcoming").json()["items"]
  body = {"first": first, "second": second, "upcoming": len(upcoming)}
  return first["created"] >= 2 and second["created"] == 0 and len(upcoming) == 2, body


def check_delivery(client: TestClient, _module: Any) -> tuple[bool, dict[str, Any]]:
  first = client.post("/notifications/check").json()
  second = client.post("/notifications/check").json()
  history = client.get("/notifications/history").json()["items"]
  body = {"first": first, "second": second, "history": len(history)}
  return first["dispatched"] == len(history) and second["dispatched"] == 0, body


def check_events(client: TestClient, module: Any) -> tuple[bool, dict[str, Any]]:
  appointment = {
    "id": "smoke-apt-2",
    "patient_id": "smoke-pat-2",
    "provider": "Dr. Patel",
    "date": "2099-02-01",
    "time": "1:15 PM",
  }
  accepted = client.post("/events/appointments", json={"kind": "created", "appointment": appointment})
  module.container.engine.listener.drain()
  created = client.get("/patients/smoke-pat-2/notifications").json()["items"]

  cancelled = dict(appointment, status="cancelled")
  client.post("/events/appointments", json={"kind": "cancelled", "appointment": cancelled})
  module.container.engine.listener.drain()
  upcoming = [
    item for item in client.get("/notifications/upcoming").json()["items"] if item["appointment_id"] == "smoke-apt-2"
  ]
  body = {"accepted_status": accepted.status_code, "created": len(created), "upcoming_after_cancel": len(upcoming)}
  return accepted.status_code == 202 and len(created) == 3 and not upcoming, body


def check_risk(client: TestClient, _module: Any) -> tuple[bool, dict[str, Any]]:
  analysis = client.get("/risk/analysis").json()["items"]
  assessment = client.get("/risk/patients/smoke-pat-1").json()
  body = {"analysis": analysis, "assessment": assessment}
  flagged = [item["patient_id"] for item in analysis]
  return flagged == ["smoke-pat-1"] and assessment.get("risk_level") == "High", body


def run() -> int:
  repo_root = Path(__file__).resolve().parents[1]
  backend_dir = repo_root / "backend"
  if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

  workdir = Path(tempfile.mkdtemp(prefix="reminders-smoke-"))
  directory_path = workdir / "directory.json"
  seed_directory(directory_path)

  os.environ["REMINDERS_DB_PATH"] = str(workdir / "reminders.sqlite")
  os.environ["REMINDERS_DIRECTORY_PATH"] = str(directory_path)
  # Smoke checks drive delivery explicitly.
  os.environ["REMINDERS_AUTOSTART"] = "false"
  os.environ.setdefault("REMINDERS_FACILITY_TZ", "America/New_York")

  backend_module = importlib.import_module("main")
  backend_module = importlib.reload(backend_module)

  scenarios = [
    Scenario(name="Idempotent Scheduling", check=check_schedule),
    Scenario(name="At-Most-Once Delivery", check=check_delivery),
    Scenario(name="Appointment Change Events", check=check_events),
    Scenario(name="Risk Analysis", check=check_risk),
  ]

  results: list[dict[str, Any]] = []
  with TestClient(backend_module.app) as client:
    for scenario in scenarios:
      try:
        passed, body = scenario.check(client, backend_module)
        results.append({"name": scenario.name, "pass": passed, "body": body})
      except Exception as exc:
        results.append({"name": scenario.name, "pass": False, "error": repr(exc)})
  backend_module.container.engine.close()

  passed = sum(1 for item in results if item.get("pass"))
  failed = len(results) - passed
  timestamp = datetime.now(timezone.utc).isoformat()

  report_lines = [
    "# Reminders Smoke Report",
    "",
    f"- Timestamp (UTC): `{timestamp}`",
    f"- Database: `{os.environ['REMINDERS_DB_PATH']}`",
    f"- Facility timezone: `{os.getenv('REMINDERS_FACILITY_TZ')}`",
    f"- Total scenarios: `{len(results)}`",
    f"- Passed: `{passed}`",
    f"- Failed: `{failed}`",
    "",
    "## Scenario Results",
    "",
  ]
  for item in results:
    status = "PASS" if item.get("pass") else "FAIL"
    report_lines.append(f"### {status} - {item['name']}")
    if item.get("error"):
      report_lines.append(f"- Error: `{item['error']}`")
    report_lines.append("```json")
    report_lines.append(json.dumps(item.get("body"), indent=2, ensure_ascii=True))
    report_lines.append("```")
    report_lines.append("")

  report_path = repo_root / "REMINDERS_SMOKE_REPORT.md"
  report_path.write_text("\n".join(report_lines), encoding="utf-8")
  print(f"Wrote report: {report_path}")
  print(f"Passed {passed}/{len(results)} scenarios.")

  return 0 if failed == 0 else 1


if __name__ == "__main__":
  raise SystemExit(run())
