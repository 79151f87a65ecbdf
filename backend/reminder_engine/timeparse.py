from __future__ import annotations

import re
from datetime import date, datetime, time, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import Appointment, Patient

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])\s*$")
_DATE_RE = re.compile(r"^\s*(\d{4})-(\d{2})-(\d{2})")


class AppointmentTimeError(ValueError):
    pass


def parse_clock_time(value: str) -> time:
    """Parse a 12-hour ``"H:MM AM/PM"`` string."""
    match = _TIME_RE.match(value or "")
    if not match:
        raise AppointmentTimeError(f"Unparseable appointment time: {value!r}")
    hours, minutes, period = int(match.group(1)), int(match.group(2)), match.group(3).upper()
    if not 1 <= hours <= 12 or minutes > 59:
        raise AppointmentTimeError(f"Out of range appointment time: {value!r}")
    if period == "PM" and hours != 12:
        hours += 12
    if period == "AM" and hours == 12:
        hours = 0
    return time(hours, minutes)


def parse_appointment_date(value: str) -> date:
    match = _DATE_RE.match(value or "")
    if not match:
        raise AppointmentTimeError(f"Unparseable appointment date: {value!r}")
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError as exc:
        raise AppointmentTimeError(f"Invalid appointment date: {value!r}") from exc


def resolve_zone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise AppointmentTimeError(f"Unknown timezone: {name!r}") from exc


def appointment_instant(appointment: Appointment, facility_zone: tzinfo) -> datetime:
    """Combine the appointment's wall-clock date and time into an aware instant.

    The appointment's own ``timezone`` wins over the facility zone.
    """
    zone = resolve_zone(appointment.timezone) if appointment.timezone else facility_zone
    local = datetime.combine(parse_appointment_date(appointment.date), parse_clock_time(appointment.time))
    return local.replace(tzinfo=zone, fold=0)


def render_template(template: str, patient: Patient | None, appointment: Appointment | None) -> str:
    if patient is not None:
        patient_name = patient.display_name
    elif appointment is not None and appointment.patient_name:
        patient_name = appointment.patient_name
    else:
        patient_name = "Unknown Patient"
    values = {
        "{patientName}": patient_name,
        "{time}": appointment.time if appointment else "",
        "{provider}": appointment.provider if appointment else "",
        "{date}": appointment.date if appointment else "",
    }
    message = template
    for placeholder, value in values.items():
        message = message.replace(placeholder, value)
    return message
