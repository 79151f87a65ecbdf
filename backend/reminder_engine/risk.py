from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from reminder_store.time_utils import parse_iso

from .models import Patient, RiskResult

HIGH_RISK_CONDITIONS = ("diabetes", "hypertension", "heart disease", "copd", "cancer")
MAX_SCORE = 10

ALERT_HIGH_RISK = "High risk patient - requires immediate attention"
ALERT_FOLLOW_UP_OVERDUE = "Follow-up appointment overdue"
ALERT_MISSING_CONTACT = "Elderly patient missing emergency contact"

RECOMMENDED_ACTIONS = {
    ALERT_HIGH_RISK: ("Schedule follow-up within 2 weeks", "Consider care manager assignment"),
    ALERT_FOLLOW_UP_OVERDUE: ("Contact patient to schedule appointment",),
    ALERT_MISSING_CONTACT: ("Update emergency contact information",),
}


def _coerce_age(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        age = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(age) or age < 0:
        return None
    return age


def days_since_last_visit(patient: Patient, now: datetime) -> int | None:
    if not isinstance(patient.last_visit, str):
        return None
    last_visit = parse_iso(patient.last_visit)
    if last_visit is None:
        return None
    return math.floor((now - last_visit).total_seconds() / 86400)


def risk_level(score: int) -> str:
    if score > 7:
        return "High"
    if score > 4:
        return "Medium"
    return "Low"


def recommended_follow_up_days(score: int) -> int:
    if score > 7:
        return 14
    if score > 4:
        return 30
    return 90


class RiskScorer:
    def __init__(self, conditions: tuple[str, ...] = HIGH_RISK_CONDITIONS, max_score: int = MAX_SCORE) -> None:
        self.conditions = tuple(condition.lower() for condition in conditions)
        self.max_score = max_score

    def raw_score(self, patient: Patient, now: datetime) -> int:
        score = 0

        age = _coerce_age(patient.age)
        if age is not None and age > 65:
            score += 2
        if age is not None and age > 80:
            score += 2

        history = [tag.lower() for tag in patient.medical_history if isinstance(tag, str)]
        for condition in self.conditions:
            if any(condition in tag for tag in history):
                score += 3

        days = days_since_last_visit(patient, now)
        if days is not None:
            if days > 90:
                score += 2
            if days > 180:
                score += 3

        return score

    def score_value(self, patient: Patient, now: datetime) -> int:
        return min(self.raw_score(patient, now), self.max_score)

    def is_follow_up_overdue(self, patient: Patient, now: datetime) -> bool:
        days = days_since_last_visit(patient, now)
        if days is None:
            return False
        score = self.score_value(patient, now)
        if score > 7 and days > 30:
            return True
        if score > 4 and days > 90:
            return True
        return days > 180

    def score(self, patient: Patient, now: datetime) -> RiskResult:
        value = self.score_value(patient, now)
        alerts: list[str] = []
        if value > 7:
            alerts.append(ALERT_HIGH_RISK)
        if self.is_follow_up_overdue(patient, now):
            alerts.append(ALERT_FOLLOW_UP_OVERDUE)
        age = _coerce_age(patient.age)
        if age is not None and age > 75 and not patient.emergency_contact:
            alerts.append(ALERT_MISSING_CONTACT)

        actions: list[str] = []
        for alert in alerts:
            actions.extend(RECOMMENDED_ACTIONS[alert])
        return RiskResult(score=value, alerts=alerts, recommended_actions=actions)
