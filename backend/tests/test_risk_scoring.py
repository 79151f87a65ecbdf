from __future__ import annotations

from datetime import timedelta

import pytest

from reminder_engine import Patient, RiskScorer, recommended_follow_up_days, risk_level
from reminder_engine.risk import (
    ALERT_FOLLOW_UP_OVERDUE,
    ALERT_HIGH_RISK,
    ALERT_MISSING_CONTACT,
)
from reminder_utils import START

NOW = START


def _visit(days_ago: int) -> str:
    return (NOW - timedelta(days=days_ago)).isoformat()


def _patient(**fields) -> Patient:
    base = {"id": "p", "first_name": "Test", "last_name": "Patient", "emergency_contact": "Kin"}
    base.update(fields)
    return Patient(**base)


def test_documented_scenario_age_70_diabetes_hypertension_100_days():
    patient = _patient(age=70, medical_history=("Type 2 Diabetes", "Hypertension"), last_visit=_visit(100))
    scorer = RiskScorer()
    assert scorer.raw_score(patient, NOW) == 10
    assert scorer.score_value(patient, NOW) == 10


def test_score_is_clamped_to_ten():
    patient = _patient(
        age=90,
        medical_history=("Diabetes", "Hypertension", "Heart disease", "COPD", "Cancer"),
        last_visit=_visit(400),
    )
    scorer = RiskScorer()
    assert scorer.raw_score(patient, NOW) == 4 + 15 + 5
    assert scorer.score(patient, NOW).score == 10


@pytest.mark.parametrize(
    "age, expected",
    [(None, 0), (40, 0), (65, 0), (66, 2), (80, 2), (81, 4), ("72", 2), ("unknown", 0), (-3, 0), (True, 0)],
)
def test_age_contribution(age, expected):
    assert RiskScorer().score_value(_patient(age=age), NOW) == expected


def test_keyword_match_is_case_insensitive_substring_and_counted_once_per_keyword():
    scorer = RiskScorer()
    once = _patient(medical_history=("DIABETES mellitus",))
    twice_same_keyword = _patient(medical_history=("Type 1 diabetes", "gestational diabetes"))
    assert scorer.score_value(once, NOW) == 3
    assert scorer.score_value(twice_same_keyword, NOW) == 3


@pytest.mark.parametrize("days, expected", [(90, 0), (91, 2), (180, 2), (181, 5)])
def test_last_visit_contribution(days, expected):
    assert RiskScorer().score_value(_patient(last_visit=_visit(days)), NOW) == expected


def test_unparseable_last_visit_contributes_nothing():
    patient = _patient(last_visit="last spring")
    scorer = RiskScorer()
    assert scorer.score_value(patient, NOW) == 0
    assert scorer.is_follow_up_overdue(patient, NOW) is False


def test_adding_keywords_never_decreases_score():
    scorer = RiskScorer()
    history: tuple[str, ...] = ()
    previous = scorer.score_value(_patient(age=70, medical_history=history, last_visit=_visit(95)), NOW)
    for tag in ("hypertension stage 2", "COPD", "unrelated sprain", "breast cancer", "heart disease", "diabetes"):
        history = history + (tag,)
        current = scorer.score_value(_patient(age=70, medical_history=history, last_visit=_visit(95)), NOW)
        assert current >= previous
        previous = current


def test_increasing_age_never_decreases_score():
    scorer = RiskScorer()
    scores = [scorer.score_value(_patient(age=age, medical_history=("copd",)), NOW) for age in range(50, 100)]
    assert scores == sorted(scores)


def test_follow_up_overdue_thresholds():
    scorer = RiskScorer()
    assert scorer.is_follow_up_overdue(_patient(), NOW) is False

    high = ("diabetes", "hypertension", "cancer")
    assert scorer.is_follow_up_overdue(_patient(medical_history=high, last_visit=_visit(30)), NOW) is False
    assert scorer.is_follow_up_overdue(_patient(medical_history=high, last_visit=_visit(31)), NOW) is True

    medium = ("diabetes", "hypertension")
    assert scorer.is_follow_up_overdue(_patient(medical_history=medium, last_visit=_visit(60)), NOW) is False
    assert scorer.is_follow_up_overdue(_patient(medical_history=medium, last_visit=_visit(91)), NOW) is True

    assert scorer.is_follow_up_overdue(_patient(last_visit=_visit(180)), NOW) is False
    assert scorer.is_follow_up_overdue(_patient(last_visit=_visit(181)), NOW) is True


def test_alerts_and_recommended_actions():
    patient = _patient(
        age=82,
        medical_history=("heart disease", "copd"),
        last_visit=_visit(45),
        emergency_contact=None,
    )
    result = RiskScorer().score(patient, NOW)
    assert result.score == 10
    assert result.alerts == [ALERT_HIGH_RISK, ALERT_FOLLOW_UP_OVERDUE, ALERT_MISSING_CONTACT]
    assert result.recommended_actions == [
        "Schedule follow-up within 2 weeks",
        "Consider care manager assignment",
        "Contact patient to schedule appointment",
        "Update emergency contact information",
    ]


def test_low_risk_patient_has_no_alerts():
    result = RiskScorer().score(_patient(age=30, last_visit=_visit(10)), NOW)
    assert result.score == 0
    assert result.alerts == []
    assert result.recommended_actions == []


@pytest.mark.parametrize(
    "score, level, days",
    [(0, "Low", 90), (4, "Low", 90), (5, "Medium", 30), (7, "Medium", 30), (8, "High", 14), (10, "High", 14)],
)
def test_risk_level_and_follow_up_days(score, level, days):
    assert risk_level(score) == level
    assert recommended_follow_up_days(score) == days
