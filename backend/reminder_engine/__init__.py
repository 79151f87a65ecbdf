from .clock import Clock, ManualClock, SystemClock
from .config import ConfigError, EngineSettings
from .directory import Directory, InMemoryDirectory, JsonFileDirectory
from .dispatcher import DeliveryDispatcher
from .listener import ChangeListener, EventResult
from .models import (
    Appointment,
    AppointmentEvent,
    DeliveryReport,
    DispatchOutcome,
    NotificationRule,
    Patient,
    RiskResult,
    ScheduleReport,
)
from .risk import RiskScorer, recommended_follow_up_days, risk_level
from .rules import DEFAULT_RULES, RuleSet
from .scheduler import Scheduler
from .service import ReminderEngine
from .ticker import DeliveryCheck, Ticker
from .timeparse import AppointmentTimeError

__all__ = [
    "DEFAULT_RULES",
    "Appointment",
    "AppointmentEvent",
    "AppointmentTimeError",
    "ChangeListener",
    "Clock",
    "ConfigError",
    "DeliveryCheck",
    "DeliveryDispatcher",
    "DeliveryReport",
    "Directory",
    "DispatchOutcome",
    "EngineSettings",
    "EventResult",
    "InMemoryDirectory",
    "JsonFileDirectory",
    "ManualClock",
    "NotificationRule",
    "Patient",
    "ReminderEngine",
    "RiskResult",
    "RiskScorer",
    "RuleSet",
    "ScheduleReport",
    "Scheduler",
    "SystemClock",
    "Ticker",
    "recommended_follow_up_days",
    "risk_level",
]
