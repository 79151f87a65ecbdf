from __future__ import annotations

from .models import NotificationRule

DEFAULT_RULES: tuple[NotificationRule, ...] = (
    NotificationRule(
        id="appointment_reminder_24h",
        name="24 Hour Appointment Reminder",
        trigger="before_appointment",
        offset_minutes=24 * 60,
        template="Reminder: You have an appointment tomorrow at {time} with {provider}",
        priority="medium",
    ),
    NotificationRule(
        id="appointment_reminder_15min",
        name="15 Minute Appointment Reminder",
        trigger="before_appointment",
        offset_minutes=15,
        template="Your appointment with {provider} is starting in 15 minutes",
        priority="high",
    ),
    NotificationRule(
        id="appointment_created",
        name="New Appointment Created",
        trigger="appointment_created",
        template="New appointment scheduled for {date} at {time} with {provider}",
        priority="medium",
    ),
    NotificationRule(
        id="appointment_updated",
        name="Appointment Updated",
        trigger="appointment_updated",
        template="Appointment on {date} at {time} has been updated",
        priority="medium",
    ),
    NotificationRule(
        id="appointment_cancelled",
        name="Appointment Cancelled",
        trigger="appointment_cancelled",
        template="Appointment on {date} at {time} has been cancelled",
        priority="high",
    ),
    NotificationRule(
        id="high_risk_patient_alert",
        name="High Risk Patient Alert",
        trigger="high_risk_patient",
        template="High-risk patient {patientName} requires immediate attention",
        priority="critical",
    ),
    NotificationRule(
        id="follow_up_overdue",
        name="Follow-up Overdue",
        trigger="follow_up_due",
        template="Patient {patientName} has overdue follow-up appointments",
        priority="high",
    ),
)


class RuleSet:
    """Immutable rule table, loaded once when the engine is built."""

    def __init__(self, rules: tuple[NotificationRule, ...] | list[NotificationRule] = DEFAULT_RULES) -> None:
        by_id: dict[str, NotificationRule] = {}
        for rule in rules:
            if rule.id in by_id:
                raise ValueError(f"Duplicate rule id: {rule.id}")
            by_id[rule.id] = rule
        self._rules = by_id

    def resolve(self, rule_id: str) -> NotificationRule:
        rule = self._rules.get(rule_id)
        if not rule:
            raise KeyError(f"Rule not found: {rule_id}")
        return rule

    def for_trigger(self, trigger: str) -> list[NotificationRule]:
        return [rule for rule in self._rules.values() if rule.trigger == trigger]

    def first_for_trigger(self, trigger: str) -> NotificationRule | None:
        matches = self.for_trigger(trigger)
        return matches[0] if matches else None

    def list_ids(self) -> list[str]:
        return sorted(self._rules.keys())

    def __iter__(self):
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)
