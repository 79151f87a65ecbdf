from .database import SQLiteReminderDB
from .notification_store import (
    NOTIFICATION_STATES,
    TERMINAL_STATES,
    NotificationLifecycleError,
    NotificationStore,
    ScheduledNotification,
    UpsertResult,
)

__all__ = [
    "NOTIFICATION_STATES",
    "TERMINAL_STATES",
    "NotificationLifecycleError",
    "NotificationStore",
    "SQLiteReminderDB",
    "ScheduledNotification",
    "UpsertResult",
]
