from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any

from reminder_delivery import LoggingTransport, Transport
from reminder_store import ScheduledNotification
from reminder_store.time_utils import to_iso

from .models import CHANNELS, DispatchOutcome
from .rules import RuleSet

logger = logging.getLogger(__name__)


class DeliveryDispatcher:
    """Routes a due notification to the transport registered for its channel.

    Transport calls run on a small worker pool and are bounded by
    ``timeout_seconds``. Failures and timeouts come back as a failed
    ``DispatchOutcome``; nothing raised by a transport escapes ``dispatch``.
    """

    def __init__(
        self,
        *,
        rules: RuleSet,
        timeout_seconds: float = 10.0,
        transports: dict[str, Transport] | None = None,
        max_workers: int = 4,
    ) -> None:
        self.rules = rules
        self.timeout_seconds = timeout_seconds
        self._transports: dict[str, Transport] = {channel: LoggingTransport(channel) for channel in CHANNELS}
        for channel, transport in (transports or {}).items():
            self.register(channel, transport)
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="reminder-dispatch")
        self._closed = False

    def register(self, channel: str, transport: Transport) -> None:
        if channel not in CHANNELS:
            raise ValueError(f"Unknown delivery channel: {channel}")
        self._transports[channel] = transport

    def build_payload(self, notification: ScheduledNotification) -> dict[str, Any]:
        try:
            title = self.rules.resolve(notification.rule_id).name
        except KeyError:
            title = "Notification"
        return {
            "id": notification.id,
            "title": title,
            "message": notification.message,
            "priority": notification.priority,
            "channel": notification.channel,
            "patient_id": notification.patient_id,
            "appointment_id": notification.appointment_id,
            "scheduled_for": to_iso(notification.scheduled_for),
        }

    def dispatch(self, notification: ScheduledNotification) -> DispatchOutcome:
        transport = self._transports.get(notification.channel)
        if transport is None:
            logger.error("No transport for channel %s (notification %s)", notification.channel, notification.id)
            return DispatchOutcome(notification.id, notification.channel, "failed", "no transport for channel")

        payload = self.build_payload(notification)
        future = self._pool.submit(transport.send, payload)
        try:
            future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "Dispatch of %s via %s timed out after %.1fs",
                notification.id,
                notification.channel,
                self.timeout_seconds,
            )
            return DispatchOutcome(notification.id, notification.channel, "timed_out", "dispatch timed out")
        except Exception as exc:
            logger.error("Dispatch of %s via %s failed: %s", notification.id, notification.channel, exc)
            return DispatchOutcome(notification.id, notification.channel, "failed", str(exc))
        return DispatchOutcome(notification.id, notification.channel, "delivered")

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True
        self._pool.shutdown(wait=False, cancel_futures=True)
