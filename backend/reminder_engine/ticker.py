from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from reminder_store import NotificationStore

from .clock import Clock
from .dispatcher import DeliveryDispatcher
from .models import DeliveryReport

logger = logging.getLogger(__name__)


class DeliveryCheck:
    """One scan-and-dispatch cycle over the store.

    Each due record is claimed (pending -> sent) before it is dispatched, so
    a record is handed to a transport at most once even if two checks race
    or the process dies mid-dispatch. Whole checks are serialized by
    ``_tick_lock``.
    """

    def __init__(self, *, store: NotificationStore, dispatcher: DeliveryDispatcher, clock: Clock) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self._tick_lock = threading.Lock()

    def run(self, now: datetime | None = None) -> DeliveryReport:
        with self._tick_lock:
            now = now or self.clock.now()
            report = DeliveryReport()
            for notification_id in self.store.due_ids(now):
                try:
                    claimed = self.store.claim(notification_id, now)
                except Exception as exc:
                    logger.exception("Could not claim notification %s", notification_id)
                    report.errors.append(f"{notification_id}: {exc}")
                    continue
                if claimed is None:
                    report.skipped += 1
                    continue

                outcome = self.dispatcher.dispatch(claimed)
                report.outcomes.append(outcome)
                try:
                    self.store.record_outcome(claimed.id, outcome.outcome, outcome.error, self.clock.now())
                except Exception as exc:
                    logger.exception("Could not record outcome for notification %s", claimed.id)
                    report.errors.append(f"{claimed.id}: {exc}")

            if report.outcomes:
                logger.info(
                    "Delivery check: %d dispatched, %d delivered, %d failed",
                    len(report.outcomes),
                    report.delivered,
                    report.failed,
                )
            return report


class Ticker:
    """Cancellable periodic timer. Runs ``callback`` at start and then every interval."""

    def __init__(self, callback: Callable[[], object], interval_seconds: float, name: str = "reminder-ticker") -> None:
        if interval_seconds <= 0:
            raise ValueError("Ticker interval must be positive")
        self.callback = callback
        self.interval_seconds = interval_seconds
        self.name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while True:
            try:
                self.callback()
            except Exception:
                logger.exception("Tick failed; continuing")
            self.ticks += 1
            if self._stop.wait(self.interval_seconds):
                return

    def stop(self, timeout: float | None = None) -> None:
        """Stop after the in-flight tick, if any, has finished."""
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
