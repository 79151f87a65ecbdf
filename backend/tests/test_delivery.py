from __future__ import annotations

import json
import threading
from typing import Any

import httpx
import pytest

from reminder_delivery import TransportError, WebhookTransport
from reminder_engine import Ticker
from reminder_store import NotificationLifecycleError
from reminder_utils import FailingTransport, RecordingTransport, local


class BlockingTransport:
    def __init__(self) -> None:
        self.release = threading.Event()
        self.calls = 0

    def send(self, payload: dict[str, Any]) -> None:
        self.calls += 1
        self.release.wait(5)


def test_nothing_is_dispatched_before_it_is_due(engine, transports):
    engine.schedule_all()

    report = engine.trigger_delivery_check_now()

    assert report.outcomes == []
    assert all(not transport.sent for transport in transports.values())


def test_due_record_is_dispatched_exactly_once(engine, clock, transports):
    engine.schedule_all()
    clock.set(local(14, 0, day=2))

    first = engine.trigger_delivery_check_now()
    clock.advance(minutes=5)
    second = engine.trigger_delivery_check_now()

    assert first.delivered == 1
    assert second.outcomes == []
    assert len(transports["email"].sent) == 1
    payload = transports["email"].sent[0]
    assert payload["title"] == "24 Hour Appointment Reminder"
    assert payload["scheduled_for"] == "2026-03-02T19:00:00.000000Z"
    assert payload["appointment_id"] == "apt-1"

    record = engine.store.get(payload["id"])
    assert record.status == "sent"
    assert record.sent is True
    assert record.sent_at >= record.scheduled_for
    assert record.delivery_outcome == "delivered"
    assert record.delivery_error is None


def test_failed_dispatch_is_not_retried(make_engine, clock):
    failing = FailingTransport()
    engine = make_engine(transports={"email": failing})
    engine.schedule_all()
    clock.set(local(14, 1, day=2))

    report = engine.trigger_delivery_check_now()
    engine.trigger_delivery_check_now()

    assert failing.attempts == 1
    assert report.failed == 1
    record = engine.store.get_by_key("appointment_reminder_24h", "pat-1", "apt-1")
    assert record.status == "sent"
    assert record.delivery_outcome == "failed"
    assert record.delivery_error == "smtp relay unavailable"


def test_dispatch_timeout_is_recorded_and_tick_moves_on(make_engine, clock):
    blocking = BlockingTransport()
    engine = make_engine(transports={"email": blocking}, timeout_seconds=0.2)
    engine.schedule_all()
    clock.set(local(14, 0, day=2))

    try:
        report = engine.trigger_delivery_check_now()
    finally:
        blocking.release.set()

    assert [outcome.outcome for outcome in report.outcomes] == ["timed_out"]
    record = engine.store.get_by_key("appointment_reminder_24h", "pat-1", "apt-1")
    assert record.status == "sent"
    assert record.delivery_outcome == "timed_out"


def test_one_failing_channel_does_not_stop_the_batch(make_engine, clock):
    failing = FailingTransport()
    recording = RecordingTransport()
    engine = make_engine(transports={"email": failing, "system": recording})
    engine.schedule_all()
    clock.set(local(14, 0, day=3))

    report = engine.trigger_delivery_check_now()

    assert len(report.outcomes) == 2
    assert report.delivered == 1
    assert report.failed == 1
    assert [payload["title"] for payload in recording.sent] == ["15 Minute Appointment Reminder"]
    assert len(engine.get_history()) == 2


def test_two_engines_on_one_database_never_double_deliver(make_engine, clock, transports):
    first = make_engine()
    second = make_engine()
    first.schedule_all()
    clock.set(local(14, 0, day=3))

    barrier = threading.Barrier(2)

    def run(engine):
        barrier.wait()
        engine.trigger_delivery_check_now()

    threads = [threading.Thread(target=run, args=(engine,)) for engine in (first, second)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert len(transports["email"].sent) == 1
    assert len(transports["system"].sent) == 1


def test_history_and_mark_read(engine, clock):
    engine.schedule_all()
    clock.set(local(14, 0, day=2))
    engine.trigger_delivery_check_now()

    history = engine.get_history()
    assert [record.rule_id for record in history] == ["appointment_reminder_24h"]
    assert [record.rule_id for record in engine.get_upcoming()] == ["appointment_reminder_15min"]

    clock.advance(minutes=3)
    read = engine.mark_read(history[0].id)
    assert read.read_at == clock.now()
    assert engine.mark_read(history[0].id).read_at == read.read_at

    with pytest.raises(NotificationLifecycleError):
        engine.mark_read(engine.get_upcoming()[0].id)
    assert engine.mark_read("missing") is None


def test_ticker_runs_at_start_and_stops_cleanly():
    fired = threading.Event()
    calls: list[int] = []

    def callback():
        calls.append(1)
        fired.set()

    ticker = Ticker(callback, interval_seconds=30.0)
    ticker.start()
    assert fired.wait(5)
    ticker.stop(timeout=5)

    assert not ticker.running
    assert ticker.ticks == 1
    assert calls == [1]


def test_ticker_survives_callback_errors():
    seen = threading.Event()
    attempts: list[int] = []

    def callback():
        attempts.append(1)
        if len(attempts) >= 3:
            seen.set()
        raise RuntimeError("tick exploded")

    ticker = Ticker(callback, interval_seconds=0.01)
    ticker.start()
    try:
        assert seen.wait(5)
    finally:
        ticker.stop(timeout=5)
    assert len(attempts) >= 3


def test_ticker_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        Ticker(lambda: None, interval_seconds=0)


def test_engine_start_delivers_due_records_immediately(make_engine, clock, transports):
    engine = make_engine(tick_seconds=30.0)
    engine.schedule_all()
    clock.set(local(14, 0, day=2))

    engine.start()
    try:
        engine.ticker.stop(timeout=5)
    finally:
        engine.stop(timeout=5)

    assert not engine.running
    assert len(transports["email"].sent) == 1


def test_webhook_transport_posts_json_payload():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202)

    webhook = WebhookTransport(
        "https://notify.example.test/hooks",
        headers={"X-Api-Key": "k"},
        transport=httpx.MockTransport(handler),
    )
    webhook.send({"id": "n-1", "message": "hello"})

    assert len(requests) == 1
    assert requests[0].headers["X-Api-Key"] == "k"
    assert json.loads(requests[0].content) == {"id": "n-1", "message": "hello"}


def test_webhook_transport_raises_on_error_status():
    webhook = WebhookTransport(
        "https://notify.example.test/hooks",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    with pytest.raises(TransportError, match="503"):
        webhook.send({"id": "n-1"})
