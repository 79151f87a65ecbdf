from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class TransportError(Exception):
    pass


class Transport(Protocol):
    def send(self, payload: dict[str, Any]) -> None: ...


class LoggingTransport:
    """Writes the notification to the log; stands in for the in-app toast."""

    def __init__(self, channel: str) -> None:
        self.channel = channel

    def send(self, payload: dict[str, Any]) -> None:
        level = logging.WARNING if payload.get("priority") in {"high", "critical"} else logging.INFO
        logger.log(
            level,
            "[%s] %s: %s (priority=%s, patient=%s)",
            self.channel,
            payload.get("title"),
            payload.get("message"),
            payload.get("priority"),
            payload.get("patient_id"),
        )


class WebhookTransport:
    """POSTs the notification as JSON to an external delivery service."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 10.0,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.headers = dict(headers or {})
        self._transport = transport

    def send(self, payload: dict[str, Any]) -> None:
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = client.post(self.url, json=payload, headers=self.headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"Webhook delivery failed: {exc}") from exc
        if response.status_code >= 300:
            raise TransportError(f"Webhook returned HTTP {response.status_code}")
