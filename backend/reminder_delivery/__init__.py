from .transports import LoggingTransport, Transport, TransportError, WebhookTransport

__all__ = ["LoggingTransport", "Transport", "TransportError", "WebhookTransport"]
