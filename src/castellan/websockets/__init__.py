"""WebSocket client utilities."""

from .client import (
    ConnectionEvent,
    ConnectionState,
    ReconnectBackoff,
    ReconnectingWebSocketClient,
    Transport,
)

__all__ = [
    "ConnectionEvent",
    "ConnectionState",
    "ReconnectBackoff",
    "ReconnectingWebSocketClient",
    "Transport",
]
