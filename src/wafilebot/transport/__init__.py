"""WhatsApp bridge transport: session wrapper and event models."""

from .events import (
    ConnectionStatus,
    InboundMessage,
    LifecycleEvent,
    MediaPayload,
    SessionState,
)
from .session import (
    BridgeClosedError,
    BridgeCommandError,
    BridgeError,
    TransportSession,
    needs_reconnect,
)

__all__ = [
    "BridgeClosedError",
    "BridgeCommandError",
    "BridgeError",
    "ConnectionStatus",
    "InboundMessage",
    "LifecycleEvent",
    "MediaPayload",
    "SessionState",
    "TransportSession",
    "needs_reconnect",
]
