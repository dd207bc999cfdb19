"""Data models for the WhatsApp transport: states, events, inbound messages."""

from __future__ import annotations

import base64
import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .session import TransportSession


class SessionState(enum.Enum):
    """Lifecycle of one TransportSession."""

    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    AWAITING_QR = "awaiting_qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    DESTROYED = "destroyed"


class ConnectionStatus(enum.Enum):
    """Coarse status reported by TransportSession.get_status()."""

    READY = "ready"
    CONNECTING = "connecting"
    DISCONNECTED = "disconnected"
    UNKNOWN = "unknown"


class LifecycleEvent(enum.Enum):
    """Closed set of events a TransportSession delivers to observers."""

    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"
    MESSAGE = "message"
    ERROR = "error"


# Bridge state string -> ConnectionStatus
_STATE_MAP: dict[str, ConnectionStatus] = {
    "CONNECTED": ConnectionStatus.READY,
    "OPENING": ConnectionStatus.CONNECTING,
    "PAIRING": ConnectionStatus.CONNECTING,
    "CONFLICT": ConnectionStatus.DISCONNECTED,
    "UNPAIRED": ConnectionStatus.DISCONNECTED,
    "UNPAIRED_IDLE": ConnectionStatus.DISCONNECTED,
    "UNLAUNCHED": ConnectionStatus.DISCONNECTED,
    "TIMEOUT": ConnectionStatus.DISCONNECTED,
}


def map_bridge_state(state: str | None) -> ConnectionStatus:
    """Translate the bridge's WhatsApp Web state into a ConnectionStatus."""
    if not state:
        return ConnectionStatus.DISCONNECTED
    return _STATE_MAP.get(state.upper(), ConnectionStatus.UNKNOWN)


@dataclass
class MediaPayload:
    """Downloaded attachment bytes."""

    data: bytes
    mimetype: str
    filename: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MediaPayload:
        raw = data.get("data") or ""
        return cls(
            data=base64.b64decode(raw) if raw else b"",
            mimetype=str(data.get("mimetype") or "application/octet-stream"),
            filename=data.get("filename") or None,
        )


@dataclass
class InboundMessage:
    """One chat message received from the bridge.

    ``session`` is the TransportSession that delivered the message; it is
    only used for the lifetime of one dispatch (attachment download).
    """

    id: str
    sender: str
    body: str = ""
    has_media: bool = False
    timestamp: int = 0
    is_group: bool = False
    session: TransportSession | None = field(default=None, repr=False, compare=False)

    @property
    def identity(self) -> str | None:
        """Dedup key: the transport id, else sender + timestamp.

        None when the bridge supplied neither; such messages are not deduplicated.
        """
        if self.id:
            return self.id
        if not self.timestamp:
            return None
        return f"{self.sender}:{self.timestamp}"

    async def download_media(self) -> MediaPayload:
        if self.session is None:
            raise RuntimeError("Message is not bound to a transport session")
        return await self.session.download_media(self.id)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], session: TransportSession | None = None
    ) -> InboundMessage:
        sender = str(data.get("from") or "").strip()
        ts = data.get("timestamp")
        return cls(
            id=str(data.get("id") or "").strip(),
            sender=sender,
            body=str(data.get("body") or ""),
            has_media=bool(data.get("hasMedia", False)),
            timestamp=int(ts) if isinstance(ts, (int, float)) else 0,
            is_group=bool(data.get("isGroup", False)) or sender.endswith("@g.us"),
            session=session,
        )
