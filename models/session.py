from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class DisconnectReason(str, Enum):
    LOGGED_OUT = "logged_out"          # remote side revoked the device
    CONNECTION_LOST = "connection_lost"
    CLOSED = "closed"                  # we closed it ourselves
    UNKNOWN = "unknown"


class PairingFormat(str, Enum):
    QR_STRING = "qr_string"            # raw payload, we render it
    PNG_BASE64 = "png_base64"          # gateway already rendered it


@dataclass
class PairingCode:
    value: str
    format: PairingFormat = PairingFormat.QR_STRING


# --- transport events ---

@dataclass
class ConnectionUpdate:
    connection: Optional[str] = None   # "connecting" | "open" | "close"
    pairing: Optional[PairingCode] = None
    reason: Optional[DisconnectReason] = None
    detail: Optional[str] = None


@dataclass
class InboundMessage:
    chat_id: str                       # raw channel address, e.g. "6281...@c.us"
    text: Optional[str]
    message_id: Optional[str] = None
    from_me: bool = False
    sender_name: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return self.chat_id.endswith("@g.us")


class SessionStatus(BaseModel):
    connected: bool
    state: ConnectionState
    has_pending_pairing: bool
    reconnect_attempts: int = 0
