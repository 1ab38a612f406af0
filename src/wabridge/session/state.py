"""Connection state, pairing artifact and snapshot types."""

import base64
from dataclasses import dataclass
from enum import Enum, IntEnum


class ConnectionState(str, Enum):
    """Lifecycle of the single transport session. Exactly one is active."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    QR_READY = "qr_ready"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    LOGGED_OUT = "logged_out"
    RESTARTING = "restarting"


class DisconnectReason(IntEnum):
    """Closure status codes reported by the transport."""

    LOGGED_OUT = 401
    FORBIDDEN = 403
    CONNECTION_LOST = 408
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


def is_terminal_closure(status_code: int | None) -> bool:
    """Only a logged-out closure stops automatic reconnection.

    A missing or unrecognized code is treated as recoverable.
    """
    return status_code == DisconnectReason.LOGGED_OUT


@dataclass(frozen=True)
class QRArtifact:
    """Pairing token plus its PNG rendering (None if rendering failed)."""

    token: str
    image_png: bytes | None

    @property
    def data_url(self) -> str | None:
        if self.image_png is None:
            return None
        return "data:image/png;base64," + base64.b64encode(self.image_png).decode("ascii")


@dataclass(frozen=True)
class SessionState:
    state: ConnectionState
    has_qr: bool
    connected: bool


@dataclass(frozen=True)
class SendResult:
    """Outcome of a successful outbound send."""

    message_id: str | None
    timestamp: int | str | None

    @classmethod
    def from_transport(cls, result: object) -> "SendResult":
        """Extract id/timestamp from a transport receipt ({"key": {"id"}, "messageTimestamp"})."""
        if not isinstance(result, dict):
            return cls(message_id=None, timestamp=None)
        key = result.get("key") if isinstance(result.get("key"), dict) else {}
        return cls(message_id=key.get("id"), timestamp=result.get("messageTimestamp"))
