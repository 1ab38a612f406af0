"""Read-only status snapshot of the session."""

from dataclasses import dataclass
from datetime import datetime, timezone

from .manager import SessionManager
from .state import ConnectionState


@dataclass(frozen=True)
class StatusSnapshot:
    connected: bool
    status: ConnectionState
    has_qr: bool
    qr_token: str | None
    timestamp: str

    def to_payload(self) -> dict:
        """Body of GET /status."""
        return {
            "connected": self.connected,
            "status": self.status.value,
            "qrCode": self.qr_token,
            "hasQR": self.has_qr,
            "timestamp": self.timestamp,
        }


class StatusService:
    """Latest session state for HTTP callers. Never waits on the event loop."""

    def __init__(self, manager: SessionManager) -> None:
        self._manager = manager

    def snapshot(self) -> StatusSnapshot:
        state, qr = self._manager.view()
        return StatusSnapshot(
            connected=state.connected,
            status=state.state,
            has_qr=state.has_qr,
            qr_token=qr.token if qr is not None else None,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
