"""Outbound webhook bodies for lifecycle and test events.

Message events build theirs through NormalizedEvent.to_payload().
"""

import time
from typing import Any

from wabridge.session.transport import ConnectionUpdate


def now_ms() -> int:
    return int(time.time() * 1000)


def connection_update_payload(update: ConnectionUpdate) -> dict[str, Any]:
    return {
        "type": "connection_update",
        "connection": update.connection,
        "lastDisconnect": update.last_disconnect.to_payload() if update.last_disconnect else None,
        "qr": bool(update.qr),
        "timestamp": now_ms(),
    }


def group_created_payload(groups: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "type": "group_created",
        "groups": groups,
        "timestamp": now_ms(),
    }


def synthetic_payload() -> dict[str, Any]:
    """Synthetic body sent by the test-webhook endpoint."""
    timestamp = now_ms()
    return {
        "test": True,
        "type": "test_message",
        "from": "test@s.whatsapp.net",
        "message": "Test message from WhatsApp bridge",
        "timestamp": timestamp,
        "messageId": f"test_{timestamp}",
    }
