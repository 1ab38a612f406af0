"""WhatsApp event models."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

Category = Literal["message", "status", "group"]

CATEGORIES: tuple[Category, ...] = ("message", "status", "group")


class ContentType(str, Enum):
    """Content kinds a normalized message can carry."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    AUDIO = "audio"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NormalizedEvent:
    """Canonical, protocol-agnostic inbound message.

    ATTENTION: `from_jid`, `sender`, `content` and `raw` are PII.
    Forward them to webhooks only; NEVER log them.
    """

    id: str
    category: Category
    from_jid: str
    sender: str
    content: str
    content_type: ContentType
    timestamp: int | None
    is_group: bool
    raw: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        """Build the `incoming_message` webhook body."""
        return {
            "type": "incoming_message",
            "messageId": self.id,
            "from": self.from_jid,
            "sender": self.sender,
            "message": self.content,
            "messageType": self.content_type.value,
            "timestamp": self.timestamp,
            "isGroup": self.is_group,
            "raw": self.raw,
        }
