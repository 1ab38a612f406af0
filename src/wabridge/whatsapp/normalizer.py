"""Normalize raw transport message events into NormalizedEvent.

Raw events follow the transport's WAMessage shape:

    {
        "key": {"remoteJid": ..., "id": ..., "fromMe": bool, "participant": ...},
        "message": {"conversation": ...} | {"imageMessage": {...}} | ...,
        "messageTimestamp": 1700000000,
    }

Normalization never raises: unrecognized shapes degrade to ContentType.UNKNOWN.
"""

from typing import Any

from .jid import is_group_jid
from .models import ContentType, NormalizedEvent


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _coerce_timestamp(value: Any) -> int | None:
    """Coerce transport timestamps (int, numeric string, or {"low": n}) to int."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, dict) and isinstance(value.get("low"), int):
        return value["low"]
    return None


def extract_content(message: dict[str, Any]) -> tuple[str, ContentType]:
    """Pick content and type from a raw message body. First match wins.

    A quoted reply also carries a plain body, so order resolves ambiguity:
    conversation, extended text, image, video, document, audio.
    """
    conversation = _as_str(message.get("conversation"))
    if conversation:
        return conversation, ContentType.TEXT

    extended = _as_str(_as_dict(message.get("extendedTextMessage")).get("text"))
    if extended:
        return extended, ContentType.TEXT

    if isinstance(message.get("imageMessage"), dict):
        return _as_str(message["imageMessage"].get("caption")), ContentType.IMAGE

    if isinstance(message.get("videoMessage"), dict):
        return _as_str(message["videoMessage"].get("caption")), ContentType.VIDEO

    if isinstance(message.get("documentMessage"), dict):
        file_name = _as_str(message["documentMessage"].get("fileName"))
        return file_name or "Document", ContentType.DOCUMENT

    if isinstance(message.get("audioMessage"), dict):
        return "Audio message", ContentType.AUDIO

    return "", ContentType.UNKNOWN


def should_forward(raw: Any) -> bool:
    """False for the bridge's own outbound echoes (key.fromMe)."""
    return not bool(_as_dict(_as_dict(raw).get("key")).get("fromMe"))


def normalize(raw: Any) -> NormalizedEvent:
    """Normalize a raw inbound message event.

    Args:
        raw: Raw message event from the transport.

    Returns:
        NormalizedEvent with category "message". The raw event is kept
        unchanged in `raw` for consumers that need the full object.
    """
    event = _as_dict(raw)
    key = _as_dict(event.get("key"))

    remote_jid = _as_str(key.get("remoteJid"))
    participant = _as_str(key.get("participant"))
    content, content_type = extract_content(_as_dict(event.get("message")))

    return NormalizedEvent(
        id=_as_str(key.get("id")),
        category="message",
        from_jid=remote_jid,
        sender=participant or remote_jid,
        content=content,
        content_type=content_type,
        timestamp=_coerce_timestamp(event.get("messageTimestamp")),
        is_group=is_group_jid(remote_jid),
        raw=event,
    )
