"""WhatsApp identifier (jid) helpers."""

USER_SUFFIX = "@s.whatsapp.net"
GROUP_SUFFIX = "@g.us"


def format_jid(value: str) -> str:
    """Qualify a bare phone number with the direct-message suffix.

    Values that already carry a domain separator pass through unchanged,
    so format_jid(format_jid(x)) == format_jid(x).

    Args:
        value: Phone number (e.g., "628123") or jid.

    Returns:
        Jid (e.g., "628123@s.whatsapp.net").
    """
    value = value.strip()
    if "@" in value:
        return value
    return f"{value}{USER_SUFFIX}"


def is_group_jid(jid: str) -> bool:
    """True iff jid names a group conversation."""
    return jid.endswith(GROUP_SUFFIX)
