"""Environment-driven settings for the bridge.

Every knob has a default so the service boots with an empty environment;
the session simply stays disconnected until BRIDGE_TRANSPORT names a factory.
"""

import os
from dataclasses import dataclass, field


def _get_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Invalid {name}: expected a number, got {raw!r}") from None


def _get_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Invalid {name}: expected an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    """Runtime configuration. Built by load_settings() or directly in tests."""

    port: int = 3000
    transport: str = ""
    reconnect_delay: float = 5.0
    restart_delay: float = 2.0
    send_timeout: float = 30.0
    webhook_message_timeout: float = 10.0
    webhook_timeout: float = 30.0
    webhook_max_retries: int = 0
    webhook_retry_backoff: float = 0.5
    webhook_workers: int = 4
    webhook_max_pending: int = 1000
    webhook_signing_secret: str = ""
    initial_webhooks: dict[str, str] = field(default_factory=dict)


def load_settings() -> Settings:
    """Read settings from environment.

    Optional env vars:
    - PORT: HTTP port (default: 3000)
    - BRIDGE_TRANSPORT: "module:callable" transport factory
    - RECONNECT_DELAY / RESTART_DELAY: seconds (default: 5 / 2)
    - SEND_TIMEOUT: outbound send timeout in seconds (default: 30)
    - WEBHOOK_MESSAGE_TIMEOUT / WEBHOOK_TIMEOUT: delivery timeouts (default: 10 / 30)
    - WEBHOOK_MAX_RETRIES: extra delivery attempts (default: 0)
    - WEBHOOK_RETRY_BACKOFF: base backoff in seconds (default: 0.5)
    - WEBHOOK_WORKERS: delivery pool size (default: 4)
    - WEBHOOK_SIGNING_SECRET: HMAC secret for X-Webhook-Signature
    - WEBHOOK_URL_MESSAGE / WEBHOOK_URL_STATUS / WEBHOOK_URL_GROUP: initial registry

    Raises:
        RuntimeError: If a numeric variable cannot be parsed.
    """
    initial_webhooks = {}
    for category in ("message", "status", "group"):
        url = os.environ.get(f"WEBHOOK_URL_{category.upper()}", "").strip()
        if url:
            initial_webhooks[category] = url

    return Settings(
        port=_get_int("PORT", 3000),
        transport=os.environ.get("BRIDGE_TRANSPORT", "").strip(),
        reconnect_delay=_get_float("RECONNECT_DELAY", 5.0),
        restart_delay=_get_float("RESTART_DELAY", 2.0),
        send_timeout=_get_float("SEND_TIMEOUT", 30.0),
        webhook_message_timeout=_get_float("WEBHOOK_MESSAGE_TIMEOUT", 10.0),
        webhook_timeout=_get_float("WEBHOOK_TIMEOUT", 30.0),
        webhook_max_retries=_get_int("WEBHOOK_MAX_RETRIES", 0),
        webhook_retry_backoff=_get_float("WEBHOOK_RETRY_BACKOFF", 0.5),
        webhook_workers=_get_int("WEBHOOK_WORKERS", 4),
        webhook_max_pending=_get_int("WEBHOOK_MAX_PENDING", 1000),
        webhook_signing_secret=os.environ.get("WEBHOOK_SIGNING_SECRET", ""),
        initial_webhooks=initial_webhooks,
    )
