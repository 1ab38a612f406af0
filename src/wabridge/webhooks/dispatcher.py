"""Webhook fan-out: deliver events to the URL registered for their category.

Delivery is fire-and-forget on a worker pool. Failures are logged and
recorded as dead letters; they never reach the caller of dispatch().

Security: payloads carry jids and message text. NEVER log payload values,
only the payload type, category and a hash of the destination.
"""

import hashlib
import hmac
import json
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import requests

from wabridge.observability.correlation import (
    CORRELATION_ID_HEADER,
    get_or_create_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import hash_identifier, safe_log_context
from wabridge.whatsapp.models import NormalizedEvent

from .payloads import synthetic_payload
from .registry import WebhookRegistry

logger = get_logger(__name__)

# Timeouts for webhook POSTs (seconds)
MESSAGE_TIMEOUT = 10.0
DEFAULT_TIMEOUT = 30.0

DEAD_LETTER_LIMIT = 100

# Deliveries queued or in flight; beyond this, new events are dropped
MAX_PENDING = 1000

SIGNATURE_HEADER = "X-Webhook-Signature"


class WebhookNotConfiguredError(LookupError):
    """Raised by test() when no URL is registered for the category."""

    pass


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    attempts: int
    status_code: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class DeadLetter:
    """A delivery that exhausted its attempts. Kept in memory only."""

    category: str
    url: str
    payload: dict[str, Any]
    error: str
    attempts: int
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class WebhookDispatcher:
    """Routes events to registered webhook URLs.

    With max_retries=0 (default) each event gets exactly one attempt. Higher
    values retry network errors and 5xx responses with exponential backoff.
    At most max_pending deliveries are queued or running; events arriving
    while the backlog is full are dropped and recorded as dead letters.
    """

    def __init__(
        self,
        registry: WebhookRegistry | None = None,
        *,
        message_timeout: float = MESSAGE_TIMEOUT,
        default_timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 0,
        retry_backoff: float = 0.5,
        signing_secret: str = "",
        max_workers: int = 4,
        max_pending: int = MAX_PENDING,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.registry = registry or WebhookRegistry()
        self._message_timeout = message_timeout
        self._default_timeout = default_timeout
        self._max_retries = max(0, max_retries)
        self._retry_backoff = retry_backoff
        self._signing_secret = signing_secret
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="webhook"
        )
        self._dead_letters: deque[DeadLetter] = deque(maxlen=DEAD_LETTER_LIMIT)
        self._dead_letters_lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(max(1, max_pending))

    def register(self, category: str, url: str | None) -> dict[str, str | None]:
        """Register (or unset) a category URL. Returns the registry contents."""
        urls = self.registry.set(category, url)
        logger.info(
            "webhook registered",
            extra={
                "extra_fields": safe_log_context(
                    category=category,
                    url_hash=hash_identifier(url) if url else None,
                )
            },
        )
        return urls

    def urls(self) -> dict[str, str | None]:
        return self.registry.snapshot()

    def dispatch(
        self, category: str, event: NormalizedEvent | dict[str, Any]
    ) -> Future[DeliveryResult] | None:
        """Queue delivery of an event. Never raises.

        Returns:
            The delivery future, or None if no URL is registered (event dropped).
        """
        url = self.registry.get(category)
        payload = event.to_payload() if isinstance(event, NormalizedEvent) else event
        payload_type = payload.get("type") if isinstance(payload, dict) else None

        if not url:
            logger.debug(
                "no webhook registered, event dropped",
                extra={"extra_fields": safe_log_context(category=category, type=payload_type)},
            )
            return None

        if not self._slots.acquire(blocking=False):
            logger.warning(
                "webhook backlog full, event dropped",
                extra={"extra_fields": safe_log_context(category=category, type=payload_type)},
            )
            self._record_dead_letter(category, url, payload, "backlog full", attempts=0)
            return None

        correlation_id = get_or_create_correlation_id()
        try:
            return self._executor.submit(
                self._deliver_in_context, category, url, payload, correlation_id
            )
        except RuntimeError:
            # Executor already shut down
            self._slots.release()
            logger.warning(
                "webhook dispatcher closed, event dropped",
                extra={"extra_fields": safe_log_context(category=category, type=payload_type)},
            )
            return None

    def test(self, category: str) -> DeliveryResult:
        """Send a synthetic payload synchronously to the category URL.

        Raises:
            WebhookNotConfiguredError: If no URL is registered for category.
        """
        url = self.registry.get(category)
        if not url:
            raise WebhookNotConfiguredError(f"No webhook URL set for type: {category}")
        return self.deliver(category, url, synthetic_payload(), get_or_create_correlation_id())

    def dead_letters(self) -> list[DeadLetter]:
        with self._dead_letters_lock:
            return list(self._dead_letters)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _record_dead_letter(
        self, category: str, url: str, payload: dict[str, Any], error: str, *, attempts: int
    ) -> None:
        with self._dead_letters_lock:
            self._dead_letters.append(
                DeadLetter(
                    category=category, url=url, payload=payload, error=error, attempts=attempts
                )
            )

    def _timeout_for(self, category: str) -> float:
        return self._message_timeout if category == "message" else self._default_timeout

    def _headers(self, category: str, body: bytes, correlation_id: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            CORRELATION_ID_HEADER: correlation_id,
            "X-Webhook-Category": category,
        }
        if self._signing_secret:
            digest = hmac.new(self._signing_secret.encode(), body, hashlib.sha256).hexdigest()
            headers[SIGNATURE_HEADER] = f"sha256={digest}"
        return headers

    def _deliver_in_context(
        self, category: str, url: str, payload: dict[str, Any], correlation_id: str
    ) -> DeliveryResult:
        token = set_correlation_id(correlation_id)
        try:
            return self.deliver(category, url, payload, correlation_id)
        except Exception as e:
            # Serialization or other unexpected errors must not escape the worker
            logger.exception(
                "webhook delivery crashed",
                extra={"extra_fields": safe_log_context(category=category)},
            )
            return DeliveryResult(ok=False, attempts=0, error=str(e))
        finally:
            reset_correlation_id(token)
            self._slots.release()

    def deliver(
        self, category: str, url: str, payload: dict[str, Any], correlation_id: str
    ) -> DeliveryResult:
        """POST payload to url, retrying per configuration. Returns the outcome."""
        body = json.dumps(payload, default=str).encode("utf-8")
        headers = self._headers(category, body, correlation_id)
        timeout = self._timeout_for(category)

        log_ctx = safe_log_context(
            category=category,
            type=payload.get("type"),
            url_hash=hash_identifier(url),
            body_len=len(body),
        )

        for attempt in range(self._max_retries + 1):
            try:
                response = requests.post(url, data=body, headers=headers, timeout=timeout)
                response.raise_for_status()
                logger.info(
                    "webhook delivered",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, attempt=attempt, status_code=response.status_code
                        )
                    },
                )
                return DeliveryResult(
                    ok=True, attempts=attempt + 1, status_code=response.status_code
                )
            except requests.RequestException as e:
                status_code = e.response.status_code if e.response is not None else None
                # Network errors and 5xx are retryable; 4xx means the receiver rejected it
                retryable = status_code is None or status_code >= 500

                if attempt < self._max_retries and retryable:
                    delay = self._retry_backoff * (2**attempt)
                    logger.warning(
                        "webhook delivery failed, retrying",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx,
                                attempt=attempt,
                                delay=delay,
                                error_type=type(e).__name__,
                            )
                        },
                    )
                    self._sleep(delay)
                    continue

                logger.error(
                    "webhook delivery failed",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx,
                            attempt=attempt,
                            status_code=status_code,
                            error_type=type(e).__name__,
                        )
                    },
                )
                self._record_dead_letter(category, url, payload, str(e), attempts=attempt + 1)
                return DeliveryResult(
                    ok=False, attempts=attempt + 1, status_code=status_code, error=str(e)
                )

        # Loop always returns; keeps type checkers satisfied
        return DeliveryResult(ok=False, attempts=self._max_retries + 1, error="no attempt made")
