"""Correlation ID management for request and delivery tracing."""

import uuid
from contextvars import ContextVar, Token

# Visible to the request handler and anything it calls synchronously
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def get_or_create_correlation_id() -> str:
    """Return the current correlation ID, or a fresh one outside a request.

    Transport events arrive on the session loop thread where no request
    context exists; deliveries triggered there still need an ID to send.
    """
    return correlation_id_var.get() or generate_correlation_id()


def set_correlation_id(cid: str) -> Token[str]:
    """Set correlation ID in context."""
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    """Reset correlation ID to previous value."""
    correlation_id_var.reset(token)
