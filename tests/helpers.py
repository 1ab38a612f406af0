"""Shared test doubles for wabridge tests.

These are NOT fixtures - they are plain classes and functions that
conftest.py and individual test files can use directly.
"""

from __future__ import annotations

import threading
from typing import Any, Callable

from wabridge.session.transport import (
    ConnectionUpdate,
    EventPublisher,
    LastDisconnect,
    TransportEvent,
)


class FakeTransport:
    """In-memory transport handle that records calls."""

    def __init__(self, publish: EventPublisher) -> None:
        self.publish = publish
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.history: list[dict[str, Any]] = []
        self.fetches: list[tuple[str, int]] = []
        self.send_error: Exception | None = None
        self.block: threading.Event | None = None
        self.teardown_block: threading.Event | None = None
        self.closed = False
        self.logged_out = False

    def send_message(self, jid: str, content: dict[str, Any]) -> dict[str, Any]:
        if self.block is not None:
            self.block.wait(timeout=5)
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((jid, content))
        return {"key": {"id": f"MSG{len(self.sent):03d}"}, "messageTimestamp": 1700000000}

    def fetch_messages(self, jid: str, limit: int) -> list[dict[str, Any]]:
        self.fetches.append((jid, limit))
        return self.history[:limit]

    def logout(self) -> None:
        if self.teardown_block is not None:
            self.teardown_block.wait(timeout=5)
        self.logged_out = True

    def close(self) -> None:
        if self.teardown_block is not None:
            self.teardown_block.wait(timeout=5)
        self.closed = True

    # Convenience publishers
    def emit(self, event: TransportEvent) -> None:
        self.publish(event)

    def emit_qr(self, token: str = "2@pairing-token") -> None:
        self.publish(ConnectionUpdate(qr=token))

    def emit_open(self) -> None:
        self.publish(ConnectionUpdate(connection="open"))

    def emit_close(self, status_code: int | None) -> None:
        self.publish(
            ConnectionUpdate(
                connection="close",
                last_disconnect=LastDisconnect(status_code=status_code, message="closed"),
            )
        )


class FakeTransportFactory:
    """Callable factory tracking every handle it creates."""

    def __init__(self) -> None:
        self.created: list[FakeTransport] = []
        self.error: Exception | None = None

    def __call__(self, publish: EventPublisher) -> FakeTransport:
        if self.error is not None:
            raise self.error
        transport = FakeTransport(publish)
        self.created.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.created[-1]


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        """Run the callback as a real timer would (skipped once cancelled)."""
        if self.cancelled or self.fired:
            return
        self.fired = True
        self.callback()


class FakeScheduler:
    """Records timers instead of running them; tests fire them explicitly."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]


class RecordingDispatcher:
    """Stands in for WebhookDispatcher; records dispatch() calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def dispatch(self, category: str, event: Any) -> None:
        self.calls.append((category, event))
        return None

    def of(self, category: str) -> list[Any]:
        return [event for c, event in self.calls if c == category]


def make_fake_transport(publish: EventPublisher) -> FakeTransport:
    """Module-level factory usable as BRIDGE_TRANSPORT=helpers:make_fake_transport."""
    return FakeTransport(publish)


def make_message(
    *,
    message_id: str = "3EB0C767D26A",
    remote_jid: str = "628123@s.whatsapp.net",
    participant: str | None = None,
    from_me: bool = False,
    body: dict[str, Any] | None = None,
    timestamp: Any = 1700000000,
) -> dict[str, Any]:
    """Raw transport message event."""
    key: dict[str, Any] = {"remoteJid": remote_jid, "id": message_id, "fromMe": from_me}
    if participant is not None:
        key["participant"] = participant
    return {
        "key": key,
        "message": body if body is not None else {"conversation": "hi"},
        "messageTimestamp": timestamp,
    }


FAKE_PNG = b"\x89PNG\r\n\x1a\nfake"


def connect(manager, transport_factory: FakeTransportFactory) -> FakeTransport:
    """Drive a manager (background=False) to `connected`; returns the live transport."""
    manager.start()
    transport = transport_factory.latest
    transport.emit_open()
    manager.drain()
    return transport
