"""Session manager: owns the connection state machine and the transport handle.

Transport events are published onto a queue and consumed by a single loop
thread, so state changes from the transport never interleave. HTTP-triggered
operations (restart, send, reads) take the same lock for read-modify-write.
Calls into the transport (factory, send, logout, close) never run under the
lock, and each is bounded by send_timeout except the factory.

Every transport handle and every timer is tagged with a generation number.
Starting, restarting or stopping bumps the generation, so events from an
old handle and timers scheduled before the bump are ignored.

Security: NEVER log jids or message text. Only log hashes and lengths.
"""

import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable

from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import hash_identifier, safe_log_context
from wabridge.webhooks.dispatcher import WebhookDispatcher
from wabridge.webhooks.payloads import connection_update_payload, group_created_payload
from wabridge.whatsapp.jid import format_jid
from wabridge.whatsapp.normalizer import normalize, should_forward
from wabridge.whatsapp.outbound import OutboundContent

from .qr import render_qr_png
from .scheduler import Scheduler, ThreadingScheduler, TimerHandle
from .state import ConnectionState, QRArtifact, SendResult, SessionState, is_terminal_closure
from .transport import (
    ConnectionUpdate,
    CredsUpdate,
    GroupsUpsert,
    MessagesUpsert,
    SessionTransport,
    TransportEvent,
    TransportFactory,
    TransportUnavailableError,
)

logger = get_logger(__name__)

RECONNECT_DELAY = 5.0
RESTART_DELAY = 2.0
SEND_TIMEOUT = 30.0

NOT_CONNECTED_MESSAGE = "WhatsApp not connected"


class NotConnectedError(RuntimeError):
    """Raised when an operation needs a connected session."""

    def __init__(self, message: str = NOT_CONNECTED_MESSAGE) -> None:
        super().__init__(message)


class SendFailedError(RuntimeError):
    """Raised when the transport fails an outbound call."""

    pass


class SendTimeoutError(SendFailedError):
    """Raised when the transport does not answer within send_timeout."""

    pass


def _log_credentials(creds: dict[str, Any]) -> None:
    logger.info(
        "credentials updated",
        extra={"extra_fields": safe_log_context(creds=creds)},
    )


class SessionManager:
    """Single transport session with reconnection policy.

    Args:
        transport_factory: Creates a transport handle given an event publisher.
            None leaves the session disconnected; start() then raises.
        dispatcher: Receives normalized message, status and group events.
        scheduler: Timer source for reconnect/restart delays.
        credentials_sink: Called with each credentials update. Defaults to
            logging the update's keys only.
        qr_renderer: Renders pairing tokens to PNG bytes.
        background: Run the event loop on a thread. With False, call drain()
            to process queued events on the calling thread.
    """

    def __init__(
        self,
        transport_factory: TransportFactory | None,
        dispatcher: WebhookDispatcher,
        *,
        reconnect_delay: float = RECONNECT_DELAY,
        restart_delay: float = RESTART_DELAY,
        send_timeout: float = SEND_TIMEOUT,
        scheduler: Scheduler | None = None,
        credentials_sink: Callable[[dict[str, Any]], None] | None = None,
        qr_renderer: Callable[[str], bytes] = render_qr_png,
        background: bool = True,
    ) -> None:
        self._transport_factory = transport_factory
        self._dispatcher = dispatcher
        self._reconnect_delay = reconnect_delay
        self._restart_delay = restart_delay
        self._send_timeout = send_timeout
        self._scheduler = scheduler or ThreadingScheduler()
        self._credentials_sink = credentials_sink or _log_credentials
        self._qr_renderer = qr_renderer
        self._background = background

        self._lock = threading.RLock()
        self._events: queue.Queue[tuple[int, TransportEvent] | None] = queue.Queue()
        self._loop_thread: threading.Thread | None = None
        self._send_pool: ThreadPoolExecutor | None = None

        self._state = ConnectionState.DISCONNECTED
        self._qr: QRArtifact | None = None
        self._transport: SessionTransport | None = None
        self._generation = 0
        self._pending: TimerHandle | None = None

    # -- lifecycle -----------------------------------------------------

    @property
    def configured(self) -> bool:
        return self._transport_factory is not None

    def start(self) -> None:
        """Establish a transport handle (disconnected -> connecting).

        Raises:
            TransportUnavailableError: If no factory is configured or it fails.
        """
        if self._transport_factory is None:
            raise TransportUnavailableError("no transport configured (set BRIDGE_TRANSPORT)")
        self._ensure_workers()
        with self._lock:
            self._cancel_pending()
            generation, old = self._begin_connect_locked()

        try:
            self._finish_connect(generation, old)
        except Exception as e:
            with self._lock:
                if generation == self._generation:
                    self._set_state(ConnectionState.DISCONNECTED)
            raise TransportUnavailableError(f"transport factory failed: {e}") from e

    def restart(self) -> None:
        """Tear down the current handle and reconnect after restart_delay.

        Logs out first when connected, which forces a fresh pairing.

        Raises:
            TransportUnavailableError: If no factory is configured.
        """
        if self._transport_factory is None:
            raise TransportUnavailableError("no transport configured (set BRIDGE_TRANSPORT)")
        self._ensure_workers()
        with self._lock:
            self._cancel_pending()
            old = self._transport
            was_connected = self._state == ConnectionState.CONNECTED
            self._transport = None
            self._generation += 1
            self._set_state(ConnectionState.RESTARTING)
            self._schedule_locked(self._restart_delay)

        if old is not None:
            self._teardown(old, logout=was_connected)

    def stop(self) -> None:
        """Cancel timers, close the transport and stop the event loop."""
        with self._lock:
            self._cancel_pending()
            old = self._transport
            self._transport = None
            self._generation += 1
            self._set_state(ConnectionState.DISCONNECTED)

        if old is not None:
            self._teardown(old, logout=False)

        thread = self._loop_thread
        if thread is not None:
            self._events.put(None)
            thread.join(timeout=5)
            self._loop_thread = None

        with self._lock:
            pool, self._send_pool = self._send_pool, None
        if pool is not None:
            pool.shutdown(wait=False)

    # -- reads ---------------------------------------------------------

    def current_state(self) -> SessionState:
        with self._lock:
            return self._snapshot_locked()

    def qr_artifact(self) -> QRArtifact | None:
        with self._lock:
            return self._qr

    def view(self) -> tuple[SessionState, QRArtifact | None]:
        """State and QR read together under one lock."""
        with self._lock:
            return self._snapshot_locked(), self._qr

    # -- outbound ------------------------------------------------------

    def send(self, target: str, content: OutboundContent) -> SendResult:
        """Send content to target (phone number or jid).

        Raises:
            NotConnectedError: If the session is not connected.
            SendFailedError: If the transport fails or times out.
        """
        jid = format_jid(target)
        log_ctx = safe_log_context(to_hash=hash_identifier(jid), kind=content.kind)
        logger.info("sending outbound message", extra={"extra_fields": log_ctx})

        result = self._call_transport("send", lambda t: t.send_message(jid, content.to_transport()))
        send_result = SendResult.from_transport(result)
        logger.info(
            "outbound message sent",
            extra={"extra_fields": safe_log_context(**log_ctx, message_id=send_result.message_id)},
        )
        return send_result

    def fetch_messages(self, chat_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Recent messages of a chat, as returned by the transport.

        Raises:
            NotConnectedError: If the session is not connected.
            SendFailedError: If the transport fails or times out.
        """
        jid = format_jid(chat_id)
        messages = self._call_transport("fetch", lambda t: t.fetch_messages(jid, limit))
        return list(messages or [])

    def _call_transport(self, operation: str, call: Callable[[SessionTransport], Any]) -> Any:
        with self._lock:
            if self._state != ConnectionState.CONNECTED or self._transport is None:
                raise NotConnectedError()
            transport = self._transport
        future = self._ensure_pool().submit(call, transport)
        try:
            return future.result(timeout=self._send_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.error(
                "transport call timed out",
                extra={"extra_fields": safe_log_context(operation=operation, timeout=self._send_timeout)},
            )
            raise SendTimeoutError(f"{operation} timed out after {self._send_timeout}s") from None
        except Exception as e:
            logger.error(
                "transport call failed",
                extra={"extra_fields": safe_log_context(operation=operation, error_type=type(e).__name__)},
            )
            raise SendFailedError(str(e) or type(e).__name__) from e

    # -- event channel -------------------------------------------------

    def _publisher(self, generation: int) -> Callable[[TransportEvent], None]:
        def publish(event: TransportEvent) -> None:
            self._events.put((generation, event))

        return publish

    def drain(self) -> int:
        """Process every queued event on the calling thread. Returns the count."""
        processed = 0
        while True:
            try:
                item = self._events.get_nowait()
            except queue.Empty:
                return processed
            if item is None:
                continue
            self._handle(*item)
            processed += 1

    def _run_loop(self) -> None:
        while True:
            item = self._events.get()
            if item is None:
                return
            try:
                self._handle(*item)
            except Exception:
                logger.exception("session event handler failed")

    def _handle(self, generation: int, event: TransportEvent) -> None:
        with self._lock:
            if generation != self._generation:
                logger.debug(
                    "stale transport event ignored",
                    extra={"extra_fields": safe_log_context(generation=generation, event=type(event).__name__)},
                )
                return

        if isinstance(event, ConnectionUpdate):
            self._on_connection_update(generation, event)
            self._dispatcher.dispatch("status", connection_update_payload(event))
        elif isinstance(event, MessagesUpsert):
            self._on_messages(event)
        elif isinstance(event, GroupsUpsert):
            self._dispatcher.dispatch("group", group_created_payload(event.groups))
        elif isinstance(event, CredsUpdate):
            self._credentials_sink(event.creds)
        else:
            logger.warning(
                "unknown transport event",
                extra={"extra_fields": safe_log_context(event=type(event).__name__)},
            )

    def _on_connection_update(self, generation: int, update: ConnectionUpdate) -> None:
        artifact = None
        if update.qr:
            artifact = QRArtifact(token=update.qr, image_png=self._render_qr(update.qr))

        with self._lock:
            if generation != self._generation:
                return

            if artifact is not None and update.connection not in ("open", "close"):
                self._set_state(ConnectionState.QR_READY, qr=artifact)
                logger.info("QR code generated - access via /qr endpoint")

            if update.connection == "open":
                self._set_state(ConnectionState.CONNECTED)
            elif update.connection == "close":
                self._transport = None
                status_code = update.last_disconnect.status_code if update.last_disconnect else None
                reconnect = not is_terminal_closure(status_code)
                logger.info(
                    "connection closed",
                    extra={"extra_fields": safe_log_context(status_code=status_code, reconnect=reconnect)},
                )
                if reconnect:
                    self._set_state(ConnectionState.RECONNECTING)
                    self._schedule_locked(self._reconnect_delay)
                else:
                    self._cancel_pending()
                    self._set_state(ConnectionState.LOGGED_OUT)
            elif update.connection == "connecting" and artifact is None:
                self._set_state(ConnectionState.CONNECTING)

    def _on_messages(self, event: MessagesUpsert) -> None:
        for raw in event.messages:
            if not should_forward(raw):
                continue
            normalized = normalize(raw)
            logger.info(
                "incoming message",
                extra={
                    "extra_fields": safe_log_context(
                        message_id_prefix=normalized.id[:8],
                        content_type=normalized.content_type.value,
                        content_len=len(normalized.content),
                        is_group=normalized.is_group,
                    )
                },
            )
            self._dispatcher.dispatch("message", normalized)

    def _render_qr(self, token: str) -> bytes | None:
        try:
            return self._qr_renderer(token)
        except Exception:
            logger.exception("error generating QR image")
            return None

    # -- internals (call with lock held) --------------------------------

    def _snapshot_locked(self) -> SessionState:
        return SessionState(
            state=self._state,
            has_qr=self._qr is not None,
            connected=self._state == ConnectionState.CONNECTED,
        )

    def _set_state(self, state: ConnectionState, qr: QRArtifact | None = None) -> None:
        # QR lives only while qr_ready
        self._qr = qr if state == ConnectionState.QR_READY else None
        if state != self._state:
            logger.info(
                "connection state changed",
                extra={"extra_fields": safe_log_context(previous=self._state.value, state=state.value)},
            )
        self._state = state

    def _begin_connect_locked(self) -> tuple[int, SessionTransport | None]:
        """Claim a new generation and detach the current handle."""
        old = self._transport
        self._transport = None
        self._generation += 1
        self._set_state(ConnectionState.CONNECTING)
        return self._generation, old

    def _schedule_locked(self, delay: float) -> None:
        self._cancel_pending()
        generation = self._generation
        self._pending = self._scheduler.call_later(delay, lambda: self._attempt(generation))

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _attempt(self, expected_generation: int) -> None:
        """Timer callback: reconnect unless a newer attempt superseded this one."""
        with self._lock:
            if expected_generation != self._generation:
                logger.debug(
                    "stale reconnect timer ignored",
                    extra={"extra_fields": safe_log_context(generation=expected_generation)},
                )
                return
            self._pending = None
            generation, old = self._begin_connect_locked()

        try:
            self._finish_connect(generation, old)
        except Exception:
            logger.exception("reconnect attempt failed")
            with self._lock:
                if generation == self._generation:
                    self._set_state(ConnectionState.RECONNECTING)
                    self._schedule_locked(self._reconnect_delay)

    # -- internals (call without the lock) ------------------------------

    def _finish_connect(self, generation: int, old: SessionTransport | None) -> None:
        """Close the detached handle and create the next one outside the lock.

        The new handle is installed only if no start/restart/stop happened
        meanwhile; otherwise it is closed right away.
        """
        assert self._transport_factory is not None
        if old is not None:
            self._teardown(old, logout=False)

        transport = self._transport_factory(self._publisher(generation))

        with self._lock:
            if generation == self._generation:
                self._transport = transport
                return

        logger.info(
            "superseded transport handle discarded",
            extra={"extra_fields": safe_log_context(generation=generation)},
        )
        self._teardown(transport, logout=False)

    def _teardown(self, transport: SessionTransport, *, logout: bool) -> None:
        """Logout or close, bounded by send_timeout. Failures are logged only."""
        call = transport.logout if logout else transport.close
        try:
            future = self._ensure_pool().submit(call)
        except RuntimeError:
            # Pool shut down by a concurrent stop()
            logger.warning(
                "transport teardown skipped, manager stopped",
                extra={"extra_fields": safe_log_context(logout=logout)},
            )
            return

        try:
            future.result(timeout=self._send_timeout)
        except FutureTimeoutError:
            logger.warning(
                "transport teardown timed out",
                extra={"extra_fields": safe_log_context(logout=logout, timeout=self._send_timeout)},
            )
        except Exception as e:
            logger.warning(
                "transport teardown failed",
                extra={"extra_fields": safe_log_context(logout=logout, error_type=type(e).__name__)},
            )

    def _ensure_pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._send_pool is None:
                self._send_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="transport-call")
            return self._send_pool

    def _ensure_workers(self) -> None:
        self._ensure_pool()
        with self._lock:
            if self._background and (self._loop_thread is None or not self._loop_thread.is_alive()):
                self._loop_thread = threading.Thread(
                    target=self._run_loop, name="session-loop", daemon=True
                )
                self._loop_thread.start()
