"""FastAPI application factory.

Services are built once per app and kept on app.state; routes reach them
through the dependencies in wabridge.api.deps, so tests can inject fakes.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool

from wabridge.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import safe_log_context
from wabridge.session.manager import SessionManager
from wabridge.session.status import StatusService
from wabridge.session.transport import TransportUnavailableError, load_transport_factory
from wabridge.settings import Settings, load_settings
from wabridge.webhooks.dispatcher import WebhookDispatcher
from wabridge.webhooks.registry import WebhookRegistry

from .routes import messages, status, webhooks

logger = get_logger(__name__)


def build_dispatcher(settings: Settings) -> WebhookDispatcher:
    return WebhookDispatcher(
        WebhookRegistry(settings.initial_webhooks),
        message_timeout=settings.webhook_message_timeout,
        default_timeout=settings.webhook_timeout,
        max_retries=settings.webhook_max_retries,
        retry_backoff=settings.webhook_retry_backoff,
        signing_secret=settings.webhook_signing_secret,
        max_workers=settings.webhook_workers,
        max_pending=settings.webhook_max_pending,
    )


def build_session_manager(settings: Settings, dispatcher: WebhookDispatcher) -> SessionManager:
    """Create the session manager. Without BRIDGE_TRANSPORT it stays disconnected.

    Raises:
        TransportUnavailableError: If BRIDGE_TRANSPORT is set but cannot be loaded.
    """
    factory = load_transport_factory(settings.transport) if settings.transport else None
    return SessionManager(
        factory,
        dispatcher,
        reconnect_delay=settings.reconnect_delay,
        restart_delay=settings.restart_delay,
        send_timeout=settings.send_timeout,
    )


def create_app(
    settings: Settings | None = None,
    *,
    manager: SessionManager | None = None,
    dispatcher: WebhookDispatcher | None = None,
) -> FastAPI:
    """Create the bridge app.

    Args:
        settings: Explicit settings. If None, read from environment.
        manager: Pre-built session manager (tests). Built from settings if None.
        dispatcher: Pre-built dispatcher (tests). Built from settings if None.

    Returns:
        Configured FastAPI application. The session starts on app startup
        and stops on shutdown.
    """
    if settings is None:
        settings = load_settings()
    if dispatcher is None:
        dispatcher = build_dispatcher(settings)
    if manager is None:
        manager = build_session_manager(settings, dispatcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manager.configured:
            try:
                # Transport factory and teardown block; keep them off the event loop
                await run_in_threadpool(manager.start)
            except TransportUnavailableError as e:
                logger.error(
                    "session start failed",
                    extra={"extra_fields": safe_log_context(error=str(e))},
                )
        else:
            logger.warning("BRIDGE_TRANSPORT not set - session stays disconnected")
        try:
            yield
        finally:
            await run_in_threadpool(manager.stop)
            dispatcher.shutdown(wait=False)

    app = FastAPI(
        title="WhatsApp Bridge",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_manager = manager
    app.state.webhook_dispatcher = dispatcher
    app.state.status_service = StatusService(manager)

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    app.include_router(status.router)
    app.include_router(messages.router)
    app.include_router(webhooks.router)

    return app
