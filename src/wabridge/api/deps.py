"""Request-scoped access to the services stored on app.state."""

from fastapi import Request

from wabridge.session.manager import SessionManager
from wabridge.session.status import StatusService
from wabridge.webhooks.dispatcher import WebhookDispatcher


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_status_service(request: Request) -> StatusService:
    return request.app.state.status_service


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.webhook_dispatcher
