"""Webhook registry endpoints."""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from wabridge.api.deps import get_dispatcher
from wabridge.observability.correlation import get_correlation_id
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import safe_log_context
from wabridge.webhooks.dispatcher import WebhookDispatcher, WebhookNotConfiguredError
from wabridge.webhooks.registry import UnknownCategoryError

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)


class SetWebhookRequest(BaseModel):
    url: str | None = None
    type: str = "message"


class WebhookCheckRequest(BaseModel):
    type: str = "message"


@router.post("/set-webhook")
def set_webhook(
    body: SetWebhookRequest,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> Response:
    """Register the URL for a category (null url unsets it)."""
    try:
        urls = dispatcher.register(body.type, body.url)
    except UnknownCategoryError:
        return JSONResponse(
            status_code=400,
            content={"error": f"Invalid webhook type: {body.type}"},
        )
    return JSONResponse(content={"success": True, "webhookUrls": urls})


@router.get("/webhooks")
def list_webhooks(dispatcher: WebhookDispatcher = Depends(get_dispatcher)) -> dict:
    return {"webhookUrls": dispatcher.urls()}


@router.post("/test-webhook")
def send_test_webhook(
    body: WebhookCheckRequest | None = None,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> Response:
    """Send a synthetic payload to the registered URL and report the outcome."""
    category = body.type if body is not None else "message"
    try:
        result = dispatcher.test(category)
    except WebhookNotConfiguredError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    if not result.ok:
        logger.warning(
            "test webhook failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    category=category,
                    status_code=result.status_code,
                )
            },
        )
        return JSONResponse(status_code=500, content={"error": result.error})

    return JSONResponse(content={"success": True, "message": "Test webhook sent"})


@router.post("/webhook")
def webhook_echo() -> dict:
    """Loopback receiver for wiring checks (e.g., pointing a webhook at the bridge itself)."""
    return {"received": True}
