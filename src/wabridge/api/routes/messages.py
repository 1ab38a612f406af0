"""Outbound send and chat history endpoints.

Security: NEVER log `to`, `message` or `caption`.
"""

import json

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from wabridge.api.deps import get_session_manager
from wabridge.observability.correlation import get_correlation_id
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import safe_log_context
from wabridge.session.manager import NotConnectedError, SendFailedError, SessionManager
from wabridge.session.state import SendResult
from wabridge.whatsapp.outbound import (
    InvalidMediaTypeError,
    OutboundContent,
    TextContent,
    build_media_content,
)

router = APIRouter(tags=["messages"])

logger = get_logger(__name__)


class SendMessageRequest(BaseModel):
    to: str
    message: str


class SendMediaRequest(BaseModel):
    to: str
    mediaUrl: str
    mediaType: str
    caption: str | None = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _send(manager: SessionManager, to: str, content: OutboundContent) -> Response:
    try:
        result: SendResult = manager.send(to, content)
    except NotConnectedError as e:
        return _error(400, str(e))
    except SendFailedError as e:
        logger.error(
            "send failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(), kind=content.kind
                )
            },
        )
        return _error(500, str(e))

    return JSONResponse(
        content={
            "success": True,
            "messageId": result.message_id,
            "timestamp": result.timestamp,
        }
    )


@router.post("/send-message")
def send_message(
    body: SendMessageRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> Response:
    """Send a text message. 400 if the session is not connected."""
    return _send(manager, body.to, TextContent(text=body.message))


@router.post("/send-media")
def send_media(
    body: SendMediaRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> Response:
    """Send image/document/audio/video by URL. 400 on unknown type or no session."""
    if not manager.current_state().connected:
        return _error(400, "WhatsApp not connected")

    try:
        content = build_media_content(body.mediaType, body.mediaUrl, body.caption)
    except InvalidMediaTypeError:
        logger.warning(
            "invalid media type",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(), media_type=body.mediaType
                )
            },
        )
        return _error(400, "Invalid media type")

    return _send(manager, body.to, content)


@router.get("/messages/{chat_id}")
def get_messages(
    chat_id: str,
    limit: int = Query(20, ge=1, le=500),
    manager: SessionManager = Depends(get_session_manager),
) -> Response:
    """Recent messages of a chat as reported by the transport."""
    try:
        messages = manager.fetch_messages(chat_id, limit)
    except NotConnectedError as e:
        return _error(400, str(e))
    except SendFailedError as e:
        return _error(500, str(e))

    # Raw transport records may carry bytes (media keys, thumbnails)
    body = json.dumps({"success": True, "messages": messages}, default=str)
    return Response(content=body, media_type="application/json")
