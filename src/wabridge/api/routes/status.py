"""Session status, pairing QR and restart endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from wabridge.api.deps import get_session_manager, get_status_service
from wabridge.observability.correlation import get_correlation_id
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import safe_log_context
from wabridge.session.manager import SessionManager
from wabridge.session.status import StatusService
from wabridge.session.transport import TransportUnavailableError

router = APIRouter(tags=["session"])

logger = get_logger(__name__)


def _qr_not_available(status: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": "QR code not available", "status": status},
    )


@router.get("/")
def index(status_service: StatusService = Depends(get_status_service)) -> dict:
    """Service banner; the HTML dashboard is served elsewhere."""
    return {"service": "wabridge", "status": status_service.snapshot().status.value}


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/status")
def get_status(status_service: StatusService = Depends(get_status_service)) -> dict:
    """Current connection state and pairing token, if any."""
    return status_service.snapshot().to_payload()


@router.get("/qr")
def get_qr(manager: SessionManager = Depends(get_session_manager)) -> Response:
    """Pairing QR as PNG, or 404 when none is pending."""
    state, qr = manager.view()
    if qr is None or qr.image_png is None:
        return _qr_not_available(state.state.value)
    return Response(content=qr.image_png, media_type="image/png")


@router.get("/qr-json")
def get_qr_json(manager: SessionManager = Depends(get_session_manager)) -> Response:
    """Pairing QR as a data URL plus the raw token."""
    state, qr = manager.view()
    if qr is None or qr.image_png is None:
        return _qr_not_available(state.state.value)
    return JSONResponse(
        content={
            "qrCodeImage": qr.data_url,
            "qrCodeText": qr.token,
            "status": state.state.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


@router.post("/restart")
def restart(manager: SessionManager = Depends(get_session_manager)) -> Response:
    """Force a new session; logs out first if connected."""
    try:
        manager.restart()
    except TransportUnavailableError as e:
        logger.error(
            "restart failed",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id(), error=str(e))},
        )
        return JSONResponse(status_code=500, content={"error": str(e)})

    return JSONResponse(content={"success": True, "message": "Connection restart initiated"})
