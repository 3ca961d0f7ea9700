"""Session API router — thin HTTP layer over the lifecycle controller.

Endpoints
---------
POST   /api/whatsapp/tenants/{tenant_id}/sessions                    → start (or return) the session
GET    /api/whatsapp/tenants/{tenant_id}/sessions                    → tenant's live sessions
DELETE /api/whatsapp/tenants/{tenant_id}/sessions                    → disconnect all
GET    /api/whatsapp/tenants/{tenant_id}/sessions/{session_id}/qr    → QR code + status
GET    /api/whatsapp/tenants/{tenant_id}/sessions/{session_id}/status
DELETE /api/whatsapp/tenants/{tenant_id}/sessions/{session_id}       → disconnect
POST   /api/whatsapp/tenants/{tenant_id}/sessions/{session_id}/send  → send a text message
POST   /api/whatsapp/tenants/{tenant_id}/compliance                  → advisory policy check
GET    /api/whatsapp/sessions                                        → every live session
GET    /api/whatsapp/metrics                                         → service counters
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from whatsapp_sessions.sessions.controller import SessionLifecycleController
from whatsapp_sessions.sessions.errors import RateLimitExceeded, SessionError, SessionNotConnected
from whatsapp_sessions.sessions.identity import parse_identifier
from whatsapp_sessions.sessions.validation import ValidationFailure

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/whatsapp", tags=["whatsapp-sessions"])


def get_controller(request: Request) -> SessionLifecycleController:
    return request.app.state.controller


# ── Request / response models ────────────────────────────


class StartSessionRequest(BaseModel):
    phone: str | None = None


class StartSessionResponse(BaseModel):
    success: bool = True
    session_id: str
    status: str
    qr: str | None = None


class SessionQRResponse(BaseModel):
    session_id: str
    status: str
    qr: str | None = None


class SessionStatusResponse(BaseModel):
    session_id: str
    status: str
    has_qr: bool


class SendMessageRequest(BaseModel):
    to: str
    message: str


class ComplianceRequest(BaseModel):
    phone: str
    message: str | None = None


class ComplianceResponse(BaseModel):
    compliant: bool
    warnings: list[str]


def _require_owned(tenant_id: int, session_id: str) -> None:
    """Reject identifiers that do not belong to *tenant_id*."""
    parsed = parse_identifier(session_id)
    if parsed is None or parsed.tenant_id != tenant_id:
        raise HTTPException(status_code=403, detail="Access denied")


# ── Endpoints ────────────────────────────────────────────


@router.post("/tenants/{tenant_id}/sessions", response_model=StartSessionResponse)
async def start_session(
    tenant_id: int,
    body: StartSessionRequest,
    controller: SessionLifecycleController = Depends(get_controller),
):
    """Start the tenant's session; the phone is detected when the QR is scanned."""
    result = await controller.start_session(tenant_id, body.phone)
    return StartSessionResponse(session_id=result.session_id, status=result.status, qr=result.qr)


@router.get("/tenants/{tenant_id}/sessions")
async def list_tenant_sessions(
    tenant_id: int, controller: SessionLifecycleController = Depends(get_controller)
) -> dict[str, Any]:
    return {"sessions": controller.list_sessions_for_tenant(tenant_id)}


@router.delete("/tenants/{tenant_id}/sessions")
async def disconnect_all(
    tenant_id: int, controller: SessionLifecycleController = Depends(get_controller)
) -> dict[str, Any]:
    disconnected = await controller.disconnect_all_for_tenant(tenant_id)
    return {"success": True, "disconnected": disconnected}


@router.get("/tenants/{tenant_id}/sessions/{session_id}/qr", response_model=SessionQRResponse)
async def get_qr(
    tenant_id: int,
    session_id: str,
    controller: SessionLifecycleController = Depends(get_controller),
):
    _require_owned(tenant_id, session_id)
    return SessionQRResponse(
        session_id=session_id,
        status=controller.get_status(session_id),
        qr=controller.get_qr(session_id),
    )


@router.get(
    "/tenants/{tenant_id}/sessions/{session_id}/status", response_model=SessionStatusResponse
)
async def get_status(
    tenant_id: int,
    session_id: str,
    controller: SessionLifecycleController = Depends(get_controller),
):
    _require_owned(tenant_id, session_id)
    return SessionStatusResponse(
        session_id=session_id,
        status=controller.get_status(session_id),
        has_qr=controller.get_qr(session_id) is not None,
    )


@router.delete("/tenants/{tenant_id}/sessions/{session_id}")
async def disconnect_session(
    tenant_id: int,
    session_id: str,
    controller: SessionLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    _require_owned(tenant_id, session_id)
    success = await controller.disconnect_session(session_id)
    return {"success": success}


@router.post("/tenants/{tenant_id}/sessions/{session_id}/send")
async def send_message(
    tenant_id: int,
    session_id: str,
    body: SendMessageRequest,
    controller: SessionLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    _require_owned(tenant_id, session_id)
    result = await controller.send_message(session_id, body.to, body.message)
    return {"success": True, "result": result}


@router.post("/tenants/{tenant_id}/compliance", response_model=ComplianceResponse)
async def compliance(
    tenant_id: int,
    body: ComplianceRequest,
    controller: SessionLifecycleController = Depends(get_controller),
):
    result = controller.compliance_check(tenant_id, body.phone, body.message)
    return ComplianceResponse(compliant=result.compliant, warnings=result.warnings)


@router.get("/sessions")
async def list_sessions(
    controller: SessionLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    return {"sessions": controller.list_sessions()}


@router.get("/metrics")
async def service_metrics(
    controller: SessionLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    return controller.metrics.snapshot()


# ── Error mapping ────────────────────────────────────────


def register_error_handlers(app: FastAPI) -> None:
    """Turn the controller's two error families into JSON responses."""

    @app.exception_handler(ValidationFailure)
    async def _validation_failure(request: Request, exc: ValidationFailure) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": exc.message, "field": exc.field})

    @app.exception_handler(SessionError)
    async def _session_error(request: Request, exc: SessionError) -> JSONResponse:
        if isinstance(exc, RateLimitExceeded):
            status_code = 429
        elif isinstance(exc, SessionNotConnected):
            status_code = 409
        else:
            status_code = 500
        return JSONResponse(status_code=status_code, content={"error": exc.message})
