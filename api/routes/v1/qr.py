"""
api/routes/v1/qr.py -- Cross-device QR login REST endpoints.

Routes:
  POST /api/v1/auth/qr/generate  -- browser: new session + QR image (201)
  GET  /api/v1/auth/qr/status    -- browser: poll; carries a token once confirmed
  POST /api/v1/auth/qr/scan      -- mobile: announce the code was read (optional)
  POST /api/v1/auth/qr/confirm   -- mobile: approve the browser login
  POST /api/v1/auth/qr/reject    -- mobile: refuse the browser login

The mobile endpoints authenticate with the app_token in the request body,
not with an Authorization header: the token identifies the approver, not the
caller of the browser session.

Rate limits: generate/scan/confirm/reject share Settings.qr_rate_limit per
client IP. Status polling is not limited; browsers poll every few seconds.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request, Response

from api.limiter import limiter
from api.models import (
    QRDecisionRequest,
    QRDecisionResponse,
    QRGenerateRequest,
    QRGenerateResponse,
    QRStatusResponse,
    UserResponse,
)
from auth.service import LoginOrchestrator
from core.config import get_settings

router = APIRouter()

_QR_LIMIT = get_settings().qr_rate_limit


@router.post("/auth/qr/generate", response_model=QRGenerateResponse, status_code=201)
@limiter.limit(_QR_LIMIT)
def generate(request: Request, body: Optional[QRGenerateRequest] = None) -> QRGenerateResponse:
    """Create a pending QR login session and return its QR code image."""
    service: LoginOrchestrator = request.app.state.auth_service
    ticket = service.generate_qr(body.device_info if body else None)
    return QRGenerateResponse(
        session_id=ticket.session_id,
        qr_code_image=ticket.qr_code_image,
        expires_at=ticket.expires_at,
    )


@router.get("/auth/qr/status", response_model=QRStatusResponse, response_model_exclude_none=True)
def status(
    request: Request,
    response: Response,
    session_id: str = Query(min_length=1, max_length=64),
) -> QRStatusResponse:
    """Report the session state. Once confirmed, includes a fresh token and the user."""
    service: LoginOrchestrator = request.app.state.auth_service
    result = service.qr_status(session_id)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return QRStatusResponse(
        session_id=result.session_id,
        status=result.status,
        message=result.message,
        token=result.token,
        user=UserResponse.from_user(result.user) if result.user is not None else None,
    )


@router.post("/auth/qr/scan", response_model=QRDecisionResponse)
@limiter.limit(_QR_LIMIT)
def scan(request: Request, body: QRDecisionRequest) -> QRDecisionResponse:
    """Mark the session as scanned by the app token's user."""
    service: LoginOrchestrator = request.app.state.auth_service
    session = service.scan_qr(body.session_id, body.app_token)
    return QRDecisionResponse(session_id=session.id, status=session.status)


@router.post("/auth/qr/confirm", response_model=QRDecisionResponse)
@limiter.limit(_QR_LIMIT)
def confirm(request: Request, body: QRDecisionRequest) -> QRDecisionResponse:
    """Approve the browser login as the app token's user."""
    service: LoginOrchestrator = request.app.state.auth_service
    session = service.confirm_qr(body.session_id, body.app_token)
    return QRDecisionResponse(session_id=session.id, status=session.status)


@router.post("/auth/qr/reject", response_model=QRDecisionResponse)
@limiter.limit(_QR_LIMIT)
def reject(request: Request, body: QRDecisionRequest) -> QRDecisionResponse:
    """Refuse the browser login as the app token's user."""
    service: LoginOrchestrator = request.app.state.auth_service
    session = service.reject_qr(body.session_id, body.app_token)
    return QRDecisionResponse(session_id=session.id, status=session.status)
