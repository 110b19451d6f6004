"""
api/routes/v1/auth.py -- Password authentication REST endpoints.

Routes:
  POST /api/v1/auth/login            -- email + password -> {user, token}
  POST /api/v1/auth/refresh          -- fresh token for the bearer (requires auth)
  POST /api/v1/auth/change-password  -- replace password (requires auth)
  POST /api/v1/auth/logout           -- stateless; acknowledges only (requires auth)
  GET  /api/v1/auth/me               -- current user info (requires auth)

Security:
  [H2] POST /login is rate-limited per client IP (Settings.login_rate_limit).
  [C1] LoginOrchestrator.login() provides timing equalization -- never inline
       a user lookup + verify_password() here.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import ChangePasswordRequest, LoginRequest, MessageResponse, TokenResponse, UserResponse
from auth.dependencies import get_current_user, get_token_claims
from auth.models import TokenClaims, User
from auth.service import LoginOrchestrator
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/login:            public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/refresh:          requires a valid bearer token (get_token_claims)
# - POST /api/v1/auth/change-password:  requires a valid bearer token (get_token_claims)
# - POST /api/v1/auth/logout:           requires a valid bearer token (get_token_claims)
# - GET  /api/v1/auth/me:               requires auth + active account (get_current_user)
router = APIRouter()


@router.post("/auth/login", response_model=TokenResponse)
@limiter.limit(get_settings().login_rate_limit)  # [H2] brute-force mitigation
def login(request: Request, response: Response, body: LoginRequest) -> TokenResponse:
    """Authenticate with email and password; return the user and a bearer token.

    Wrong email and wrong password produce the same INVALID_CREDENTIALS error.
    """
    service: LoginOrchestrator = request.app.state.auth_service
    user, token = service.login(body.email, body.password)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return TokenResponse(user=UserResponse.from_user(user), token=token)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(
    request: Request,
    response: Response,
    claims: TokenClaims = Depends(get_token_claims),
) -> TokenResponse:
    """Exchange a still-valid token for a fresh one."""
    service: LoginOrchestrator = request.app.state.auth_service
    user, token = service.refresh(claims.user_id)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return TokenResponse(user=UserResponse.from_user(user), token=token)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    claims: TokenClaims = Depends(get_token_claims),
) -> MessageResponse:
    """Replace the caller's password. The current password must be supplied."""
    service: LoginOrchestrator = request.app.state.auth_service
    service.change_password(claims.user_id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully.")


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, claims: TokenClaims = Depends(get_token_claims)) -> MessageResponse:
    """Acknowledge logout. Tokens are stateless; the client discards its copy."""
    service: LoginOrchestrator = request.app.state.auth_service
    service.logout(claims.user_id)
    return MessageResponse(message="Logged out successfully.")


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return UserResponse.from_user(current_user)
