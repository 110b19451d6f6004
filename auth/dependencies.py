"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer authentication.

get_token_claims() verifies the Authorization: Bearer <token> header and
returns the decoded claims. get_current_user() additionally loads the user
and requires the account to be active.

Both raise core.errors.Unauthorized, which api/main.py renders as the
standard 401 error envelope.

auth/dependencies.py may import from fastapi (for Request) because this
module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import TokenClaims, User
from core.errors import AccountDeactivated, InvalidToken, Unauthorized


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_token_claims(request: Request) -> TokenClaims:
    """Require a valid bearer token. Raises Unauthorized otherwise.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(claims: TokenClaims = Depends(get_token_claims)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise Unauthorized()
    try:
        return request.app.state.token_codec.verify(token)
    except InvalidToken as exc:
        raise Unauthorized("Invalid or expired token.") from exc


def get_current_user(request: Request, claims: TokenClaims = Depends(get_token_claims)) -> User:
    """Require a valid bearer token belonging to an existing, active user."""
    user = request.app.state.user_store.get_by_id(claims.user_id)
    if user is None:
        raise Unauthorized()
    if not user.is_active:
        raise AccountDeactivated()
    return user
