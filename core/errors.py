"""
core/errors.py -- Typed error taxonomy shared by the auth and QR login layers.

Every error carries a stable machine-readable code, the HTTP status the API
boundary maps it to, and a client-safe message. Services raise these; only
api/main.py turns them into responses. Internal detail (raw database errors,
imaging failures) travels on __cause__ and in server logs, never in
`message`.

Layer rule: core/ is the kernel. No imports from api/, auth/, or qrlogin/.
"""

from __future__ import annotations


class AuthServiceError(Exception):
    """Base class for every error the service layer reports to callers."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthServiceError):
    """Bad password, or a mobile app token that failed verification."""

    code = "INVALID_CREDENTIALS"
    status_code = 401
    message = "Invalid credentials."


class AccountDeactivated(AuthServiceError):
    code = "ACCOUNT_DEACTIVATED"
    status_code = 403
    message = "Your account has been deactivated."


class Unauthorized(AuthServiceError):
    """Missing or invalid bearer token on a protected route."""

    code = "UNAUTHORIZED"
    status_code = 401
    message = "Authentication required."


class InvalidToken(AuthServiceError):
    """Token verification failed.

    Deliberately a single kind: expired, malformed, wrong algorithm and bad
    signature are indistinguishable to callers. Never surfaced directly over
    HTTP -- callers translate it to InvalidCredentials or Unauthorized.
    """

    code = "TOKEN_INVALID"
    status_code = 401
    message = "Token is invalid or expired."


# ---------------------------------------------------------------------------
# QR sessions
# ---------------------------------------------------------------------------


class InvalidOrExpiredSession(AuthServiceError):
    """Unknown id, wrong state, or past TTL on a scan/confirm/reject call."""

    code = "INVALID_OR_EXPIRED_SESSION"
    status_code = 400
    message = "QR login session not found or expired."


class SessionNotFound(AuthServiceError):
    code = "SESSION_NOT_FOUND"
    status_code = 404
    message = "QR login session not found."


class Conflict(AuthServiceError):
    """Insert rejected because the identifier (session id, email) already exists."""

    code = "DUPLICATE_RECORD"
    status_code = 409
    message = "A record with that identifier already exists."


# ---------------------------------------------------------------------------
# Request / infrastructure
# ---------------------------------------------------------------------------


class ValidationFailed(AuthServiceError):
    code = "VALIDATION_FAILED"
    status_code = 400
    message = "Request validation failed."


class StorageFailure(AuthServiceError):
    code = "DATABASE_ERROR"
    status_code = 500
    message = "A storage error occurred."


class InternalError(AuthServiceError):
    code = "INTERNAL_ERROR"
    status_code = 500
    message = "An unexpected error occurred."
