"""
API request and response models for the QR login REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
qrlogin/models.py, which own the internal domain representation. Route
handlers map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User
from qrlogin.models import QRStatus

# bcrypt only looks at the first 72 bytes of a password.
_PASSWORD_MAX = 72

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Passwords are taken verbatim; only the email is normalized.
    """

    email: str = Field(min_length=3, max_length=255, pattern=_EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    current_password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    new_password: str = Field(min_length=6, max_length=_PASSWORD_MAX)


class QRGenerateRequest(BaseModel):
    """Optional request body for POST /api/v1/auth/qr/generate."""

    model_config = ConfigDict(str_strip_whitespace=True)

    device_info: Optional[str] = Field(default=None, max_length=255)


class QRDecisionRequest(BaseModel):
    """Request body for the mobile endpoints: scan, confirm, reject.

    app_token is the mobile app's own identity token; it is verified, never
    stored.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    session_id: str = Field(min_length=1, max_length=64)
    app_token: str = Field(min_length=1, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    username: str
    first_name: str = ""
    last_name: str = ""
    role: str
    is_active: bool

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            is_active=user.is_active,
        )


class TokenResponse(BaseModel):
    """Response for POST /auth/login and POST /auth/refresh."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    token: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class QRGenerateResponse(BaseModel):
    """Response for POST /api/v1/auth/qr/generate."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    qr_code_image: str = Field(description="PNG image as a data:image/png;base64 URI.")
    expires_at: datetime


class QRDecisionResponse(BaseModel):
    """Response for scan, confirm and reject."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    status: QRStatus


class QRStatusResponse(BaseModel):
    """Response for GET /api/v1/auth/qr/status. token and user appear only once confirmed."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    status: QRStatus
    message: str
    token: Optional[str] = None
    user: Optional[UserResponse] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
