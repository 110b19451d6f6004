"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these dataclasses own the domain shape.

Layer rule: no imports from api/ or qrlogin/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """An account that can log in with a password or approve QR logins.

    email is the login identifier for password auth. hashed_password is a
    bcrypt hash and is never serialized to clients. is_active=False blocks
    password login, token refresh, and approving QR sessions from the app.

    id is None before the record is written to the database.
    """

    email: str
    username: str
    hashed_password: str
    role: str = "user"  # "user", "admin"
    id: int | None = None
    first_name: str = ""
    last_name: str = ""
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """The fixed claim set carried by every identity token.

    A closed structure rather than an open claim dict: the set is stable and
    every consumer knows exactly which fields exist.
    """

    user_id: int
    email: str
    role: str
    issued_at: datetime
    not_before: datetime
    expires_at: datetime
