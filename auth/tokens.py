"""
auth/tokens.py -- Identity token codec and password hashing utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, email, role, and the validity window (iat, nbf, exp).
       TokenCodec.verify() raises a single InvalidToken on any failure --
       expired, malformed, wrong algorithm, and bad signature are deliberately
       indistinguishable to the caller so the response cannot be used as an
       oracle. The precise cause is logged at DEBUG level only.

  Algorithm pinning: the unverified header's "alg" is compared against HS256
       before any signature work, and jwt.decode() is restricted to the same
       single algorithm. A token claiming "none", "HS512" or an RSA algorithm
       is rejected outright (algorithm-confusion defence) [H4].

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in the login path so response time does not
       reveal whether an email exists [C1].

Layer rule: no imports from api/ or qrlogin/. Import from core/ is allowed --
core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import TokenClaims
from core.errors import InvalidToken

logger = logging.getLogger("qrauth.auth")

_ALGORITHM = "HS256"

# Every token we mint carries these; a token missing any of them is invalid.
_REQUIRED_CLAIMS = ("sub", "user_id", "email", "role", "iat", "nbf", "exp")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer
    caps password fields at 72 characters so inputs stay below that limit.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("qrauth_timing_dummy")


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------


class TokenCodec:
    """Issues and verifies HS256 identity tokens.

    The secret is read once at construction and shared read-only by every
    request; no locking is needed. `clock` controls iat/nbf/exp on issue.
    Expiry on verify is checked by python-jose against wall-clock time.

    Usage:
        codec = TokenCodec(settings.secret_key, settings.token_expire_seconds)
        token = codec.issue(user.id, user.email, user.role)
        claims = codec.verify(token)   # raises InvalidToken
    """

    def __init__(
        self,
        secret_key: str,
        lifetime_seconds: int = 24 * 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenCodec requires a non-empty secret key")
        self._secret_key = secret_key
        self.lifetime_seconds = lifetime_seconds
        self._clock = clock

    def issue(self, user_id: int, email: str, role: str) -> str:
        """Encode a signed token for the given identity.

        issued_at and not_before are both "now"; expiry is now + lifetime.
        """
        now = self._clock().replace(microsecond=0)
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "email": email,
            "role": role,
            "iat": now,
            "nbf": now,
            "exp": now + timedelta(seconds=self.lifetime_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Verify signature, algorithm, and validity window. Raises InvalidToken."""
        if not token or token.count(".") != 2:
            logger.debug("Token rejected: not a compact JWS")
            raise InvalidToken()
        try:
            header = jwt.get_unverified_header(token)
            if header.get("alg") != _ALGORITHM:
                logger.debug("Token rejected: unexpected alg %r", header.get("alg"))
                raise InvalidToken()
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={
                    "require_iat": True,
                    "require_nbf": True,
                    "require_exp": True,
                    "require_sub": True,
                },
            )
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            raise InvalidToken() from exc

        if any(name not in payload for name in _REQUIRED_CLAIMS):
            logger.debug("Token rejected: missing claims")
            raise InvalidToken()
        try:
            user_id = int(payload["user_id"])
            if str(user_id) != payload["sub"]:
                raise ValueError("sub/user_id mismatch")
            return TokenClaims(
                user_id=user_id,
                email=str(payload["email"]),
                role=str(payload["role"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                not_before=datetime.fromtimestamp(payload["nbf"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (TypeError, ValueError) as exc:
            logger.debug("Token rejected: malformed claims (%s)", exc)
            raise InvalidToken() from exc
