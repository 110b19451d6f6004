"""
auth/service.py -- LoginOrchestrator: the single entry point the API uses.

Password flows (login, refresh, change_password, logout) live here directly;
QR flows are delegated to qrlogin.machine.QRSessionMachine. Routes never
touch stores or the token codec themselves.

Security:
  [C1] login() always runs one bcrypt comparison, against _DUMMY_HASH when the
       email is unknown, so response time does not reveal which emails exist.
       Wrong email and wrong password both raise InvalidCredentials.
"""

from __future__ import annotations

import logging
from typing import Optional

from auth.models import User
from auth.store import UserStore
from auth.tokens import _DUMMY_HASH, TokenCodec, hash_password, verify_password
from core.errors import AccountDeactivated, InvalidCredentials, Unauthorized
from qrlogin.machine import QRSessionMachine
from qrlogin.models import QRCodeTicket, QRSession, QRStatusResult

logger = logging.getLogger("qrauth.auth")


class LoginOrchestrator:
    """Coordinates users, tokens, and QR sessions for the API layer.

    Usage:
        auth = LoginOrchestrator(user_store, codec, machine)
        user, token = auth.login("a@example.com", "secret")
    """

    def __init__(self, users: UserStore, codec: TokenCodec, qr: QRSessionMachine) -> None:
        self._users = users
        self._codec = codec
        self._qr = qr

    # ------------------------------------------------------------------
    # Password flows
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> tuple[User, str]:
        """Verify email + password and issue a token.

        Raises InvalidCredentials on unknown email or wrong password, and
        AccountDeactivated if the password matched an inactive account.
        """
        user = self._users.get_by_email(email)
        if user is None:
            verify_password(password, _DUMMY_HASH)  # [C1] equalize timing
            logger.info("Login failed: unknown email")
            raise InvalidCredentials()
        if not verify_password(password, user.hashed_password):
            logger.info("Login failed: bad password for user %s", user.id)
            raise InvalidCredentials()
        if not user.is_active:
            logger.info("Login refused: user %s is deactivated", user.id)
            raise AccountDeactivated()

        logger.info("User %s logged in with password", user.id)
        return user, self._codec.issue(user.id, user.email, user.role)

    def refresh(self, user_id: int) -> tuple[User, str]:
        """Issue a fresh token for an already-authenticated user."""
        user = self._users.get_by_id(user_id)
        if user is None:
            raise Unauthorized()
        if not user.is_active:
            raise AccountDeactivated()
        return user, self._codec.issue(user.id, user.email, user.role)

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """Replace the user's password after checking the current one."""
        user = self._users.get_by_id(user_id)
        if user is None:
            raise Unauthorized()
        if not verify_password(current_password, user.hashed_password):
            logger.info("Password change refused for user %s: current password mismatch", user_id)
            raise InvalidCredentials("Current password is incorrect.")
        if not self._users.update_password(user_id, hash_password(new_password)):
            raise Unauthorized()
        logger.info("Password changed for user %s", user_id)

    def logout(self, user_id: int) -> None:
        # Tokens are stateless; the client discards its copy.
        logger.info("User %s logged out", user_id)

    # ------------------------------------------------------------------
    # QR flows
    # ------------------------------------------------------------------

    def generate_qr(self, device_info: Optional[str] = None) -> QRCodeTicket:
        return self._qr.create_session(device_info)

    def scan_qr(self, session_id: str, app_token: str) -> QRSession:
        return self._qr.scan(session_id, app_token)

    def confirm_qr(self, session_id: str, app_token: str) -> QRSession:
        return self._qr.approve(session_id, app_token)

    def reject_qr(self, session_id: str, app_token: str) -> QRSession:
        return self._qr.reject(session_id, app_token)

    def qr_status(self, session_id: str) -> QRStatusResult:
        return self._qr.get_status(session_id)
