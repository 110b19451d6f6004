"""
qrlogin/machine.py -- QR login session state machine.

Lifecycle:
    create_session()  -> pending record + deep-link payload + PNG data URI
    scan()            -> pending -> scanned       (optional, mobile app)
    approve()         -> pending|scanned -> confirmed
    reject()          -> pending|scanned -> rejected
    get_status()      -> browser poll; mints a fresh token once confirmed

Expiry is lazy: there are no timers here. Any read or decision that finds an
undecided session past its expires_at first moves it to `expired`.

Decisions go through SessionStore.transition(), a conditional UPDATE keyed on
the status the machine observed. When two phones race to decide the same
session exactly one UPDATE matches; the other caller gets
InvalidOrExpiredSession.

Layer rule: no imports from api/. The machine talks to users and tokens only
through the UserStore and TokenCodec objects it is given.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from auth.models import User
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.errors import (
    AccountDeactivated,
    InternalError,
    InvalidCredentials,
    InvalidOrExpiredSession,
    InvalidToken,
    SessionNotFound,
    StorageFailure,
)
from qrlogin.imaging import render_qr_data_uri
from qrlogin.models import (
    STATUS_MESSAGES,
    QRCodeTicket,
    QRSession,
    QRStatus,
    QRStatusResult,
    can_transition,
)
from qrlogin.store import SessionStore

logger = logging.getLogger("qrauth.qr")

_ID_RANDOM_CHARS = 32
_UNDECIDED = (QRStatus.pending, QRStatus.scanned)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QRSessionMachine:
    """Drives QR login sessions through pending -> scanned/confirmed/rejected/expired.

    Usage:
        machine = QRSessionMachine(session_store, user_store, codec)
        ticket = machine.create_session("Firefox on Linux")
        machine.approve(ticket.session_id, mobile_token)
        result = machine.get_status(ticket.session_id)   # result.token is set
    """

    def __init__(
        self,
        sessions: SessionStore,
        users: UserStore,
        codec: TokenCodec,
        ttl_seconds: int = 300,
        id_prefix: str = "qr_",
        deep_link_scheme: str = "app",
        clock: Callable[[], datetime] = _utcnow,
        render: Callable[[str], str] = render_qr_data_uri,
    ) -> None:
        self._sessions = sessions
        self._users = users
        self._codec = codec
        self.ttl = timedelta(seconds=ttl_seconds)
        self._id_prefix = id_prefix
        self._scheme = deep_link_scheme
        self._clock = clock
        self._render = render

    # ------------------------------------------------------------------
    # Browser side
    # ------------------------------------------------------------------

    def create_session(self, device_info: Optional[str] = None) -> QRCodeTicket:
        """Start a new pending session and render its QR code.

        Raises InternalError if the image cannot be produced and
        StorageFailure (or Conflict, on an id collision) if it cannot be saved.
        """
        now = self._clock()
        session_id = self._new_session_id()
        payload = f"{self._scheme}://qr-login?session_id={session_id}"

        # Render before persisting so a failed render leaves no orphan record.
        image = self._render(payload)

        session = QRSession(
            id=session_id,
            payload=payload,
            device_info=device_info,
            created_at=now,
            expires_at=now + self.ttl,
            updated_at=now,
        )
        self._sessions.create(session)
        logger.info("QR session created: %s (expires %s)", session_id, session.expires_at.isoformat())
        return QRCodeTicket(
            session_id=session_id,
            payload=payload,
            qr_code_image=image,
            expires_at=session.expires_at,
        )

    def get_status(self, session_id: str) -> QRStatusResult:
        """Report the session's state; on `confirmed`, issue a token for the approver.

        A new token is minted on every poll of a confirmed session.
        Raises SessionNotFound for an unknown id.
        """
        now = self._clock()
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound()

        if session.is_due_for_expiry(now):
            session = self._expire(session, now)

        if session.status != QRStatus.confirmed:
            return QRStatusResult(
                session_id=session.id,
                status=session.status,
                message=STATUS_MESSAGES[session.status],
            )

        user = self._users.get_by_id(session.subject_user_id)
        if user is None:
            logger.error(
                "QR session %s confirmed by user %s who no longer exists",
                session.id,
                session.subject_user_id,
            )
            raise InternalError()
        if not user.is_active:
            logger.warning("QR session %s: approver %s has been deactivated", session.id, user.id)
            raise AccountDeactivated()

        token = self._codec.issue(user.id, user.email, user.role)
        return QRStatusResult(
            session_id=session.id,
            status=session.status,
            message=STATUS_MESSAGES[session.status],
            token=token,
            user=user,
        )

    # ------------------------------------------------------------------
    # Mobile side
    # ------------------------------------------------------------------

    def scan(self, session_id: str, mobile_token: str) -> QRSession:
        """Record that a signed-in mobile user has read the code."""
        return self._decide(session_id, mobile_token, QRStatus.scanned)

    def approve(self, session_id: str, mobile_token: str) -> QRSession:
        """Approve the browser login on behalf of the token's user."""
        return self._decide(session_id, mobile_token, QRStatus.confirmed)

    def reject(self, session_id: str, mobile_token: str) -> QRSession:
        """Refuse the browser login on behalf of the token's user."""
        return self._decide(session_id, mobile_token, QRStatus.rejected)

    def _decide(self, session_id: str, mobile_token: str, target: QRStatus) -> QRSession:
        now = self._clock()
        session = self._sessions.get(session_id)
        if session is None:
            raise InvalidOrExpiredSession()

        if session.is_due_for_expiry(now):
            self._expire(session, now)
            raise InvalidOrExpiredSession()

        if not can_transition(session.status, target) or session.is_past_ttl(now):
            raise InvalidOrExpiredSession()

        user = self._authenticate(mobile_token)

        if session.status == QRStatus.scanned and session.subject_user_id != user.id:
            logger.warning(
                "QR session %s: user %s tried to decide a session scanned by user %s",
                session.id,
                user.id,
                session.subject_user_id,
            )
            raise InvalidOrExpiredSession()

        won = self._sessions.transition(
            session.id,
            (session.status,),
            target,
            subject_user_id=user.id,
            updated_at=now,
            valid_at=now,
        )
        if not won:
            logger.info("QR session %s: %s by user %s lost to a concurrent update", session.id, target.value, user.id)
            raise InvalidOrExpiredSession()

        logger.info("QR session %s: %s -> %s by user %s", session.id, session.status.value, target.value, user.id)
        session.status = target
        session.subject_user_id = user.id
        session.updated_at = now
        return session

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _authenticate(self, mobile_token: str) -> User:
        try:
            claims = self._codec.verify(mobile_token)
        except InvalidToken as exc:
            logger.warning("QR decision rejected: invalid app token")
            raise InvalidCredentials() from exc

        user = self._users.get_by_id(claims.user_id)
        if user is None:
            logger.warning("QR decision rejected: token user %s not found", claims.user_id)
            raise InvalidCredentials()
        if not user.is_active:
            raise AccountDeactivated()
        return user

    def _expire(self, session: QRSession, now: datetime) -> QRSession:
        """Move an undecided, past-TTL session to `expired`.

        Persistence is best effort: if the write fails the caller still sees
        `expired`, and the next read retries. If another writer changed the
        record first, the stored version wins.
        """
        try:
            won = self._sessions.transition(
                session.id,
                _UNDECIDED,
                QRStatus.expired,
                subject_user_id=None,
                updated_at=now,
            )
        except StorageFailure:
            logger.warning("Could not persist expiry of QR session %s", session.id, exc_info=True)
            won = True

        if not won:
            current = self._sessions.get(session.id)
            if current is not None:
                return current
        else:
            logger.info("QR session %s expired", session.id)

        session.status = QRStatus.expired
        session.subject_user_id = None
        session.updated_at = now
        return session

    def _new_session_id(self) -> str:
        return self._id_prefix + secrets.token_urlsafe(_ID_RANDOM_CHARS)[:_ID_RANDOM_CHARS]
