"""
qrlogin/models.py -- Domain types for QR login sessions.

QRSession is a pure data container. The status graph lives here as data
(_TRANSITIONS) so the state machine, the store, and the tests all agree on
which moves are legal.

Status graph:
    pending  -> scanned | confirmed | rejected | expired
    scanned  -> confirmed | rejected | expired
    confirmed, rejected, expired are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from auth.models import User


class QRStatus(str, Enum):
    pending = "pending"
    scanned = "scanned"
    confirmed = "confirmed"
    rejected = "rejected"
    expired = "expired"


_TRANSITIONS: dict[QRStatus, frozenset[QRStatus]] = {
    QRStatus.pending: frozenset({QRStatus.scanned, QRStatus.confirmed, QRStatus.rejected, QRStatus.expired}),
    QRStatus.scanned: frozenset({QRStatus.confirmed, QRStatus.rejected, QRStatus.expired}),
    QRStatus.confirmed: frozenset(),
    QRStatus.rejected: frozenset(),
    QRStatus.expired: frozenset(),
}

# Statuses that record who acted on the session.
SUBJECT_STATUSES = frozenset({QRStatus.scanned, QRStatus.confirmed, QRStatus.rejected})

STATUS_MESSAGES: dict[QRStatus, str] = {
    QRStatus.pending: "Waiting for QR code scan",
    QRStatus.scanned: "QR code scanned, waiting for confirmation",
    QRStatus.confirmed: "Login successful",
    QRStatus.rejected: "Login rejected by user",
    QRStatus.expired: "Session expired",
}


def can_transition(from_status: QRStatus, to_status: QRStatus) -> bool:
    """Return True if the graph allows moving from from_status to to_status."""
    return to_status in _TRANSITIONS[from_status]


def sources_for(to_status: QRStatus) -> tuple[QRStatus, ...]:
    """Return every status that may legally move to to_status."""
    return tuple(s for s, targets in _TRANSITIONS.items() if to_status in targets)


def is_terminal(status: QRStatus) -> bool:
    return not _TRANSITIONS[status]


@dataclass
class QRSession:
    """One cross-device login attempt.

    expires_at is fixed at creation and never extended. subject_user_id is
    the mobile user who scanned, approved, or rejected the session; it is None
    while the session is pending or once it has expired.
    """

    id: str
    payload: str
    created_at: datetime
    expires_at: datetime
    updated_at: datetime
    status: QRStatus = QRStatus.pending
    subject_user_id: Optional[int] = None
    device_info: Optional[str] = None

    def is_past_ttl(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_due_for_expiry(self, now: datetime) -> bool:
        """True when the session is undecided but its TTL has run out."""
        return self.status in (QRStatus.pending, QRStatus.scanned) and self.is_past_ttl(now)


@dataclass(frozen=True)
class QRCodeTicket:
    """What the browser receives when it asks for a new QR code."""

    session_id: str
    payload: str
    qr_code_image: str  # data:image/png;base64,...
    expires_at: datetime


@dataclass(frozen=True)
class QRStatusResult:
    """Outcome of a status poll. token and user are set only when confirmed."""

    session_id: str
    status: QRStatus
    message: str
    token: Optional[str] = None
    user: Optional[User] = None
