"""
qrlogin/store.py -- SQLAlchemy Core persistence layer for QR login sessions.

Pattern: Repository + Data Mapper (same as auth/store.py).
SessionStore is the repository; _row_to_session is the mapper.

Timestamps are stored as fixed-width UTC ISO-8601 strings with microsecond
precision, so lexical comparison in SQL matches chronological order.

Each public method runs one statement in its own connection and commits it,
so create/save/transition are atomic per record. transition() is the only
write the state machine uses for decisions: a conditional UPDATE whose
rowcount tells the caller whether it won.

Layer rule: no imports from api/ or auth/service.py.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.config import get_settings
from core.errors import Conflict, StorageFailure
from qrlogin.models import QRSession, QRStatus

logger = logging.getLogger("qrauth.qr")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_qr_sessions = Table(
    "qr_sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("status", String(20), nullable=False, index=True),
    Column("subject_user_id", Integer, nullable=True),
    Column("payload", Text, nullable=False),
    Column("device_info", String(255), nullable=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("updated_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        raise ValueError("QR session timestamps must be timezone-aware")
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for QRSession records.

    Usage:
        store = SessionStore()
        store.create(session)
        session = store.get(session.id)        # None when unknown
        won = store.transition(session.id, (QRStatus.pending,), QRStatus.confirmed, 42, now, valid_at=now)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().auth_db_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def create(self, session: QRSession) -> None:
        """Insert a new session. Raises Conflict if the id already exists."""
        try:
            with self.engine.connect() as conn:
                conn.execute(_qr_sessions.insert().values(**_session_to_row(session)))
                conn.commit()
        except IntegrityError as exc:
            raise Conflict("A QR login session with that id already exists.") from exc
        except SQLAlchemyError as exc:
            logger.error("Failed to insert QR session %s: %s", session.id, exc)
            raise StorageFailure() from exc

    def get(self, session_id: str) -> Optional[QRSession]:
        """Look up a session by id. Returns None if not found."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_qr_sessions.select().where(_qr_sessions.c.id == session_id)).fetchone()
        except SQLAlchemyError as exc:
            logger.error("Failed to load QR session %s: %s", session_id, exc)
            raise StorageFailure() from exc
        return _row_to_session(row) if row is not None else None

    def save(self, session: QRSession) -> bool:
        """Overwrite every mutable field of the record matching session.id.

        Returns False if no such record exists.
        """
        values = _session_to_row(session)
        del values["id"]
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _qr_sessions.update().where(_qr_sessions.c.id == session.id).values(**values)
                )
                conn.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to save QR session %s: %s", session.id, exc)
            raise StorageFailure() from exc
        return result.rowcount > 0

    def transition(
        self,
        session_id: str,
        from_statuses: Iterable[QRStatus],
        to_status: QRStatus,
        subject_user_id: Optional[int],
        updated_at: datetime,
        valid_at: Optional[datetime] = None,
    ) -> bool:
        """Move a session to to_status only if it is currently in from_statuses.

        When valid_at is given the update also requires expires_at > valid_at,
        so a decision can never land on a session whose TTL has run out.
        Returns True when exactly one row changed; False means another writer
        got there first, the session left from_statuses, or it does not exist.
        """
        sources = [QRStatus(s).value for s in from_statuses]
        stmt = _qr_sessions.update().where(
            _qr_sessions.c.id == session_id,
            _qr_sessions.c.status.in_(sources),
        )
        if valid_at is not None:
            stmt = stmt.where(_qr_sessions.c.expires_at > _to_iso(valid_at))
        stmt = stmt.values(
            status=QRStatus(to_status).value,
            subject_user_id=subject_user_id,
            updated_at=_to_iso(updated_at),
        )
        try:
            with self.engine.connect() as conn:
                result = conn.execute(stmt)
                conn.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to transition QR session %s: %s", session_id, exc)
            raise StorageFailure() from exc
        return result.rowcount == 1

    def delete_expired_before(self, cutoff: datetime, statuses: Iterable[QRStatus]) -> int:
        """Delete sessions in `statuses` whose expires_at is before cutoff.

        Returns the number of rows removed. Used by the periodic purge task
        and the CLI, never by the state machine.
        """
        wanted = [QRStatus(s).value for s in statuses]
        if not wanted:
            return 0
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _qr_sessions.delete().where(
                        _qr_sessions.c.expires_at < _to_iso(cutoff),
                        _qr_sessions.c.status.in_(wanted),
                    )
                )
                conn.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to purge QR sessions: %s", exc)
            raise StorageFailure() from exc
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapping (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _session_to_row(session: QRSession) -> dict:
    return {
        "id": session.id,
        "status": QRStatus(session.status).value,
        "subject_user_id": session.subject_user_id,
        "payload": session.payload,
        "device_info": session.device_info,
        "created_at": _to_iso(session.created_at),
        "expires_at": _to_iso(session.expires_at),
        "updated_at": _to_iso(session.updated_at),
    }


def _row_to_session(row) -> QRSession:
    return QRSession(
        id=row.id,
        status=QRStatus(row.status),
        subject_user_id=row.subject_user_id,
        payload=row.payload,
        device_info=row.device_info,
        created_at=_from_iso(row.created_at),
        expires_at=_from_iso(row.expires_at),
        updated_at=_from_iso(row.updated_at),
    )
