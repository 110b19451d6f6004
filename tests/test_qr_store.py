"""Unit tests for qrlogin/store.py -- SessionStore persistence and conditional updates.

Covers:
- create() / get() round trip, including timezone-aware timestamps
- create() with a duplicate id -> Conflict
- get() on an unknown id -> None
- save() overwrites mutable fields; returns False for an unknown id
- transition() only matches the expected source statuses and honours valid_at
- delete_expired_before() removes only old sessions in the requested statuses
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.errors import Conflict
from qrlogin.models import QRSession, QRStatus
from qrlogin.store import SessionStore

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _session(session_id: str = "qr_abc", created: datetime = T0, ttl: int = 300, **kw) -> QRSession:
    return QRSession(
        id=session_id,
        payload=f"app://qr-login?session_id={session_id}",
        created_at=created,
        expires_at=created + timedelta(seconds=ttl),
        updated_at=created,
        **kw,
    )


class TestCreateGet:
    def test_round_trip(self, session_store: SessionStore) -> None:
        session_store.create(_session(device_info="Firefox on Linux"))
        loaded = session_store.get("qr_abc")
        assert loaded is not None
        assert loaded.status == QRStatus.pending
        assert loaded.subject_user_id is None
        assert loaded.device_info == "Firefox on Linux"
        assert loaded.payload == "app://qr-login?session_id=qr_abc"
        assert loaded.created_at == T0
        assert loaded.expires_at == T0 + timedelta(seconds=300)
        assert loaded.expires_at.tzinfo is not None

    def test_duplicate_id_conflicts(self, session_store: SessionStore) -> None:
        session_store.create(_session())
        with pytest.raises(Conflict):
            session_store.create(_session())

    def test_unknown_id_returns_none(self, session_store: SessionStore) -> None:
        assert session_store.get("qr_missing") is None

    def test_naive_timestamp_rejected(self, session_store: SessionStore) -> None:
        """Timestamps must carry a timezone so stored values compare correctly."""
        with pytest.raises(ValueError):
            session_store.create(_session(created=datetime(2026, 3, 1, 12, 0, 0)))


class TestSave:
    def test_save_overwrites(self, session_store: SessionStore) -> None:
        session = _session()
        session_store.create(session)
        session.status = QRStatus.rejected
        session.subject_user_id = 9
        session.updated_at = T0 + timedelta(seconds=10)
        assert session_store.save(session) is True

        loaded = session_store.get("qr_abc")
        assert loaded.status == QRStatus.rejected
        assert loaded.subject_user_id == 9
        assert loaded.updated_at == T0 + timedelta(seconds=10)

    def test_save_unknown_returns_false(self, session_store: SessionStore) -> None:
        assert session_store.save(_session("qr_nope")) is False


class TestTransition:
    def test_matching_source_wins(self, session_store: SessionStore) -> None:
        session_store.create(_session())
        won = session_store.transition("qr_abc", (QRStatus.pending,), QRStatus.confirmed, 42, T0 + timedelta(seconds=5))
        assert won is True
        loaded = session_store.get("qr_abc")
        assert loaded.status == QRStatus.confirmed
        assert loaded.subject_user_id == 42

    def test_second_transition_loses(self, session_store: SessionStore) -> None:
        """Only one of two decisions from the same source status can land."""
        session_store.create(_session())
        first = session_store.transition("qr_abc", (QRStatus.pending,), QRStatus.confirmed, 1, T0)
        second = session_store.transition("qr_abc", (QRStatus.pending,), QRStatus.rejected, 2, T0)
        assert (first, second) == (True, False)
        loaded = session_store.get("qr_abc")
        assert loaded.status == QRStatus.confirmed
        assert loaded.subject_user_id == 1

    def test_valid_at_blocks_late_decision(self, session_store: SessionStore) -> None:
        """With valid_at at or past expires_at, the update matches nothing."""
        session_store.create(_session(ttl=300))
        late = T0 + timedelta(seconds=300)
        won = session_store.transition("qr_abc", (QRStatus.pending,), QRStatus.confirmed, 1, late, valid_at=late)
        assert won is False
        assert session_store.get("qr_abc").status == QRStatus.pending

    def test_valid_at_allows_decision_inside_ttl(self, session_store: SessionStore) -> None:
        session_store.create(_session(ttl=300))
        inside = T0 + timedelta(seconds=299)
        assert session_store.transition("qr_abc", (QRStatus.pending,), QRStatus.confirmed, 1, inside, valid_at=inside)

    def test_unknown_id_returns_false(self, session_store: SessionStore) -> None:
        assert session_store.transition("qr_missing", (QRStatus.pending,), QRStatus.expired, None, T0) is False


class TestDeleteExpiredBefore:
    def test_only_old_sessions_in_requested_statuses(self, session_store: SessionStore) -> None:
        session_store.create(_session("qr_old_pending", created=T0 - timedelta(hours=3)))
        session_store.create(
            _session("qr_old_confirmed", created=T0 - timedelta(hours=3), status=QRStatus.confirmed, subject_user_id=1)
        )
        session_store.create(_session("qr_fresh", created=T0))

        removed = session_store.delete_expired_before(T0 - timedelta(hours=1), [QRStatus.pending, QRStatus.expired])

        assert removed == 1
        assert session_store.get("qr_old_pending") is None
        assert session_store.get("qr_old_confirmed") is not None
        assert session_store.get("qr_fresh") is not None

    def test_all_statuses(self, session_store: SessionStore) -> None:
        session_store.create(_session("qr_a", created=T0 - timedelta(hours=3)))
        session_store.create(
            _session("qr_b", created=T0 - timedelta(hours=3), status=QRStatus.rejected, subject_user_id=2)
        )
        assert session_store.delete_expired_before(T0, list(QRStatus)) == 2

    def test_no_statuses_is_a_noop(self, session_store: SessionStore) -> None:
        session_store.create(_session("qr_a", created=T0 - timedelta(hours=3)))
        assert session_store.delete_expired_before(T0, []) == 0
        assert session_store.get("qr_a") is not None
