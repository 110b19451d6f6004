"""Unit tests for auth/service.py -- LoginOrchestrator password flows and QR delegation.

Covers:
- login(): success, wrong password, unknown email, deactivated account, email case
- refresh(): fresh token; missing or deactivated user
- change_password(): wrong current password, new password takes effect
- QR delegation: generate -> confirm -> status through the orchestrator
"""

import pytest

from auth.service import LoginOrchestrator
from core.errors import AccountDeactivated, InvalidCredentials, Unauthorized
from qrlogin.models import QRStatus

PASSWORD = "testpass123"


class TestLogin:
    def test_success_returns_user_and_token(self, service: LoginOrchestrator, make_user, codec) -> None:
        uid = make_user("alice@example.com", PASSWORD)
        user, token = service.login("alice@example.com", PASSWORD)
        assert user.id == uid
        claims = codec.verify(token)
        assert claims.user_id == uid
        assert claims.email == "alice@example.com"

    def test_email_is_case_insensitive(self, service: LoginOrchestrator, make_user) -> None:
        make_user("alice@example.com", PASSWORD)
        user, _ = service.login("Alice@Example.COM", PASSWORD)
        assert user.email == "alice@example.com"

    def test_wrong_password(self, service: LoginOrchestrator, make_user) -> None:
        make_user("alice@example.com", PASSWORD)
        with pytest.raises(InvalidCredentials):
            service.login("alice@example.com", "wrong-password")

    def test_unknown_email_same_error(self, service: LoginOrchestrator) -> None:
        with pytest.raises(InvalidCredentials):
            service.login("nobody@example.com", PASSWORD)

    def test_deactivated_account(self, service: LoginOrchestrator, make_user) -> None:
        make_user("idle@example.com", PASSWORD, is_active=False)
        with pytest.raises(AccountDeactivated):
            service.login("idle@example.com", PASSWORD)

    def test_deactivated_account_wrong_password_is_invalid_credentials(self, service, make_user) -> None:
        """Account state is only revealed after the password matches."""
        make_user("idle@example.com", PASSWORD, is_active=False)
        with pytest.raises(InvalidCredentials):
            service.login("idle@example.com", "wrong-password")


class TestRefresh:
    def test_refresh_issues_token(self, service: LoginOrchestrator, make_user, codec) -> None:
        uid = make_user("alice@example.com")
        user, token = service.refresh(uid)
        assert user.id == uid
        assert codec.verify(token).user_id == uid

    def test_refresh_unknown_user(self, service: LoginOrchestrator) -> None:
        with pytest.raises(Unauthorized):
            service.refresh(4242)

    def test_refresh_deactivated_user(self, service: LoginOrchestrator, make_user, user_store) -> None:
        uid = make_user("alice@example.com")
        user_store.set_active(uid, False)
        with pytest.raises(AccountDeactivated):
            service.refresh(uid)


class TestChangePassword:
    def test_wrong_current_password(self, service: LoginOrchestrator, make_user) -> None:
        uid = make_user("alice@example.com", PASSWORD)
        with pytest.raises(InvalidCredentials):
            service.change_password(uid, "not-it", "brand-new-pass")

    def test_new_password_takes_effect(self, service: LoginOrchestrator, make_user) -> None:
        uid = make_user("alice@example.com", PASSWORD)
        service.change_password(uid, PASSWORD, "brand-new-pass")

        with pytest.raises(InvalidCredentials):
            service.login("alice@example.com", PASSWORD)
        user, _ = service.login("alice@example.com", "brand-new-pass")
        assert user.id == uid

    def test_unknown_user(self, service: LoginOrchestrator) -> None:
        with pytest.raises(Unauthorized):
            service.change_password(999, PASSWORD, "brand-new-pass")


def test_logout_is_a_noop(service: LoginOrchestrator, make_user) -> None:
    uid = make_user("alice@example.com")
    assert service.logout(uid) is None


def test_qr_flow_through_orchestrator(service: LoginOrchestrator, make_user, codec) -> None:
    """generate -> confirm with the mobile token -> status carries a token for the approver."""
    uid = make_user("phone@example.com")
    _, app_token = service.login("phone@example.com", PASSWORD)

    ticket = service.generate_qr("Safari on iPad")
    assert service.qr_status(ticket.session_id).status == QRStatus.pending

    assert service.confirm_qr(ticket.session_id, app_token).status == QRStatus.confirmed

    result = service.qr_status(ticket.session_id)
    assert result.status == QRStatus.confirmed
    assert codec.verify(result.token).user_id == uid
