"""Unit tests for auth/service.py -- every AuthService flow against an in-memory store.

Covers:
- register: hashed password, stored verification digest, mailed link, conflicts
- verify_email / resend_email_verification
- login: 400 / 404 / 401 branches, refresh digest recorded
- refresh rotation: old token rejected after rotation and after logout
- forgot / reset / change password
- mail failures never fail a flow
- no plain token, token digest or password reaches a log record
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from auth import service as service_module
from auth.ephemeral import generate_temporary_token, hash_token
from auth.mail import Mailer
from auth.service import AuthService
from auth.passwords import verify_password
from auth.tokens import create_refresh_token, decode_access_token, decode_refresh_token
from core.errors import (
    BadRequestError,
    ConflictError,
    InvalidResetTokenError,
    NotFoundError,
    UnauthorizedError,
    UserValidationError,
)

_BASE = "http://testserver/api/v1/auth/verify-email"


def _register(service, username="alice", email="alice@example.com", password="s3cret-pass"):
    return service.register(email=email, username=username, password=password, verification_url_base=_BASE)


def _expire(store, user_id, field):
    user = store.get_by_id(user_id)
    setattr(user, field, datetime.now(timezone.utc) - timedelta(minutes=1))
    store.save(user, skip_validation=True)


# ---------------------------------------------------------------------------
# Registration and verification
# ---------------------------------------------------------------------------


class TestRegister:
    def test_creates_unverified_user_with_hashed_password(self, service, store):
        user = _register(service)
        stored = store.get_by_id(user.id)
        assert stored.is_email_verified is False
        assert stored.hashed_password != "s3cret-pass"
        assert verify_password("s3cret-pass", stored.hashed_password)
        assert stored.refresh_token is None

    def test_mails_link_and_stores_only_digest(self, service, store, mailer):
        user = _register(service)
        url = mailer.last_url("verify", "alice@example.com")
        assert url.startswith(_BASE + "/")
        plain = url.rsplit("/", 1)[1]

        stored = store.get_by_id(user.id)
        assert stored.email_verification_token == hash_token(plain)
        assert stored.email_verification_token != plain
        remaining = stored.email_verification_expiry - datetime.now(timezone.utc)
        assert timedelta(minutes=19) < remaining <= timedelta(minutes=20)

    def test_full_name_is_kept(self, service, store):
        user = service.register(
            email="fn@example.com",
            username="fname",
            password="pw-123456",
            verification_url_base=_BASE,
            full_name="Full Name",
        )
        assert store.get_by_id(user.id).full_name == "Full Name"

    def test_duplicate_email_conflicts_and_sends_nothing(self, service, mailer):
        _register(service)
        sent_before = len(mailer.sent)
        with pytest.raises(ConflictError):
            _register(service, username="alice2")
        assert len(mailer.sent) == sent_before

    def test_duplicate_username_conflicts(self, service):
        _register(service)
        with pytest.raises(ConflictError):
            _register(service, email="alice2@example.com")

    def test_invalid_role_rejected(self, service):
        with pytest.raises(BadRequestError):
            service.register(
                email="r@example.com", username="role", password="pw-123456", verification_url_base=_BASE, role="owner"
            )

    def test_short_username_fails_store_validation(self, service):
        with pytest.raises(UserValidationError):
            _register(service, username="ab", email="ab@example.com")

    def test_mail_exception_does_not_fail_registration(self, service, store, mailer):
        mailer.raise_on_send = True
        user = _register(service)
        assert store.get_by_id(user.id) is not None


class TestVerifyEmail:
    def test_valid_token_verifies_and_clears_pair(self, service, store, mailer):
        user = _register(service)
        service.verify_email(mailer.last_token("verify", "alice@example.com"))
        stored = store.get_by_id(user.id)
        assert stored.is_email_verified is True
        assert stored.email_verification_token is None
        assert stored.email_verification_expiry is None

    def test_token_is_single_use(self, service, mailer):
        _register(service)
        token = mailer.last_token("verify", "alice@example.com")
        service.verify_email(token)
        with pytest.raises(BadRequestError, match="invalid or expired"):
            service.verify_email(token)

    def test_missing_token(self, service):
        with pytest.raises(BadRequestError, match="missing"):
            service.verify_email("")

    def test_unknown_token(self, service):
        with pytest.raises(BadRequestError, match="invalid or expired"):
            service.verify_email("0" * 40)

    def test_expired_token(self, service, store, mailer):
        user = _register(service)
        _expire(store, user.id, "email_verification_expiry")
        with pytest.raises(BadRequestError, match="invalid or expired"):
            service.verify_email(mailer.last_token("verify", "alice@example.com"))
        assert store.get_by_id(user.id).is_email_verified is False


class TestResendVerification:
    def test_new_link_supersedes_old(self, service, store, mailer):
        user = _register(service)
        old = mailer.last_token("verify", "alice@example.com")
        service.resend_email_verification(user.id, _BASE)
        new = mailer.last_token("verify", "alice@example.com")
        assert new != old

        with pytest.raises(BadRequestError):
            service.verify_email(old)
        service.verify_email(new)
        assert store.get_by_id(user.id).is_email_verified is True

    def test_already_verified_conflicts(self, service, mailer):
        user = _register(service)
        service.verify_email(mailer.last_token("verify", "alice@example.com"))
        with pytest.raises(ConflictError):
            service.resend_email_verification(user.id, _BASE)

    def test_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            service.resend_email_verification("missing", _BASE)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TestLogin:
    def test_success_issues_pair_and_stores_refresh_digest(self, service, store):
        user = _register(service)
        result = service.login("alice@example.com", "s3cret-pass")
        assert result.user.id == user.id
        assert decode_access_token(result.tokens.access_token)["sub"] == user.id
        assert decode_refresh_token(result.tokens.refresh_token)["sub"] == user.id
        assert store.get_by_id(user.id).refresh_token == hash_token(result.tokens.refresh_token)

    def test_unverified_users_may_log_in(self, service):
        _register(service)
        assert service.login("alice@example.com", "s3cret-pass").user.is_email_verified is False

    def test_email_is_case_insensitive(self, service):
        _register(service)
        assert service.login("ALICE@example.com", "s3cret-pass").user.email == "alice@example.com"

    def test_missing_email(self, service):
        with pytest.raises(BadRequestError, match="Email is required"):
            service.login(None, "pw")

    def test_unknown_email(self, service):
        with pytest.raises(NotFoundError):
            service.login("ghost@example.com", "pw")

    def test_wrong_password(self, service, store):
        user = _register(service)
        with pytest.raises(UnauthorizedError, match="Invalid credentials"):
            service.login("alice@example.com", "wrong")
        assert store.get_by_id(user.id).refresh_token is None

    def test_second_login_supersedes_first_refresh_token(self, service):
        _register(service)
        first = service.login("alice@example.com", "s3cret-pass").tokens
        service.login("alice@example.com", "s3cret-pass")
        with pytest.raises(UnauthorizedError, match="expired or used"):
            service.refresh_access_token(first.refresh_token)


class TestRefresh:
    def test_rotation_issues_new_pair(self, service, store):
        user = _register(service)
        first = service.login("alice@example.com", "s3cret-pass").tokens
        second = service.refresh_access_token(first.refresh_token)
        assert second.refresh_token != first.refresh_token
        assert second.access_token != first.access_token
        assert store.get_by_id(user.id).refresh_token == hash_token(second.refresh_token)

    def test_rotated_token_cannot_be_reused(self, service):
        _register(service)
        first = service.login("alice@example.com", "s3cret-pass").tokens
        second = service.refresh_access_token(first.refresh_token)
        with pytest.raises(UnauthorizedError, match="expired or used"):
            service.refresh_access_token(first.refresh_token)
        # the current token still works
        service.refresh_access_token(second.refresh_token)

    def test_missing_token(self, service):
        with pytest.raises(UnauthorizedError, match="Unauthorized request"):
            service.refresh_access_token(None)

    def test_garbage_token(self, service):
        with pytest.raises(UnauthorizedError, match="Invalid refresh token"):
            service.refresh_access_token("garbage")

    def test_access_token_is_not_a_refresh_token(self, service):
        _register(service)
        tokens = service.login("alice@example.com", "s3cret-pass").tokens
        with pytest.raises(UnauthorizedError, match="Invalid refresh token"):
            service.refresh_access_token(tokens.access_token)

    def test_token_for_unknown_user(self, service):
        with pytest.raises(UnauthorizedError, match="Invalid refresh token"):
            service.refresh_access_token(create_refresh_token("no-such-user"))

    def test_valid_signature_never_stored_is_rejected(self, service):
        user = _register(service)
        with pytest.raises(UnauthorizedError, match="expired or used"):
            service.refresh_access_token(create_refresh_token(user.id))

    def test_refresh_runs_full_validation(self, service, store):
        user = _register(service)
        tokens = service.login("alice@example.com", "s3cret-pass").tokens
        broken = store.get_by_id(user.id)
        broken.username = "ab"
        store.save(broken, skip_validation=True)
        with pytest.raises(UserValidationError):
            service.refresh_access_token(tokens.refresh_token)


class TestLogout:
    def test_logout_invalidates_refresh_token(self, service, store):
        user = _register(service)
        tokens = service.login("alice@example.com", "s3cret-pass").tokens
        service.logout(user.id)
        assert store.get_by_id(user.id).refresh_token is None
        with pytest.raises(UnauthorizedError, match="expired or used"):
            service.refresh_access_token(tokens.refresh_token)

    def test_logout_is_idempotent(self, service, store):
        user = _register(service)
        service.logout(user.id)
        service.logout(user.id)
        service.logout("unknown-user")
        assert store.get_by_id(user.id).refresh_token is None


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


class TestForgotAndReset:
    def test_forgot_mails_redirect_link(self, service, store, mailer):
        user = _register(service)
        service.forgot_password_request("alice@example.com")
        url = mailer.last_url("reset", "alice@example.com")
        assert url.startswith("http://localhost:5173/reset-password/")
        plain = url.rsplit("/", 1)[1]
        assert store.get_by_id(user.id).forgot_password_token == hash_token(plain)

    def test_forgot_unknown_email(self, service):
        with pytest.raises(NotFoundError):
            service.forgot_password_request("ghost@example.com")

    def test_reset_changes_password_and_clears_pair(self, service, store, mailer):
        user = _register(service)
        service.forgot_password_request("alice@example.com")
        service.reset_forgot_password(mailer.last_token("reset", "alice@example.com"), "brand-new-pass")

        stored = store.get_by_id(user.id)
        assert stored.forgot_password_token is None
        assert stored.forgot_password_expiry is None
        assert verify_password("brand-new-pass", stored.hashed_password)
        service.login("alice@example.com", "brand-new-pass")
        with pytest.raises(UnauthorizedError):
            service.login("alice@example.com", "s3cret-pass")

    def test_reset_token_is_single_use(self, service, mailer):
        _register(service)
        service.forgot_password_request("alice@example.com")
        token = mailer.last_token("reset", "alice@example.com")
        service.reset_forgot_password(token, "brand-new-pass")
        with pytest.raises(InvalidResetTokenError):
            service.reset_forgot_password(token, "another-pass")

    def test_reset_with_unknown_token(self, service):
        with pytest.raises(InvalidResetTokenError) as exc_info:
            service.reset_forgot_password("0" * 40, "brand-new-pass")
        assert exc_info.value.status_code == 489

    def test_reset_with_expired_token(self, service, store, mailer):
        user = _register(service)
        service.forgot_password_request("alice@example.com")
        _expire(store, user.id, "forgot_password_expiry")
        with pytest.raises(InvalidResetTokenError):
            service.reset_forgot_password(mailer.last_token("reset", "alice@example.com"), "brand-new-pass")
        assert verify_password("s3cret-pass", store.get_by_id(user.id).hashed_password)

    def test_mail_failure_still_records_token(self, service, store, mailer):
        user = _register(service)
        mailer.raise_on_send = True
        service.forgot_password_request("alice@example.com")
        assert store.get_by_id(user.id).forgot_password_token is not None


class TestChangePassword:
    def test_change_with_correct_old_password(self, service, store):
        user = _register(service)
        service.change_current_password(user.id, "s3cret-pass", "changed-pass")
        assert verify_password("changed-pass", store.get_by_id(user.id).hashed_password)

    def test_wrong_old_password(self, service, store):
        user = _register(service)
        with pytest.raises(BadRequestError, match="Invalid old password"):
            service.change_current_password(user.id, "wrong", "changed-pass")
        assert verify_password("s3cret-pass", store.get_by_id(user.id).hashed_password)

    def test_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            service.change_current_password("missing", "a", "b")

    def test_unrelated_save_keeps_hash(self, service, store):
        user = _register(service)
        before = store.get_by_id(user.id).hashed_password
        service.login("alice@example.com", "s3cret-pass")
        service.logout(user.id)
        assert store.get_by_id(user.id).hashed_password == before


# ---------------------------------------------------------------------------
# Log hygiene
# ---------------------------------------------------------------------------


class TestNoSecretsInLogs:
    """Drive every flow through a real, unconfigured production Mailer and
    check that no secret material shows up in any captured log record."""

    @pytest.fixture
    def issued(self, monkeypatch):
        tokens = []

        def _tracking(*args, **kwargs):
            temp = generate_temporary_token(*args, **kwargs)
            tokens.append(temp)
            return temp

        monkeypatch.setattr(service_module, "generate_temporary_token", _tracking)
        return tokens

    @pytest.fixture
    def prod_service(self, store):
        return AuthService(store, Mailer(smtp_host="", from_email="noreply@example.com", debug=False))

    def _assert_absent(self, caplog, *secrets):
        for record in caplog.records:
            message = record.getMessage()
            for secret in secrets:
                assert secret not in message, f"secret leaked in {record.name}: {message!r}"

    def test_ephemeral_flows(self, prod_service, issued, caplog):
        caplog.set_level(logging.DEBUG)
        user = _register(prod_service)
        prod_service.resend_email_verification(user.id, _BASE)
        prod_service.verify_email(issued[-1].plain_token)
        prod_service.forgot_password_request("alice@example.com")
        prod_service.reset_forgot_password(issued[-1].plain_token, "brand-new-pass")

        assert len(issued) == 3
        secrets = [t.plain_token for t in issued] + [t.hashed_token for t in issued]
        self._assert_absent(caplog, *secrets, "s3cret-pass", "brand-new-pass")
        assert caplog.records  # the flows did log

    def test_session_flows(self, prod_service, store, caplog):
        caplog.set_level(logging.DEBUG)
        user = _register(prod_service)
        first = prod_service.login("alice@example.com", "s3cret-pass").tokens
        second = prod_service.refresh_access_token(first.refresh_token)
        with pytest.raises(UnauthorizedError):
            prod_service.refresh_access_token(first.refresh_token)
        with pytest.raises(UnauthorizedError):
            prod_service.login("alice@example.com", "wrong-pass")
        prod_service.change_current_password(user.id, "s3cret-pass", "changed-pass")
        prod_service.logout(user.id)

        secrets = []
        for pair in (first, second):
            secrets += [pair.access_token, pair.refresh_token, hash_token(pair.refresh_token)]
        self._assert_absent(caplog, *secrets, "s3cret-pass", "wrong-pass", "changed-pass")
        assert store.get_by_id(user.id).hashed_password not in caplog.text
