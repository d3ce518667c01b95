"""
auth/service.py -- Authentication flows: register, login, logout, refresh,
email verification, password reset, and password change.

AuthService composes the leaf components:
  passwords  -- bcrypt hashing (apply_password is the only password writer)
  tokens     -- JWT access/refresh issue and verification
  ephemeral  -- verification / reset tokens, hashed at rest, 20 minute window
  UserStore  -- every mutation goes through store.save()
  Mailer     -- best-effort delivery of plain ephemeral tokens

Each flow raises a core.errors.ApiError subclass on failure; the API boundary
renders it. Route handlers stay thin and only deal with request parsing,
cookies, and the response envelope.

Refresh token model:
  One active refresh token per user. Its SHA-256 digest lives in
  User.refresh_token and every issue overwrites it. A refresh token that is
  still cryptographically valid but no longer matches the stored digest
  (rotated out, or cleared by logout) is rejected. That is also how reuse
  of a stolen, already-rotated token is detected.

Save policy:
  Bookkeeping saves (token fields, verification flag, password) skip
  full-document validation. The refresh flow saves with full validation.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass

from auth.ephemeral import generate_temporary_token, hash_token, validate_temporary_token
from auth.mail import Mailer
from auth.models import AVAILABLE_USER_ROLES, User
from auth.passwords import DUMMY_HASH, apply_password, verify_password
from auth.store import UserStore
from auth.tokens import create_access_token, create_refresh_token, decode_refresh_token
from core.config import get_settings
from core.errors import (
    BadRequestError,
    ConflictError,
    InternalError,
    InvalidResetTokenError,
    NotFoundError,
    UnauthorizedError,
)

logger = logging.getLogger("campgate.auth")


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class LoginResult:
    user: User
    tokens: TokenPair


class AuthService:
    """Orchestrates the credential and token lifecycle for one request."""

    def __init__(self, store: UserStore, mailer: Mailer) -> None:
        self.store = store
        self.mailer = mailer

    # ------------------------------------------------------------------
    # Registration and email verification
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        username: str,
        password: str,
        verification_url_base: str,
        full_name: str | None = None,
        role: str | None = None,
    ) -> User:
        """Create an unverified account and mail its verification link.

        role is accepted for client compatibility but not stored: roles are
        granted per project through membership, not per account.
        """
        if role is not None and role not in AVAILABLE_USER_ROLES:
            raise BadRequestError("Role is invalid")

        temp = generate_temporary_token()
        user = User(
            username=username,
            email=email,
            full_name=full_name,
            hashed_password="",
            email_verification_token=temp.hashed_token,
            email_verification_expiry=temp.expires_at,
        )
        apply_password(user, password)
        user = self.store.create_user(user)
        logger.info("User registered user_id=%s", user.id)

        self._send_mail(
            self.mailer.send_verification_email,
            user.email,
            user.username,
            f"{verification_url_base.rstrip('/')}/{temp.plain_token}",
        )
        return user

    def verify_email(self, verification_token: str | None) -> User:
        if not verification_token:
            raise BadRequestError("Email verification token is missing")

        user = self.store.get_by_email_verification_token(hash_token(verification_token))
        if user is None or not validate_temporary_token(
            verification_token, user.email_verification_token, user.email_verification_expiry
        ):
            raise BadRequestError("Token is invalid or expired")

        user.email_verification_token = None
        user.email_verification_expiry = None
        user.is_email_verified = True
        self.store.save(user, skip_validation=True)
        logger.info("Email verified user_id=%s", user.id)
        return user

    def resend_email_verification(self, user_id: str, verification_url_base: str) -> None:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User does not exist")
        if user.is_email_verified:
            raise ConflictError("Email is already verified")

        # Overwriting the stored digest invalidates any previously mailed link.
        temp = generate_temporary_token()
        user.email_verification_token = temp.hashed_token
        user.email_verification_expiry = temp.expires_at
        self.store.save(user, skip_validation=True)

        self._send_mail(
            self.mailer.send_verification_email,
            user.email,
            user.username,
            f"{verification_url_base.rstrip('/')}/{temp.plain_token}",
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def login(self, email: str | None, password: str) -> LoginResult:
        """Check credentials and issue a fresh access/refresh pair.

        bcrypt runs whether or not the email exists, so the unknown-email
        and wrong-password branches take the same time.
        """
        if not email:
            raise BadRequestError("Email is required")

        user = self.store.get_by_email(email)
        if user is None:
            verify_password(password, DUMMY_HASH)
            raise NotFoundError("User does not exist")
        if not verify_password(password, user.hashed_password):
            logger.info("Login failed user_id=%s reason=bad_password", user.id)
            raise UnauthorizedError("Invalid credentials")

        tokens = self._issue_tokens(user)
        self.store.save(user, skip_validation=True)
        logger.info("Login succeeded user_id=%s", user.id)
        return LoginResult(user=user, tokens=tokens)

    def logout(self, user_id: str) -> None:
        """Clear the stored refresh token. Safe to call repeatedly."""
        user = self.store.get_by_id(user_id)
        if user is None or user.refresh_token is None:
            return
        user.refresh_token = None
        self.store.save(user, skip_validation=True)
        logger.info("Logged out user_id=%s", user.id)

    def refresh_access_token(self, incoming_refresh_token: str | None) -> TokenPair:
        if not incoming_refresh_token:
            raise UnauthorizedError("Unauthorized request")

        claims = decode_refresh_token(incoming_refresh_token)
        if claims is None:
            raise UnauthorizedError("Invalid refresh token")

        user = self.store.get_by_id(claims["sub"])
        if user is None:
            raise UnauthorizedError("Invalid refresh token")

        if not user.refresh_token or not hmac.compare_digest(hash_token(incoming_refresh_token), user.refresh_token):
            logger.warning("Superseded refresh token presented user_id=%s", user.id)
            raise UnauthorizedError("Refresh token is expired or used")

        tokens = self._issue_tokens(user)
        self.store.save(user)
        logger.info("Refresh token rotated user_id=%s", user.id)
        return tokens

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def forgot_password_request(self, email: str) -> None:
        user = self.store.get_by_email(email)
        if user is None:
            raise NotFoundError("User does not exist")

        temp = generate_temporary_token()
        user.forgot_password_token = temp.hashed_token
        user.forgot_password_expiry = temp.expires_at
        self.store.save(user, skip_validation=True)
        logger.info("Password reset requested user_id=%s", user.id)

        redirect = get_settings().forgot_password_redirect_url.rstrip("/")
        self._send_mail(
            self.mailer.send_password_reset_email,
            user.email,
            user.username,
            f"{redirect}/{temp.plain_token}",
        )

    def reset_forgot_password(self, reset_token: str | None, new_password: str) -> None:
        if not reset_token:
            raise InvalidResetTokenError()

        user = self.store.get_by_forgot_password_token(hash_token(reset_token))
        if user is None or not validate_temporary_token(
            reset_token, user.forgot_password_token, user.forgot_password_expiry
        ):
            raise InvalidResetTokenError()

        user.forgot_password_token = None
        user.forgot_password_expiry = None
        apply_password(user, new_password)
        self.store.save(user, skip_validation=True)
        logger.info("Password reset completed user_id=%s", user.id)

    def change_current_password(self, user_id: str, old_password: str, new_password: str) -> None:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User does not exist")
        if not verify_password(old_password, user.hashed_password):
            raise BadRequestError("Invalid old password")

        apply_password(user, new_password)
        self.store.save(user, skip_validation=True)
        logger.info("Password changed user_id=%s", user.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue_tokens(self, user: User) -> TokenPair:
        """Mint a new pair and record the refresh digest on user (caller saves).

        Signing failures are logged with their cause and surfaced as a
        generic 500 -- the client never sees library error text.
        """
        try:
            access = create_access_token(user.id, user.email, user.username)
            refresh = create_refresh_token(user.id)
        except Exception as exc:
            logger.exception("Token generation failed user_id=%s", user.id)
            raise InternalError("Something went wrong while generating tokens") from exc
        user.refresh_token = hash_token(refresh)
        return TokenPair(access_token=access, refresh_token=refresh)

    def _send_mail(self, send, *args) -> None:
        """Deliver best-effort: failures are logged, never raised to the flow."""
        try:
            delivered = send(*args)
        except Exception:
            logger.exception("Mail dispatch raised; continuing without delivery")
            return
        if delivered is False:
            logger.warning("Mail was not delivered; continuing")
