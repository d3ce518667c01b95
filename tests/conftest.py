"""
tests/conftest.py -- Shared test fixtures for campgate unit and integration tests.

This module provides:
  - RecordingMailer: stands in for auth.mail.Mailer and keeps every message
  - store / mailer / service: isolated in-memory UserStore + AuthService
  - _make_test_store(): named shared-memory DB for TestClient modules
  - _patch_lifespan(): wires test doubles into app.state, bypassing real startup
  - api_client: module-scoped (client, store, mailer) for API integration tests
  - make_user: factory that inserts a user straight into a store

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient because route handlers run in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Unit-test stores are used from one thread only, so plain :memory:
is fine there.

DEBUG must be set before any auth/core import so get_settings() generates
signing secrets instead of raising. Rate limiting is switched off so the
login-heavy integration tests are not throttled.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import -- get_settings() is cached on first use.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import UserStore

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingMailer:
    """Mailer double: records (kind, to, username, url) and can simulate failure."""

    is_configured = False

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str, str]] = []
        self.raise_on_send = False

    def send_verification_email(self, to_email: str, username: str, verification_url: str) -> bool:
        return self._record("verify", to_email, username, verification_url)

    def send_password_reset_email(self, to_email: str, username: str, reset_url: str) -> bool:
        return self._record("reset", to_email, username, reset_url)

    def _record(self, kind: str, to_email: str, username: str, url: str) -> bool:
        if self.raise_on_send:
            raise ConnectionRefusedError("SMTP server unreachable")
        self.sent.append((kind, to_email, username, url))
        return True

    def last_url(self, kind: str, to_email: str) -> str:
        """Return the most recent link of kind mailed to to_email."""
        urls = [url for k, to, _u, url in self.sent if k == kind and to == to_email]
        assert urls, f"no {kind!r} mail recorded for {to_email}"
        return urls[-1]

    def last_token(self, kind: str, to_email: str) -> str:
        return self.last_url(kind, to_email).rsplit("/", 1)[1]


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def service(store: UserStore, mailer: RecordingMailer) -> AuthService:
    return AuthService(store, mailer)


@pytest.fixture(scope="session")
def make_user() -> Callable[..., User]:
    """Return a factory inserting a verified-or-not user with a known password."""

    def _make(
        store: UserStore,
        username: str,
        email: str,
        password: str = "s3cret-pass",
        is_email_verified: bool = False,
    ) -> User:
        return store.create_user(
            User(
                username=username,
                email=email,
                hashed_password=hash_password(password),
                is_email_verified=is_email_verified,
            )
        )

    return _make


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return UserStore(f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(user_store: UserStore, mailer: RecordingMailer):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.mailer = mailer
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, UserStore, RecordingMailer], None, None]:
    """Yield (client, store, mailer) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, dependencies and exception handlers, backed by
    an isolated in-memory store and a recording mailer.
    """
    user_store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    mailer = RecordingMailer()

    app.router.lifespan_context = _patch_lifespan(user_store, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store, mailer

    user_store.close()
