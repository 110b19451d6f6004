"""
tests/conftest.py -- Shared test fixtures for the QR login service.

This module provides:
  - FakeClock: a controllable clock injected into QRSessionMachine
  - _make_test_stores(): creates isolated in-memory DBs for users + QR sessions
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - unit fixtures: user_store, session_store, codec, clock, machine, service
  - api_client: TestClient with a user and bearer token for integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API fixtures because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

DEBUG and ALLOWED_HOSTS must be set before any core/auth/api import:
get_settings() auto-generates SECRET_KEY in dev mode, and TestClient sends
Host: testserver, which TrustedHostMiddleware would otherwise reject.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "127.0.0.1", "testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import User
from auth.service import LoginOrchestrator
from auth.store import UserStore
from auth.tokens import TokenCodec, hash_password
from qrlogin.machine import QRSessionMachine
from qrlogin.store import SessionStore

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"
TEST_PASSWORD = "testpass123"

# Rate limits are exercised in test_rate_limit.py by re-enabling the limiter.
limiter.enabled = False


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, SessionStore]:
    """Create a UserStore and SessionStore over isolated named shared-memory SQLite DBs.

    Args:
        db_suffix: Unique string appended to the DB names so test modules
                   don't share state.
    """
    users_url = f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true"
    qr_url = f"sqlite:///file:test_qr_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=users_url), SessionStore(db_url=qr_url)


def _patch_lifespan(user_store: UserStore, session_store: SessionStore, codec: TokenCodec):
    """Return an async context manager that replaces the real lifespan.

    Builds the same object graph as api.main.lifespan but over the test
    stores and a fixed-secret codec. The purge_task is a long-sleeping
    coroutine so shutdown can cancel a real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.token_codec = codec
        app.state.qr_machine = QRSessionMachine(session_store, user_store, codec)
        app.state.auth_service = LoginOrchestrator(user_store, codec, app.state.qr_machine)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def create_test_user(
    store: UserStore,
    email: str,
    password: str = TEST_PASSWORD,
    role: str = "user",
    is_active: bool = True,
) -> int:
    """Insert a user whose username is the local part of `email`; return its id."""
    return store.create_user(
        User(
            email=email,
            username=email.split("@", 1)[0],
            hashed_password=hash_password(password),
            role=role,
            is_active=is_active,
        )
    )


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(TEST_SECRET, lifetime_seconds=3600)


@pytest.fixture
def stores() -> Generator[tuple[UserStore, SessionStore], None, None]:
    user_store, session_store = _make_test_stores(uuid.uuid4().hex)
    yield user_store, session_store
    session_store.close()
    user_store.close()


@pytest.fixture
def user_store(stores) -> UserStore:
    return stores[0]


@pytest.fixture
def session_store(stores) -> SessionStore:
    return stores[1]


@pytest.fixture
def make_user(user_store):
    """Return a factory: make_user(email, password=..., role=..., is_active=...) -> user id."""

    def _make(email: str, password: str = TEST_PASSWORD, role: str = "user", is_active: bool = True) -> int:
        return create_test_user(user_store, email, password, role, is_active)

    return _make


@pytest.fixture
def machine(session_store, user_store, codec, clock) -> QRSessionMachine:
    """QRSessionMachine with a 300s TTL, the default `qr_` prefix, and a FakeClock."""
    return QRSessionMachine(session_store, user_store, codec, ttl_seconds=300, clock=clock)


@pytest.fixture
def service(user_store, codec, machine) -> LoginOrchestrator:
    return LoginOrchestrator(user_store, codec, machine)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    The user alice@example.com / TEST_PASSWORD is created before the client
    starts and a bearer token is issued for it.
    """
    user_store, session_store = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])
    codec = TokenCodec(TEST_SECRET, lifetime_seconds=3600)

    uid = create_test_user(user_store, "alice@example.com")
    token = codec.issue(uid, "alice@example.com", "user")

    app.router.lifespan_context = _patch_lifespan(user_store, session_store, codec)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    session_store.close()
    user_store.close()
