"""
tests/conftest.py -- Shared test fixtures for slidingauth.

This module provides:
  - FakeClock: a settable monotonic clock so session expiry is tested by
    stepping time forward instead of sleeping
  - _make_user_store(): isolated in-memory user DB per test
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - harness: TestClient (follow_redirects=False) plus handles on every store
    it talks to, for integration tests through the full ASGI stack

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.
"""

from __future__ import annotations

import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.gate import RouteGate
from auth.models import User
from auth.passwords import generate_salt, hash_password
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import email_verification_codec, password_reset_codec
from cache.store import MemoryStore
from core.config import Settings
from core.mailer import EmailResult

TEST_PASSWORD = "Correct1Horse"


class FakeClock:
    """Callable clock for MemoryStore. advance() moves time forward in seconds."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_user_store() -> UserStore:
    """Create an isolated named shared-memory SQLite user store.

    A uuid in the name keeps tests from seeing each other's rows.
    """
    return UserStore(db_url=f"sqlite:///file:test_users_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


def create_test_user(
    user_store: UserStore,
    *,
    name: str = "Ada Lovelace",
    email: str = "ada@example.com",
    password: str = TEST_PASSWORD,
    role: str = "user",
    email_verified: bool = False,
) -> User:
    salt = generate_salt()
    return user_store.create_user(
        User(
            name=name,
            email=email,
            password_hash=hash_password(password, salt),
            salt=salt,
            role=role,
            email_verified=email_verified,
        )
    )


def _test_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def _patch_lifespan(
    settings: Settings,
    user_store: UserStore,
    session_store: MemoryStore,
    mailer: MagicMock,
):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test stores rather than a real database or Redis. The mailer is
    a MagicMock so tests can assert on what would have been sent.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.session_manager = SessionManager.from_settings(session_store, settings)
        app.state.gate = RouteGate(
            settings.protected_routes,
            settings.auth_routes,
            login_path=settings.login_path,
            home_path=settings.home_path,
        )
        app.state.reset_tokens = password_reset_codec(settings)
        app.state.verify_tokens = email_verification_codec(settings)
        app.state.mailer = mailer
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture()
def manager(memory_store: MemoryStore) -> SessionManager:
    return SessionManager(memory_store, session_duration=86400, remember_me_duration=2592000)


@pytest.fixture()
def user_store() -> Generator[UserStore, None, None]:
    store = _make_user_store()
    yield store
    store.close()


# ---------------------------------------------------------------------------
# Integration harness
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    settings: Settings
    user_store: UserStore
    session_store: MemoryStore
    clock: FakeClock
    mailer: MagicMock
    user: User

    def login(self, email: str = "ada@example.com", password: str = TEST_PASSWORD, remember_me: bool = False):
        return self.client.post(
            "/api/auth/login",
            json={"email": email, "password": password, "rememberMe": remember_me},
        )


@pytest.fixture()
def harness() -> Generator[Harness, None, None]:
    """Yield a Harness around a TestClient with a seeded user.

    follow_redirects=False is essential: gate tests assert on redirect
    *locations*, which are invisible once the client follows the redirect.
    Function-scoped because the client's cookie jar carries sessions from
    one request to the next.
    """
    settings = _test_settings()
    clock = FakeClock()
    session_store = MemoryStore(clock=clock)
    user_store = _make_user_store()
    mailer = MagicMock()
    mailer.send_email.return_value = EmailResult(success=True)
    user = create_test_user(user_store)

    app.router.lifespan_context = _patch_lifespan(settings, user_store, session_store, mailer)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield Harness(
            client=client,
            settings=settings,
            user_store=user_store,
            session_store=session_store,
            clock=clock,
            mailer=mailer,
            user=user,
        )

    user_store.close()


@pytest.fixture()
def make_user():
    """Factory fixture: make_user(user_store, email=..., password=...) -> User."""
    return create_test_user
