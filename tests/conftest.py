"""
tests/conftest.py -- Shared test fixtures for StarterKit.

This module provides:
  - FakeClock: controllable time source for expiry tests
  - store / sessions / service: unit-level fixtures over plain in-memory SQLite
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs route handlers from a worker thread. Plain
:memory: DBs are per-connection and would present a blank schema to each
thread. The named URI (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

Environment must be set before any api/core import: DEBUG lets get_settings()
auto-generate SECRET_KEY, the rate limits are raised so the suite never trips
them, and BCRYPT_ROUNDS=4 keeps hashing fast.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager, suppress

# CRITICAL: set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "10000/minute")
os.environ.setdefault("API_RATE_LIMIT", "10000/minute")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_auth_service
from auth.hasher import CredentialHasher
from auth.service import AuthService
from auth.sessions import SessionManager
from auth.store import AccountStore
from auth.tokens import RememberMeTokens, ResetTokenManager
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars"
STRONG_PASSWORD = "Str0ng!Passw0rd"
REMEMBER_ME_MAX_AGE = 7 * 24 * 3600


class FakeClock:
    """Callable time source; tests move it with advance()."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def sessions(clock: FakeClock) -> Generator[SessionManager, None, None]:
    s = SessionManager("sqlite:///:memory:", idle_ttl_seconds=3600, absolute_ttl_seconds=4 * 3600, clock=clock)
    yield s
    s.close()


@pytest.fixture
def hasher() -> CredentialHasher:
    return CredentialHasher(rounds=4)


@pytest.fixture
def reset_tokens(store: AccountStore, clock: FakeClock) -> ResetTokenManager:
    return ResetTokenManager(store, TEST_SECRET, ttl_seconds=3600, clock=clock)


@pytest.fixture
def service(
    store: AccountStore,
    sessions: SessionManager,
    hasher: CredentialHasher,
    reset_tokens: ResetTokenManager,
    clock: FakeClock,
) -> AuthService:
    return AuthService(
        store=store,
        sessions=sessions,
        hasher=hasher,
        reset_tokens=reset_tokens,
        remember_tokens=RememberMeTokens(store, TEST_SECRET, max_age_seconds=REMEMBER_ME_MAX_AGE, clock=clock),
        hash_timeout=30.0,
    )


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AccountStore, sessions: SessionManager):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs. The sweep task is a long-sleeping coroutine (a real
    asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.settings = settings
        app.state.account_store = store
        app.state.sessions = sessions
        app.state.auth_service = build_auth_service(settings, store, sessions)
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.sweep_task

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[TestClient, None, None]:
    """Yield a TestClient bound to fresh shared-memory stores for this module.

    The DB name includes the module name so test modules never share state.
    """
    db_url = f"sqlite:///file:test_auth_{request.module.__name__}?mode=memory&cache=shared&uri=true"
    store = AccountStore(db_url)
    sessions = SessionManager(db_url)
    app.router.lifespan_context = _patch_lifespan(store, sessions)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    sessions.close()
    store.close()
