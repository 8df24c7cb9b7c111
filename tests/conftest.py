"""
tests/conftest.py -- Shared test fixtures for the auth service.

This module provides:
  - clock / store / tokens / cache / notifier / dispatcher / service:
    isolated unit-test components wired the way api/main.py wires them
  - _patch_lifespan(): wires a test AuthService into app.state, bypassing
    the real startup (no on-disk database, no SMTP)
  - api_client: TestClient over the real app for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers on a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

The DEBUG env var must be set before any app import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import timedelta

# CRITICAL: Set DEBUG before any core/api import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import BcryptHasher, TokenService
from cache.store import UserCache
from notify.dispatcher import Dispatcher
from tests.support import FAST_HASHER_ROUNDS, TEST_SECRET, FakeClock, RecordingNotifier, memory_db_url

# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore(memory_db_url("store"))
    yield s
    s.close()


@pytest.fixture
def tokens(clock: FakeClock) -> TokenService:
    return TokenService(TEST_SECRET, timedelta(hours=24), clock=clock.utc)


@pytest.fixture
def cache(clock: FakeClock) -> UserCache:
    return UserCache(ttl=300, clock=clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher() -> Generator[Dispatcher, None, None]:
    d = Dispatcher(capacity=2, name="test")
    yield d
    d.join(timeout=5)


@pytest.fixture
def service(
    store: UserStore,
    tokens: TokenService,
    cache: UserCache,
    dispatcher: Dispatcher,
    notifier: RecordingNotifier,
) -> AuthService:
    return AuthService(
        store=store,
        tokens=tokens,
        cache=cache,
        dispatcher=dispatcher,
        notifier=notifier,
        hasher=BcryptHasher(rounds=FAST_HASHER_ROUNDS),
    )


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        app.state.user_store = service.store
        app.state.cache = service.cache
        app.state.dispatcher = service.dispatcher
        yield
        service.dispatcher.join(timeout=5)

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, AuthService, RecordingNotifier], None, None]:
    """Yield (client, service, notifier) for API integration tests.

    One TestClient per test module for speed; tests use distinct emails so
    they do not depend on each other's records.
    """
    user_store = UserStore(memory_db_url("api"))
    notifier = RecordingNotifier()
    service = AuthService(
        store=user_store,
        tokens=TokenService(TEST_SECRET, timedelta(hours=1)),
        cache=UserCache(ttl=60),
        dispatcher=Dispatcher(capacity=2, name="api-test"),
        notifier=notifier,
        hasher=BcryptHasher(rounds=FAST_HASHER_ROUNDS),
    )

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service, notifier

    user_store.close()
