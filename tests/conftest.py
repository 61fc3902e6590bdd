"""
tests/conftest.py -- Shared test fixtures for AuthGate.

This module provides:
  - FakeClock: injectable time source for expiry tests
  - principals / hasher / clock: unit-level building blocks
  - _make_test_service(): an AuthService on an isolated shared-memory DB
  - _patch_lifespan(): wires a test service into app.state, bypassing real startup
  - api_client: TestClient for API integration tests
  - web_client: TestClient with follow_redirects=False for browser route tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the integration fixtures because TestClient runs sync route handlers in a
thread pool. Plain :memory: DBs are per-connection and would present a blank
schema to each worker thread.

Environment variables must be set before any application import: DEBUG lets
get_settings() auto-generate SECRET_KEY, BCRYPT_ROUNDS keeps hashing fast,
ALLOWED_HOSTS admits TestClient's "testserver" host.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("PURGE_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import PrincipalStore
from core.config import Settings, get_settings

# ---------------------------------------------------------------------------
# Unit-level helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable time source that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def principals() -> Generator[PrincipalStore, None, None]:
    store = PrincipalStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def secret_key() -> str:
    return "k" * 64


# ---------------------------------------------------------------------------
# Service helpers
# ---------------------------------------------------------------------------


def _make_test_service(db_suffix: str, settings: Settings | None = None) -> AuthService:
    """Create an AuthService on an isolated named shared-memory SQLite DB.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'web').
    """
    url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    return AuthService.from_settings(settings or get_settings(), db_url=url)


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.auth = service
        app.state.purge_task = None
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) for API integration tests.

    Two principals exist before the client starts:
      - "admin" / "adminpass123", role admin
      - "jwo"   / "12345",        role user
    """
    service = _make_test_service("api")
    service.register("admin", "adminpass123", role="admin")
    service.register("jwo", "12345")

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service

    service.close()


@pytest.fixture(scope="module")
def web_client() -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) for browser route tests.

    follow_redirects=False is essential: we assert on redirect *locations*,
    which are invisible once the client follows the redirect.
    """
    service = _make_test_service("web")
    service.register("jwo", "12345")

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, service

    service.close()
