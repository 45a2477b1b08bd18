"""
tests/conftest.py -- Shared test fixtures for AuthGate.

This module provides:
  - FakeClock: a settable clock injected into TokenIssuer and session stores
  - make_gateway(): an AuthGateway over in-memory backends with a fast bcrypt cost
  - gateway / clock: per-test fixtures for service-level tests
  - api_client: TestClient over the real app with a patched lifespan

The environment variables must be set before any api/core import so
get_settings() sees them: DEBUG auto-generates SECRET_KEY, BCRYPT_ROUNDS=4
keeps hashing fast, and the high login limit keeps the shared slowapi
counters out of the way of unrelated tests.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set env before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.directory import MemoryUserDirectory
from auth.gateway import AuthGateway
from auth.passwords import CredentialVerifier
from auth.sessions import MemorySessionStore
from auth.tokens import TokenIssuer

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"
STRONG_PASSWORD = "Passw0rd!"


class FakeClock:
    """Callable clock. Tests advance it instead of sleeping."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


def make_gateway(clock: FakeClock | None = None, **kwargs) -> AuthGateway:
    """Build a gateway over in-memory backends. kwargs go to AuthGateway."""
    now = clock or (lambda: datetime.now(timezone.utc))
    return AuthGateway(
        MemoryUserDirectory(),
        MemorySessionStore(now=now),
        TokenIssuer(TEST_SECRET, now=now),
        CredentialVerifier(rounds=4),
        **kwargs,
    )


def _patch_lifespan(gateway: AuthGateway):
    """Return a lifespan that wires a pre-built gateway into app.state.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.gateway = gateway
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Service-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway(clock: FakeClock) -> AuthGateway:
    return make_gateway(clock)


@pytest.fixture
def gateway_factory(clock: FakeClock):
    """Build extra gateways sharing the test clock, e.g. with registration disabled."""
    return lambda **kwargs: make_gateway(clock, **kwargs)


@pytest.fixture
def registered(gateway: AuthGateway):
    """Register alice@example.com and return the AuthResult."""
    return gateway.register("alice@example.com", STRONG_PASSWORD, "Alice", "Smith")


# ---------------------------------------------------------------------------
# HTTP fixtures -- one gateway per test so accounts never leak between tests
# ---------------------------------------------------------------------------


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, AuthGateway], None, None]:
    """Yield (client, gateway) over the real app with isolated in-memory stores."""
    gw = make_gateway()
    app.router.lifespan_context = _patch_lifespan(gw)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, gw
