"""
tests/conftest.py -- Shared test fixtures for orgauth unit and integration tests.

This module provides:
  - _make_test_store(): creates an isolated in-memory AuthStore
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - store / clock / notifier / services: unit-test fixtures, one fresh DB per test
  - api_client: TestClient plus an admin account and its bearer token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# TestClient sends Host: testserver; api.main reads the host list at import.
os.environ.setdefault("ALLOWED_HOSTS", "testserver,localhost,127.0.0.1")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.rules import RULE_ADMIN
from auth.service import AuthServices, build_services
from auth.sms import FAKE_CODE, FakeSMSNotifier
from auth.store import AuthStore
from auth.tokens import create_access_token
from core.errors import NotifierError

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingNotifier:
    """Notifier that records every send. Set fail=True to simulate a gateway outage."""

    def __init__(self, code: str = FAKE_CODE) -> None:
        self.code = code
        self.fail = False
        self.sent: list[tuple[str, str]] = []

    def generate_code(self) -> str:
        return self.code

    def send_code(self, phone: str, code: str) -> None:
        if self.fail:
            raise NotifierError()
        self.sent.append((phone, code))


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> AuthStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so tests and test
                   modules don't share state.
    """
    return AuthStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(services: AuthServices):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test services into app.state so TestClient routes see an
    isolated test DB and the fake notifier rather than production resources.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.services = services
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-test fixtures -- fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = _make_test_store(uuid.uuid4().hex)
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def services(store: AuthStore, notifier: RecordingNotifier, clock: FakeClock) -> AuthServices:
    return build_services(store, notifier, now=clock)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, object], None, None]:
    """Yield (client, token, admin) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store and
    FakeSMSNotifier (every code is FAKE_CODE). The admin account
    (username "testadmin", password "testpass123") is registered and granted
    the admin rule before the client starts.
    """
    store = _make_test_store(f"api_{uuid.uuid4().hex}")
    services = build_services(store, FakeSMSNotifier())

    admin = services.registrar.register("testadmin", "13900000000", "testpass123")
    services.rules.grant("testadmin", RULE_ADMIN)

    # Generate a long-lived JWT for test requests
    token = create_access_token(admin.id, admin.org_id, {RULE_ADMIN}, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(services)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin

    services.close()
