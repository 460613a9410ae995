"""
tests/conftest.py -- Shared test fixtures for CyberShield tests.

This module provides:
  - store:      isolated named shared-memory AccountStore per test
  - clock:      controllable clock (FakeClock) for OTP expiry tests
  - notifier:   RecordingNotifier capturing every outbound message
  - service:    AuthService wired to the three above
  - api_client: (client, store, notifier) -- TestClient running the real app
                with a patched lifespan that installs the test service
  - make_account / login_as: helpers for arranging accounts and sessions

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync dependencies in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI shares one in-memory instance across all connections
in the process; a uuid in the name keeps tests isolated.

Environment must be set before any app import: DEBUG so get_settings()
auto-generates SECRET_KEY, RATE_LIMIT_ENABLED=false so repeated logins are
not throttled, BCRYPT_ROUNDS at the allowed minimum for speed, and
ALLOWED_HOSTS including TestClient's "testserver" host.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set env before any auth/core import -- settings are read once.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "10")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("MAIL_SUPPRESS_SEND", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Account, BusinessProfile
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import COOKIE_NAME, create_access_token, hash_password

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


class RecordingNotifier:
    """Notifier that records (kind, email, code, expires_at) instead of sending.

    Set fail = True to make every send raise, simulating a mail outage.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str | None, datetime | None]] = []
        self.fail = False

    async def send_welcome(self, account: Account) -> None:
        self._record("welcome", account, None, None)

    async def send_verify_otp(self, account: Account, code: str, expires_at: datetime) -> None:
        self._record("verify", account, code, expires_at)

    async def send_reset_otp(self, account: Account, code: str, expires_at: datetime) -> None:
        self._record("reset", account, code, expires_at)

    def _record(self, kind: str, account: Account, code: str | None, expires_at: datetime | None) -> None:
        if self.fail:
            raise ConnectionError("SMTP server unavailable")
        self.sent.append((kind, account.email, code, expires_at))

    def kinds(self) -> list[str]:
        return [kind for kind, _, _, _ in self.sent]

    def last_code(self, kind: str) -> str:
        for sent_kind, _, code, _ in reversed(self.sent):
            if sent_kind == kind:
                return code
        raise AssertionError(f"no {kind} notification was sent")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _test_db_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore(db_url=_test_db_url())
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(store: AccountStore, notifier: RecordingNotifier, clock: FakeClock) -> AuthService:
    return AuthService(store, notifier, clock=clock)


@pytest.fixture
def make_account(store: AccountStore):
    """Factory: insert an account directly through the store and return it."""

    def _make(
        email: str = "user@example.com",
        password: str = "password1",
        role: str = "general",
        name: str = "Test User",
        business: BusinessProfile | None = None,
        is_verified: bool = False,
    ) -> Account:
        if role == "business" and business is None:
            business = BusinessProfile(name="Acme Pty Ltd", address="1 George St, Sydney", abn="51824753556")
        account_id = store.create_account(
            Account(
                email=email,
                name=name,
                role=role,
                hashed_password=hash_password(password),
                business=business,
                is_verified=is_verified,
            )
        )
        return store.get_by_id(account_id)

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AccountStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and service into app.state so TestClient routes see
    isolated test DBs and the recording notifier instead of a mail server.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture
def api_client(
    store: AccountStore, service: AuthService, notifier: RecordingNotifier
) -> Generator[tuple[TestClient, AccountStore, RecordingNotifier], None, None]:
    """Yield (client, store, notifier) for API integration tests.

    The TestClient uses the real FastAPI app -- middleware, exception
    handlers, dependency injection -- with a patched lifespan. Cookies set
    by responses (the session cookie) persist on the client between calls.
    """
    app.router.lifespan_context = _patch_lifespan(store, service)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store, notifier


@pytest.fixture
def login_as():
    """Put a session cookie for `account` on `client` without a login round-trip."""

    def _login(client: TestClient, account: Account) -> str:
        token = create_access_token(account.id, account.role)
        client.cookies.clear()
        client.cookies.set(COOKIE_NAME, token)
        return token

    return _login
