"""
tests/conftest.py -- Shared test fixtures for shopfront.

This module provides:
  - RecordingMailer / FakeClock: collaborators the auth flow is tested against
  - profiles, credentials, provider: unit-level fixtures on in-memory SQLite
  - _make_harness(): isolated stores + provider wired into app.state
  - api: module-scoped TestClient harness with an admin and a user signed in

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
HTTP harness because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format shares one in-memory instance across
all connections in the same process.

Environment variables must be set before any api/ or core/ import so the
cached Settings see test values (fast bcrypt, deterministic secrets, no SES).
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

# CRITICAL: set before any core/auth/api import -- get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-0123456789abcdef0123")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef012")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("EMAIL_DEVELOPMENT_MODE", "true")
os.environ.setdefault("IDENTITY_BACKEND", "local")
os.environ.setdefault("DATABASE_URL", "sqlite:///file:test_default?mode=memory&cache=shared&uri=true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_identity_provider
from auth.models import ROLE_ADMIN, ROLE_USER, Identity
from auth.providers import LocalIdentityProvider
from auth.store import ProfileStore
from auth.tokens import CredentialService
from catalog.store import CatalogStore
from core.clock import utc_now
from core.config import get_settings

ACCESS_SECRET = "unit-access-secret-0123456789abcdef0123456"
REFRESH_SECRET = "unit-refresh-secret-0123456789abcdef012345"
PASSWORD = "secret123"


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@dataclass
class RecordingMailer:
    """Mailer that records every send instead of delivering it.

    deliver=False makes every send report failure; explode=True makes every
    send raise, which is how an SES outage looks to the caller.
    """

    deliver: bool = True
    explode: bool = False
    sent: list[tuple[str, str, Optional[str]]] = field(default_factory=list)

    def _record(self, kind: str, email: str, payload: Optional[str]) -> bool:
        if self.explode:
            raise RuntimeError("mail transport down")
        self.sent.append((kind, email, payload))
        return self.deliver

    def send_verification_email(self, email: str, token: str) -> bool:
        return self._record("verification", email, token)

    def send_password_reset_email(self, email: str, token: str) -> bool:
        return self._record("reset", email, token)

    def send_welcome_email(self, email: str, name: Optional[str]) -> bool:
        return self._record("welcome", email, name)

    def last(self, kind: str) -> tuple[str, str, Optional[str]]:
        matching = [s for s in self.sent if s[0] == kind]
        assert matching, f"no {kind} email was sent"
        return matching[-1]


class FakeClock:
    """Clock whose time only moves when a test says so."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        # Whole seconds, matching the resolution of JWT exp claims.
        self.now = (start or utc_now()).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def profiles() -> Generator[ProfileStore, None, None]:
    store = ProfileStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def catalog() -> Generator[CatalogStore, None, None]:
    store = CatalogStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def credentials(clock: FakeClock) -> CredentialService:
    return CredentialService(ACCESS_SECRET, REFRESH_SECRET, bcrypt_rounds=4, clock=clock)


@pytest.fixture
def provider(profiles, credentials, mailer, clock) -> LocalIdentityProvider:
    return LocalIdentityProvider(profiles, credentials, mailer, clock=clock)


# ---------------------------------------------------------------------------
# HTTP harness
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    profiles: ProfileStore
    catalog: CatalogStore
    mailer: RecordingMailer
    admin: Identity
    user: Identity
    admin_token: str
    user_token: str
    password: str = PASSWORD

    def auth(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    @property
    def admin_headers(self) -> dict[str, str]:
        return self.auth(self.admin_token)

    @property
    def user_headers(self) -> dict[str, str]:
        return self.auth(self.user_token)


def _patch_lifespan(profiles: ProfileStore, catalog: CatalogStore, mailer: RecordingMailer, provider):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs and the recording mailer rather than SES.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.profiles = profiles
        app.state.catalog = catalog
        app.state.mailer = mailer
        app.state.identity_provider = provider
        yield

    return test_lifespan


def _make_harness(db_suffix: str) -> tuple[Harness, ProfileStore, CatalogStore]:
    url = f"sqlite:///file:test_{db_suffix}?mode=memory&cache=shared&uri=true"
    profiles = ProfileStore(url)
    catalog = CatalogStore(url)
    mailer = RecordingMailer()
    provider = build_identity_provider(get_settings(), profiles, mailer)
    credentials: CredentialService = provider.credentials

    admin = profiles.create(
        Identity(
            email=f"admin-{db_suffix}@example.com",
            full_name="Test Admin",
            role=ROLE_ADMIN,
            hashed_password=credentials.hash_password(PASSWORD),
            email_verified=True,
        )
    )
    user = profiles.create(
        Identity(
            email=f"user-{db_suffix}@example.com",
            full_name="Test User",
            role=ROLE_USER,
            hashed_password=credentials.hash_password(PASSWORD),
            email_verified=True,
        )
    )

    app.router.lifespan_context = _patch_lifespan(profiles, catalog, mailer, provider)
    client = TestClient(app, raise_server_exceptions=True)
    harness = Harness(
        client=client,
        profiles=profiles,
        catalog=catalog,
        mailer=mailer,
        admin=admin,
        user=user,
        admin_token=credentials.issue_pair(admin).access_token,
        user_token=credentials.issue_pair(user).access_token,
    )
    return harness, profiles, catalog


@pytest.fixture(scope="module")
def api(request) -> Generator[Harness, None, None]:
    """Yield a Harness for HTTP integration tests.

    One isolated database per test module, named after the module so
    parallel modules never share state.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    harness, profiles, catalog = _make_harness(suffix)
    with harness.client:
        yield harness
    catalog.close()
    profiles.close()
