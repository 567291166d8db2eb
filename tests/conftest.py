"""
tests/conftest.py -- Shared fixtures for authcore unit and integration tests.

This module provides:
  - unit fixtures: hasher, codec, token_store, sessions, link services, the
    default stores and a fully wired orchestrator, all on plain ':memory:'
    SQLite (one engine per store; every call in a unit test runs on one thread)
  - RecordingMailer: in-memory email dispatcher that captures raw tokens and
    can be switched to fail
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for api_client because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

SECRET_KEY must be in the environment before any api/ import, because
api.main validates settings at import time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import timedelta

# CRITICAL: set before any api/core import -- get_settings() refuses to start without it.
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789abcdef")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, close_services, wire_services
from auth.errors import EmailDeliveryError
from auth.hashing import PasswordHasher
from auth.links import MAGIC_LINK_TTL, PASSWORD_RESET_TTL, LinkTokenService
from auth.models import LinkTokenKind, RequestContext
from auth.orchestrator import AuthOrchestrator
from auth.sessions import SessionRotationEngine
from auth.store import AuditStore, ConsentStore, UserStore
from auth.token_store import SecretTokenStore
from auth.tokens import TokenCodec
from core.config import Settings

TEST_SECRET = os.environ["SECRET_KEY"]
FP_A = "a" * 64
FP_B = "b" * 64
FP_C = "c" * 64

# Rate limits are exercised in their own module; everywhere else they would
# make module-scoped clients flaky.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingMailer:
    """EmailDispatcher that keeps every sent token in memory.

    Set fail = True to make the next sends raise EmailDeliveryError.
    """

    def __init__(self) -> None:
        self.magic_links: list[tuple[str, str]] = []
        self.password_resets: list[tuple[str, str]] = []
        self.fail = False

    def send_magic_link(self, email: str, token: str) -> None:
        if self.fail:
            raise EmailDeliveryError("smtp down")
        self.magic_links.append((email, token))

    def send_password_reset(self, email: str, token: str) -> None:
        if self.fail:
            raise EmailDeliveryError("smtp down")
        self.password_resets.append((email, token))

    def last_magic_link(self) -> str:
        return self.magic_links[-1][1]

    def last_password_reset(self) -> str:
        return self.password_resets[-1][1]


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    """Low-cost hasher; rounds=4 keeps the suite fast without changing behaviour."""
    return PasswordHasher(rounds=4)


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(TEST_SECRET)


@pytest.fixture
def token_store() -> Generator[SecretTokenStore, None, None]:
    store = SecretTokenStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def consent_store() -> Generator[ConsentStore, None, None]:
    store = ConsentStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def audit_store() -> Generator[AuditStore, None, None]:
    store = AuditStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def sessions(token_store: SecretTokenStore, codec: TokenCodec) -> SessionRotationEngine:
    return SessionRotationEngine(token_store, codec)


@pytest.fixture
def magic_links(token_store: SecretTokenStore) -> LinkTokenService:
    return LinkTokenService(token_store, LinkTokenKind.MAGIC_LINK, MAGIC_LINK_TTL)


@pytest.fixture
def password_resets(token_store: SecretTokenStore) -> LinkTokenService:
    return LinkTokenService(token_store, LinkTokenKind.PASSWORD_RESET, PASSWORD_RESET_TTL)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(ip_address="203.0.113.7", user_agent="pytest")


@pytest.fixture
def orchestrator(
    user_store: UserStore,
    consent_store: ConsentStore,
    audit_store: AuditStore,
    mailer: RecordingMailer,
    hasher: PasswordHasher,
    sessions: SessionRotationEngine,
    magic_links: LinkTokenService,
    password_resets: LinkTokenService,
) -> AuthOrchestrator:
    return AuthOrchestrator(
        users=user_store,
        consents=consent_store,
        audit=audit_store,
        mailer=mailer,
        hasher=hasher,
        sessions=sessions,
        magic_links=magic_links,
        password_resets=password_resets,
    )


# ---------------------------------------------------------------------------
# Integration fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, mailer: RecordingMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires services built from test settings (isolated shared-memory DB,
    bcrypt rounds 4) and the recording mailer into app.state.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, settings, mailer=mailer)
        yield
        close_services(app)

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, RecordingMailer], None, None]:
    """Yield (client, mailer) for API integration tests.

    One isolated database per test module. Tests inside a module share it,
    so each test registers its own email address (see unique_email()).
    """
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    settings = Settings(database_url=db_url, bcrypt_rounds=4, secret_key=TEST_SECRET)
    mailer = RecordingMailer()
    app.router.lifespan_context = _patch_lifespan(settings, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, mailer


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


@pytest.fixture
def short_ttl() -> timedelta:
    """A TTL that is already in the past, for expiry tests."""
    return timedelta(seconds=-1)
