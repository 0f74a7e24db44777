"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of auditorium.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from auditorium.config import AuditoriumConfig  # noqa: E402
from auditorium.database.models import Base  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Auditorium tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used by ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Realtime plumbing
# ---------------------------------------------------------------------------
@pytest.fixture
def test_config() -> AuditoriumConfig:
    return AuditoriumConfig(app_name="Auditorium Test", api_port=8000)


@pytest.fixture
def hub():
    from auditorium.realtime.hub import BroadcastHub

    return BroadcastHub()


@pytest.fixture
def presence():
    from auditorium.realtime.presence import PresenceTracker

    return PresenceTracker()


@pytest.fixture
def weights(db_engine):
    from auditorium.engine.weights import WeightCache

    cache = WeightCache(db_engine)
    cache.load_all()
    return cache


@pytest.fixture
def feed(hub, weights):
    from auditorium.realtime.feed import HubFeed

    f = HubFeed(hub)
    f.on_invalidate(weights.handle_notify)
    return f


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------
COMPANY_ID = "company-1"


@pytest.fixture
def webinar_id(db_engine) -> str:
    """A live webinar with every feature on."""
    from auditorium.services.webinar_service import create_webinar

    return create_webinar(db_engine, company_id=COMPANY_ID, title="Launch Day", replay_enabled=True)


@pytest.fixture
def make_registration(db_engine, webinar_id):
    """Factory: register an attendee for the seeded webinar."""
    from auditorium.services.webinar_service import create_registration

    counter = {"n": 0}

    def _make(name: str | None = None, webinar: str | None = None) -> str:
        counter["n"] += 1
        label = name or f"Attendee {counter['n']}"
        return create_registration(
            db_engine,
            webinar_id=webinar or webinar_id,
            email=f"attendee{counter['n']}@example.com",
            name=label,
        )

    return _make


@pytest.fixture
def registration_id(make_registration) -> str:
    return make_registration("Ada")


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
def make_attendee_token(webinar_id: str, registration_id: str, name: str = "Ada") -> str:
    """Create an attendee JWT.  Usable as both a fixture and a factory function."""
    from auditorium.api.auth import issue_token

    return issue_token(
        f"user-{registration_id}",
        role="attendee",
        name=name,
        webinar_id=webinar_id,
        registration_id=registration_id,
    )


def make_host_token(company_id: str = COMPANY_ID, sub: str = "host-1") -> str:
    from auditorium.api.auth import issue_token

    return issue_token(sub, role="host", name="Host", company_id=company_id)


@pytest.fixture
def attendee_token(webinar_id, registration_id) -> str:
    return make_attendee_token(webinar_id, registration_id)


@pytest.fixture
def host_token() -> str:
    return make_host_token()


@pytest.fixture
def runtime(db_engine, test_config, hub, presence, weights, feed):
    from auditorium.api.deps import Runtime
    from auditorium.realtime.gateway import PresenceReaper

    return Runtime(
        engine=db_engine,
        config=test_config,
        hub=hub,
        presence=presence,
        weights=weights,
        feed=feed,
        reaper=PresenceReaper(hub, presence, timeout=test_config.presence_timeout_seconds),
    )


@pytest.fixture
def client(runtime):
    """FastAPI TestClient bound to the in-memory runtime."""
    from fastapi.testclient import TestClient

    from auditorium.api.deps import get_runtime
    from auditorium.api.main import app

    app.dependency_overrides[get_runtime] = lambda: runtime
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
