"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of waitlist.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, event  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from waitlist.database.models import Account, Base  # noqa: E402
from waitlist.database.seed import seed_default_settings  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all waitlist tables and default settings.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in the API ban gate).  The
    driver's implicit transaction handling is turned off so SAVEPOINTs
    nest the way they do on PostgreSQL.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_autobegin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    seed_default_settings(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


def make_account(
    engine: Engine,
    email: str = "user@example.com",
    name: str = "Test User",
    **fields,
) -> int:
    """Insert an account directly and return its id."""
    with Session(engine) as session:
        account = Account(email=email, name=name, **fields)
        session.add(account)
        session.commit()
        return account.id


def make_token(sub: int | str, *, is_admin: bool = False) -> str:
    """Create a JWT for *sub*.  Usable from any test module."""
    import jwt

    from waitlist.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": str(sub), "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_token(99999, is_admin=True)


@pytest.fixture
def client(db_engine):
    """FastAPI TestClient wired to the in-memory engine."""
    from fastapi.testclient import TestClient

    from waitlist.api.deps import get_config, get_engine
    from waitlist.api.main import app
    from waitlist.config import WaitlistConfig

    cfg = WaitlistConfig(
        service_name="waitlist-test",
        frontend_url="https://waitlist.example.com",
        api_port=8000,
    )
    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: cfg
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
