"""Shared test fixtures."""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import doorlink.access.models  # noqa: F401
import doorlink.database as db_module
from doorlink.access.ledger import record_claim
from doorlink.access.models import Device, User
from doorlink.auth import register_user
from doorlink.config import settings
from doorlink.database import get_session
from doorlink.main import app

DEVICE_ID = "AA:BB:CC:DD:EE:01"
MASTER_PASSWORD = "secret1"


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    """Cheapest bcrypt cost so hashing doesn't dominate the suite."""
    monkeypatch.setattr(settings, "bcrypt_rounds", 4)


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created.

    StaticPool ensures every session uses the same connection,
    so the in-memory database is shared across the test.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    with Session(engine) as s:
        yield s


@pytest.fixture
def alice(session) -> User:
    return register_user(session, "alice", "alice-pass")


@pytest.fixture
def bob(session) -> User:
    return register_user(session, "bob", "bob-pass")


@pytest.fixture
def carol(session) -> User:
    return register_user(session, "carol", "carol-pass")


@pytest.fixture
def device(session, alice) -> Device:
    """A device claimed by alice."""
    dev, _grant = record_claim(session, alice, DEVICE_ID, MASTER_PASSWORD)
    return dev


@pytest.fixture
def client(engine) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with overridden DB engine and session."""
    # Patch the module-level engine so lifespan's init_db(), the sweeper
    # and the device socket all use the test engine.
    original_engine = db_module.engine
    db_module.engine = engine

    def _override_session() -> Generator[Session, None, None]:
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _override_session
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    db_module.engine = original_engine
