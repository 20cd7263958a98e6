"""Shared pytest fixtures for GuestPass."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("GUESTPASS_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("GUESTPASS_JWT_SECRET", "test-secret")
os.environ.setdefault("GUESTPASS_BASE_URL", "https://wedding.example.com")
os.environ.setdefault("GUESTPASS_ENABLE_SCHEDULER", "false")

from guestpass import api, database, storage
from guestpass.models import Base
from guestpass.ratelimit import limiter


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = database.build_engine("sqlite+pysqlite:///:memory:")
    session_factory = database.build_session_factory(engine)
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    storage.get_session = database.get_session
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables and rate-limit counters between tests."""

    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    limiter.reset()
    yield
    database.SessionLocal.remove()


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()
