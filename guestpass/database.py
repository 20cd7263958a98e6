"""Engine and session factory for the guest store."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings


def build_engine(url: str) -> Engine:
    """Create the engine; in-memory SQLite shares one connection across threads."""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, future=True)
    options: dict = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url:
        options["poolclass"] = StaticPool
    return create_engine(url, future=True, **options)


def build_session_factory(bind: Engine) -> scoped_session[Session]:
    return scoped_session(
        sessionmaker(bind=bind, autoflush=False, future=True, expire_on_commit=False)
    )


engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)


@contextmanager
def get_session() -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
