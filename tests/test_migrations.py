from __future__ import annotations

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from guestpass import database, storage
from guestpass.models import Base


def _patch_db(monkeypatch: pytest.MonkeyPatch, engine: Engine) -> None:
    monkeypatch.setattr(storage, "engine", engine)
    monkeypatch.setattr(database, "engine", engine)


def _get_version(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return conn.execute(text("select version_num from alembic_version")).scalar()


def test_upgrade_database_stamps_existing_db(monkeypatch, tmp_path):
    db_path = tmp_path / "existing.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(bind=engine)  # existing schema without Alembic tracking
    _patch_db(monkeypatch, engine)

    actions = storage.upgrade_database(make_backup=False)

    assert "Stamped existing database to Alembic head" in actions
    assert _get_version(engine) == "0001_initial"


def test_upgrade_database_creates_fresh_schema(monkeypatch, tmp_path):
    db_path = tmp_path / "fresh.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine)

    actions = storage.upgrade_database(make_backup=False)

    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert _get_version(engine) == "0001_initial"
    inspector = inspect(engine)
    assert inspector.has_table("admins")
    assert inspector.has_table("events")
    assert inspector.has_table("guests")
    columns = {col["name"] for col in inspector.get_columns("guests")}
    assert {"allowed_devices", "token_expires_after_first_use", "rsvp_status"} <= columns


def test_upgrade_database_backs_up_sqlite_file(monkeypatch, tmp_path):
    db_path = tmp_path / "backup.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine)
    storage.upgrade_database(make_backup=False)

    actions = storage.upgrade_database(make_backup=True)

    assert actions[0] == f"Backup created at {db_path}.bak"
    assert (tmp_path / "backup.sqlite.bak").exists()
    assert "Applied Alembic migrations to head" in actions


def test_build_engine_pools_by_backend(tmp_path):
    memory = database.build_engine("sqlite+pysqlite:///:memory:")
    assert isinstance(memory.pool, StaticPool)
    on_disk = database.build_engine(f"sqlite:///{tmp_path / 'file.sqlite'}")
    assert not isinstance(on_disk.pool, StaticPool)
