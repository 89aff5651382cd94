from __future__ import annotations

import types

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from vibber import database, storage
from vibber.models import Base


def _patch_db(monkeypatch: pytest.MonkeyPatch, engine: Engine, db_path) -> None:
    monkeypatch.setattr(storage, "engine", engine)
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(database, "DATABASE_URL", str(engine.url))
    fake_settings = types.SimpleNamespace(database_path=db_path)
    monkeypatch.setattr(storage, "settings", fake_settings)


def _get_version(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return conn.execute(text("select version_num from alembic_version")).scalar()


def test_upgrade_database_stamps_existing_db(monkeypatch, tmp_path):
    db_path = tmp_path / "existing.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(bind=engine)  # existing schema without Alembic tracking
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=False)

    assert "Stamped existing database to Alembic head" in actions
    assert _get_version(engine) == "0001_initial"


def test_upgrade_database_creates_fresh_schema(monkeypatch, tmp_path):
    db_path = tmp_path / "fresh.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=False)

    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert _get_version(engine) == "0001_initial"
    inspector = inspect(engine)
    for table in ("persons", "events", "attendances", "auth_sessions"):
        assert inspector.has_table(table)


def test_migrated_schema_enforces_one_attendance_per_person(monkeypatch, tmp_path):
    db_path = tmp_path / "unique.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)
    storage.upgrade_database(make_backup=False)

    with engine.begin() as conn:
        conn.execute(
            text(
                "insert into persons (id, email, name, password_hash, role,"
                " can_create_events, created_at) values"
                " ('p1', 'a@example.com', 'A', '', 'standard', 0, '2030-01-01')"
            )
        )
        conn.execute(
            text(
                "insert into events (id, creator_id, title, description, start_date,"
                " end_date, address, visibility, created_at, last_modified) values"
                " ('e1', 'p1', 'T', '', '2030-01-02', '2030-01-03', 'X', 'public',"
                " '2030-01-01', '2030-01-01')"
            )
        )
        conn.execute(
            text(
                "insert into attendances (id, person_id, event_id, created_at)"
                " values ('a1', 'p1', 'e1', '2030-01-01')"
            )
        )

    with pytest.raises(IntegrityError):
        with engine.begin() as conn:
            conn.execute(
                text(
                    "insert into attendances (id, person_id, event_id, created_at)"
                    " values ('a2', 'p1', 'e1', '2030-01-01')"
                )
            )


def test_upgrade_database_makes_backup(monkeypatch, tmp_path):
    db_path = tmp_path / "backup.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)
    storage.upgrade_database(make_backup=False)

    actions = storage.upgrade_database(make_backup=True)

    assert (tmp_path / "backup.sqlite.bak").exists()
    assert "Applied Alembic migrations to head" in actions


def test_upgrade_database_with_percent_in_path(monkeypatch, tmp_path):
    db_path = tmp_path / "100%done.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)

    assert storage._alembic_config().get_main_option("sqlalchemy.url") == str(engine.url)

    actions = storage.upgrade_database(make_backup=False)

    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert _get_version(engine) == "0001_initial"
