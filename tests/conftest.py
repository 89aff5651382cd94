"""Shared pytest fixtures for Vibber."""

from __future__ import annotations

import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from vibber import api, cleanup, database, storage
from vibber.crud import register_person, validate_event_fields, create_event
from vibber.models import Base
from vibber.utils import utcnow

PASSWORD = "correct horse battery"


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    cleanup.engine = engine
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield
    database.SessionLocal.remove()


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def make_person(session, *, email: str, name: str = "Someone", can_create=False):
    person = register_person(
        session,
        email=email,
        name=name,
        password=PASSWORD,
        can_create=can_create,
    )
    session.commit()
    return person


def make_event(session, creator, *, starts_in=timedelta(days=2), title="Picnic"):
    start = utcnow().replace(microsecond=0) + starts_in
    fields = validate_event_fields(
        title=title,
        description="Bring a blanket",
        start_date=start,
        end_date=start + timedelta(hours=3),
        address="1 Park Lane",
        visibility="public",
    )
    event = create_event(session, creator.id, fields)
    session.commit()
    return event


@pytest.fixture()
def creator(session):
    return make_person(session, email="creator@example.com", name="Cora", can_create=True)


@pytest.fixture()
def attendee(session):
    return make_person(session, email="alex@example.com", name="Alex")


@pytest.fixture()
def event(session, creator):
    return make_event(session, creator)
