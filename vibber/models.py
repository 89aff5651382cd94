"""SQLAlchemy models for Vibber."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

ROLE_STANDARD = "standard"
ROLE_ADMIN = "admin"
ROLES = {ROLE_STANDARD, ROLE_ADMIN}

VISIBILITY_PUBLIC = "public"
VISIBILITY_PRIVATE = "private"
VISIBILITIES = {VISIBILITY_PUBLIC, VISIBILITY_PRIVATE}


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Person(Base):
    __tablename__ = "persons"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(50), nullable=False)
    # Guests carry an empty hash and can never log in.
    password_hash = Column(String(255), nullable=False, default="")
    role = Column(String(16), nullable=False, default=ROLE_STANDARD)
    can_create_events = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    events = relationship("Event", back_populates="creator")
    attendances = relationship(
        "Attendance",
        back_populates="person",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    sessions = relationship(
        "AuthSession",
        back_populates="person",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_guest(self) -> bool:
        return self.password_hash == ""

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    creator_id = Column(String(36), ForeignKey("persons.id"), nullable=False)
    title = Column(String(80), nullable=False)
    description = Column(Text, nullable=False, default="")
    image_url = Column(String(500), nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    address = Column(String(200), nullable=False)
    location = Column(String(120), nullable=True)
    location_link = Column(String(500), nullable=True)
    ticket_link = Column(String(500), nullable=True)
    category = Column(String(64), nullable=True)
    visibility = Column(String(16), nullable=False, default=VISIBILITY_PUBLIC)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    creator = relationship("Person", back_populates="events")
    attendances = relationship(
        "Attendance",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Attendance.created_at",
    )


class Attendance(Base):
    __tablename__ = "attendances"
    __table_args__ = (
        UniqueConstraint("person_id", "event_id", name="uq_attendance_person_event"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    person_id = Column(
        String(36), ForeignKey("persons.id", ondelete="CASCADE"), nullable=False
    )
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    created_at = Column(DateTime, default=_now, nullable=False)

    person = relationship("Person", back_populates="attendances")
    event = relationship("Event", back_populates="attendances")


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    token = Column(String(128), primary_key=True)
    person_id = Column(
        String(36), ForeignKey("persons.id", ondelete="CASCADE"), nullable=False
    )
    created_at = Column(DateTime, default=_now, nullable=False)

    person = relationship("Person", back_populates="sessions")
