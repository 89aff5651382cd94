"""CRUD helpers for people and events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from .config import settings
from .errors import Conflict, Forbidden, NotFound, ValidationFailed
from .guests import is_synthetic_guest_email
from .models import (
    ROLE_ADMIN,
    ROLE_STANDARD,
    VISIBILITIES,
    VISIBILITY_PUBLIC,
    Attendance,
    Event,
    Person,
)
from .permissions import (
    can_create_events,
    can_edit_or_delete_event,
    can_toggle_create_permission,
    is_admin,
    reload_event,
    reload_person,
)
from .security import hash_password, verify_password
from .utils import clean_name, is_http_url, to_naive_utc, utcnow

logger = logging.getLogger("uvicorn.error")

TITLE_MAX_LENGTH = 80
DESCRIPTION_MAX_LENGTH = 800
ADDRESS_MAX_LENGTH = 200
PASSWORD_MIN_LENGTH = 8


def _now() -> datetime:
    return utcnow()


def _normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


def get_person_by_email(session: Session, email: str) -> Person | None:
    normalized = _normalize_email(email)
    if not normalized:
        return None
    stmt = select(Person).where(Person.email == normalized)
    return session.scalars(stmt).first()


def register_person(
    session: Session,
    *,
    email: str,
    name: str,
    password: str,
    role: str = ROLE_STANDARD,
    can_create: bool = False,
) -> Person:
    """Create a registered Person with a hashed password."""
    normalized_email = _normalize_email(email)
    if "@" not in normalized_email:
        raise ValidationFailed("A valid email is required.")
    if is_synthetic_guest_email(normalized_email):
        raise ValidationFailed("That email domain is reserved for guests.")
    display_name = clean_name(name, max_length=settings.name_max_length)
    if not display_name:
        raise ValidationFailed("Name is required.")
    if len(password or "") < PASSWORD_MIN_LENGTH:
        raise ValidationFailed(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters."
        )
    person = Person(
        email=normalized_email,
        name=display_name,
        password_hash=hash_password(password),
        role=role,
        can_create_events=can_create,
        created_at=_now(),
    )
    try:
        with session.begin_nested():
            session.add(person)
    except IntegrityError as exc:
        raise Conflict("An account with that email already exists.") from exc
    logger.info("Registered person %s", person.id)
    return person


def authenticate(session: Session, *, email: str, password: str) -> Person | None:
    person = get_person_by_email(session, email)
    if person is None or not verify_password(person, password):
        return None
    return person


def set_create_permission(
    session: Session, actor_id: str, target_person_id: str, value: object
) -> Person:
    """Flip a Person's ``can_create_events`` flag on behalf of an admin."""
    admin = reload_person(session, actor_id)
    if not is_admin(admin):
        raise Forbidden("Only admins can change permissions.")
    if not can_toggle_create_permission(admin, target_person_id):
        raise Forbidden("You cannot modify your own permissions.")
    if not isinstance(value, bool):
        raise ValidationFailed("canCreateEvents must be a boolean.")
    target = session.get(Person, target_person_id)
    if target is None:
        raise NotFound("User not found.")
    target.can_create_events = value
    session.add(target)
    session.flush()
    logger.info(
        "Admin %s set can_create_events=%s for person %s", admin.id, value, target.id
    )
    return target


@dataclass(frozen=True)
class PersonSummary:
    person: Person
    event_count: int


def list_people(session: Session, actor_id: str) -> list[PersonSummary]:
    """Admin listing of every Person with the number of events they created."""
    admin = reload_person(session, actor_id)
    if not is_admin(admin):
        raise Forbidden("Only admins can list users.")
    counts = dict(
        session.execute(
            select(Event.creator_id, func.count()).group_by(Event.creator_id)
        ).all()
    )
    people = session.scalars(select(Person).order_by(Person.created_at.desc())).all()
    return [PersonSummary(person, counts.get(person.id, 0)) for person in people]


@dataclass
class EventFields:
    """Validated, normalized event fields shared by create and update."""

    title: str
    description: str
    start_date: datetime
    end_date: datetime
    address: str
    visibility: str = VISIBILITY_PUBLIC
    image_url: str | None = None
    location: str | None = None
    location_link: str | None = None
    ticket_link: str | None = None
    category: str | None = None


def _optional(value: str | None) -> str | None:
    cleaned = (value or "").strip()
    return cleaned or None


def validate_event_fields(
    *,
    title: str | None,
    description: str | None,
    start_date: datetime | None,
    end_date: datetime | None,
    address: str | None,
    visibility: str | None,
    image_url: str | None = None,
    location: str | None = None,
    location_link: str | None = None,
    ticket_link: str | None = None,
    category: str | None = None,
) -> EventFields:
    cleaned_title = (title or "").strip()
    cleaned_description = (description or "").strip()
    cleaned_address = (address or "").strip()
    cleaned_visibility = (visibility or "").strip().lower()
    if not (cleaned_title and cleaned_address and start_date and end_date):
        raise ValidationFailed("All required fields must be filled in.")
    if cleaned_visibility not in VISIBILITIES:
        raise ValidationFailed("Invalid visibility setting.")
    if len(cleaned_title) > TITLE_MAX_LENGTH:
        raise ValidationFailed(f"Title must be {TITLE_MAX_LENGTH} characters or fewer.")
    if len(cleaned_description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationFailed(
            f"Description must be {DESCRIPTION_MAX_LENGTH} characters or fewer."
        )
    if len(cleaned_address) > ADDRESS_MAX_LENGTH:
        raise ValidationFailed(
            f"Address must be {ADDRESS_MAX_LENGTH} characters or fewer."
        )
    for label, url in (("location link", location_link), ("ticket link", ticket_link)):
        if _optional(url) and not is_http_url(url):
            raise ValidationFailed(f"Invalid URL for the {label}.")
    start = to_naive_utc(start_date)
    end = to_naive_utc(end_date)
    if start >= end:
        raise ValidationFailed("The end time must be after the start time.")
    return EventFields(
        title=cleaned_title,
        description=cleaned_description,
        start_date=start,
        end_date=end,
        address=cleaned_address,
        visibility=cleaned_visibility,
        image_url=_optional(image_url),
        location=_optional(location),
        location_link=_optional(location_link),
        ticket_link=_optional(ticket_link),
        category=_optional(category),
    )


def create_event(session: Session, actor_id: str, fields: EventFields) -> Event:
    """Create and persist a new event owned by ``actor_id``."""
    actor = reload_person(session, actor_id)
    if not can_create_events(actor):
        raise Forbidden("You do not have permission to create events.")
    event = Event(
        creator_id=actor.id,
        title=fields.title,
        description=fields.description,
        image_url=fields.image_url,
        start_date=fields.start_date,
        end_date=fields.end_date,
        address=fields.address,
        location=fields.location,
        location_link=fields.location_link,
        ticket_link=fields.ticket_link,
        category=fields.category,
        visibility=fields.visibility,
        created_at=_now(),
        last_modified=_now(),
    )
    session.add(event)
    session.flush()
    logger.info("Person %s created event %s", actor.id, event.id)
    return event


def update_event(
    session: Session, actor_id: str, event_id: str, fields: EventFields
) -> Event:
    """Overwrite an event's editable fields. ``creator_id`` is never touched."""
    actor = reload_person(session, actor_id)
    event = reload_event(session, event_id)
    if not can_edit_or_delete_event(actor, event):
        raise Forbidden("You can only edit your own events.")
    event.title = fields.title
    event.description = fields.description
    if fields.image_url:
        event.image_url = fields.image_url
    event.start_date = fields.start_date
    event.end_date = fields.end_date
    event.address = fields.address
    event.location = fields.location
    event.location_link = fields.location_link
    event.ticket_link = fields.ticket_link
    event.category = fields.category
    event.visibility = fields.visibility
    event.last_modified = _now()
    session.add(event)
    session.flush()
    logger.info("Person %s updated event %s", actor.id, event.id)
    return event


def delete_event(session: Session, actor_id: str, event_id: str) -> int:
    """Delete an event and every attendance on it; return how many were removed."""
    actor = reload_person(session, actor_id)
    event = reload_event(session, event_id)
    if not can_edit_or_delete_event(actor, event):
        raise Forbidden("You can only delete your own events.")
    removed = len(event.attendances)
    session.delete(event)
    session.flush()
    logger.info(
        "Person %s deleted event %s with %d attendances", actor.id, event_id, removed
    )
    return removed


def get_event_detail(session: Session, event_id: str) -> Event:
    stmt = (
        select(Event)
        .where(Event.id == event_id)
        .options(
            selectinload(Event.creator),
            selectinload(Event.attendances).selectinload(Attendance.person),
        )
    )
    event = session.scalars(stmt).first()
    if event is None:
        raise NotFound("Event not found.")
    return event


def list_public_events(session: Session) -> Sequence[Event]:
    stmt = (
        select(Event)
        .where(Event.visibility == VISIBILITY_PUBLIC)
        .options(selectinload(Event.creator), selectinload(Event.attendances))
        .order_by(Event.start_date.asc())
    )
    return session.scalars(stmt).all()


def list_my_events(session: Session, actor_id: str) -> dict[str, Sequence[Event]]:
    """Return the events a Person created and the ones they attend."""
    actor = reload_person(session, actor_id)
    created = session.scalars(
        select(Event)
        .where(Event.creator_id == actor.id)
        .options(selectinload(Event.attendances))
        .order_by(Event.start_date.desc())
    ).all()
    attending = session.scalars(
        select(Event)
        .join(Attendance, Attendance.event_id == Event.id)
        .where(Attendance.person_id == actor.id)
        .options(selectinload(Event.creator), selectinload(Event.attendances))
        .order_by(Event.start_date.asc())
    ).all()
    return {"created": created, "attending": attending}


def promote_to_admin(session: Session, person: Person) -> Person:
    person.role = ROLE_ADMIN
    person.can_create_events = True
    session.add(person)
    session.flush()
    return person
