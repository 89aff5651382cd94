"""Authorization predicates for events, attendances and people.

Every predicate takes records that were loaded from the database for the
current request. Callers must never build these from session data or request
payloads: role and ``creator_id`` are authority, and authority is only ever
read from storage. :func:`reload_person` and :func:`reload_event` are the
helpers the service layer uses to get fresh copies before deciding.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from .errors import NotFound, Unauthenticated
from .models import ROLE_ADMIN, Attendance, Event, Person


def reload_person(session: Session, person_id: str | None) -> Person:
    """Return the stored Person for ``person_id``, refreshed from the database."""
    if not person_id:
        raise Unauthenticated()
    person = session.get(Person, person_id, populate_existing=True)
    if person is None:
        raise Unauthenticated("Your account no longer exists.")
    return person


def reload_event(session: Session, event_id: str) -> Event:
    event = session.get(Event, event_id, populate_existing=True)
    if event is None:
        raise NotFound("Event not found.")
    return event


def is_event_creator(actor: Person, event: Event) -> bool:
    return actor.id == event.creator_id


def can_edit_or_delete_event(actor: Person, event: Event) -> bool:
    return is_event_creator(actor, event)


def can_manage_guest(actor: Person, event: Event, attendance: Attendance) -> bool:
    """The creator may manage attendances, but only those of their own event."""
    return is_event_creator(actor, event) and attendance.event_id == event.id


def can_self_leave(actor: Person, attendance: Attendance) -> bool:
    return actor.id == attendance.person_id


def can_toggle_create_permission(admin: Person, target_person_id: str) -> bool:
    """Admins may flip anyone's flag except their own."""
    return admin.role == ROLE_ADMIN and admin.id != target_person_id


def can_rsvp(actor: Person, event: Event) -> bool:
    return actor.id != event.creator_id


def can_create_events(actor: Person) -> bool:
    return bool(actor.can_create_events)


def is_admin(actor: Person) -> bool:
    return actor.role == ROLE_ADMIN
