"""Attendance state machine.

For any (person, event) pair there are two states: no attendance row
(not attending) and exactly one row (attending). ``join`` moves a pair into
the attending state, the ``leave`` family moves it back. Uniqueness is owned
by the ``uq_attendance_person_event`` constraint; the store never checks for
an existing row before inserting, it lets the insert fail and reports
:class:`~vibber.errors.Conflict`.

Nothing here retries. A failure is final for the call and the caller decides
what to do about transient storage errors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import settings
from .errors import (
    Conflict,
    EventEnded,
    Forbidden,
    NotFound,
    Unauthenticated,
    ValidationFailed,
)
from .lifecycle import is_upcoming
from .models import Attendance, Person
from .permissions import (
    can_manage_guest,
    can_rsvp,
    can_self_leave,
    is_event_creator,
    reload_event,
    reload_person,
)
from .utils import clean_name

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class JoinResult:
    attendance: Attendance
    person_name: str


def join(
    session: Session,
    actor_id: str,
    event_id: str,
    *,
    now: datetime | None = None,
) -> JoinResult:
    """Record that ``actor_id`` attends ``event_id``."""
    event = reload_event(session, event_id)
    actor = reload_person(session, actor_id)
    if not can_rsvp(actor, event):
        raise Forbidden("You cannot RSVP to your own event.")
    if not is_upcoming(event, now):
        raise EventEnded()

    attendance = Attendance(person_id=actor.id, event_id=event.id)
    try:
        with session.begin_nested():
            session.add(attendance)
    except IntegrityError as exc:
        raise Conflict("You are already attending this event.") from exc

    logger.info(
        "Person %s joined event %s (attendance %s)", actor.id, event.id, attendance.id
    )
    return JoinResult(attendance=attendance, person_name=actor.name)


def _attendance_for(
    session: Session, person_id: str, event_id: str
) -> Attendance | None:
    stmt = select(Attendance).where(
        Attendance.person_id == person_id, Attendance.event_id == event_id
    )
    return session.scalars(stmt).first()


def _delete(session: Session, attendance: Attendance) -> None:
    session.delete(attendance)
    session.flush()


def leave_self(session: Session, actor_id: str, event_id: str) -> Attendance:
    """Remove the caller's own attendance. Allowed at any time."""
    actor = reload_person(session, actor_id)
    attendance = _attendance_for(session, actor.id, event_id)
    if attendance is None:
        raise NotFound("You are not attending this event.")
    _delete(session, attendance)
    logger.info("Person %s left event %s", actor.id, event_id)
    return attendance


def withdraw(session: Session, event_id: str, attendance_id: str) -> Attendance:
    """Remove an attendance by the id an anonymous attendee kept from ``join``."""
    attendance = session.get(Attendance, attendance_id)
    if attendance is None or attendance.event_id != event_id:
        raise NotFound("RSVP not found.")
    _delete(session, attendance)
    logger.info("Attendance %s withdrawn from event %s", attendance_id, event_id)
    return attendance


def remove_guest(
    session: Session, actor_id: str, event_id: str, attendance_id: str
) -> Attendance:
    """Let the event creator remove someone from the guest list."""
    actor = reload_person(session, actor_id)
    event = reload_event(session, event_id)
    if not is_event_creator(actor, event):
        raise Forbidden("Only the event creator can remove guests.")
    attendance = session.get(Attendance, attendance_id)
    if attendance is None or not can_manage_guest(actor, event, attendance):
        raise NotFound("RSVP not found.")
    _delete(session, attendance)
    logger.info(
        "Creator %s removed attendance %s from event %s",
        actor.id,
        attendance_id,
        event.id,
    )
    return attendance


def leave(
    session: Session,
    event_id: str,
    *,
    actor_id: str | None = None,
    attendance_id: str | None = None,
) -> Attendance:
    """Dispatch a leave request to the right removal path.

    - actor only: self-leave by (actor, event).
    - attendance id only: anonymous withdraw.
    - both: self-leave when the attendance is the actor's own, otherwise
      creator removal.
    """
    if attendance_id is None:
        if actor_id is None:
            raise Unauthenticated()
        return leave_self(session, actor_id, event_id)
    if actor_id is None:
        return withdraw(session, event_id, attendance_id)

    actor = reload_person(session, actor_id)
    attendance = session.get(Attendance, attendance_id)
    if attendance is not None and can_self_leave(actor, attendance):
        if attendance.event_id != event_id:
            raise NotFound("You are not attending this event.")
        _delete(session, attendance)
        logger.info("Person %s left event %s", actor.id, event_id)
        return attendance
    return remove_guest(session, actor.id, event_id, attendance_id)


def rename_guest(
    session: Session,
    actor_id: str,
    event_id: str,
    target_person_id: str,
    new_name: str | None,
) -> Person:
    """Change an attendee's display name on behalf of the event creator.

    The name belongs to the Person, so the change shows everywhere that
    identity appears, not only on this event.
    """
    name = clean_name(new_name, max_length=settings.name_max_length)
    if not name:
        raise ValidationFailed("Name is required.")
    actor = reload_person(session, actor_id)
    event = reload_event(session, event_id)
    if not is_event_creator(actor, event):
        raise Forbidden("Only the event creator can edit guest names.")
    attendance = _attendance_for(session, target_person_id, event.id)
    if attendance is None:
        raise NotFound("That person is not on this event's guest list.")
    target = attendance.person
    target.name = name
    session.add(target)
    session.flush()
    logger.info(
        "Creator %s renamed person %s on event %s", actor.id, target.id, event.id
    )
    return target


def attendee_count(session: Session, event_id: str) -> int:
    stmt = (
        select(func.count())
        .select_from(Attendance)
        .where(Attendance.event_id == event_id)
    )
    return session.scalar(stmt) or 0
