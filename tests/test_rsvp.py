from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from conftest import PASSWORD, make_event, make_person
from vibber import rsvp
from vibber.crud import create_event, delete_event, register_person, validate_event_fields
from vibber.errors import (
    Conflict,
    EventEnded,
    Forbidden,
    NotFound,
    Unauthenticated,
    ValidationFailed,
)
from vibber.guests import issue_guest
from vibber.models import Attendance, Base, Person
from vibber.utils import utcnow


def _attendance_rows(session, event_id):
    return session.scalar(
        select(func.count()).select_from(Attendance).where(Attendance.event_id == event_id)
    )


def test_join_then_join_again_conflicts(session, event, attendee):
    result = rsvp.join(session, attendee.id, event.id)
    session.commit()

    assert result.attendance.id
    assert result.person_name == "Alex"
    assert rsvp.attendee_count(session, event.id) == 1

    with pytest.raises(Conflict):
        rsvp.join(session, attendee.id, event.id)
    session.commit()
    assert rsvp.attendee_count(session, event.id) == 1


def test_rollback_after_join_leaves_no_attendance(session, event, attendee):
    rsvp.join(session, attendee.id, event.id)
    session.rollback()

    assert _attendance_rows(session, event.id) == 0


def test_rollback_after_conflict_discards_whole_unit_of_work(session, event, attendee):
    rsvp.join(session, attendee.id, event.id)
    session.commit()

    guest = issue_guest(session, "Pending")
    guest_attendance_id = rsvp.join(session, guest.id, event.id).attendance.id
    with pytest.raises(Conflict):
        rsvp.join(session, attendee.id, event.id)
    session.rollback()

    assert _attendance_rows(session, event.id) == 1
    assert session.get(Attendance, guest_attendance_id) is None


def test_conflict_does_not_discard_earlier_work(session, event, attendee):
    rsvp.join(session, attendee.id, event.id)
    guest = issue_guest(session, "Pending")
    with pytest.raises(Conflict):
        rsvp.join(session, attendee.id, event.id)
    session.commit()
    assert session.get(Person, guest.id) is not None


def test_creator_cannot_join_own_event_even_after_start(session, creator):
    upcoming = make_event(session, creator)
    started = make_event(session, creator, starts_in=timedelta(hours=-1))
    for event in (upcoming, started):
        with pytest.raises(Forbidden):
            rsvp.join(session, creator.id, event.id)
    assert _attendance_rows(session, upcoming.id) == 0


def test_join_after_start_is_event_ended(session, creator, attendee):
    started = make_event(session, creator, starts_in=timedelta(minutes=-5))
    with pytest.raises(EventEnded):
        rsvp.join(session, attendee.id, started.id)


def test_join_uses_injected_clock(session, event, attendee):
    with pytest.raises(EventEnded):
        rsvp.join(session, attendee.id, event.id, now=event.start_date)


def test_join_unknown_event_or_person(session, event, attendee):
    with pytest.raises(NotFound):
        rsvp.join(session, attendee.id, "no-such-event")
    with pytest.raises(Unauthenticated):
        rsvp.join(session, "no-such-person", event.id)


def test_leave_self_allowed_after_event_started(session, event, attendee):
    rsvp.join(session, attendee.id, event.id)
    session.commit()

    later = event.start_date + timedelta(hours=1)
    with pytest.raises(EventEnded):
        rsvp.join(session, attendee.id, event.id, now=later)
    rsvp.leave_self(session, attendee.id, event.id)
    session.commit()
    assert _attendance_rows(session, event.id) == 0


def test_leave_self_without_attendance_is_not_found(session, event, attendee):
    with pytest.raises(NotFound):
        rsvp.leave_self(session, attendee.id, event.id)


def test_anonymous_withdraw_by_attendance_id(session, event):
    guest = issue_guest(session, "Jonas")
    result = rsvp.join(session, guest.id, event.id)
    session.commit()

    rsvp.leave(session, event.id, attendance_id=result.attendance.id)
    session.commit()
    assert _attendance_rows(session, event.id) == 0


def test_withdraw_rejects_attendance_from_other_event(session, creator, event, attendee):
    other = make_event(session, creator, title="Other")
    result = rsvp.join(session, attendee.id, other.id)
    session.commit()

    with pytest.raises(NotFound):
        rsvp.withdraw(session, event.id, result.attendance.id)
    assert _attendance_rows(session, other.id) == 1


def test_leave_without_actor_or_attendance_is_unauthenticated(session, event):
    with pytest.raises(Unauthenticated):
        rsvp.leave(session, event.id)


def test_creator_removes_guest(session, event, creator, attendee):
    result = rsvp.join(session, attendee.id, event.id)
    session.commit()

    rsvp.leave(session, event.id, actor_id=creator.id, attendance_id=result.attendance.id)
    session.commit()
    assert _attendance_rows(session, event.id) == 0


def test_non_creator_cannot_remove_someone_else(session, event, attendee):
    other = make_person(session, email="bo@example.com", name="Bo")
    result = rsvp.join(session, attendee.id, event.id)
    session.commit()

    with pytest.raises(Forbidden):
        rsvp.leave(session, event.id, actor_id=other.id, attendance_id=result.attendance.id)
    assert _attendance_rows(session, event.id) == 1


def test_attendee_leaves_via_own_attendance_id(session, event, attendee):
    result = rsvp.join(session, attendee.id, event.id)
    session.commit()

    rsvp.leave(session, event.id, actor_id=attendee.id, attendance_id=result.attendance.id)
    assert _attendance_rows(session, event.id) == 0


def test_own_attendance_under_wrong_event_is_not_found(session, creator, event, attendee):
    other = make_event(session, creator, title="Other")
    result = rsvp.join(session, attendee.id, other.id)
    session.commit()

    with pytest.raises(NotFound):
        rsvp.leave(
            session, event.id, actor_id=attendee.id, attendance_id=result.attendance.id
        )
    assert _attendance_rows(session, other.id) == 1


def test_creator_cannot_remove_attendance_of_another_event(session, creator, event, attendee):
    someone = make_person(session, email="host@example.com", can_create=True)
    foreign_event = make_event(session, someone, title="Not yours")
    result = rsvp.join(session, attendee.id, foreign_event.id)
    session.commit()

    with pytest.raises(NotFound):
        rsvp.remove_guest(session, creator.id, event.id, result.attendance.id)
    with pytest.raises(Forbidden):
        rsvp.remove_guest(session, creator.id, foreign_event.id, result.attendance.id)


def test_rename_guest_changes_person_name(session, creator, event):
    jonas = issue_guest(session, "Jonas")
    rsvp.join(session, jonas.id, event.id)
    session.commit()

    renamed = rsvp.rename_guest(session, creator.id, event.id, jonas.id, "  Jon  ")
    session.commit()
    assert renamed.name == "Jon"
    assert session.get(Person, jonas.id).name == "Jon"


def test_rename_guest_not_attending_is_not_found(session, creator, event):
    jonas = issue_guest(session, "Jonas")
    other = make_event(session, creator, title="Never joined")
    rsvp.join(session, jonas.id, event.id)
    session.commit()

    with pytest.raises(NotFound):
        rsvp.rename_guest(session, creator.id, other.id, jonas.id, "Jon")


def test_rename_guest_requires_creator_and_name(session, creator, event, attendee):
    jonas = issue_guest(session, "Jonas")
    rsvp.join(session, jonas.id, event.id)
    session.commit()

    with pytest.raises(Forbidden):
        rsvp.rename_guest(session, attendee.id, event.id, jonas.id, "Jon")
    with pytest.raises(ValidationFailed):
        rsvp.rename_guest(session, creator.id, event.id, jonas.id, "   ")
    assert session.get(Person, jonas.id).name == "Jonas"


def test_rename_truncates_long_names(session, creator, event):
    jonas = issue_guest(session, "Jonas")
    rsvp.join(session, jonas.id, event.id)
    session.commit()

    renamed = rsvp.rename_guest(session, creator.id, event.id, jonas.id, "J" * 70)
    assert renamed.name == "J" * 50


def test_deleting_event_cascades_attendances(session, creator, event):
    attendees = [issue_guest(session, f"Guest {i}") for i in range(3)]
    attendance_ids = [rsvp.join(session, p.id, event.id).attendance.id for p in attendees]
    session.commit()

    removed = delete_event(session, creator.id, event.id)
    session.commit()

    assert removed == 3
    for attendance_id in attendance_ids:
        assert session.get(Attendance, attendance_id) is None
    for person in attendees:
        with pytest.raises(NotFound):
            rsvp.leave(session, event.id, actor_id=person.id)
    with pytest.raises(NotFound):
        rsvp.leave(session, event.id, attendance_id=attendance_ids[0])


def test_concurrent_joins_create_exactly_one_attendance(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.sqlite'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)

    with factory() as setup:
        host = register_person(
            setup, email="host@example.com", name="Host", password=PASSWORD, can_create=True
        )
        racer = register_person(
            setup, email="racer@example.com", name="Racer", password=PASSWORD
        )
        start = utcnow() + timedelta(days=1)
        fields = validate_event_fields(
            title="Race",
            description="",
            start_date=start,
            end_date=start + timedelta(hours=1),
            address="Track 1",
            visibility="public",
        )
        event = create_event(setup, host.id, fields)
        setup.commit()
        racer_id, event_id = racer.id, event.id

    workers = 8
    barrier = threading.Barrier(workers)

    def attempt():
        with factory() as worker_session:
            barrier.wait()
            try:
                rsvp.join(worker_session, racer_id, event_id)
                worker_session.commit()
                return "ok"
            except Conflict:
                worker_session.rollback()
                return "conflict"
            except OperationalError:
                # Lock timeouts are transient storage errors, never a second row.
                worker_session.rollback()
                return "busy"

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(lambda _: attempt(), range(workers)))

    assert outcomes.count("ok") == 1
    assert set(outcomes) <= {"ok", "conflict", "busy"}
    with factory() as check:
        assert _attendance_rows(check, event_id) == 1
    engine.dispose()
