"""Development helpers for populating fake people, events and RSVPs."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import create_event, register_person, validate_event_fields
from .database import get_session
from .models import VISIBILITY_PRIVATE, VISIBILITY_PUBLIC, Event, Person
from .guests import issue_guest
from .rsvp import join
from .storage import init_db
from .utils import utcnow

SEED_PASSWORD = "vibber-seed-password"

_event_types = [
    "Mixer",
    "Hangout",
    "Workshop",
    "Concert",
    "Field Trip",
    "Meet & Greet",
    "Dinner",
    "Quiz Night",
]
_categories = ["Music", "Food", "Sports", "Tech", "Art", "Outdoors", None]


def seed_fake_data(
    *,
    people_count: int = 8,
    event_count: int = 4,
    max_attendances_per_event: int = 5,
    private_percentage: int = 10,
) -> dict[str, int]:
    """Populate the SQLite database with synthetic people, events and RSVPs."""
    if people_count < 1:
        raise ValueError("people_count must be >= 1")
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if max_attendances_per_event < 0:
        raise ValueError("max_attendances_per_event must be >= 0")
    if not 0 <= private_percentage <= 100:
        raise ValueError("private_percentage must be between 0 and 100")

    init_db()
    fake = Faker()
    stats = {"people": 0, "guests": 0, "events": 0, "attendances": 0}

    with get_session() as session:
        people = [_create_person(session, fake) for _ in range(people_count)]
        stats["people"] = len(people)
        creators = people[: max(1, len(people) // 3)]
        for creator in creators:
            creator.can_create_events = True
        session.flush()

        for _ in range(event_count):
            event = _create_event(
                session,
                fake,
                creator=random.choice(creators),
                private_percentage=private_percentage,
            )
            stats["events"] += 1
            registered, guests = _create_attendances(
                session, fake, event, people, max_attendances_per_event
            )
            stats["attendances"] += registered + guests
            stats["guests"] += guests

    return stats


def _create_person(session: Session, fake: Faker) -> Person:
    return register_person(
        session,
        email=fake.unique.email(),
        name=fake.name(),
        password=SEED_PASSWORD,
    )


def _create_event(
    session: Session,
    fake: Faker,
    *,
    creator: Person,
    private_percentage: int,
) -> Event:
    start_date = _random_start_time()
    visibility = (
        VISIBILITY_PRIVATE
        if random.randint(1, 100) <= private_percentage
        else VISIBILITY_PUBLIC
    )
    fields = validate_event_fields(
        title=_event_title(fake),
        description=fake.paragraph(nb_sentences=3),
        start_date=start_date,
        end_date=start_date + timedelta(hours=random.randint(1, 6)),
        address=fake.address().replace("\n", ", "),
        visibility=visibility,
        location=fake.company(),
        location_link=fake.url(),
        category=random.choice(_categories),
    )
    return create_event(session, creator.id, fields)


def _random_start_time() -> datetime:
    day_offset = random.randint(1, 30)
    minute_offset = random.randint(0, 23 * 60)
    return utcnow() + timedelta(days=day_offset, minutes=minute_offset)


def _event_title(fake: Faker) -> str:
    return f"{fake.city()} {random.choice(_event_types)}"


def _create_attendances(
    session: Session,
    fake: Faker,
    event: Event,
    people: list[Person],
    max_attendances: int,
) -> tuple[int, int]:
    """Join a random mix of registered people and fresh guests to ``event``."""
    if max_attendances <= 0:
        return 0, 0
    total = random.randint(0, max_attendances)
    candidates = [person for person in people if person.id != event.creator_id]
    random.shuffle(candidates)
    registered = guests = 0
    for _ in range(total):
        if candidates and random.random() < 0.6:
            person = candidates.pop()
            join(session, person.id, event.id)
            registered += 1
        else:
            guest = issue_guest(session, fake.first_name())
            join(session, guest.id, event.id)
            guests += 1
    return registered, guests
