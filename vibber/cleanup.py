"""Retention cleanup for guest identities.

Guests are created on every anonymous RSVP and nothing else ever removes
them. A guest becomes eligible for deletion once it has no attendance left
and is older than ``guest_retention_days``. Guests that still attend any
event are never touched.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import and_, exists, func, or_, select

from .config import settings
from .database import engine, get_session
from .models import Attendance, Event, Person
from .utils import to_naive_utc, utcnow

# Use uvicorn's error logger so cleanup messages show up with level prefixes.
logger = logging.getLogger("uvicorn.error")

CLEANUP_BATCH_SIZE = 200


def _orphan_guest_filter(cutoff: datetime):
    has_attendance = exists().where(Attendance.person_id == Person.id)
    has_events = exists().where(Event.creator_id == Person.id)
    return and_(
        Person.password_hash == "",
        Person.created_at < cutoff,
        ~has_attendance,
        ~has_events,
    )


def purge_orphan_guests(now: datetime | None = None) -> dict[str, int]:
    """Delete guests with no attendance that are past the retention window."""
    stats = {"guests_deleted": 0, "guests_retained": 0, "batches": 0}
    current = to_naive_utc(now) if now is not None else utcnow()
    cutoff = current - settings.guest_retention

    logger.info(
        "Guest cleanup started (retention_days=%d, cutoff=%s)",
        settings.guest_retention_days,
        cutoff.isoformat(),
    )

    with get_session() as session:
        orphan_filter = _orphan_guest_filter(cutoff)
        total_guests = (
            session.scalar(
                select(func.count()).select_from(Person).where(Person.password_hash == "")
            )
            or 0
        )

        last_seen: tuple[datetime | None, str | None] = (None, None)
        while True:
            query = (
                select(Person)
                .where(orphan_filter)
                .order_by(Person.created_at, Person.id)
            )
            if last_seen[0]:
                query = query.where(
                    or_(
                        Person.created_at > last_seen[0],
                        and_(
                            Person.created_at == last_seen[0],
                            Person.id > (last_seen[1] or ""),
                        ),
                    )
                )
            batch = session.scalars(query.limit(CLEANUP_BATCH_SIZE)).all()
            if not batch:
                break
            for guest in batch:
                logger.debug(
                    "Deleting orphan guest %s created %s", guest.id, guest.created_at
                )
                session.delete(guest)
                stats["guests_deleted"] += 1
            last_seen = (batch[-1].created_at, batch[-1].id)
            stats["batches"] += 1
            session.commit()

        stats["guests_retained"] = max(total_guests - stats["guests_deleted"], 0)

    logger.info(
        "Guest cleanup finished: deleted=%d retained=%d across %d batches",
        stats["guests_deleted"],
        stats["guests_retained"],
        stats["batches"],
    )
    return stats


def vacuum_database() -> None:
    with engine.connect() as connection:
        connection.execution_options(isolation_level="AUTOCOMMIT").exec_driver_sql(
            "VACUUM"
        )
