"""Time-based event predicates."""

from __future__ import annotations

from datetime import datetime

from .models import Event
from .utils import to_naive_utc, utcnow


def is_upcoming(event: Event, now: datetime | None = None) -> bool:
    """Return True while ``now`` is strictly before the event's start.

    Only new attendance is gated on this; leaving, editing and deleting are
    allowed at any time.
    """
    current = to_naive_utc(now) if now is not None else utcnow()
    return current < event.start_date
