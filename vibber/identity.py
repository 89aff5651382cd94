"""Turn an inbound caller into the Person id that acts on their behalf.

Authenticated callers act as their session's Person. Anonymous callers act as
a freshly issued guest when they supplied a name; without one, resolution
stops with :data:`NEEDS_NAME` so the client can prompt and retry. That is a
normal step in the guest flow, not a failure.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from .errors import EventEnded
from .guests import issue_guest
from .lifecycle import is_upcoming
from .permissions import reload_event
from .rsvp import JoinResult, join
from .security import person_id_for_token

logger = logging.getLogger("uvicorn.error")


class NeedsName:
    """Marker returned when an anonymous caller must supply a display name."""

    def __repr__(self) -> str:
        return "NEEDS_NAME"

    def __bool__(self) -> bool:
        return False


NEEDS_NAME = NeedsName()


def resolve_actor(session: Session, token: str | None) -> str | None:
    """Return the authenticated Person id for a bearer token, else None."""
    return person_id_for_token(session, token)


def resolve_identity(
    session: Session, *, actor_id: str | None, name: str | None = None
) -> str | NeedsName:
    """Return the Person id to act as, issuing a guest when needed."""
    if actor_id:
        return actor_id
    if name is None:
        return NEEDS_NAME
    return issue_guest(session, name).id


def attend(
    session: Session,
    event_id: str,
    *,
    actor_id: str | None,
    name: str | None = None,
    now: datetime | None = None,
) -> JoinResult | NeedsName:
    """Resolve the caller and join them to ``event_id``.

    For anonymous callers the event is checked before a guest is issued, so
    a join that is bound to fail does not leave a new guest row behind.
    """
    if not actor_id:
        if name is None:
            logger.debug("Anonymous RSVP to event %s is waiting for a name", event_id)
            return NEEDS_NAME
        event = reload_event(session, event_id)
        if not is_upcoming(event, now):
            raise EventEnded()
    person_id = resolve_identity(session, actor_id=actor_id, name=name)
    return join(session, person_id, event_id, now=now)
