"""Guest identity issuance for attendees without an account."""

from __future__ import annotations

import logging
import secrets

from sqlalchemy.orm import Session

from .config import settings
from .models import ROLE_STANDARD, Person
from .utils import clean_name

logger = logging.getLogger("uvicorn.error")


def guest_display_name(raw: str | None) -> str:
    """Trim and truncate ``raw``; fall back to the placeholder when empty."""
    name = clean_name(raw, max_length=settings.name_max_length)
    return name or settings.guest_default_name


def synthetic_guest_email() -> str:
    """Return a random, practically unique address on the guest domain."""
    return f"guest-{secrets.token_hex(16)}@{settings.guest_email_domain}"


def is_synthetic_guest_email(email: str | None) -> bool:
    return (email or "").lower().endswith(f"@{settings.guest_email_domain}")


def issue_guest(session: Session, name: str | None) -> Person:
    """Create and flush a brand-new guest Person.

    This is deliberately not idempotent: every call inserts a new row, even
    for a name that already exists. Recognising a returning guest is up to
    the client, which keeps the attendance id it received from ``join``.
    """
    person = Person(
        email=synthetic_guest_email(),
        name=guest_display_name(name),
        password_hash="",
        role=ROLE_STANDARD,
        can_create_events=False,
    )
    session.add(person)
    session.flush()
    logger.info("Issued guest identity %s", person.id)
    return person
