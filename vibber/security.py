"""Password hashing and bearer session tokens."""

from __future__ import annotations

import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from sqlalchemy.orm import Session

from .models import AuthSession, Person
from .utils import utcnow

ph = PasswordHasher()


def hash_password(password: str) -> str:
    return ph.hash(password)


def verify_password(person: Person, password: str) -> bool:
    """Check ``password`` against the stored hash. Guests never verify."""
    if person.is_guest or not password:
        return False
    try:
        return ph.verify(person.password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def issue_session_token(session: Session, person: Person) -> str:
    token = secrets.token_urlsafe(32)
    session.add(AuthSession(token=token, person_id=person.id, created_at=utcnow()))
    session.flush()
    return token


def person_id_for_token(session: Session, token: str | None) -> str | None:
    """Return the Person id a bearer token belongs to, or None."""
    if not token:
        return None
    record = session.get(AuthSession, token)
    return record.person_id if record else None


def revoke_session_token(session: Session, token: str) -> bool:
    record = session.get(AuthSession, token)
    if record is None:
        return False
    session.delete(record)
    session.flush()
    return True
