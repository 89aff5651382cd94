"""FastAPI application for Vibber."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
from typing import Any
import tomllib

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import rsvp
from .crud import (
    authenticate,
    create_event,
    delete_event,
    get_event_detail,
    list_my_events,
    list_people,
    list_public_events,
    register_person,
    set_create_permission,
    update_event,
    validate_event_fields,
)
from .database import SessionLocal
from .errors import AttendanceError, ValidationFailed
from .identity import NEEDS_NAME, attend, resolve_actor
from .models import Attendance, Event, Person
from .permissions import reload_person
from .scheduler import start_scheduler, stop_scheduler
from .security import issue_session_token, revoke_session_token
from .storage import init_db

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

NEEDS_NAME_ERROR = {
    "error": "NeedsName",
    "detail": "Tell us your name to RSVP as a guest.",
}


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("vibber")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="Vibber", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def get_actor_id(request: Request, db: Session = Depends(get_db)) -> str | None:
    """Person id behind the bearer token, or None for anonymous callers."""
    return resolve_actor(db, _get_bearer_token(request))


def require_actor_id(actor_id: str | None = Depends(get_actor_id)) -> str:
    if not actor_id:
        raise HTTPException(status_code=401, detail="You must be logged in")
    return actor_id


def _parse_datetime(name: str, raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationFailed(f"Invalid {name}; use ISO8601 format.") from exc


@app.exception_handler(AttendanceError)
async def attendance_error_handler(request: Request, exc: AttendanceError):
    logger.warning(
        "%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message
    )
    return JSONResponse(exc.as_dict(), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "Internal server error"
        status = 500
    return JSONResponse({"detail": detail}, status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"error": "Validation", "detail": exc.errors()}, status_code=422
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Log unexpected errors and answer without leaking details."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


def _serialize_person(person: Person, *, include_private: bool = False):
    payload = {"id": person.id, "name": person.name}
    if include_private:
        payload.update(
            {
                "email": person.email,
                "role": person.role,
                "can_create_events": person.can_create_events,
                "is_guest": person.is_guest,
                "created_at": person.created_at.isoformat(),
            }
        )
    return payload


def _serialize_attendance(attendance: Attendance, *, person_name: str | None = None):
    return {
        "id": attendance.id,
        "event_id": attendance.event_id,
        "person_id": attendance.person_id,
        "created_at": attendance.created_at.isoformat(),
        "person": {
            "id": attendance.person_id,
            "name": person_name if person_name is not None else attendance.person.name,
        },
    }


def _serialize_event(event: Event, *, include_attendances: bool = False):
    payload: dict[str, Any] = {
        "id": event.id,
        "creator": _serialize_person(event.creator),
        "title": event.title,
        "description": event.description,
        "image_url": event.image_url,
        "start_date": event.start_date.isoformat(),
        "end_date": event.end_date.isoformat(),
        "address": event.address,
        "location": event.location,
        "location_link": event.location_link,
        "ticket_link": event.ticket_link,
        "category": event.category,
        "visibility": event.visibility,
        "attendee_count": len(event.attendances),
        "created_at": event.created_at.isoformat(),
        "last_modified": event.last_modified.isoformat(),
    }
    if include_attendances:
        payload["attendances"] = [_serialize_attendance(a) for a in event.attendances]
    return payload


class SignupPayload(BaseModel):
    email: str
    name: str
    password: str


class LoginPayload(BaseModel):
    email: str
    password: str


class EventPayload(BaseModel):
    title: str
    description: str = ""
    image_url: str | None = None
    start_date: str = Field(..., description="ISO datetime string")
    end_date: str = Field(..., description="ISO datetime string after start_date")
    address: str
    location: str | None = None
    location_link: str | None = None
    ticket_link: str | None = None
    category: str | None = None
    visibility: str = "public"


class JoinPayload(BaseModel):
    name: str | None = None


class RenamePayload(BaseModel):
    name: str | None = None
    event_id: str


class PermissionPayload(BaseModel):
    # Kept loose so non-boolean input reaches the domain check.
    can_create_events: Any = None


def _event_fields(payload: EventPayload):
    return validate_event_fields(
        title=payload.title,
        description=payload.description,
        start_date=_parse_datetime("start_date", payload.start_date),
        end_date=_parse_datetime("end_date", payload.end_date),
        address=payload.address,
        visibility=payload.visibility,
        image_url=payload.image_url,
        location=payload.location,
        location_link=payload.location_link,
        ticket_link=payload.ticket_link,
        category=payload.category,
    )


@app.get("/healthz")
def healthz():
    return {"status": "ok", "version": APP_VERSION}


@app.post("/api/v1/auth/signup", status_code=201)
def api_signup(payload: SignupPayload, db: Session = Depends(get_db)):
    person = register_person(
        db, email=payload.email, name=payload.name, password=payload.password
    )
    token = issue_session_token(db, person)
    return {"person": _serialize_person(person, include_private=True), "token": token}


@app.post("/api/v1/auth/login")
def api_login(payload: LoginPayload, db: Session = Depends(get_db)):
    person = authenticate(db, email=payload.email, password=payload.password)
    if person is None:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    token = issue_session_token(db, person)
    return {"person": _serialize_person(person, include_private=True), "token": token}


@app.post("/api/v1/auth/logout", status_code=204)
def api_logout(request: Request, db: Session = Depends(get_db)):
    token = _get_bearer_token(request)
    if token:
        revoke_session_token(db, token)
    return Response(status_code=204)


@app.get("/api/v1/me")
def api_me(actor_id: str = Depends(require_actor_id), db: Session = Depends(get_db)):
    person = reload_person(db, actor_id)
    return {"person": _serialize_person(person, include_private=True)}


@app.get("/api/v1/events")
def api_list_public_events(db: Session = Depends(get_db)):
    return {"events": [_serialize_event(e) for e in list_public_events(db)]}


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventPayload,
    actor_id: str = Depends(require_actor_id),
    db: Session = Depends(get_db),
):
    event = create_event(db, actor_id, _event_fields(payload))
    return {"event": _serialize_event(event)}


@app.get("/api/v1/events/{event_id}")
def api_get_event(event_id: str, db: Session = Depends(get_db)):
    event = get_event_detail(db, event_id)
    return {"event": _serialize_event(event, include_attendances=True)}


@app.put("/api/v1/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventPayload,
    actor_id: str = Depends(require_actor_id),
    db: Session = Depends(get_db),
):
    event = update_event(db, actor_id, event_id, _event_fields(payload))
    return {"event": _serialize_event(event, include_attendances=True)}


@app.delete("/api/v1/events/{event_id}")
def api_delete_event(
    event_id: str,
    actor_id: str = Depends(require_actor_id),
    db: Session = Depends(get_db),
):
    removed = delete_event(db, actor_id, event_id)
    return {"deleted_event": {"id": event_id, "attendance_count": removed}}


@app.get("/api/v1/my-events")
def api_my_events(
    actor_id: str = Depends(require_actor_id), db: Session = Depends(get_db)
):
    grouped = list_my_events(db, actor_id)
    return {
        "created": [_serialize_event(e) for e in grouped["created"]],
        "attending": [_serialize_event(e) for e in grouped["attending"]],
    }


@app.post("/api/v1/events/{event_id}/rsvp", status_code=201)
def api_join_event(
    event_id: str,
    payload: JoinPayload | None = None,
    actor_id: str | None = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    name = payload.name if payload else None
    result = attend(db, event_id, actor_id=actor_id, name=name)
    if result is NEEDS_NAME:
        return JSONResponse(NEEDS_NAME_ERROR, status_code=401)
    return {
        "attendance": _serialize_attendance(
            result.attendance, person_name=result.person_name
        ),
        "attendee_count": rsvp.attendee_count(db, event_id),
    }


@app.delete("/api/v1/events/{event_id}/rsvp")
def api_leave_event(
    event_id: str,
    actor_id: str = Depends(require_actor_id),
    db: Session = Depends(get_db),
):
    rsvp.leave(db, event_id, actor_id=actor_id)
    return {"detail": "RSVP removed"}


@app.delete("/api/v1/events/{event_id}/rsvp/{attendance_id}")
def api_remove_attendance(
    event_id: str,
    attendance_id: str,
    actor_id: str | None = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    rsvp.leave(db, event_id, actor_id=actor_id, attendance_id=attendance_id)
    return {"detail": "RSVP removed"}


@app.patch("/api/v1/users/{person_id}")
def api_rename_guest(
    person_id: str,
    payload: RenamePayload,
    actor_id: str = Depends(require_actor_id),
    db: Session = Depends(get_db),
):
    person = rsvp.rename_guest(db, actor_id, payload.event_id, person_id, payload.name)
    return _serialize_person(person)


@app.get("/api/v1/admin/users")
def api_admin_users(
    actor_id: str = Depends(require_actor_id), db: Session = Depends(get_db)
):
    summaries = list_people(db, actor_id)
    return {
        "users": [
            {
                **_serialize_person(summary.person, include_private=True),
                "event_count": summary.event_count,
            }
            for summary in summaries
        ]
    }


@app.patch("/api/v1/admin/users/{person_id}")
def api_admin_toggle_create(
    person_id: str,
    payload: PermissionPayload,
    actor_id: str = Depends(require_actor_id),
    db: Session = Depends(get_db),
):
    person = set_create_permission(db, actor_id, person_id, payload.can_create_events)
    return _serialize_person(person, include_private=True)
