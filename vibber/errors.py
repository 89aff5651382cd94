"""Domain failures raised by the attendance core.

Each subclass carries a stable ``kind`` that the API echoes back to clients
and the HTTP status it maps to. Messages are meant to be shown to users.
"""

from __future__ import annotations


class AttendanceError(Exception):
    """Base class for expected, user-actionable failures."""

    kind = "Error"
    status_code = 400
    default_message = "The request could not be completed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_dict(self) -> dict[str, str]:
        return {"error": self.kind, "detail": self.message}


class Unauthenticated(AttendanceError):
    kind = "Unauthenticated"
    status_code = 401
    default_message = "You must be logged in."


class Forbidden(AttendanceError):
    kind = "Forbidden"
    status_code = 403
    default_message = "You are not allowed to do that."


class NotFound(AttendanceError):
    kind = "NotFound"
    status_code = 404
    default_message = "Not found."


class Conflict(AttendanceError):
    kind = "Conflict"
    status_code = 409
    default_message = "That already exists."


class EventEnded(AttendanceError):
    kind = "EventEnded"
    status_code = 400
    default_message = "You cannot RSVP to an event that has already started."


class ValidationFailed(AttendanceError):
    kind = "Validation"
    status_code = 400
    default_message = "Some of the fields were invalid."
