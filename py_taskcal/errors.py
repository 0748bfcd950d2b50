"""Error taxonomy shared by the codec, the expander and the CalDAV server.

Every error carries a stable machine-readable ``kind`` so that API clients can
branch on it without matching message text, plus the HTTP status it maps to.
"""

from __future__ import annotations


class CalendarError(Exception):
    """Base class for calendar errors."""

    kind = "internal"
    status = 500

    def __init__(self, message: str = "") -> None:
        self.message = message or self.kind
        super().__init__(self.message)


class ValidationError(CalendarError):
    """Bad RRULE, malformed ICS body, ``end <= start`` and similar input errors."""

    kind = "validation"
    status = 400


class NotFoundError(CalendarError):
    """Missing task or calendar."""

    kind = "not_found"
    status = 404


class ConflictError(CalendarError):
    """ETag mismatch on a conditional write."""

    kind = "conflict"
    status = 412


class AuthorizationError(CalendarError):
    """The path's user segment is not the authenticated principal."""

    kind = "forbidden"
    status = 403
