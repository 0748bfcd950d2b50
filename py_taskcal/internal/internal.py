"""Low-level helpers for the CalDAV protocol layer."""

from __future__ import annotations

from enum import IntEnum
from http import HTTPStatus

from ..errors import CalendarError


class Depth(IntEnum):
    """Depth indicates whether a request applies to the resource's members.

    Defined in RFC 4918 section 10.2.
    """

    ZERO = 0  # Request applies only to the resource
    ONE = 1  # Request applies to resource and its internal members only
    INFINITY = -1  # Request applies to resource and all of its members


def parse_depth(s: str) -> Depth:
    """Parse a Depth header."""
    if s == "0":
        return Depth.ZERO
    elif s == "1":
        return Depth.ONE
    elif s == "infinity":
        return Depth.INFINITY
    else:
        raise HTTPError(400, ValueError(f"caldav: invalid Depth value {s!r}"))


class HTTPError(Exception):
    """HTTP error with status code."""

    def __init__(self, code: int, err: Exception | None = None):
        self.code = code
        self.err = err
        super().__init__(str(self))

    @property
    def kind(self) -> str:
        """Machine-readable error kind."""
        if isinstance(self.err, CalendarError):
            return self.err.kind
        if self.code == 401:
            return "unauthenticated"
        if self.code == 405:
            return "method_not_allowed"
        if 400 <= self.code < 500:
            return "bad_request"
        return "internal"

    def __str__(self) -> str:
        try:
            text = HTTPStatus(self.code).phrase
        except ValueError:
            text = "Unknown"

        s = f"{self.code} {text}"
        if self.err:
            return f"{s}: {self.err}"
        return s


def http_error_from_error(err: Exception | None) -> HTTPError | None:
    """Convert an error to an HTTPError.

    Calendar errors keep their own status; anything else is a 500.
    """
    if err is None:
        return None
    if isinstance(err, HTTPError):
        return err
    if isinstance(err, CalendarError):
        return HTTPError(err.status, err)
    return HTTPError(500, err)


def is_not_found(err: Exception | None) -> bool:
    """Check if an error is a 404 Not Found."""
    http_err = http_error_from_error(err)
    return http_err is not None and http_err.code == 404
