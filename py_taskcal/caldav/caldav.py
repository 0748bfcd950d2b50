"""CalDAV addressing and protocol constants."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from urllib.parse import quote

from ..errors import NotFoundError

CAPABILITY_CALENDAR = "calendar-access"

# Advertised in the DAV header of OPTIONS responses
DAV_CAPABILITIES = ["1", "2", CAPABILITY_CALENDAR]
ALLOWED_METHODS = ["OPTIONS", "GET", "PUT", "DELETE", "PROPFIND"]

SUPPORTED_COMPONENTS = ["VEVENT", "VTODO"]
CALENDAR_CONTENT_TYPE = "text/calendar; charset=utf-8"
CALENDAR_OBJECT_CONTENT_TYPE = "text/calendar; component=VEVENT"
OBJECT_SUFFIX = ".ics"


class ResourceKind(IntEnum):
    """CalDAV resource kinds, by path depth."""

    ROOT = 0
    PRINCIPAL = 1
    CALENDAR = 2
    CALENDAR_OBJECT = 3


@dataclass(frozen=True)
class ResourcePath:
    """A request path split into its user, calendar and object segments.

    Paths have the shape ``{prefix}/{user}/{slug}/{uid}.ics``; the user
    segment is the principal's username or email.
    """

    kind: ResourceKind
    user: str = ""
    slug: str = ""
    uid: str = ""

    @staticmethod
    def parse(path: str, prefix: str = "") -> ResourcePath:
        """Parse a decoded request path.

        Raises:
            NotFoundError: If the path cannot address a CalDAV resource
        """
        p = path
        if prefix:
            prefix = prefix.rstrip("/")
            if p != prefix and not p.startswith(prefix + "/"):
                raise NotFoundError(f"no resource at {path}")
            p = p[len(prefix):]

        segments = [s for s in p.split("/") if s]
        if not segments:
            return ResourcePath(ResourceKind.ROOT)
        if len(segments) == 1:
            return ResourcePath(ResourceKind.PRINCIPAL, user=segments[0])
        if len(segments) == 2:
            return ResourcePath(ResourceKind.CALENDAR, user=segments[0], slug=segments[1])
        if len(segments) == 3 and segments[2].endswith(OBJECT_SUFFIX):
            uid = segments[2][: -len(OBJECT_SUFFIX)]
            if uid:
                return ResourcePath(
                    ResourceKind.CALENDAR_OBJECT, user=segments[0], slug=segments[1], uid=uid
                )
        raise NotFoundError(f"no resource at {path}")


def _join(prefix: str, *segments: str) -> str:
    return prefix.rstrip("/") + "/" + "/".join(segments)


def principal_path(prefix: str, user: str) -> str:
    return _join(prefix, user) + "/"


def calendar_path(prefix: str, user: str, slug: str) -> str:
    return _join(prefix, user, slug) + "/"


def object_path(prefix: str, user: str, slug: str, uid: str) -> str:
    return _join(prefix, user, slug, uid + OBJECT_SUFFIX)


def quote_etag(etag: str) -> str:
    """Format an ETag for the ETag header."""
    return etag if etag.startswith('"') else f'"{etag}"'


def location_header(path: str) -> str:
    return quote(path, safe="/@:+")
