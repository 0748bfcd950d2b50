"""Internal WebDAV protocol helpers."""

from .elements import (
    CALDAV_NAMESPACE,
    NAMESPACE,
    Href,
    MultiStatus,
    Prop,
    PropFind,
    PropStat,
    Response,
    Status,
)
from .internal import Depth, HTTPError, http_error_from_error, is_not_found, parse_depth

__all__ = [
    "CALDAV_NAMESPACE",
    "NAMESPACE",
    "Depth",
    "HTTPError",
    "Href",
    "MultiStatus",
    "Prop",
    "PropFind",
    "PropStat",
    "Response",
    "Status",
    "http_error_from_error",
    "is_not_found",
    "parse_depth",
]
