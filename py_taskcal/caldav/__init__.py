"""CalDAV support for py-taskcal."""

from .caldav import (
    ALLOWED_METHODS,
    CAPABILITY_CALENDAR,
    DAV_CAPABILITIES,
    ResourceKind,
    ResourcePath,
    calendar_path,
    object_path,
    principal_path,
)
from .server import Handler, PrincipalResolver, build_propfind_response, collection_tag

__all__ = [
    "ALLOWED_METHODS",
    "CAPABILITY_CALENDAR",
    "DAV_CAPABILITIES",
    "Handler",
    "PrincipalResolver",
    "ResourceKind",
    "ResourcePath",
    "build_propfind_response",
    "calendar_path",
    "collection_tag",
    "object_path",
    "principal_path",
]
