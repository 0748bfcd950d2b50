"""Starlette application factory."""

from __future__ import annotations

from collections.abc import Sequence

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from .caldav import Handler, PrincipalResolver
from .config import ServerConfig
from .models import Calendar, Principal
from .principal import static_principal
from .store import CalendarStore, MemoryStore, TaskStore

# GET implies HEAD in Starlette routes
METHODS = ["GET", "PUT", "DELETE", "OPTIONS", "PROPFIND", "POST"]


def create_app(
    tasks: TaskStore,
    calendars: CalendarStore,
    resolve_principal: PrincipalResolver,
    prefix: str = "",
    debug: bool = False,
    middleware: Sequence[Middleware] | None = None,
) -> Starlette:
    """Create a Starlette app serving CalDAV.

    Args:
        tasks: Task store
        calendars: Calendar store
        resolve_principal: Returns the authenticated principal of a request
        prefix: URL prefix for the CalDAV tree
        debug: Enable request/response tracing
        middleware: Starlette middleware, e.g. authentication that fills
            the ASGI scope for :func:`~py_taskcal.principal.scope_principal`

    Returns:
        Starlette application
    """
    handler = Handler(tasks, calendars, resolve_principal, prefix=prefix, debug=debug)

    async def caldav_handler(request: Request) -> Response:
        return await handler.handle(request)

    return Starlette(
        routes=[Route("/{path:path}", caldav_handler, methods=METHODS)],
        middleware=middleware,
    )


def create_memory_app(config: ServerConfig) -> Starlette:
    """Single-user app backed by a :class:`MemoryStore`."""
    store = MemoryStore()
    owner = Principal(username=config.username, email=config.email)
    store.add_calendar(
        Calendar(
            id=f"{config.username}/{config.calendar_slug}",
            owner=owner,
            slug=config.calendar_slug,
            name=config.calendar_name,
            timezone=config.timezone,
        )
    )
    return create_app(store, store, static_principal(owner), prefix=config.prefix, debug=config.debug)
