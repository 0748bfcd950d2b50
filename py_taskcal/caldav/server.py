"""CalDAV resource server.

Serves calendars as collections at ``/{user}/{slug}/`` and tasks as calendar
object resources at ``/{user}/{slug}/{uid}.ics``. Writes use ETag based
optimistic concurrency: the ``If-Match`` comparison is done by the store as
part of the write.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from hashlib import md5

from lxml import etree
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..ical import ICSCodec
from ..importer import DuplicateClassifier, DuplicateStrategy
from ..internal import Depth, HTTPError, Href, MultiStatus, Prop, PropFind, PropStat, Status
from ..internal import Response as WebDAVResponse
from ..internal.elements import (
    CALENDAR,
    CALENDAR_COLOR,
    CALENDAR_DESCRIPTION,
    CALENDAR_HOME_SET,
    COLLECTION,
    CURRENT_USER_PRINCIPAL,
    DISPLAY_NAME,
    GET_CONTENT_TYPE,
    GET_CTAG,
    GET_ETAG,
    GET_LAST_MODIFIED,
    PRINCIPAL,
    RESOURCE_TYPE,
    SUPPORTED_COMPONENT_SET,
    etag_property,
    href_property,
    last_modified_property,
    resourcetype,
    supported_components_property,
    text_property,
)
from ..internal.server import read_propfind, request_depth, serve_error, serve_multistatus
from ..models import Calendar, Principal, Task, as_utc
from ..recurrence import RecurrenceExpander, detach_occurrence, validate_task
from ..store import CalendarStore, TaskStore
from .caldav import (
    ALLOWED_METHODS,
    CALENDAR_CONTENT_TYPE,
    CALENDAR_OBJECT_CONTENT_TYPE,
    DAV_CAPABILITIES,
    SUPPORTED_COMPONENTS,
    ResourceKind,
    ResourcePath,
    calendar_path,
    location_header,
    object_path,
    principal_path,
    quote_etag,
)

logger = logging.getLogger("py_taskcal.caldav")

PrincipalResolver = Callable[[Request], Awaitable[Principal | None]]
PropertyBuilders = dict[str, Callable[[], etree._Element]]
RouteHandler = Callable[[Request, Principal, ResourcePath], Awaitable[Response]]


def build_propfind_response(path: str, props: PropertyBuilders, propfind: PropFind) -> WebDAVResponse:
    """Answer a PROPFIND for one resource.

    Requested properties the resource has go into a 200 propstat, unknown
    ones into a 404 propstat. ``allprop`` and ``propname`` cover every
    property in ``props``.
    """
    requested = propfind.prop.names() if propfind.prop is not None else list(props)

    found: list[etree._Element] = []
    missing: list[etree._Element] = []
    for name in requested:
        builder = props.get(name)
        if builder is None:
            missing.append(etree.Element(name))
        elif propfind.propname:
            found.append(etree.Element(name))
        else:
            found.append(builder())

    propstats = []
    if found:
        propstats.append(PropStat(prop=Prop(raw=found), status=Status(code=200)))
    if missing:
        propstats.append(PropStat(prop=Prop(raw=missing), status=Status(code=404)))
    return WebDAVResponse(href=Href(path), propstats=propstats)


def collection_tag(tasks: list[Task]) -> str:
    """Fingerprint of a whole collection, changes whenever a member does."""
    members = sorted(f"{task.uid}:{task.etag}" for task in tasks)
    return md5("\n".join(members).encode("utf-8")).hexdigest()


def _parse_instant(value: str | None, name: str) -> datetime:
    if not value:
        raise ValidationError(f"missing query parameter: {name}")
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError as e:
        raise ValidationError(f"invalid {name}: {value!r}") from e


class Handler:
    """CalDAV HTTP handler."""

    def __init__(
        self,
        tasks: TaskStore,
        calendars: CalendarStore,
        resolve_principal: PrincipalResolver,
        prefix: str = "",
        codec: ICSCodec | None = None,
        expander: RecurrenceExpander | None = None,
        classifier: DuplicateClassifier | None = None,
        debug: bool = False,
    ):
        """Initialize handler.

        Args:
            tasks: Task store
            calendars: Calendar store
            resolve_principal: Returns the authenticated principal of a request, or None
            prefix: URL prefix in front of ``/{user}/{slug}``
            codec: iCalendar codec
            expander: Recurrence expander for calendar views
            classifier: Duplicate classifier for bulk imports
            debug: Enable request/response tracing
        """
        self.tasks = tasks
        self.calendars = calendars
        self.resolve_principal = resolve_principal
        self.prefix = prefix.rstrip("/")
        self.codec = codec or ICSCodec()
        self.expander = expander or RecurrenceExpander()
        self.classifier = classifier or DuplicateClassifier()
        self.debug = debug

        self._routes: dict[tuple[str, ResourceKind], RouteHandler] = {
            ("GET", ResourceKind.CALENDAR_OBJECT): self._get_object,
            ("HEAD", ResourceKind.CALENDAR_OBJECT): self._get_object,
            ("PUT", ResourceKind.CALENDAR_OBJECT): self._put_object,
            ("DELETE", ResourceKind.CALENDAR_OBJECT): self._delete_object,
            ("PROPFIND", ResourceKind.CALENDAR_OBJECT): self._propfind_object,
            ("GET", ResourceKind.CALENDAR): self._get_calendar,
            ("HEAD", ResourceKind.CALENDAR): self._get_calendar,
            ("POST", ResourceKind.CALENDAR): self._import,
            ("PROPFIND", ResourceKind.CALENDAR): self._propfind_calendar,
            ("PROPFIND", ResourceKind.PRINCIPAL): self._propfind_principal,
            ("PROPFIND", ResourceKind.ROOT): self._propfind_root,
        }

    async def handle(self, request: Request) -> Response:
        """Handle a CalDAV HTTP request."""
        if self.debug:
            from ..debug import log_request

            # Starlette caches the body, handlers can read it again
            body = await request.body()
            log_request(request.method, request.url.path, dict(request.headers.items()), body)

        try:
            response = await self._dispatch(request)
        except Exception as e:
            response = serve_error(e)

        if self.debug:
            self._log_response(response)
        return response

    async def _dispatch(self, request: Request) -> Response:
        method = request.method
        if method == "OPTIONS":
            return self._options()

        principal = await self.resolve_principal(request)
        if principal is None:
            raise HTTPError(401, Exception("authentication required"))

        if request.url.path.rstrip("/") == "/.well-known/caldav":
            return RedirectResponse(url=principal_path(self.prefix, principal.username), status_code=308)

        resource = ResourcePath.parse(request.url.path, self.prefix)
        route = self._routes.get((method, resource.kind))
        if route is None:
            return self._method_not_allowed(method)
        return await route(request, principal, resource)

    def _authorize(self, principal: Principal, resource: ResourcePath) -> None:
        """Reject access to another user's namespace.

        Runs before any lookup so that responses do not reveal whether
        another user's resources exist.
        """
        if resource.user and not principal.matches(resource.user):
            logger.warning("User %s denied access to %s's resources", principal.username, resource.user)
            raise AuthorizationError(f"access to {resource.user}'s calendars denied")

    def _options(self) -> Response:
        return Response(
            status_code=200,
            headers={
                "DAV": ", ".join(DAV_CAPABILITIES),
                "Allow": ", ".join(ALLOWED_METHODS),
            },
        )

    def _method_not_allowed(self, method: str) -> Response:
        response = serve_error(HTTPError(405, Exception(f"caldav: {method} not supported here")))
        response.headers["Allow"] = ", ".join(ALLOWED_METHODS)
        return response

    def _log_response(self, response: Response) -> None:
        from ..debug import log_response

        log_response(response.status_code, dict(response.headers.items()), getattr(response, "body", None))

    async def _calendar(self, resource: ResourcePath) -> Calendar:
        return await self.calendars.resolve(resource.user, resource.slug)

    async def _task(self, calendar: Calendar, resource: ResourcePath, principal: Principal) -> Task:
        task = await self.tasks.find_task(calendar, resource.uid, principal)
        if task is None:
            raise NotFoundError(f"task not found: {resource.uid}")
        return task

    # Calendar object resources

    async def _get_object(self, request: Request, principal: Principal, resource: ResourcePath) -> Response:
        self._authorize(principal, resource)

        calendar = await self._calendar(resource)
        task = await self._task(calendar, resource, principal)
        return Response(
            content=self.codec.encode_task(task),
            media_type=CALENDAR_CONTENT_TYPE,
            headers={"ETag": quote_etag(task.etag)},
        )

    async def _put_object(self, request: Request, principal: Principal, resource: ResourcePath) -> Response:
        """Create or replace a task from an iCalendar body.

        Returns 201 on create and 204 on update, both with the new ETag. A
        stale ``If-Match`` yields 412 and leaves the stored task untouched.
        """
        self._authorize(principal, resource)

        master, overrides = self.codec.decode_one(await request.body())
        calendar = await self._calendar(resource)
        existing = await self.tasks.find_task(calendar, resource.uid, principal)

        if_match = request.headers.get("if-match")
        if_none_match = request.headers.get("if-none-match", "").strip() == "*"

        if master.uid != resource.uid:
            logger.debug("Body UID %s differs from resource %s, keeping the resource UID", master.uid, resource.uid)
        if existing is None:
            task = master.to_task(calendar.id, uid=resource.uid)
        else:
            task = master.apply_to(existing)
        validate_task(task)

        if overrides:
            async with self.tasks.transaction() as tx:
                for draft in overrides:
                    if draft.recurrence_id is None:
                        continue
                    task, _ = await detach_occurrence(tx, calendar, task, draft.recurrence_id, draft)
                await tx.save(task, if_match=if_match, if_none_match=if_none_match)
            saved = task
        else:
            saved = await self.tasks.save(task, if_match=if_match, if_none_match=if_none_match)

        etag = quote_etag(saved.etag)
        if existing is None:
            logger.info("Created task %s in %s", saved.uid, calendar.slug)
            location = object_path(self.prefix, resource.user, resource.slug, resource.uid)
            return Response(status_code=201, headers={"ETag": etag, "Location": location_header(location)})

        logger.info("Updated task %s in %s", saved.uid, calendar.slug)
        return Response(status_code=204, headers={"ETag": etag})

    async def _delete_object(self, request: Request, principal: Principal, resource: ResourcePath) -> Response:
        self._authorize(principal, resource)

        calendar = await self._calendar(resource)
        existing = await self.tasks.find_task(calendar, resource.uid, principal)
        if existing is not None:
            await self.tasks.delete(calendar, resource.uid)
            logger.info("Deleted task %s from %s", resource.uid, calendar.slug)
        return Response(status_code=204)

    async def _propfind_object(self, request: Request, principal: Principal, resource: ResourcePath) -> Response:
        self._authorize(principal, resource)

        calendar = await self._calendar(resource)
        task = await self._task(calendar, resource, principal)
        propfind = await read_propfind(request)
        resp = self._object_response(task, resource.user, calendar, propfind)
        return serve_multistatus(MultiStatus(responses=[resp]))

    def _object_response(self, task: Task, user: str, calendar: Calendar, propfind: PropFind) -> WebDAVResponse:
        props: PropertyBuilders = {
            RESOURCE_TYPE: lambda: resourcetype(),
            GET_ETAG: lambda: etag_property(task.etag),
            GET_CONTENT_TYPE: lambda: text_property(GET_CONTENT_TYPE, CALENDAR_OBJECT_CONTENT_TYPE),
        }
        updated_at = task.updated_at
        if updated_at is not None:
            props[GET_LAST_MODIFIED] = lambda: last_modified_property(updated_at)
        return build_propfind_response(
            object_path(self.prefix, user, calendar.slug, task.uid), props, propfind
        )

    # Calendar collections

    async def _get_calendar(self, request: Request, principal: Principal, resource: ResourcePath) -> Response:
        """Export the calendar, or list expanded occurrences for a window.

        With ``start`` and ``end`` query parameters (ISO 8601) the response is
        a JSON calendar view; without them the whole calendar is returned as
        one iCalendar document.
        """
        self._authorize(principal, resource)

        calendar = await self._calendar(resource)
        tasks = await self.tasks.list_tasks(calendar)

        params = request.query_params
        if "start" not in params and "end" not in params:
            return Response(
                content=self.codec.encode(tasks, calendar.name),
                media_type=CALENDAR_CONTENT_TYPE,
                headers={
                    "Content-Disposition": f'attachment; filename="{calendar.slug}.ics"',
                    "ETag": quote_etag(collection_tag(tasks)),
                },
            )

        range_start = _parse_instant(params.get("start"), "start")
        range_end = _parse_instant(params.get("end"), "end")
        if range_end <= range_start:
            raise ValidationError("end must be after start")

        occurrences = self.expander.expand_all(tasks, range_start, range_end)
        return JSONResponse(
            {
                "calendar": calendar.slug,
                "start": range_start.isoformat(),
                "end": range_end.isoformat(),
                "occurrences": [o.to_dict() for o in occurrences],
            }
        )

    async def _import(self, request: Request, principal: Principal, resource: ResourcePath) -> Response:
        """Bulk import an iCalendar upload into the calendar.

        ``?preview=true`` classifies without writing; otherwise ``strategy``
        (SKIP, UPDATE or CREATE_ANYWAY) decides what happens to duplicates.
        """
        self._authorize(principal, resource)

        calendar = await self._calendar(resource)
        decoded = self.codec.decode(await request.body())
        params = request.query_params

        if params.get("preview", "").lower() in ("1", "true", "yes"):
            existing = await self.tasks.list_tasks(calendar)
            preview = self.classifier.classify(decoded.drafts, existing, decoded.errors)
            return JSONResponse(preview.to_dict())

        strategy = DuplicateStrategy.parse(params.get("strategy"))
        result = await self.classifier.apply(decoded.drafts, strategy, self.tasks, calendar, decoded.errors)
        return JSONResponse(result.to_dict())

    async def _propfind_calendar(self, request: Request, principal: Principal, resource: ResourcePath) -> Response:
        self._authorize(principal, resource)

        calendar = await self._calendar(resource)
        propfind = await read_propfind(request)
        depth = request_depth(request, default=Depth.ZERO)
        tasks = await self.tasks.list_tasks(calendar)

        responses = [self._calendar_response(calendar, resource.user, principal, tasks, propfind)]
        if depth != Depth.ZERO:
            for task in tasks:
                responses.append(self._object_response(task, resource.user, calendar, propfind))
        return serve_multistatus(MultiStatus(responses=responses))

    def _calendar_response(
        self,
        calendar: Calendar,
        user: str,
        principal: Principal,
        tasks: list[Task],
        propfind: PropFind,
    ) -> WebDAVResponse:
        tag = collection_tag(tasks)
        props: PropertyBuilders = {
            RESOURCE_TYPE: lambda: resourcetype(COLLECTION, CALENDAR),
            DISPLAY_NAME: lambda: text_property(DISPLAY_NAME, calendar.name),
            SUPPORTED_COMPONENT_SET: lambda: supported_components_property(SUPPORTED_COMPONENTS),
            CALENDAR_COLOR: lambda: text_property(CALENDAR_COLOR, calendar.color),
            CURRENT_USER_PRINCIPAL: lambda: href_property(
                CURRENT_USER_PRINCIPAL, principal_path(self.prefix, principal.username)
            ),
            GET_CTAG: lambda: text_property(GET_CTAG, tag),
            GET_ETAG: lambda: etag_property(tag),
        }
        if calendar.description:
            props[CALENDAR_DESCRIPTION] = lambda: text_property(CALENDAR_DESCRIPTION, calendar.description)
        return build_propfind_response(calendar_path(self.prefix, user, calendar.slug), props, propfind)

    # Discovery

    async def _propfind_principal(self, request: Request, principal: Principal, resource: ResourcePath) -> Response:
        self._authorize(principal, resource)

        propfind = await read_propfind(request)
        depth = request_depth(request, default=Depth.ZERO)
        home = principal_path(self.prefix, resource.user)
        props: PropertyBuilders = {
            RESOURCE_TYPE: lambda: resourcetype(COLLECTION, PRINCIPAL),
            DISPLAY_NAME: lambda: text_property(DISPLAY_NAME, principal.username),
            CURRENT_USER_PRINCIPAL: lambda: href_property(
                CURRENT_USER_PRINCIPAL, principal_path(self.prefix, principal.username)
            ),
            CALENDAR_HOME_SET: lambda: href_property(CALENDAR_HOME_SET, home),
        }
        responses = [build_propfind_response(home, props, propfind)]
        if depth != Depth.ZERO:
            for calendar in await self.calendars.list_calendars(principal):
                tasks = await self.tasks.list_tasks(calendar)
                responses.append(self._calendar_response(calendar, resource.user, principal, tasks, propfind))
        return serve_multistatus(MultiStatus(responses=responses))

    async def _propfind_root(self, request: Request, principal: Principal, resource: ResourcePath) -> Response:
        propfind = await read_propfind(request)
        props: PropertyBuilders = {
            RESOURCE_TYPE: lambda: resourcetype(COLLECTION),
            CURRENT_USER_PRINCIPAL: lambda: href_property(
                CURRENT_USER_PRINCIPAL, principal_path(self.prefix, principal.username)
            ),
        }
        root = (self.prefix or "") + "/"
        return serve_multistatus(MultiStatus(responses=[build_propfind_response(root, props, propfind)]))
