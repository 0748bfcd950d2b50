"""CalDAV client for talking to a py-taskcal server."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
from lxml import etree

from .errors import AuthorizationError, CalendarError, ConflictError, NotFoundError, ValidationError
from .internal import HTTPError
from .internal.elements import GET_ETAG, NAMESPACE, NSMAP, Prop
from .internal.server import ERROR_KIND_HEADER

_ERRORS_BY_KIND: dict[str, type[CalendarError]] = {
    cls.kind: cls for cls in (ValidationError, NotFoundError, ConflictError, AuthorizationError)
}


@dataclass
class CalendarObject:
    """A calendar object resource as fetched from the server."""

    path: str
    data: bytes
    etag: str


def _propfind_body(*names: str) -> bytes:
    """PROPFIND body for the given properties, or allprop if none are given."""
    root = etree.Element(f"{{{NAMESPACE}}}propfind", nsmap=NSMAP)
    if names:
        root.append(Prop(raw=[etree.Element(name) for name in names]).to_xml())
    else:
        etree.SubElement(root, f"{{{NAMESPACE}}}allprop")
    return etree.tostring(root, xml_declaration=True, encoding="utf-8")


def _error_from_response(response: httpx.Response) -> Exception:
    """Rebuild the server's error from its kind, falling back to HTTPError."""
    message = response.text
    try:
        root = etree.fromstring(response.content)
        text = root.findtext("message")
        if text:
            message = text
    except etree.XMLSyntaxError:
        pass
    error_cls = _ERRORS_BY_KIND.get(response.headers.get(ERROR_KIND_HEADER, ""))
    if error_cls is not None:
        return error_cls(message)
    return HTTPError(response.status_code, Exception(message))


class CalDAVClient:
    """Async CalDAV client."""

    def __init__(self, http_client: httpx.AsyncClient | None = None, endpoint: str = ""):
        """Initialize client.

        Args:
            http_client: HTTP client to use (creates default if None)
            endpoint: Base URL of the server
        """
        self.http_client = http_client or httpx.AsyncClient()
        self.endpoint = endpoint.rstrip("/")

    def _url(self, path: str) -> str:
        return self.endpoint + path

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self.http_client.request(method, self._url(path), **kwargs)
        if response.status_code >= 400:
            raise _error_from_response(response)
        return response

    async def options(self, path: str = "/") -> tuple[list[str], list[str]]:
        """Return the advertised DAV capabilities and allowed methods."""
        response = await self._request("OPTIONS", path)
        caps = [c.strip() for c in response.headers.get("dav", "").split(",") if c.strip()]
        allow = [m.strip() for m in response.headers.get("allow", "").split(",") if m.strip()]
        return caps, allow

    async def get_object(self, path: str) -> CalendarObject:
        response = await self._request("GET", path)
        return CalendarObject(path=path, data=response.content, etag=response.headers.get("etag", ""))

    async def put_object(
        self,
        path: str,
        data: bytes | str,
        if_match: str | None = None,
        if_none_match: bool = False,
    ) -> str:
        """Create or update a calendar object.

        Returns:
            The new ETag

        Raises:
            ConflictError: If a precondition failed
        """
        headers = {"Content-Type": "text/calendar; charset=utf-8"}
        if if_match is not None:
            headers["If-Match"] = if_match
        if if_none_match:
            headers["If-None-Match"] = "*"
        content = data.encode("utf-8") if isinstance(data, str) else data
        response = await self._request("PUT", path, content=content, headers=headers)
        return response.headers.get("etag", "")

    async def delete_object(self, path: str) -> None:
        await self._request("DELETE", path)

    async def list_etags(self, calendar_path: str) -> dict[str, str]:
        """Map member hrefs of a calendar to their ETags."""
        response = await self._request(
            "PROPFIND",
            calendar_path,
            content=_propfind_body(GET_ETAG),
            headers={"Depth": "1", "Content-Type": "application/xml; charset=utf-8"},
        )
        root = etree.fromstring(response.content)
        etags: dict[str, str] = {}
        for resp in root.iterfind(f"{{{NAMESPACE}}}response"):
            href = resp.findtext(f"{{{NAMESPACE}}}href") or ""
            etag = resp.findtext(f".//{{{NAMESPACE}}}getetag")
            if href and etag and not href.endswith("/"):
                etags[href] = etag
        return etags

    async def occurrences(self, calendar_path: str, start: str, end: str) -> list[dict[str, Any]]:
        """Expanded occurrences of a calendar between two ISO 8601 instants."""
        response = await self._request("GET", calendar_path, params={"start": start, "end": end})
        return response.json()["occurrences"]

    async def import_calendar(
        self,
        calendar_path: str,
        data: bytes | str,
        strategy: str = "SKIP",
        preview: bool = False,
    ) -> dict[str, Any]:
        """Upload an iCalendar file for bulk import, or preview the import."""
        params = {"preview": "true"} if preview else {"strategy": strategy}
        content = data.encode("utf-8") if isinstance(data, str) else data
        response = await self._request(
            "POST",
            calendar_path,
            params=params,
            content=content,
            headers={"Content-Type": "text/calendar; charset=utf-8"},
        )
        return response.json()

    async def close(self) -> None:
        await self.http_client.aclose()
