"""Internal server utilities for the CalDAV protocol layer."""

from __future__ import annotations

import logging

from lxml import etree
from starlette.requests import Request
from starlette.responses import Response as StarletteResponse

from .elements import MultiStatus, PropFind
from .internal import Depth, HTTPError, http_error_from_error, parse_depth

logger = logging.getLogger("py_taskcal.server")

ERROR_KIND_HEADER = "X-Error-Kind"


def serve_error(err: Exception) -> StarletteResponse:
    """Serve an error response.

    The body is a small XML document carrying the error kind and message;
    the kind is repeated in a header so clients need not parse the body.
    """
    http_err = http_error_from_error(err) or HTTPError(500, err)
    if http_err.code >= 500:
        logger.error("Request failed: %s", http_err, exc_info=err)

    root = etree.Element("error")
    root.set("kind", http_err.kind)
    message = etree.SubElement(root, "message")
    inner = http_err.err
    message.text = getattr(inner, "message", None) or (str(inner) if inner else str(http_err))

    headers = {ERROR_KIND_HEADER: http_err.kind}
    if http_err.code == 401:
        headers["WWW-Authenticate"] = 'Basic realm="py-taskcal"'

    return StarletteResponse(
        content=etree.tostring(root, encoding="utf-8", xml_declaration=True),
        status_code=http_err.code,
        media_type="application/xml; charset=utf-8",
        headers=headers,
    )


async def decode_xml_request(request: Request) -> etree._Element:
    """Decode XML request body."""
    body = await request.body()
    try:
        return etree.fromstring(body, parser=etree.XMLParser(resolve_entities=False))
    except etree.XMLSyntaxError as e:
        raise HTTPError(400, e) from e


async def is_request_body_empty(request: Request) -> bool:
    """Check if request body is empty."""
    body = await request.body()
    return len(body.strip()) == 0


async def read_propfind(request: Request) -> PropFind:
    """Parse a PROPFIND body; an empty body means allprop."""
    if await is_request_body_empty(request):
        return PropFind(allprop=True)
    xml_elem = await decode_xml_request(request)
    try:
        return PropFind.from_xml(xml_elem)
    except ValueError as e:
        raise HTTPError(400, e) from e


def request_depth(request: Request, default: Depth = Depth.ZERO) -> Depth:
    """Read the Depth header."""
    depth_str = request.headers.get("depth", "").strip().lower()
    if not depth_str:
        return default
    return parse_depth(depth_str)


def serve_multistatus(ms: MultiStatus) -> StarletteResponse:
    """Serve a multistatus response."""
    xml_elem = ms.to_xml()
    xml_bytes = etree.tostring(xml_elem, encoding="utf-8", xml_declaration=True, pretty_print=True)
    return StarletteResponse(
        content=xml_bytes,
        status_code=207,  # Multi-Status
        media_type="application/xml; charset=utf-8",
    )
