"""Request/response debug logging for the CalDAV server."""

from __future__ import annotations

import logging
from typing import Any

from lxml import etree

logger = logging.getLogger("py_taskcal.http")

# Request headers worth showing when tracing a client
REQUEST_HEADERS = [
    "Content-Type",
    "Content-Length",
    "Depth",
    "If-Match",
    "If-None-Match",
    "User-Agent",
    "Authorization",
]
RESPONSE_HEADERS = ["Content-Type", "Content-Length", "ETag", "Location", "DAV", "Allow", "X-Error-Kind"]

BODY_PREVIEW_BYTES = 2000


def format_xml(xml_bytes: bytes | str) -> str:
    """Pretty-print XML, returning the input unchanged if it does not parse."""
    if isinstance(xml_bytes, str):
        xml_bytes = xml_bytes.encode("utf-8")
    try:
        parser = etree.XMLParser(remove_blank_text=True, resolve_entities=False)
        root = etree.fromstring(xml_bytes, parser)
        return etree.tostring(root, pretty_print=True, encoding="unicode")
    except etree.XMLSyntaxError:
        return xml_bytes.decode("utf-8", errors="replace")


def is_xml_content(content_type: str | None) -> bool:
    if not content_type:
        return False
    return any(t in content_type.lower() for t in ("application/xml", "text/xml"))


def is_calendar_content(content_type: str | None) -> bool:
    return bool(content_type) and "text/calendar" in content_type.lower()


def _log_headers(headers: dict[str, Any], names: list[str]) -> None:
    logger.info("Headers:")
    for header in names:
        value = headers.get(header.lower(), headers.get(header))
        if value:
            if header == "Authorization":
                value = "[REDACTED]"
            logger.info(f"  {header}: {value}")


def _log_body(title: str, content_type: str, body: bytes) -> None:
    logger.info("-" * 80)
    logger.info(f"{title}:")
    if is_xml_content(content_type):
        text = format_xml(body)
    elif is_calendar_content(content_type):
        text = body[:BODY_PREVIEW_BYTES].decode("utf-8", errors="replace")
    else:
        text = f"[{len(body)} bytes] " + body[:200].decode("utf-8", errors="replace")
    for line in text.splitlines():
        if line.strip():
            logger.info(f"  {line}")
    if is_calendar_content(content_type) and len(body) > BODY_PREVIEW_BYTES:
        logger.info(f"  ... ({len(body) - BODY_PREVIEW_BYTES} more bytes)")


def log_request(method: str, path: str, headers: dict[str, str], body: bytes | None) -> None:
    """Log an incoming HTTP request."""
    logger.info("=" * 80)
    logger.info(f">>> {method} {path}")
    logger.info("-" * 80)
    _log_headers(headers, REQUEST_HEADERS)
    if body:
        _log_body("Request Body", headers.get("content-type", ""), body)
    logger.info("=" * 80)


def log_response(status_code: int, headers: dict[str, Any], body: bytes | None) -> None:
    """Log an outgoing HTTP response."""
    logger.info("=" * 80)
    logger.info(f"<<< {status_code}")
    logger.info("-" * 80)
    _log_headers(headers, RESPONSE_HEADERS)
    if body:
        _log_body("Response Body", headers.get("content-type", ""), body)
    logger.info("=" * 80)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure the ``py_taskcal`` logger hierarchy."""
    root = logging.getLogger("py_taskcal")
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
    root.propagate = False


def setup_debug_logging() -> None:
    """Enable request/response tracing in addition to normal logging."""
    setup_logging(logging.DEBUG)

    # The trace is pre-formatted, print it bare
    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
