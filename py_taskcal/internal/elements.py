"""WebDAV XML elements."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import format_datetime
from http import HTTPStatus
from urllib.parse import quote

from lxml import etree

# WebDAV namespace
NAMESPACE = "DAV:"
CALDAV_NAMESPACE = "urn:ietf:params:xml:ns:caldav"
APPLE_ICAL_NAMESPACE = "http://apple.com/ns/ical/"
CALENDARSERVER_NAMESPACE = "http://calendarserver.org/ns/"

NSMAP = {
    "D": NAMESPACE,
    "C": CALDAV_NAMESPACE,
    "A": APPLE_ICAL_NAMESPACE,
    "CS": CALENDARSERVER_NAMESPACE,
}

# Common XML names
RESOURCE_TYPE = f"{{{NAMESPACE}}}resourcetype"
DISPLAY_NAME = f"{{{NAMESPACE}}}displayname"
GET_CONTENT_TYPE = f"{{{NAMESPACE}}}getcontenttype"
GET_LAST_MODIFIED = f"{{{NAMESPACE}}}getlastmodified"
GET_ETAG = f"{{{NAMESPACE}}}getetag"
COLLECTION = f"{{{NAMESPACE}}}collection"
CURRENT_USER_PRINCIPAL = f"{{{NAMESPACE}}}current-user-principal"
PRINCIPAL = f"{{{NAMESPACE}}}principal"
CALENDAR = f"{{{CALDAV_NAMESPACE}}}calendar"
CALENDAR_HOME_SET = f"{{{CALDAV_NAMESPACE}}}calendar-home-set"
CALENDAR_DESCRIPTION = f"{{{CALDAV_NAMESPACE}}}calendar-description"
SUPPORTED_COMPONENT_SET = f"{{{CALDAV_NAMESPACE}}}supported-calendar-component-set"
CALENDAR_COLOR = f"{{{APPLE_ICAL_NAMESPACE}}}calendar-color"
GET_CTAG = f"{{{CALENDARSERVER_NAMESPACE}}}getctag"


@dataclass
class Status:
    """HTTP status for WebDAV responses."""

    code: int
    text: str = ""

    def to_string(self) -> str:
        """Marshal status to text."""
        text = self.text if self.text else HTTPStatus(self.code).phrase
        return f"HTTP/1.1 {self.code} {text}"


@dataclass
class Href:
    """WebDAV href element."""

    path: str

    def __str__(self) -> str:
        return quote(self.path, safe="/@:+")


@dataclass
class Prop:
    """WebDAV prop element."""

    raw: list[etree._Element] = field(default_factory=list)

    def to_xml(self) -> etree._Element:
        """Convert to XML element."""
        prop = etree.Element(f"{{{NAMESPACE}}}prop", nsmap=NSMAP)
        for elem in self.raw:
            prop.append(elem)
        return prop

    @staticmethod
    def from_xml(element: etree._Element) -> Prop:
        """Parse from XML element."""
        return Prop(raw=[child for child in element if isinstance(child.tag, str)])

    def names(self) -> list[str]:
        """Clark-notation names of the requested properties."""
        return [elem.tag for elem in self.raw]


@dataclass
class PropStat:
    """WebDAV propstat element."""

    prop: Prop
    status: Status

    def to_xml(self) -> etree._Element:
        """Convert to XML element."""
        propstat = etree.Element(f"{{{NAMESPACE}}}propstat", nsmap=NSMAP)
        propstat.append(self.prop.to_xml())

        status_el = etree.SubElement(propstat, f"{{{NAMESPACE}}}status")
        status_el.text = self.status.to_string()
        return propstat


@dataclass
class Response:
    """WebDAV response element."""

    href: Href
    propstats: list[PropStat] = field(default_factory=list)
    status: Status | None = None

    def to_xml(self) -> etree._Element:
        """Convert to XML element."""
        resp = etree.Element(f"{{{NAMESPACE}}}response", nsmap=NSMAP)

        href_el = etree.SubElement(resp, f"{{{NAMESPACE}}}href")
        href_el.text = str(self.href)

        for propstat in self.propstats:
            resp.append(propstat.to_xml())

        if self.status:
            status_el = etree.SubElement(resp, f"{{{NAMESPACE}}}status")
            status_el.text = self.status.to_string()

        return resp


@dataclass
class MultiStatus:
    """WebDAV multistatus response."""

    responses: list[Response] = field(default_factory=list)

    def to_xml(self) -> etree._Element:
        """Convert to XML element."""
        root = etree.Element(f"{{{NAMESPACE}}}multistatus", nsmap=NSMAP)
        for resp in self.responses:
            root.append(resp.to_xml())
        return root


@dataclass
class PropFind:
    """WebDAV PROPFIND request."""

    prop: Prop | None = None
    allprop: bool = False
    propname: bool = False

    @staticmethod
    def from_xml(element: etree._Element) -> PropFind:
        """Parse from XML element."""
        if element.tag != f"{{{NAMESPACE}}}propfind":
            raise ValueError(f"expected DAV:propfind, got {element.tag}")

        prop_el = element.find(f"{{{NAMESPACE}}}prop")
        prop = Prop.from_xml(prop_el) if prop_el is not None else None

        allprop = element.find(f"{{{NAMESPACE}}}allprop") is not None
        propname = element.find(f"{{{NAMESPACE}}}propname") is not None

        if prop is None and not propname:
            allprop = True
        return PropFind(prop=prop, allprop=allprop, propname=propname)


def resourcetype(*types: str) -> etree._Element:
    """Create a resourcetype element holding the given markers."""
    rt = etree.Element(RESOURCE_TYPE, nsmap=NSMAP)
    for t in types:
        etree.SubElement(rt, t)
    return rt


def text_property(tag: str, text: str) -> etree._Element:
    """Create a property element with text content."""
    elem = etree.Element(tag, nsmap=NSMAP)
    elem.text = text
    return elem


def href_property(tag: str, path: str) -> etree._Element:
    """Create a property element wrapping one href."""
    elem = etree.Element(tag, nsmap=NSMAP)
    href = etree.SubElement(elem, f"{{{NAMESPACE}}}href")
    href.text = str(Href(path))
    return elem


def etag_property(etag: str) -> etree._Element:
    """Create getetag element; ETags are quoted on the wire."""
    return text_property(GET_ETAG, etag if etag.startswith('"') else f'"{etag}"')


def last_modified_property(dt: datetime) -> etree._Element:
    """Create getlastmodified element in HTTP date format."""
    return text_property(GET_LAST_MODIFIED, format_datetime(dt.astimezone(UTC), usegmt=True))


def supported_components_property(components: list[str]) -> etree._Element:
    """Create supported-calendar-component-set element."""
    elem = etree.Element(SUPPORTED_COMPONENT_SET, nsmap=NSMAP)
    for comp in components:
        comp_elem = etree.SubElement(elem, f"{{{CALDAV_NAMESPACE}}}comp")
        comp_elem.set("name", comp)
    return elem
