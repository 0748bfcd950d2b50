"""Conversion between tasks and iCalendar text.

Encoding renders tasks as VEVENTs (with VALARMs for reminders) inside one
VCALENDAR. Decoding accepts VEVENT and VTODO components and produces
:class:`DraftTask` requests. A component that fails in either direction is
logged and skipped, the rest of the batch still goes through.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from hashlib import sha256
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from icalendar import Alarm, Component, Event
from icalendar import Calendar as iCalendar
from icalendar.prop import vRecur

from .errors import ValidationError
from .models import (
    COLOR_PATTERN,
    MAX_DESCRIPTION_LENGTH,
    MAX_LOCATION_LENGTH,
    MAX_REMINDER_MINUTES,
    MAX_TITLE_LENGTH,
    DraftTask,
    NotificationType,
    Reminder,
    Task,
    as_utc,
)
from .recurrence import validate_rule

logger = logging.getLogger("py_taskcal.ical")

PRODID = "-//PyTaskcal//PyTaskcal 1.0//EN"
COLOR_PROPERTY = "X-APPLE-CALENDAR-COLOR"

DEFAULT_EVENT_TITLE = "Untitled Event"
DEFAULT_TODO_TITLE = "Untitled Task"
TODO_PREFIX = "[TODO] "
TODO_DURATION = timedelta(minutes=30)
DEFAULT_EVENT_DURATION = timedelta(hours=1)

# Properties whose parse errors make a component unusable
_TIMING_PROPERTIES = ("DTSTART", "DTEND", "DUE", "DURATION", "RRULE")


@dataclass
class DecodeIssue:
    """A component that could not be decoded."""

    index: int
    message: str
    uid: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "uid": self.uid, "message": self.message}


@dataclass
class DecodeResult:
    """Drafts decoded from a calendar, plus one issue per failed component."""

    drafts: list[DraftTask] = field(default_factory=list)
    errors: list[DecodeIssue] = field(default_factory=list)


def _zone(name: str) -> ZoneInfo | None:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def _tz_name(dt: datetime) -> str:
    tz = dt.tzinfo
    if tz is None:
        return "UTC"
    name = getattr(tz, "key", None) or getattr(tz, "zone", None)
    if name and _zone(name) is not None:
        return name
    return "UTC"


def _truncate(value: str | None, limit: int, field_name: str) -> str | None:
    if value is None:
        return None
    if len(value) > limit:
        logger.warning("Truncating %s from %d to %d characters", field_name, len(value), limit)
        return value[:limit]
    return value


def _split_components(text: str) -> list[str]:
    """Cut raw calendar text into top-level VEVENT/VTODO blocks."""
    blocks: list[str] = []
    current: list[str] = []
    depth = 0
    for line in text.splitlines():
        upper = line.strip().upper()
        if depth == 0:
            if upper in ("BEGIN:VEVENT", "BEGIN:VTODO"):
                current = [line]
                depth = 1
            continue
        current.append(line)
        if upper.startswith("BEGIN:"):
            depth += 1
        elif upper.startswith("END:"):
            depth -= 1
            if depth == 0:
                blocks.append("\r\n".join(current) + "\r\n")
    return blocks


class ICSCodec:
    """Encodes tasks to iCalendar and decodes iCalendar into draft tasks."""

    def __init__(self, prodid: str = PRODID) -> None:
        self.prodid = prodid

    # Encoding

    def new_calendar(self, calendar_name: str | None = None) -> iCalendar:
        cal = iCalendar()
        cal.add("prodid", self.prodid)
        cal.add("version", "2.0")
        cal.add("calscale", "GREGORIAN")
        if calendar_name:
            cal.add("x-wr-calname", calendar_name)
        return cal

    def task_to_event(self, task: Task) -> Event:
        """Render one task as a VEVENT."""
        event = Event()
        event.add("uid", task.uid)
        event.add("dtstamp", datetime.now(UTC).replace(microsecond=0))
        event.add("summary", task.title)
        if task.description:
            event.add("description", task.description)
        if task.location:
            event.add("location", task.location)

        if task.is_all_day:
            zone = _zone(task.timezone) or UTC
            start_day = task.start.astimezone(zone).date()
            end_day = task.end.astimezone(zone).date()
            if end_day <= start_day:
                end_day = start_day + timedelta(days=1)
            event.add("dtstart", start_day)
            event.add("dtend", end_day)
        else:
            event.add("dtstart", as_utc(task.start))
            event.add("dtend", as_utc(task.end))

        if task.created_at:
            event.add("created", as_utc(task.created_at))
        if task.updated_at:
            event.add("last-modified", as_utc(task.updated_at))

        if task.is_recurring:
            rule = (task.recurrence_rule or "").strip()
            if rule.upper().startswith("RRULE:"):
                rule = rule[len("RRULE:"):]
            event.add("rrule", vRecur.from_ical(rule))
            if task.exceptions:
                if task.is_all_day:
                    zone = _zone(task.timezone) or UTC
                    event.add("exdate", sorted({dt.astimezone(zone).date() for dt in task.exceptions}))
                else:
                    event.add("exdate", sorted(task.exceptions))

        if task.color:
            event.add(COLOR_PROPERTY, task.color)

        for reminder in task.reminders:
            alarm = Alarm()
            alarm.add("action", "DISPLAY")
            alarm.add("description", f"Reminder: {task.title}")
            alarm.add("trigger", timedelta(minutes=-reminder.minutes_before))
            event.add_component(alarm)

        return event

    def encode(self, tasks: list[Task], calendar_name: str | None = None) -> bytes:
        """Encode tasks into one VCALENDAR, skipping tasks that fail."""
        cal = self.new_calendar(calendar_name)
        exported = 0
        for task in tasks:
            try:
                cal.add_component(self.task_to_event(task))
                exported += 1
            except Exception as e:
                logger.warning("Skipping task %s during export: %s", task.uid, e)
        logger.debug("Exported %d of %d tasks", exported, len(tasks))
        return cal.to_ical()

    def encode_task(self, task: Task) -> bytes:
        """Encode a single task as a complete calendar object resource.

        Raises:
            ValidationError: If the task cannot be rendered
        """
        cal = self.new_calendar()
        try:
            cal.add_component(self.task_to_event(task))
        except ValueError as e:
            raise ValidationError(f"cannot encode task {task.uid}: {e}") from e
        return cal.to_ical()

    # Decoding

    def _components(self, text: str) -> list[Component | DecodeIssue]:
        try:
            cal = iCalendar.from_ical(text)
        except ValueError as e:
            logger.warning("Calendar did not parse as a whole (%s), decoding per component", e)
        else:
            return [c for c in cal.walk() if c.name in ("VEVENT", "VTODO")]

        items: list[Component | DecodeIssue] = []
        blocks = _split_components(text)
        if not blocks:
            raise ValidationError("malformed calendar data")
        for index, block in enumerate(blocks):
            try:
                items.append(Component.from_ical(block))
            except ValueError as e:
                items.append(DecodeIssue(index=index, message=f"unparseable component: {e}"))
        return items

    def decode(self, data: bytes | str) -> DecodeResult:
        """Decode every VEVENT and VTODO in ``data``.

        Raises:
            ValidationError: If ``data`` is not iCalendar at all
        """
        if isinstance(data, bytes):
            try:
                data = data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ValidationError("calendar data is not valid UTF-8") from e
        if not data.strip():
            raise ValidationError("empty calendar data")

        result = DecodeResult()
        for index, item in enumerate(self._components(data)):
            if isinstance(item, DecodeIssue):
                result.errors.append(item)
                continue
            uid = str(item.get("uid")) if item.get("uid") else None
            try:
                result.drafts.append(self.decode_component(item))
            except (ValidationError, ValueError, TypeError) as e:
                message = e.message if isinstance(e, ValidationError) else str(e)
                logger.warning("Skipping component %d (%s): %s", index, uid, message)
                result.errors.append(DecodeIssue(index=index, message=message, uid=uid))
        return result

    def decode_one(self, data: bytes | str) -> tuple[DraftTask, list[DraftTask]]:
        """Decode a single calendar object resource.

        Returns:
            The master component and any RECURRENCE-ID overrides

        Raises:
            ValidationError: If the body is malformed or does not hold exactly one event
        """
        result = self.decode(data)
        if result.errors:
            raise ValidationError(result.errors[0].message)
        masters = [d for d in result.drafts if d.recurrence_id is None]
        overrides = [d for d in result.drafts if d.recurrence_id is not None]
        if len(masters) != 1:
            raise ValidationError(f"expected exactly one event, found {len(masters)}")
        return masters[0], overrides

    def decode_component(self, comp: Component) -> DraftTask:
        """Decode one VEVENT or VTODO."""
        for name, message in getattr(comp, "errors", []) or []:
            if name.upper() in _TIMING_PROPERTIES:
                raise ValidationError(f"invalid {name.upper()}: {message}")

        if comp.name == "VTODO":
            draft = self._decode_todo(comp)
        else:
            draft = self._decode_event(comp)

        draft.description = _truncate(self._text(comp, "description"), MAX_DESCRIPTION_LENGTH, "description")
        draft.location = _truncate(self._text(comp, "location"), MAX_LOCATION_LENGTH, "location")
        draft.color = self._color(comp)
        draft.recurrence_rule = self._rrule(comp, draft)
        draft.exceptions = self._exdates(comp, draft)
        draft.reminders = self._alarms(comp, draft)

        recurrence_id = self._temporal(comp, "recurrence-id")
        if recurrence_id is not None:
            draft.recurrence_id = self._instant(recurrence_id, draft.timezone)
        return draft

    def _text(self, comp: Component, name: str) -> str | None:
        value = comp.get(name)
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def _temporal(self, comp: Component, name: str) -> date | None:
        prop = comp.get(name)
        if prop is None:
            return None
        if isinstance(prop, list):
            prop = prop[0]
        value = getattr(prop, "dt", None)
        if not isinstance(value, date):
            raise ValidationError(f"invalid {name.upper()}: {prop!r}")
        return value

    def _instant(self, value: date, timezone: str = "UTC") -> datetime:
        """Map a DATE or DATE-TIME value to an aware datetime."""
        if isinstance(value, datetime):
            return as_utc(value) if value.tzinfo is None else value
        return datetime.combine(value, time(), tzinfo=_zone(timezone) or UTC)

    def _uid(self, comp: Component) -> str:
        uid = self._text(comp, "uid")
        if uid:
            return uid
        seed = (self._text(comp, "summary") or "untitled") + (
            comp["dtstart"].to_ical().decode() if comp.get("dtstart") is not None else ""
        )
        generated = "taskcal-generated-" + sha256(seed.encode("utf-8")).hexdigest()[:16]
        logger.warning("Component without UID, generated %s", generated)
        return generated

    def _decode_event(self, comp: Component) -> DraftTask:
        title = _truncate(self._text(comp, "summary") or DEFAULT_EVENT_TITLE, MAX_TITLE_LENGTH, "title")
        start_value = self._temporal(comp, "dtstart")
        end_value = self._temporal(comp, "dtend")
        duration = comp.get("duration")

        if start_value is None:
            start = datetime.now(UTC).replace(microsecond=0)
            return DraftTask(
                uid=self._uid(comp),
                title=title or DEFAULT_EVENT_TITLE,
                start=start,
                end=start + DEFAULT_EVENT_DURATION,
            )

        is_all_day = not isinstance(start_value, datetime)
        timezone = "UTC" if is_all_day else _tz_name(start_value)
        start = self._instant(start_value, timezone)

        if end_value is not None:
            end = self._instant(end_value, timezone)
        elif duration is not None and isinstance(getattr(duration, "dt", None), timedelta):
            end = start + duration.dt
        else:
            end = start + (timedelta(days=1) if is_all_day else DEFAULT_EVENT_DURATION)

        if end <= start:
            logger.warning("Event %s ends before it starts, using default duration", comp.get("uid"))
            end = start + (timedelta(days=1) if is_all_day else DEFAULT_EVENT_DURATION)

        return DraftTask(
            uid=self._uid(comp),
            title=title or DEFAULT_EVENT_TITLE,
            start=start,
            end=end,
            timezone=timezone,
            is_all_day=is_all_day,
        )

    def _decode_todo(self, comp: Component) -> DraftTask:
        title = _truncate(
            TODO_PREFIX + (self._text(comp, "summary") or DEFAULT_TODO_TITLE), MAX_TITLE_LENGTH, "title"
        )
        due = self._temporal(comp, "due")

        if isinstance(due, datetime):
            timezone = _tz_name(due)
            start = self._instant(due, timezone)
            return DraftTask(
                uid=self._uid(comp),
                title=title or TODO_PREFIX.strip(),
                start=start,
                end=start + TODO_DURATION,
                timezone=timezone,
                component="VTODO",
            )

        day = due if due is not None else datetime.now(UTC).date()
        start = datetime.combine(day, time(), tzinfo=UTC)
        return DraftTask(
            uid=self._uid(comp),
            title=title or TODO_PREFIX.strip(),
            start=start,
            end=start + timedelta(days=1),
            is_all_day=True,
            component="VTODO",
        )

    def _color(self, comp: Component) -> str | None:
        color = self._text(comp, COLOR_PROPERTY)
        if color is None:
            return None
        if not COLOR_PATTERN.match(color):
            logger.warning("Ignoring invalid color %r", color)
            return None
        return color

    def _rrule(self, comp: Component, draft: DraftTask) -> str | None:
        prop = comp.get("rrule")
        if prop is None:
            return None
        if isinstance(prop, list):
            prop = prop[0]
        rule = prop.to_ical().decode("utf-8") if hasattr(prop, "to_ical") else str(prop)
        validate_rule(rule, draft.start, draft.timezone)
        return rule

    def _exdates(self, comp: Component, draft: DraftTask) -> set[datetime]:
        prop = comp.get("exdate")
        if prop is None:
            return set()
        props = prop if isinstance(prop, list) else [prop]
        zone = _zone(draft.timezone) or UTC
        local_time = draft.start.astimezone(zone).time().replace(tzinfo=None)
        exceptions: set[datetime] = set()
        for item in props:
            for value in getattr(item, "dts", []):
                dt = value.dt
                if isinstance(dt, datetime):
                    exceptions.add(as_utc(dt))
                elif isinstance(dt, date):
                    exceptions.add(as_utc(datetime.combine(dt, local_time, tzinfo=zone)))
        return exceptions

    def _alarms(self, comp: Component, draft: DraftTask) -> list[Reminder]:
        reminders: list[Reminder] = []
        for alarm in comp.subcomponents:
            if alarm.name != "VALARM":
                continue
            trigger = alarm.get("trigger")
            value = getattr(trigger, "dt", None)
            if isinstance(value, timedelta):
                minutes = int(-value.total_seconds() // 60)
            elif isinstance(value, datetime):
                minutes = int((draft.start - as_utc(value)).total_seconds() // 60)
            else:
                logger.warning("Ignoring VALARM without a usable TRIGGER")
                continue
            if minutes <= 0 or minutes > MAX_REMINDER_MINUTES:
                logger.warning("Ignoring VALARM with out-of-range offset of %d minutes", minutes)
                continue
            reminders.append(Reminder(minutes_before=minutes, notification_type=NotificationType.EMAIL))
        return reminders
