"""Task model shared by the recurrence expander, the iCalendar codec and the server."""

from __future__ import annotations

import dataclasses
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from hashlib import md5

DEFAULT_COLOR = "#3788d8"
COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 2500
MAX_LOCATION_LENGTH = 200

# Reminder offsets are bounded to one month before the start
MAX_REMINDER_MINUTES = 31 * 24 * 60


def as_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def new_uid() -> str:
    """Generate a fresh task identifier."""
    return str(uuid.uuid4())


class NotificationType(str, Enum):
    """Delivery channel of a reminder."""

    PUSH = "PUSH"
    EMAIL = "EMAIL"
    TELEGRAM = "TELEGRAM"


@dataclass
class Reminder:
    """Reminder fired ``minutes_before`` the start of a task."""

    minutes_before: int
    notification_type: NotificationType = NotificationType.PUSH


@dataclass(frozen=True)
class Principal:
    """Authenticated user, addressable by username or email."""

    username: str
    email: str = ""

    def matches(self, segment: str) -> bool:
        """Check whether a URL user segment names this principal."""
        if not segment:
            return False
        return segment == self.username or (bool(self.email) and segment == self.email)


@dataclass
class Calendar:
    """A user's calendar, addressed as a CalDAV collection by its slug."""

    id: str
    owner: Principal
    slug: str
    name: str
    description: str = ""
    color: str = DEFAULT_COLOR
    timezone: str = "UTC"


@dataclass
class Task:
    """A stored calendar entry, optionally recurring.

    ``start`` and ``end`` are aware datetimes. ``timezone`` names the IANA zone
    in which a recurrence rule is evaluated, so that a series keeps its
    wall-clock time across daylight saving transitions.
    """

    uid: str
    title: str
    start: datetime
    end: datetime
    calendar_id: str = ""
    description: str | None = None
    location: str | None = None
    timezone: str = "UTC"
    is_all_day: bool = False
    color: str = DEFAULT_COLOR
    recurrence_rule: str | None = None
    recurrence_end: datetime | None = None
    exceptions: set[datetime] = field(default_factory=set)
    reminders: list[Reminder] = field(default_factory=list)
    parent_uid: str | None = None
    # Original start of the series occurrence this task replaces
    recurrence_id: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.start.tzinfo is None:
            self.start = self.start.replace(tzinfo=UTC)
        if self.end.tzinfo is None:
            self.end = self.end.replace(tzinfo=UTC)
        if self.recurrence_end is not None:
            self.recurrence_end = as_utc(self.recurrence_end)
        if self.recurrence_id is not None:
            self.recurrence_id = as_utc(self.recurrence_id)
        self.exceptions = {as_utc(dt) for dt in self.exceptions}

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurrence_rule and self.recurrence_rule.strip())

    @property
    def etag(self) -> str:
        return compute_etag(self)

    def replace(self, **changes: object) -> Task:
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)


def exceptions_to_string(exceptions: set[datetime]) -> str:
    """Serialise an exception set as a sorted, comma-joined list of UTC instants."""
    return ",".join(as_utc(dt).isoformat() for dt in sorted(exceptions))


def exceptions_from_string(value: str | None) -> set[datetime]:
    """Parse the output of :func:`exceptions_to_string`.

    Unparseable entries are dropped.
    """
    result: set[datetime] = set()
    if not value:
        return result
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            result.add(as_utc(datetime.fromisoformat(part)))
        except ValueError:
            continue
    return result


def compute_etag(task: Task) -> str:
    """Content fingerprint of a task.

    Only identity and content fields contribute, not the audit timestamps, so
    writing identical content twice yields the same ETag.
    """
    parts = [
        task.uid,
        task.title,
        task.description or "",
        task.location or "",
        as_utc(task.start).isoformat(),
        as_utc(task.end).isoformat(),
        task.timezone,
        "1" if task.is_all_day else "0",
        task.color,
        task.recurrence_rule or "",
        task.recurrence_end.isoformat() if task.recurrence_end else "",
        exceptions_to_string(task.exceptions),
        task.parent_uid or "",
        task.recurrence_id.isoformat() if task.recurrence_id else "",
        ";".join(f"{r.minutes_before}:{r.notification_type.value}" for r in task.reminders),
    ]
    return md5("\x1f".join(parts).encode("utf-8")).hexdigest()


class OccurrenceKind(str, Enum):
    """Where an occurrence comes from."""

    FROM_SERIES = "from_series"
    STANDALONE = "standalone"


@dataclass(frozen=True)
class Occurrence:
    """One concrete instance of a task inside a query window.

    ``kind`` tags the payload: for ``FROM_SERIES`` the task is the recurring
    parent that generated this instance, for ``STANDALONE`` it is a
    non-recurring task (including tasks detached from a series by an
    override).
    """

    kind: OccurrenceKind
    task: Task
    start: datetime
    end: datetime
    is_original: bool

    @classmethod
    def from_series(cls, parent: Task, start: datetime) -> Occurrence:
        return cls(
            kind=OccurrenceKind.FROM_SERIES,
            task=parent,
            start=start,
            end=start + parent.duration,
            is_original=start == as_utc(parent.start),
        )

    @classmethod
    def standalone(cls, task: Task) -> Occurrence:
        return cls(
            kind=OccurrenceKind.STANDALONE,
            task=task,
            start=as_utc(task.start),
            end=as_utc(task.end),
            is_original=True,
        )

    @property
    def parent(self) -> Task | None:
        """The generating series, if this occurrence came from one."""
        return self.task if self.kind is OccurrenceKind.FROM_SERIES else None

    def to_dict(self) -> dict[str, object]:
        return {
            "uid": self.task.uid,
            "title": self.task.title,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "all_day": self.task.is_all_day,
            "color": self.task.color,
            "kind": self.kind.value,
            "original": self.is_original,
        }


@dataclass
class DraftTask:
    """Task-creation request produced by decoding an iCalendar component."""

    uid: str
    title: str
    start: datetime
    end: datetime
    description: str | None = None
    location: str | None = None
    timezone: str = "UTC"
    is_all_day: bool = False
    color: str | None = None
    recurrence_rule: str | None = None
    exceptions: set[datetime] = field(default_factory=set)
    reminders: list[Reminder] = field(default_factory=list)
    recurrence_id: datetime | None = None
    component: str = "VEVENT"

    def to_task(self, calendar_id: str, uid: str | None = None) -> Task:
        """Build a new task from this draft."""
        now = datetime.now(UTC)
        return Task(
            uid=uid or self.uid,
            title=self.title,
            start=self.start,
            end=self.end,
            calendar_id=calendar_id,
            description=self.description,
            location=self.location,
            timezone=self.timezone,
            is_all_day=self.is_all_day,
            color=self.color or DEFAULT_COLOR,
            recurrence_rule=self.recurrence_rule,
            exceptions=set(self.exceptions),
            reminders=list(self.reminders),
            created_at=now,
            updated_at=now,
        )

    def apply_to(self, task: Task) -> Task:
        """Overwrite the content fields of an existing task, keeping its identity."""
        return task.replace(
            title=self.title,
            start=self.start,
            end=self.end,
            description=self.description,
            location=self.location,
            timezone=self.timezone,
            is_all_day=self.is_all_day,
            color=self.color or task.color,
            recurrence_rule=self.recurrence_rule,
            exceptions=set(self.exceptions),
            reminders=list(self.reminders),
            updated_at=datetime.now(UTC),
        )
