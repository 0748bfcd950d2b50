"""Expansion of recurring tasks into concrete occurrences.

Rules are evaluated with :mod:`dateutil.rrule` in the task's own timezone on
naive wall-clock times, and every candidate is converted back to UTC. A
weekly 14:00 meeting therefore stays at 14:00 local time after a daylight
saving change.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.rrule import rrule, rrulestr

from .errors import NotFoundError, ValidationError
from .models import COLOR_PATTERN, Calendar, DraftTask, Occurrence, Task, as_utc, new_uid
from .store import TaskStore, TaskTransaction

logger = logging.getLogger("py_taskcal.recurrence")

# Upper bound on occurrences returned by a single expansion
MAX_OCCURRENCES = 1000

# Search horizon for next_occurrence when the series has no end
NEXT_OCCURRENCE_HORIZON = timedelta(days=730)


def _zone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, evaluating in UTC", name)
        return UTC


def _to_local(dt: datetime, zone: tzinfo) -> datetime:
    return as_utc(dt).astimezone(zone).replace(tzinfo=None)


def _from_local(dt: datetime, zone: tzinfo) -> datetime:
    return dt.replace(tzinfo=zone).astimezone(UTC)


def _parse_until(value: str, zone: tzinfo) -> datetime:
    """Convert an UNTIL value to naive wall-clock time in ``zone``."""
    value = value.strip().upper()
    try:
        if value.endswith("Z"):
            until = datetime.strptime(value, "%Y%m%dT%H%M%SZ").replace(tzinfo=UTC)
            return _to_local(until, zone)
        if "T" in value:
            return datetime.strptime(value, "%Y%m%dT%H%M%S")
        # A date-only UNTIL includes the whole day
        day = datetime.strptime(value, "%Y%m%d")
        return day + timedelta(days=1) - timedelta(seconds=1)
    except ValueError as e:
        raise ValidationError("invalid recurrence rule") from e


def parse_rule(rule: str, dtstart: datetime, zone: tzinfo = UTC) -> rrule:
    """Parse an RRULE value against a naive local ``dtstart``.

    UNTIL is handled separately so that UTC, floating and date-only forms all
    work with a floating DTSTART.

    Raises:
        ValidationError: If the rule does not parse
    """
    text = rule.strip()
    if text.upper().startswith("RRULE:"):
        text = text[len("RRULE:"):]

    parts = [p.strip() for p in text.split(";") if p.strip()]
    until: datetime | None = None
    kept: list[str] = []
    for part in parts:
        name, _, value = part.partition("=")
        if name.strip().upper() == "UNTIL":
            until = _parse_until(value, zone)
        else:
            kept.append(part)

    if not any(p.upper().startswith("FREQ=") for p in kept):
        raise ValidationError("invalid recurrence rule")

    try:
        parsed = rrulestr(";".join(kept), dtstart=dtstart)
        if until is not None:
            parsed = parsed.replace(until=until)
    except (ValueError, TypeError, KeyError) as e:
        raise ValidationError("invalid recurrence rule") from e
    return parsed


def validate_rule(rule: str, start: datetime | None = None, timezone: str = "UTC") -> None:
    """Check that an RRULE parses.

    Raises:
        ValidationError: If it does not
    """
    zone = _zone(timezone)
    dtstart = _to_local(start, zone) if start is not None else datetime.now(UTC).replace(tzinfo=None)
    parse_rule(rule, dtstart, zone)


def validate_task(task: Task) -> None:
    """Enforce the task invariants before a write.

    Raises:
        ValidationError: On the first violated invariant
    """
    if not task.title or not task.title.strip():
        raise ValidationError("title is required")
    if task.end <= task.start:
        raise ValidationError("end must be after start")
    if task.recurrence_end is not None and task.recurrence_end <= task.start:
        raise ValidationError("recurrence end must be after start")
    if not COLOR_PATTERN.match(task.color or ""):
        raise ValidationError(f"invalid color: {task.color!r}")
    if task.is_recurring:
        validate_rule(task.recurrence_rule or "", task.start, task.timezone)


def add_exception(task: Task, occurrence_start: datetime) -> Task:
    """Return a copy of ``task`` with one more excluded occurrence start."""
    return task.replace(exceptions=task.exceptions | {as_utc(occurrence_start)})


class RecurrenceExpander:
    """Turns tasks into occurrences inside a query window.

    Expansion is side-effect free and deterministic for identical inputs.
    """

    def __init__(self, max_occurrences: int = MAX_OCCURRENCES) -> None:
        self.max_occurrences = max_occurrences

    def _rule_for(self, task: Task) -> tuple[rrule, tzinfo] | None:
        zone = _zone(task.timezone)
        try:
            return parse_rule(task.recurrence_rule or "", _to_local(task.start, zone), zone), zone
        except ValidationError:
            # Rules are validated on write; a bad stored rule expands to nothing
            logger.error("Task %s has an unparseable recurrence rule %r", task.uid, task.recurrence_rule)
            return None

    def expand(self, task: Task, range_start: datetime, range_end: datetime) -> list[Occurrence]:
        """Expand one task over ``[range_start, range_end)``.

        Args:
            task: Task to expand
            range_start: Window start (inclusive)
            range_end: Window end (exclusive)

        Returns:
            Occurrences ordered by start, at most ``max_occurrences`` of them
        """
        range_start = as_utc(range_start)
        range_end = as_utc(range_end)
        if range_end <= range_start:
            return []

        if not task.is_recurring:
            if as_utc(task.start) < range_end and as_utc(task.end) > range_start:
                return [Occurrence.standalone(task)]
            return []

        parsed = self._rule_for(task)
        if parsed is None:
            return []
        rule, zone = parsed

        effective_end = range_end
        if task.recurrence_end is not None:
            effective_end = min(task.recurrence_end, range_end)
        window_start = max(as_utc(task.start), range_start)
        if effective_end <= window_start:
            return []

        occurrences: list[Occurrence] = []
        for local_start in rule.xafter(_to_local(window_start, zone), inc=True):
            start = _from_local(local_start, zone)
            if start >= effective_end:
                break
            if start < window_start or start in task.exceptions:
                continue
            if len(occurrences) >= self.max_occurrences:
                logger.warning(
                    "Occurrence cap of %d reached expanding task %s", self.max_occurrences, task.uid
                )
                break
            occurrences.append(Occurrence.from_series(task, start))
        return occurrences

    def expand_all(
        self, tasks: Iterable[Task], range_start: datetime, range_end: datetime
    ) -> list[Occurrence]:
        """Expand many tasks into one list ordered by start."""
        result: list[Occurrence] = []
        for task in tasks:
            result.extend(self.expand(task, range_start, range_end))
        result.sort(key=lambda o: (o.start, o.task.uid))
        return result

    def next_occurrence(self, task: Task, after: datetime) -> Occurrence | None:
        """First occurrence starting strictly after ``after``."""
        after = as_utc(after)
        if not task.is_recurring:
            return Occurrence.standalone(task) if as_utc(task.start) > after else None

        parsed = self._rule_for(task)
        if parsed is None:
            return None
        rule, zone = parsed

        limit = task.recurrence_end or after + NEXT_OCCURRENCE_HORIZON
        for local_start in rule.xafter(_to_local(after, zone), inc=True):
            start = _from_local(local_start, zone)
            if start > limit:
                return None
            if start <= after or start in task.exceptions:
                continue
            return Occurrence.from_series(task, start)
        return None


async def override_occurrence(
    store: TaskStore,
    calendar: Calendar,
    parent_uid: str,
    occurrence_start: datetime,
    draft: DraftTask,
) -> Task:
    """Detach one occurrence of a series into its own task.

    The parent gains an exception for ``occurrence_start`` and a
    non-recurring task is created from ``draft``, or updated if that
    occurrence was already detached. Both writes commit in one transaction.

    Raises:
        NotFoundError: If the parent does not exist
        ValidationError: If the parent is not recurring or the draft is invalid
    """
    async with store.transaction() as tx:
        parent = await tx.get(calendar, parent_uid)
        if parent is None:
            raise NotFoundError(f"task not found: {parent_uid}")
        parent, standalone = await detach_occurrence(tx, calendar, parent, occurrence_start, draft)
        await tx.save(parent)

    logger.info(
        "Detached occurrence %s of %s into task %s",
        as_utc(occurrence_start).isoformat(),
        parent_uid,
        standalone.uid,
    )
    return standalone


async def detach_occurrence(
    tx: TaskTransaction,
    calendar: Calendar,
    parent: Task,
    occurrence_start: datetime,
    draft: DraftTask,
) -> tuple[Task, Task]:
    """Stage the standalone task for an overridden occurrence.

    If the occurrence was detached before, its standalone task is updated
    from ``draft`` instead of creating a second one. The parent is not
    written; the caller saves the returned parent, which carries the
    exception, inside the same transaction.

    Returns:
        The updated parent and the staged standalone task
    """
    if not parent.is_recurring:
        raise ValidationError("task is not recurring")

    occurrence_start = as_utc(occurrence_start)
    current = await tx.find_detached(calendar, parent.uid, occurrence_start)
    if current is not None:
        standalone = draft.apply_to(current)
    else:
        standalone = draft.to_task(calendar.id, uid=new_uid()).replace(
            color=draft.color or parent.color,
            parent_uid=parent.uid,
            recurrence_id=occurrence_start,
        )
    standalone = standalone.replace(recurrence_rule=None, recurrence_end=None, exceptions=set())
    validate_task(standalone)
    await tx.save(standalone)
    return add_exception(parent, occurrence_start), standalone
