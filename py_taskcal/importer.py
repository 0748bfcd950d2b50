"""Bulk import of decoded events into a calendar.

Incoming events are matched against the calendar's existing tasks by UID.
:meth:`DuplicateClassifier.classify` reports what an import would do without
writing anything, :meth:`DuplicateClassifier.apply` performs it according to
a :class:`DuplicateStrategy`.
"""

from __future__ import annotations

import itertools
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import CalendarError, ValidationError
from .ical import DecodeIssue
from .models import Calendar, DraftTask, Task, as_utc
from .recurrence import detach_occurrence, validate_task
from .store import TaskStore

logger = logging.getLogger("py_taskcal.importer")

PREVIEW_DATE_FORMAT = "%Y-%m-%d %H:%M"


class DuplicateStrategy(str, Enum):
    """What to do with an incoming event whose UID already exists."""

    SKIP = "SKIP"
    UPDATE = "UPDATE"
    CREATE_ANYWAY = "CREATE_ANYWAY"

    @classmethod
    def parse(cls, value: str | None) -> DuplicateStrategy:
        if not value:
            return cls.SKIP
        try:
            return cls(value.strip().upper())
        except ValueError as e:
            raise ValidationError(f"unknown duplicate strategy: {value!r}") from e


def _format(dt: datetime) -> str:
    return as_utc(dt).strftime(PREVIEW_DATE_FORMAT)


@dataclass
class DuplicateInfo:
    """An incoming event that matches an existing task."""

    uid: str
    title: str
    existing_start: datetime
    incoming_start: datetime
    content_changed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "title": self.title,
            "existingDate": _format(self.existing_start),
            "newDate": _format(self.incoming_start),
            "contentChanged": self.content_changed,
        }


@dataclass
class ImportPreview:
    """Side-effect free summary of a pending import."""

    total: int = 0
    new: int = 0
    duplicates: list[DuplicateInfo] = field(default_factory=list)
    errors: list[DecodeIssue] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalEvents": self.total,
            "newEvents": self.new,
            "duplicateEvents": len(self.duplicates),
            "errorEvents": len(self.errors),
            "duplicates": [d.to_dict() for d in self.duplicates],
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class ImportResult:
    """Outcome of an applied import."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[DecodeIssue] = field(default_factory=list)

    @property
    def applied(self) -> int:
        return self.created + self.updated

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": self.applied,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": [e.to_dict() for e in self.errors],
        }


def content_changed(draft: DraftTask, task: Task) -> bool:
    """An incoming event differs from a stored one if its start or title does."""
    return as_utc(draft.start) != as_utc(task.start) or draft.title != task.title


class DuplicateClassifier:
    """Matches incoming events to existing tasks by UID."""

    def __init__(self) -> None:
        self._dup_counter = itertools.count(1)

    def classify(
        self,
        incoming: list[DraftTask],
        existing: list[Task],
        errors: list[DecodeIssue] | None = None,
    ) -> ImportPreview:
        """Classify incoming events as new or duplicate. Writes nothing.

        Override components (those carrying a RECURRENCE-ID) belong to their
        master event and are not counted separately.
        """
        by_uid = {task.uid: task for task in existing}
        preview = ImportPreview(errors=list(errors or []))
        for draft in incoming:
            if draft.recurrence_id is not None:
                continue
            preview.total += 1
            match = by_uid.get(draft.uid)
            if match is None:
                preview.new += 1
                continue
            preview.duplicates.append(
                DuplicateInfo(
                    uid=draft.uid,
                    title=draft.title,
                    existing_start=match.start,
                    incoming_start=draft.start,
                    content_changed=content_changed(draft, match),
                )
            )
        preview.total += len(preview.errors)
        return preview

    def _duplicate_uid(self) -> str:
        millis = int(time.time() * 1000)
        return f"taskcal-dup-{millis}-{next(self._dup_counter)}"

    async def apply(
        self,
        incoming: list[DraftTask],
        strategy: DuplicateStrategy,
        store: TaskStore,
        calendar: Calendar,
        errors: list[DecodeIssue] | None = None,
    ) -> ImportResult:
        """Write incoming events according to ``strategy``.

        A failing event is recorded in the result and does not stop the rest.

        Returns:
            Counts of created, updated and skipped events plus per-item errors
        """
        result = ImportResult(errors=list(errors or []))
        by_uid = {task.uid: task for task in await store.list_tasks(calendar)}

        masters = [d for d in incoming if d.recurrence_id is None]
        overrides: dict[str, list[DraftTask]] = defaultdict(list)
        for draft in incoming:
            if draft.recurrence_id is not None:
                overrides[draft.uid].append(draft)

        for index, draft in enumerate(masters):
            match = by_uid.get(draft.uid)
            try:
                if match is None:
                    task = draft.to_task(calendar.id)
                    created = True
                elif strategy is DuplicateStrategy.SKIP:
                    result.skipped += 1
                    continue
                elif strategy is DuplicateStrategy.UPDATE:
                    task = draft.apply_to(match)
                    created = False
                else:
                    task = draft.to_task(calendar.id, uid=self._duplicate_uid())
                    created = True

                validate_task(task)
                saved = await self._save_series(store, calendar, task, overrides.pop(draft.uid, []))
            except CalendarError as e:
                logger.warning("Import of %s failed: %s", draft.uid, e.message)
                result.errors.append(DecodeIssue(index=index, message=e.message, uid=draft.uid))
                continue

            by_uid[saved.uid] = saved
            if created:
                result.created += 1
            else:
                result.updated += 1

        # Overrides whose series was not written
        result.skipped += sum(len(drafts) for drafts in overrides.values())

        logger.info(
            "Imported into %s with %s: %d created, %d updated, %d skipped, %d errors",
            calendar.slug,
            strategy.value,
            result.created,
            result.updated,
            result.skipped,
            len(result.errors),
        )
        return result

    async def _save_series(
        self, store: TaskStore, calendar: Calendar, task: Task, overrides: list[DraftTask]
    ) -> Task:
        """Save a task together with its detached occurrences in one transaction."""
        if not overrides:
            return await store.save(task)
        async with store.transaction() as tx:
            for draft in overrides:
                if draft.recurrence_id is None:
                    continue
                task, _ = await detach_occurrence(tx, calendar, task, draft.recurrence_id, draft)
            await tx.save(task)
        return task
