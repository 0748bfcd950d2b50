"""Storage interfaces consumed by the server, and an in-memory implementation."""

from __future__ import annotations

import logging
import threading
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import UTC, datetime
from typing import Protocol

from .errors import ConflictError, NotFoundError
from .models import Calendar, Principal, Reminder, Task

logger = logging.getLogger("py_taskcal.store")


def strip_etag(value: str) -> str:
    """Remove the quotes and weak marker clients put around an ETag."""
    value = value.strip()
    if value.startswith("W/"):
        value = value[2:]
    return value.strip('"')


class TaskTransaction(Protocol):
    """Staging view handed out by :meth:`TaskStore.transaction`."""

    async def get(self, calendar: Calendar, uid: str) -> Task | None:
        ...

    async def find_detached(
        self, calendar: Calendar, parent_uid: str, recurrence_id: datetime
    ) -> Task | None:
        """Find the task that replaces one occurrence of the series ``parent_uid``."""
        ...

    async def save(
        self, task: Task, if_match: str | None = None, if_none_match: bool = False
    ) -> Task:
        ...


class TaskStore(Protocol):
    """Task persistence, unique by ``uid`` within a calendar."""

    async def find_task(self, calendar: Calendar, uid: str, owner: Principal) -> Task | None:
        """Find a task by uid in a calendar owned by ``owner``."""
        ...

    async def list_tasks(self, calendar: Calendar) -> list[Task]:
        ...

    async def save(
        self, task: Task, if_match: str | None = None, if_none_match: bool = False
    ) -> Task:
        """Create or replace a task.

        The precondition check and the write form one atomic step.

        Args:
            task: Task to store
            if_match: Expected current ETag, or ``*`` for "any existing version"
            if_none_match: Fail if a task with this uid already exists

        Raises:
            ConflictError: If a precondition does not hold
        """
        ...

    async def delete(self, calendar: Calendar, uid: str) -> bool:
        """Delete a task and its reminders. Returns False if nothing was there."""
        ...

    def transaction(self) -> AbstractAsyncContextManager[TaskTransaction]:
        """Group several writes so that they commit together or not at all."""
        ...


class CalendarStore(Protocol):
    """Resolves calendars from URL segments."""

    async def resolve(self, user: str, slug: str) -> Calendar:
        """Resolve a user (username or email) and slug to a calendar.

        Raises:
            NotFoundError: If no such calendar exists
        """
        ...

    async def list_calendars(self, owner: Principal) -> list[Calendar]:
        ...


class ReminderStore(Protocol):
    """Reminders attached to a task."""

    async def list_reminders(self, task: Task) -> list[Reminder]:
        ...

    async def replace_reminders(self, task: Task, reminders: list[Reminder]) -> None:
        ...

    async def delete_reminders(self, task: Task) -> None:
        ...


class _MemoryTransaction:
    def __init__(self, store: MemoryStore) -> None:
        self._store = store
        self.staged: list[tuple[Task, str | None, bool]] = []

    async def get(self, calendar: Calendar, uid: str) -> Task | None:
        for task, _, _ in reversed(self.staged):
            if task.calendar_id == calendar.id and task.uid == uid:
                return task
        return self._store._get(calendar.id, uid)

    async def find_detached(
        self, calendar: Calendar, parent_uid: str, recurrence_id: datetime
    ) -> Task | None:
        for task, _, _ in reversed(self.staged):
            if (
                task.calendar_id == calendar.id
                and task.parent_uid == parent_uid
                and task.recurrence_id == recurrence_id
            ):
                return task
        return self._store._find_detached(calendar.id, parent_uid, recurrence_id)

    async def save(
        self, task: Task, if_match: str | None = None, if_none_match: bool = False
    ) -> Task:
        self.staged.append((task, if_match, if_none_match))
        return task


class MemoryStore:
    """Process-local implementation of the task, calendar and reminder stores.

    All reads and writes go through one re-entrant lock so that conditional
    writes and transaction commits are atomic even when requests are served
    from several threads.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._calendars: dict[str, Calendar] = {}
        self._tasks: dict[tuple[str, str], Task] = {}
        self._reminders: dict[tuple[str, str], list[Reminder]] = {}

    # Calendars

    def add_calendar(self, calendar: Calendar) -> Calendar:
        with self._lock:
            self._calendars[calendar.id] = calendar
        return calendar

    async def resolve(self, user: str, slug: str) -> Calendar:
        with self._lock:
            for calendar in self._calendars.values():
                if calendar.slug == slug and calendar.owner.matches(user):
                    return calendar
        raise NotFoundError(f"calendar not found: {user}/{slug}")

    async def list_calendars(self, owner: Principal) -> list[Calendar]:
        with self._lock:
            return [c for c in self._calendars.values() if c.owner.username == owner.username]

    # Tasks

    def _get(self, calendar_id: str, uid: str) -> Task | None:
        with self._lock:
            task = self._tasks.get((calendar_id, uid))
            if task is None:
                return None
            return task.replace(reminders=list(self._reminders.get((calendar_id, uid), [])))

    def _find_detached(self, calendar_id: str, parent_uid: str, recurrence_id: datetime) -> Task | None:
        with self._lock:
            for (cid, uid), task in self._tasks.items():
                if cid == calendar_id and task.parent_uid == parent_uid and task.recurrence_id == recurrence_id:
                    return self._get(cid, uid)
        return None

    async def find_task(self, calendar: Calendar, uid: str, owner: Principal) -> Task | None:
        if calendar.owner.username != owner.username:
            return None
        return self._get(calendar.id, uid)

    async def list_tasks(self, calendar: Calendar) -> list[Task]:
        with self._lock:
            keys = sorted(k for k in self._tasks if k[0] == calendar.id)
            return [t for t in (self._get(*k) for k in keys) if t is not None]

    def _check(self, task: Task, if_match: str | None, if_none_match: bool) -> None:
        current = self._get(task.calendar_id, task.uid)
        if if_none_match and current is not None:
            raise ConflictError(f"task already exists: {task.uid}")
        if if_match is None:
            return
        if current is None:
            raise ConflictError(f"task does not exist: {task.uid}")
        expected = strip_etag(if_match)
        if expected != "*" and expected != current.etag:
            raise ConflictError(f"etag mismatch for task {task.uid}")

    def _write(self, task: Task) -> Task:
        key = (task.calendar_id, task.uid)
        now = datetime.now(UTC)
        current = self._tasks.get(key)
        created_at = current.created_at if current is not None else task.created_at or now
        self._tasks[key] = task.replace(reminders=[], created_at=created_at, updated_at=now)
        self._reminders[key] = list(task.reminders)
        return task.replace(created_at=created_at, updated_at=now)

    async def save(
        self, task: Task, if_match: str | None = None, if_none_match: bool = False
    ) -> Task:
        with self._lock:
            self._check(task, if_match, if_none_match)
            return self._write(task)

    async def delete(self, calendar: Calendar, uid: str) -> bool:
        with self._lock:
            key = (calendar.id, uid)
            self._reminders.pop(key, None)
            return self._tasks.pop(key, None) is not None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_MemoryTransaction]:
        tx = _MemoryTransaction(self)
        yield tx
        with self._lock:
            for task, if_match, if_none_match in tx.staged:
                self._check(task, if_match, if_none_match)
            for task, _, _ in tx.staged:
                self._write(task)
        logger.debug("committed %d staged writes", len(tx.staged))

    # Reminders

    async def list_reminders(self, task: Task) -> list[Reminder]:
        with self._lock:
            return list(self._reminders.get((task.calendar_id, task.uid), []))

    async def replace_reminders(self, task: Task, reminders: list[Reminder]) -> None:
        with self._lock:
            if (task.calendar_id, task.uid) not in self._tasks:
                raise NotFoundError(f"task not found: {task.uid}")
            self._reminders[(task.calendar_id, task.uid)] = list(reminders)

    async def delete_reminders(self, task: Task) -> None:
        with self._lock:
            self._reminders.pop((task.calendar_id, task.uid), None)
