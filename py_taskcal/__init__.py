"""Personal calendar backend: recurrence expansion, iCalendar codec and CalDAV server."""

from .client import CalDAVClient
from .errors import AuthorizationError, CalendarError, ConflictError, NotFoundError, ValidationError
from .ical import DecodeIssue, DecodeResult, ICSCodec
from .importer import DuplicateClassifier, DuplicateStrategy, ImportPreview, ImportResult
from .models import (
    Calendar,
    DraftTask,
    NotificationType,
    Occurrence,
    OccurrenceKind,
    Principal,
    Reminder,
    Task,
)
from .recurrence import RecurrenceExpander, override_occurrence, validate_rule, validate_task
from .server import create_app
from .store import CalendarStore, MemoryStore, ReminderStore, TaskStore

__version__ = "0.1.0"

__all__ = [
    "AuthorizationError",
    "CalDAVClient",
    "Calendar",
    "CalendarError",
    "CalendarStore",
    "ConflictError",
    "DecodeIssue",
    "DecodeResult",
    "DraftTask",
    "DuplicateClassifier",
    "DuplicateStrategy",
    "ICSCodec",
    "ImportPreview",
    "ImportResult",
    "MemoryStore",
    "NotFoundError",
    "NotificationType",
    "Occurrence",
    "OccurrenceKind",
    "Principal",
    "RecurrenceExpander",
    "Reminder",
    "ReminderStore",
    "Task",
    "TaskStore",
    "ValidationError",
    "create_app",
    "override_occurrence",
    "validate_rule",
    "validate_task",
]
