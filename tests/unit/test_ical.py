"""Tests for the iCalendar codec."""

import logging
from datetime import UTC, datetime, timedelta

import pytest

from py_taskcal.errors import ValidationError
from py_taskcal.ical import ICSCodec
from py_taskcal.models import Reminder
from tests.factories import make_task, vcalendar, vevent


@pytest.fixture
def codec() -> ICSCodec:
    return ICSCodec()


def test_encode_decode_preserves_fields(codec):
    """Title, timing, color, description and location survive a round trip."""
    task = make_task(
        description="Daily sync",
        location="Room 1",
        color="#ff0000",
        reminders=[Reminder(minutes_before=15)],
    )
    draft, overrides = codec.decode_one(codec.encode_task(task))

    assert overrides == []
    assert draft.uid == task.uid
    assert draft.title == task.title
    assert draft.start == task.start
    assert draft.end == task.end
    assert draft.color == "#ff0000"
    assert draft.description == "Daily sync"
    assert draft.location == "Room 1"
    assert [r.minutes_before for r in draft.reminders] == [15]


def test_encode_series(codec):
    task = make_task(
        recurrence_rule="FREQ=WEEKLY;COUNT=4",
        exceptions={datetime(2025, 10, 13, 14, 0, tzinfo=UTC)},
    )
    text = codec.encode_task(task).decode("utf-8")

    assert "RRULE:FREQ=WEEKLY;COUNT=4" in text
    assert "EXDATE:20251013T140000Z" in text

    draft, _ = codec.decode_one(text)
    assert draft.recurrence_rule is not None and "FREQ=WEEKLY" in draft.recurrence_rule
    assert draft.exceptions == {datetime(2025, 10, 13, 14, 0, tzinfo=UTC)}


def test_encode_calendar_headers(codec):
    task = make_task(color="#00aa00", reminders=[Reminder(minutes_before=30)])
    text = codec.encode([task], "Personal").decode("utf-8")

    assert "PRODID:-//PyTaskcal//PyTaskcal 1.0//EN" in text
    assert "X-WR-CALNAME:Personal" in text
    assert "X-APPLE-CALENDAR-COLOR:#00aa00" in text
    assert "BEGIN:VALARM" in text
    assert "TRIGGER:-PT30M" in text
    assert "DESCRIPTION:Reminder: Standup" in text


def test_encode_all_day(codec):
    task = make_task(
        start=datetime(2025, 10, 20, tzinfo=UTC),
        end=datetime(2025, 10, 21, tzinfo=UTC),
        is_all_day=True,
    )
    text = codec.encode_task(task).decode("utf-8")

    assert "DTSTART;VALUE=DATE:20251020" in text
    assert "DTEND;VALUE=DATE:20251021" in text

    draft, _ = codec.decode_one(text)
    assert draft.is_all_day
    assert draft.start == datetime(2025, 10, 20, tzinfo=UTC)


def test_encode_skips_broken_task(codec, caplog):
    good = make_task("good")
    bad = make_task("bad", recurrence_rule="FREQ=SOMETIMES")

    with caplog.at_level(logging.WARNING, logger="py_taskcal.ical"):
        text = codec.encode([good, bad]).decode("utf-8")

    assert "UID:good" in text
    assert "UID:bad" not in text
    assert "Skipping task bad" in caplog.text

    with pytest.raises(ValidationError):
        codec.encode_task(bad)


def test_decode_vtodo_with_timed_due(codec):
    data = vcalendar(
        """
        BEGIN:VTODO
        UID:todo-1
        SUMMARY:Buy milk
        DUE:20251015T150000Z
        END:VTODO
        """
    )
    draft, _ = codec.decode_one(data)

    assert draft.title == "[TODO] Buy milk"
    assert draft.component == "VTODO"
    assert not draft.is_all_day
    assert draft.start == datetime(2025, 10, 15, 15, 0, tzinfo=UTC)
    assert draft.end == datetime(2025, 10, 15, 15, 30, tzinfo=UTC)


def test_decode_vtodo_with_date_due(codec):
    data = vcalendar(
        """
        BEGIN:VTODO
        UID:todo-2
        DUE;VALUE=DATE:20251015
        END:VTODO
        """
    )
    draft, _ = codec.decode_one(data)

    assert draft.title == "[TODO] Untitled Task"
    assert draft.is_all_day
    assert draft.start == datetime(2025, 10, 15, tzinfo=UTC)
    assert draft.end == datetime(2025, 10, 16, tzinfo=UTC)


def test_decode_event_defaults(codec):
    """Missing SUMMARY and DTEND fall back to a title and a one-hour duration."""
    data = vcalendar(
        """
        BEGIN:VEVENT
        UID:evt-1
        DTSTART:20251006T090000Z
        END:VEVENT
        """
    )
    draft, _ = codec.decode_one(data)

    assert draft.title == "Untitled Event"
    assert draft.end - draft.start == timedelta(hours=1)


def test_decode_duration(codec):
    data = vcalendar(vevent("evt-2", "Workshop", "20251006T090000Z", None, "DURATION:PT2H"))
    draft, _ = codec.decode_one(data)

    assert draft.end == datetime(2025, 10, 6, 11, 0, tzinfo=UTC)


def test_decode_tzid(codec):
    data = vcalendar(
        """
        BEGIN:VEVENT
        UID:evt-3
        SUMMARY:Berlin meeting
        DTSTART;TZID=Europe/Berlin:20251020T140000
        DTEND;TZID=Europe/Berlin:20251020T150000
        END:VEVENT
        """
    )
    draft, _ = codec.decode_one(data)

    assert draft.timezone == "Europe/Berlin"
    assert draft.start == datetime(2025, 10, 20, 12, 0, tzinfo=UTC)


def test_decode_all_day_event(codec):
    data = vcalendar(vevent("evt-4", "Holiday", "20251020", None).replace("DTSTART:", "DTSTART;VALUE=DATE:"))
    draft, _ = codec.decode_one(data)

    assert draft.is_all_day
    assert draft.end - draft.start == timedelta(days=1)


def test_decode_alarms(codec):
    data = vcalendar(
        vevent(
            "evt-5",
            "With alarms",
            "20251006T140000Z",
            "20251006T150000Z",
            "BEGIN:VALARM",
            "ACTION:DISPLAY",
            "TRIGGER:-PT30M",
            "END:VALARM",
            "BEGIN:VALARM",
            "ACTION:DISPLAY",
            "TRIGGER;VALUE=DATE-TIME:20251006T134500Z",
            "END:VALARM",
            "BEGIN:VALARM",
            "ACTION:DISPLAY",
            "TRIGGER:PT5M",
            "END:VALARM",
            "BEGIN:VALARM",
            "ACTION:DISPLAY",
            "TRIGGER:-P40D",
            "END:VALARM",
        )
    )
    draft, _ = codec.decode_one(data)

    assert [r.minutes_before for r in draft.reminders] == [30, 15]
    assert all(r.notification_type.value == "EMAIL" for r in draft.reminders)


def test_decode_generates_missing_uid(codec):
    data = vcalendar(
        """
        BEGIN:VEVENT
        SUMMARY:No identity
        DTSTART:20251006T090000Z
        END:VEVENT
        """
    )
    first, _ = codec.decode_one(data)
    second, _ = codec.decode_one(data)

    assert first.uid.startswith("taskcal-generated-")
    assert first.uid == second.uid


def test_decode_truncates_long_fields(codec):
    data = vcalendar(vevent("evt-6", "x" * 150, "20251006T090000Z", None, "LOCATION:" + "y" * 250))
    draft, _ = codec.decode_one(data)

    assert len(draft.title) == 100
    assert draft.location is not None and len(draft.location) == 200


def test_decode_ignores_invalid_color(codec):
    data = vcalendar(vevent("evt-7", "Colored", "20251006T090000Z", None, "X-APPLE-CALENDAR-COLOR:red"))
    draft, _ = codec.decode_one(data)
    assert draft.color is None


def test_decode_collects_per_component_errors(codec):
    """One broken event does not prevent the others from decoding."""
    data = vcalendar(
        vevent("good", "Fine", "20251006T090000Z", "20251006T100000Z"),
        vevent("bad", "Broken", "not-a-date"),
    )
    result = codec.decode(data)

    assert [d.uid for d in result.drafts] == ["good"]
    assert len(result.errors) == 1
    assert result.errors[0].uid == "bad"
    assert result.errors[0].to_dict()["uid"] == "bad"

    with pytest.raises(ValidationError):
        codec.decode_one(data)


def test_decode_rejects_invalid_rrule(codec):
    data = vcalendar(vevent("evt-8", "Sometimes", "20251006T090000Z", None, "RRULE:FREQ=SOMETIMES"))
    result = codec.decode(data)

    assert result.drafts == []
    assert len(result.errors) == 1


def test_decode_override_component(codec):
    data = vcalendar(
        vevent("series", "Weekly", "20251006T140000Z", "20251006T150000Z", "RRULE:FREQ=WEEKLY;COUNT=4"),
        vevent(
            "series",
            "Moved",
            "20251013T160000Z",
            "20251013T170000Z",
            "RECURRENCE-ID:20251013T140000Z",
        ),
    )
    master, overrides = codec.decode_one(data)

    assert master.recurrence_id is None
    assert len(overrides) == 1
    assert overrides[0].recurrence_id == datetime(2025, 10, 13, 14, 0, tzinfo=UTC)
    assert overrides[0].start == datetime(2025, 10, 13, 16, 0, tzinfo=UTC)


@pytest.mark.parametrize("data", [b"", b"   \r\n", b"\xff\xfe\xfa", "this is not a calendar\r\n"])
def test_decode_rejects_malformed_body(codec, data):
    with pytest.raises(ValidationError):
        codec.decode(data)


def test_decode_one_requires_single_event(codec):
    two = vcalendar(
        vevent("a", "A", "20251006T090000Z"),
        vevent("b", "B", "20251007T090000Z"),
    )
    with pytest.raises(ValidationError, match="exactly one"):
        codec.decode_one(two)

    with pytest.raises(ValidationError, match="exactly one"):
        codec.decode_one(vcalendar())
