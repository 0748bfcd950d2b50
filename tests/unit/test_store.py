"""Tests for the in-memory store."""

import pytest

from py_taskcal.errors import ConflictError, NotFoundError
from py_taskcal.models import Reminder
from py_taskcal.store import strip_etag
from tests.factories import ALICE, BOB, make_task


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("abc", "abc"), ('"abc"', "abc"), ('W/"abc"', "abc"), ('  "abc" ', "abc")],
)
def test_strip_etag(raw, expected):
    assert strip_etag(raw) == expected


@pytest.mark.asyncio
async def test_save_and_find(store, calendar):
    saved = await store.save(make_task())

    found = await store.find_task(calendar, "task-1", ALICE)
    assert found is not None
    assert found.title == "Standup"
    assert found.etag == saved.etag
    assert found.created_at is not None

    # Only the owner sees the task
    assert await store.find_task(calendar, "task-1", BOB) is None
    assert await store.find_task(calendar, "missing", ALICE) is None


@pytest.mark.asyncio
async def test_etag_depends_on_content_only(store, calendar):
    first = await store.save(make_task())
    again = await store.save(make_task())
    changed = await store.save(make_task(title="Retro"))

    assert first.etag == again.etag
    assert changed.etag != first.etag
    assert changed.created_at == first.created_at


@pytest.mark.asyncio
async def test_if_none_match_rejects_existing(store, calendar):
    await store.save(make_task(), if_none_match=True)

    with pytest.raises(ConflictError):
        await store.save(make_task(title="Other"), if_none_match=True)


@pytest.mark.asyncio
async def test_if_match(store, calendar):
    saved = await store.save(make_task())

    updated = await store.save(make_task(title="Retro"), if_match=f'"{saved.etag}"')
    assert updated.title == "Retro"

    # The first ETag is stale now
    with pytest.raises(ConflictError, match="etag mismatch"):
        await store.save(make_task(title="Lost update"), if_match=saved.etag)

    current = await store.find_task(calendar, "task-1", ALICE)
    assert current is not None
    assert current.title == "Retro"
    assert current.etag == updated.etag


@pytest.mark.asyncio
async def test_if_match_star(store, calendar):
    with pytest.raises(ConflictError, match="does not exist"):
        await store.save(make_task(), if_match="*")

    await store.save(make_task())
    await store.save(make_task(title="Any version"), if_match="*")


@pytest.mark.asyncio
async def test_transaction_commits_together(store, calendar):
    async with store.transaction() as tx:
        await tx.save(make_task("a"))
        await tx.save(make_task("b"))
        # Staged writes are visible inside the transaction only
        assert (await tx.get(calendar, "a")) is not None
        assert await store.find_task(calendar, "a", ALICE) is None

    assert [t.uid for t in await store.list_tasks(calendar)] == ["a", "b"]


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_conflict(store, calendar):
    await store.save(make_task("b"))

    with pytest.raises(ConflictError):
        async with store.transaction() as tx:
            await tx.save(make_task("a"))
            await tx.save(make_task("b", title="Clash"), if_none_match=True)

    assert await store.find_task(calendar, "a", ALICE) is None
    b = await store.find_task(calendar, "b", ALICE)
    assert b is not None and b.title == "Standup"


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(store, calendar):
    with pytest.raises(RuntimeError):
        async with store.transaction() as tx:
            await tx.save(make_task("a"))
            raise RuntimeError("boom")

    assert await store.list_tasks(calendar) == []


@pytest.mark.asyncio
async def test_reminders_are_stored_with_task(store, calendar):
    task = await store.save(make_task(reminders=[Reminder(minutes_before=10)]))

    assert [r.minutes_before for r in await store.list_reminders(task)] == [10]

    await store.replace_reminders(task, [Reminder(minutes_before=5), Reminder(minutes_before=60)])
    found = await store.find_task(calendar, "task-1", ALICE)
    assert found is not None
    assert [r.minutes_before for r in found.reminders] == [5, 60]


@pytest.mark.asyncio
async def test_delete_cascades_to_reminders(store, calendar):
    task = await store.save(make_task(reminders=[Reminder(minutes_before=10)]))

    assert await store.delete(calendar, "task-1") is True
    assert await store.list_reminders(task) == []
    assert await store.delete(calendar, "task-1") is False

    with pytest.raises(NotFoundError):
        await store.replace_reminders(task, [Reminder(minutes_before=5)])


@pytest.mark.asyncio
async def test_delete_reminders_keeps_task(store, calendar):
    task = await store.save(make_task(reminders=[Reminder(minutes_before=10)]))

    await store.delete_reminders(task)

    assert await store.list_reminders(task) == []
    assert await store.find_task(calendar, "task-1", ALICE) is not None


@pytest.mark.asyncio
async def test_resolve_calendar(store, calendar):
    assert await store.resolve("alice", "personal") is calendar
    assert await store.resolve("alice@example.com", "personal") is calendar

    with pytest.raises(NotFoundError):
        await store.resolve("alice", "work")
    with pytest.raises(NotFoundError):
        await store.resolve("carol", "personal")


@pytest.mark.asyncio
async def test_list_calendars(store):
    calendars = await store.list_calendars(ALICE)
    assert [c.slug for c in calendars] == ["personal"]
    assert calendars[0].owner == ALICE
