"""Tests for the async CalDAV client against the in-process server."""

import httpx
import pytest

from py_taskcal.client import CalDAVClient
from py_taskcal.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from py_taskcal.internal import HTTPError
from tests.factories import USER_HEADER, vcalendar, vevent

OBJECT = "/alice/personal/task-1.ics"
CALENDAR = "/alice/personal/"
STANDUP = vcalendar(vevent("task-1", "Standup", "20251006T140000Z", "20251006T150000Z"))
RETRO = vcalendar(vevent("task-1", "Retro", "20251006T140000Z", "20251006T150000Z"))


def make_client(app, user: str | None = "alice") -> CalDAVClient:
    headers = {USER_HEADER: user} if user else {}
    http_client = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver", headers=headers
    )
    return CalDAVClient(http_client)


@pytest.mark.asyncio
async def test_options(app):
    client = make_client(app, user=None)
    caps, allow = await client.options()
    await client.close()

    assert "calendar-access" in caps
    assert "PUT" in allow


@pytest.mark.asyncio
async def test_put_get_and_list(app):
    client = make_client(app)

    etag = await client.put_object(OBJECT, STANDUP, if_none_match=True)
    obj = await client.get_object(OBJECT)
    etags = await client.list_etags(CALENDAR)
    await client.close()

    assert etag
    assert obj.etag == etag
    assert b"SUMMARY:Standup" in obj.data
    assert etags == {OBJECT: etag}


@pytest.mark.asyncio
async def test_conditional_update(app):
    client = make_client(app)
    first = await client.put_object(OBJECT, STANDUP)
    second = await client.put_object(OBJECT, RETRO, if_match=first)

    with pytest.raises(ConflictError):
        await client.put_object(OBJECT, STANDUP, if_match=first)

    obj = await client.get_object(OBJECT)
    await client.close()
    assert obj.etag == second


@pytest.mark.asyncio
async def test_errors_map_to_kinds(app):
    client = make_client(app)
    bob = make_client(app, user="bob")
    anonymous = make_client(app, user=None)

    with pytest.raises(NotFoundError):
        await client.get_object("/alice/personal/missing.ics")
    with pytest.raises(ValidationError):
        await client.put_object(OBJECT, "garbage\r\n")
    with pytest.raises(AuthorizationError):
        await bob.get_object(OBJECT)
    with pytest.raises(HTTPError) as excinfo:
        await anonymous.get_object(OBJECT)
    assert excinfo.value.code == 401

    for c in (client, bob, anonymous):
        await c.close()


@pytest.mark.asyncio
async def test_delete(app):
    client = make_client(app)
    await client.put_object(OBJECT, STANDUP)
    await client.delete_object(OBJECT)

    with pytest.raises(NotFoundError):
        await client.get_object(OBJECT)
    # Deleting again is not an error
    await client.delete_object(OBJECT)
    await client.close()


@pytest.mark.asyncio
async def test_occurrences_and_import(app):
    client = make_client(app)
    upload = vcalendar(
        vevent("weekly", "Weekly", "20251006T140000Z", "20251006T150000Z", "RRULE:FREQ=WEEKLY;COUNT=4")
    )

    preview = await client.import_calendar(CALENDAR, upload, preview=True)
    result = await client.import_calendar(CALENDAR, upload, strategy="SKIP")
    occurrences = await client.occurrences(CALENDAR, "2025-10-01T00:00:00Z", "2025-11-01T00:00:00Z")
    await client.close()

    assert preview["newEvents"] == 1
    assert result["created"] == 1
    assert len(occurrences) == 4
    assert {o["uid"] for o in occurrences} == {"weekly"}
