"""Shared fixtures: an in-memory store with two users and a CalDAV app on top."""

import pytest
from starlette.testclient import TestClient

from py_taskcal.models import Calendar
from py_taskcal.server import create_app
from py_taskcal.store import MemoryStore
from tests.factories import ALICE, BOB, USER_HEADER, header_principal


@pytest.fixture
def store() -> MemoryStore:
    store = MemoryStore()
    store.add_calendar(Calendar(id="alice-personal", owner=ALICE, slug="personal", name="Personal"))
    store.add_calendar(Calendar(id="bob-personal", owner=BOB, slug="personal", name="Bob's"))
    return store


@pytest.fixture
def calendar(store: MemoryStore) -> Calendar:
    """Alice's calendar."""
    return store._calendars["alice-personal"]


@pytest.fixture
def bob_calendar(store: MemoryStore) -> Calendar:
    return store._calendars["bob-personal"]


@pytest.fixture
def app(store: MemoryStore):
    return create_app(store, store, header_principal)


@pytest.fixture
def client(app) -> TestClient:
    """Test client authenticated as alice."""
    return TestClient(app, headers={USER_HEADER: "alice"})
