"""Tests for the in-memory event store and its change feed."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import NOW, make_event

from app.domain.errors import EventNotFoundError, StoreError
from app.domain.models import EventStatus
from app.repos.memory import InMemoryEventStore, create_event_store


def _data(title="Fair"):
    start = NOW + timedelta(days=1)
    return {"title": title, "start_date": start, "end_date": start + timedelta(hours=1)}


async def test_create_assigns_id_and_creator():
    store = InMemoryEventStore()

    event = await store.create(_data(), created_by="user-9")

    assert event.id
    assert event.created_by == "user-9"
    assert (await store.get(event.id)).title == "Fair"


async def test_create_with_invalid_data_is_a_store_error():
    store = InMemoryEventStore()

    with pytest.raises(StoreError):
        await store.create({"title": "No dates"})


async def test_returned_events_are_copies():
    store = InMemoryEventStore()
    event = await store.create(_data())

    event.title = "Mutated"

    assert (await store.get(event.id)).title == "Fair"


async def test_update_ignores_protected_fields():
    store = InMemoryEventStore()
    event = await store.create(_data(), created_by="owner")

    await store.update(event.id, {"id": "other", "created_by": "intruder", "title": "New"})

    stored = await store.get(event.id)
    assert stored.title == "New"
    assert stored.created_by == "owner"
    assert stored.updated_at >= event.updated_at


async def test_update_many_is_all_or_nothing():
    store = InMemoryEventStore()
    a = await store.create(_data("A"))

    with pytest.raises(EventNotFoundError):
        await store.update_many([a.id, "missing"], {"status": EventStatus.FINISHED})

    assert (await store.get(a.id)).status == EventStatus.UPCOMING


async def test_unknown_ids_raise_not_found():
    store = InMemoryEventStore()

    with pytest.raises(EventNotFoundError):
        await store.update("missing", {"title": "x"})
    with pytest.raises(EventNotFoundError):
        await store.delete("missing")


async def test_every_write_is_published():
    store = InMemoryEventStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)

    event = await store.create(_data())
    await store.update(event.id, {"title": "B"})
    await store.update_many([event.id], {"status": EventStatus.ONGOING})
    await store.delete(event.id)

    assert [c.operation for c in seen] == ["insert", "update", "update", "delete"]
    assert {c.table for c in seen} == {"events"}

    unsubscribe()
    await store.create(_data())
    assert len(seen) == 4


async def test_seeded_store_has_events():
    store = create_event_store(seed=True)

    assert len(await store.list()) > 0


async def test_add_does_not_publish():
    store = InMemoryEventStore()
    seen = []
    store.subscribe(seen.append)

    store.add(make_event())

    assert seen == []
    assert len(await store.list()) == 1
