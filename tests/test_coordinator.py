"""Tests for the event coordinator: lifecycle, writes, the change feed and fetch ordering."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from conftest import NOW, USER, FakeEventStore, make_event

from app.domain.errors import EventNotFoundError, EventOperationError
from app.domain.events import EventsChanged
from app.domain.models import EventFilter, EventStatus, NotificationKind
from app.services.coordinator import EventCoordinator


def _payload(title="Fair", start=None, duration=timedelta(hours=1), **extra):
    start = start or NOW + timedelta(days=2)
    return {"title": title, "start_date": start, "end_date": start + duration, **extra}


def _bodies(dispatcher):
    return [n.body for n in dispatcher.toasts.recent()]


def _titles(dispatcher):
    return [n.title for n in dispatcher.toasts.recent()]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def test_start_subscribes_and_loads(coordinator, store, bus, timers):
    store.add(make_event("Seeded"))

    await coordinator.start(USER)

    assert coordinator.started is True
    assert coordinator.user_id == USER
    assert bus.subscriber_count(EventsChanged) == 1
    assert [e.title for e in coordinator.events] == ["Seeded"]
    assert timers.running_tasks == 2  # reconcile + horizon scan loops


async def test_start_twice_is_ignored(coordinator, store, bus):
    await coordinator.start(USER)
    await coordinator.start(USER)

    assert bus.subscriber_count(EventsChanged) == 1
    assert store.count("list") == 2  # one fetch, one reconcile read


async def test_stop_releases_everything(coordinator, bus, timers, reminders):
    await coordinator.start(USER)
    await coordinator.create(_payload())
    await coordinator.settle()
    assert reminders.armed()

    await coordinator.stop()

    assert bus.subscriber_count(EventsChanged) == 0
    assert reminders.armed() == []
    assert timers.pending_timers == 0
    assert timers.running_tasks == 0
    assert coordinator.started is False


async def test_changes_after_stop_are_ignored(coordinator, store):
    await coordinator.start(USER)
    await coordinator.stop()

    await store.create(_payload("Late"))
    await coordinator.settle()

    assert coordinator.events == []


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------


async def test_fetch_failure_keeps_previous_list(coordinator, store, dispatcher):
    store.add(make_event("Kept"))
    await coordinator.fetch()

    store.failures.add("list")
    events = await coordinator.fetch()

    assert [e.title for e in events] == ["Kept"]
    assert coordinator.loading is False
    assert dispatcher.toasts.recent()[0].title == "Error loading events"
    assert dispatcher.toasts.recent()[0].kind == NotificationKind.ERROR


async def test_fetch_remembers_filters(coordinator, store):
    store.add(make_event("Workshop", category="workshop"))
    store.add(make_event("Party", category="social"))

    await coordinator.fetch(EventFilter(category="social"))
    await coordinator.fetch()

    assert [e.title for e in coordinator.events] == ["Party"]
    assert store.calls[-1][1].category == "social"


async def test_stale_fetch_is_discarded(
    dispatcher, reminders, settings_repo, timers, clock, bus
):
    class SlowFirstList(FakeEventStore):
        def __init__(self):
            super().__init__(bus=bus)
            self.gate = asyncio.Event()
            self._first = True

        async def list(self, event_filter=None):
            if self._first:
                self._first = False
                snapshot = await super().list(event_filter)
                await self.gate.wait()
                return snapshot
            return await super().list(event_filter)

    store = SlowFirstList()
    coordinator = EventCoordinator(
        store=store,
        dispatcher=dispatcher,
        reminders=reminders,
        settings_repo=settings_repo,
        timers=timers,
        clock=clock,
    )
    store.add(make_event("Old"))

    slow = asyncio.create_task(coordinator.fetch())
    await asyncio.sleep(0)
    store.add(make_event("New"))
    await coordinator.fetch()
    store.gate.set()
    await slow

    assert sorted(e.title for e in coordinator.events) == ["New", "Old"]
    assert coordinator.loading is False


async def test_visible_events_project_status(coordinator, store, clock):
    store.add(make_event("Running", start=NOW - timedelta(minutes=5)))
    await coordinator.fetch()

    assert coordinator.events[0].status == EventStatus.UPCOMING
    assert coordinator.visible_events()[0].status == EventStatus.ONGOING


async def test_upcoming_panel(coordinator, store):
    store.add(make_event("Soon", start=NOW + timedelta(days=1)))
    store.add(make_event("Later", start=NOW + timedelta(days=5)))
    await coordinator.fetch()

    assert [e.title for e in coordinator.upcoming()] == ["Soon"]
    assert [e.title for e in coordinator.upcoming(days=7)] == ["Soon", "Later"]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def test_create_arms_reminders_and_refetches(coordinator, reminders, dispatcher):
    await coordinator.start(USER)

    event = await coordinator.create(_payload("Fair"))
    await coordinator.settle()

    assert event.created_by == USER
    assert [e.id for e in coordinator.events] == [event.id]
    assert sorted(r.lead_hours for r in reminders.armed(event.id)) == [1, 24]
    assert "Event created" in _titles(dispatcher)


async def test_create_failure_raises_and_toasts(coordinator, store, dispatcher):
    await coordinator.start(USER)
    store.failures.add("create")

    with pytest.raises(EventOperationError) as excinfo:
        await coordinator.create(_payload())

    assert "connection reset" in excinfo.value.message
    assert dispatcher.toasts.recent()[0].title == "Error creating event: connection reset"
    assert coordinator.events == []


async def test_update_with_new_dates_is_rescheduled(coordinator, reminders, dispatcher):
    await coordinator.start(USER)
    event = await coordinator.create(_payload("Fair"))
    await coordinator.settle()

    new_start = NOW + timedelta(days=3)
    after = await coordinator.update(
        event.id, {"start_date": new_start, "end_date": new_start + timedelta(hours=2)}
    )
    await coordinator.settle()

    assert after.start_date == new_start
    assert 'The event "Fair" has been rescheduled' in _bodies(dispatcher)
    assert sorted(r.fire_at for r in reminders.armed(event.id)) == [
        new_start - timedelta(hours=24),
        new_start - timedelta(hours=1),
    ]
    assert coordinator.get_event(event.id).start_date == new_start


async def test_update_without_date_change(coordinator, dispatcher):
    await coordinator.start(USER)
    event = await coordinator.create(_payload("Fair"))
    await coordinator.settle()

    after = await coordinator.update(event.id, {"location": "Main hall"})

    assert after.location == "Main hall"
    bodies = _bodies(dispatcher)
    assert 'The event "Fair" has been updated' in bodies
    assert 'The event "Fair" has been rescheduled' not in bodies


async def test_update_missing_event(coordinator, dispatcher):
    await coordinator.start(USER)

    with pytest.raises(EventNotFoundError):
        await coordinator.update("nope", {"title": "x"})

    assert dispatcher.toasts.recent()[0].title == "Event not found"


async def test_update_store_failure(coordinator, store):
    await coordinator.start(USER)
    event = await coordinator.create(_payload())
    await coordinator.settle()
    store.failures.add("update")

    with pytest.raises(EventOperationError) as excinfo:
        await coordinator.update(event.id, {"title": "x"})

    assert excinfo.value.event_id == event.id


async def test_delete_announces_captured_title(coordinator, store, reminders, dispatcher):
    await coordinator.start(USER)
    event = await coordinator.create(_payload("Rose fair"))
    await coordinator.settle()

    deleted = await coordinator.delete(event.id)
    await coordinator.settle()

    assert deleted.title == "Rose fair"
    assert await store.get(event.id) is None
    assert reminders.armed(event.id) == []
    assert coordinator.events == []
    cancelled = [n for n in dispatcher.toasts.recent() if n.kind == NotificationKind.ERROR]
    assert cancelled[0].body == 'The event "Rose fair" has been cancelled'


async def test_delete_missing_event(coordinator):
    await coordinator.start(USER)

    with pytest.raises(EventNotFoundError):
        await coordinator.delete("nope")


# ---------------------------------------------------------------------------
# Change feed
# ---------------------------------------------------------------------------


async def test_external_change_triggers_refresh(coordinator, store):
    await coordinator.start(USER)

    await store.create(_payload("From elsewhere"))
    await coordinator.settle()

    assert [e.title for e in coordinator.events] == ["From elsewhere"]


# ---------------------------------------------------------------------------
# Reconciliation and ticks
# ---------------------------------------------------------------------------


async def test_reconcile_announces_started_events(coordinator, store, dispatcher):
    store.add(make_event("Market", start=NOW - timedelta(minutes=10)))

    result = await coordinator.reconcile_statuses()

    assert result.changed is True
    assert 'The event "Market" is starting' in _bodies(dispatcher)
    assert coordinator.events[0].status == EventStatus.ONGOING


async def test_reconcile_failure_is_swallowed(coordinator, store):
    store.add(make_event(start=NOW - timedelta(minutes=10)))
    store.failures.add("update_many")

    result = await coordinator.reconcile_statuses()

    assert result.changed is False
    assert store.count("update_many") == 1


async def test_refresh_toasts(coordinator, store, dispatcher):
    store.add(make_event("Quiet"))

    events = await coordinator.refresh()

    assert [e.title for e in events] == ["Quiet"]
    assert dispatcher.toasts.recent()[0].title == "Events refreshed"


async def test_tick_fires_due_reminders(coordinator, reminders):
    event = make_event("Delivery", start=NOW + timedelta(hours=2))
    armed = reminders.arm(event)

    result = await coordinator.tick(NOW + timedelta(hours=1, minutes=1))

    assert result.reminders_fired == [armed[0].id]
    assert reminders.armed() == []


async def test_horizon_scan_end_to_end(coordinator, clock, dispatcher):
    await coordinator.start(USER)
    start = NOW + timedelta(minutes=25)

    await coordinator.create(_payload("Pickup", start=start))
    await coordinator.settle()

    def reminder_toasts():
        return [n for n in dispatcher.toasts.recent() if n.kind == NotificationKind.REMINDER]

    assert reminder_toasts() == []

    clock.set(start - timedelta(minutes=60))
    sent = await coordinator.scan_horizon()

    assert len(sent) == 1
    assert [n.body for n in reminder_toasts()] == ["The event starts in 1 hour"]


async def test_unexpected_fetch_error_still_clears_loading(coordinator, store):
    async def broken_list(event_filter=None):
        raise RuntimeError("driver bug")

    store.list = broken_list

    with pytest.raises(RuntimeError):
        await coordinator.fetch()

    assert coordinator.loading is False


async def test_overlapping_reconcile_passes_announce_once(
    dispatcher, reminders, settings_repo, timers, clock, bus
):
    class YieldingStore(FakeEventStore):
        async def list(self, event_filter=None):
            await asyncio.sleep(0)
            return await super().list(event_filter)

    store = YieldingStore(bus=bus)
    coordinator = EventCoordinator(
        store=store,
        dispatcher=dispatcher,
        reminders=reminders,
        settings_repo=settings_repo,
        timers=timers,
        clock=clock,
    )
    store.add(make_event("Market", start=NOW - timedelta(minutes=10)))

    first, second = await asyncio.gather(
        coordinator.reconcile_statuses(), coordinator.reconcile_statuses()
    )

    assert first.to_ongoing and not second.to_ongoing
    assert _bodies(dispatcher).count('The event "Market" is starting') == 1
    assert store.count("update_many") == 1
