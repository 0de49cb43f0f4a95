"""Shared fixtures: a manual clock, a fault-injecting store and wired services."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from app.domain.bus import EventBus
from app.domain.errors import StoreError
from app.domain.models import Event, EventFilter, PermissionState
from app.repos.memory import InMemoryEventStore, InMemoryKeyValueStore
from app.repos.settings import SettingsRepository
from app.services.coordinator import EventCoordinator
from app.services.notifications import (
    InMemoryNotificationPlatform,
    NotificationDispatcher,
)
from app.services.reminders import ReminderScheduler
from app.services.timers import TimerRegistry

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
USER = "user-1"


class ManualClock:
    def __init__(self, now: datetime = NOW) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs: float) -> None:
        self._now += timedelta(**kwargs)


class FakeEventStore(InMemoryEventStore):
    """In-memory store that records calls and fails the operations in ``failures``."""

    def __init__(self, bus: EventBus | None = None) -> None:
        super().__init__(bus=bus)
        self.calls: list[tuple[str, Any]] = []
        self.failures: set[str] = set()

    def _check(self, operation: str, arg: Any = None) -> None:
        self.calls.append((operation, arg))
        if operation in self.failures:
            raise StoreError("connection reset")

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    async def list(self, event_filter: EventFilter | None = None) -> list[Event]:
        self._check("list", event_filter)
        return await super().list(event_filter)

    async def get(self, event_id: str) -> Event | None:
        self._check("get", event_id)
        return await super().get(event_id)

    async def create(self, data: dict[str, Any], created_by: str | None = None) -> Event:
        self._check("create", data)
        return await super().create(data, created_by)

    async def update(self, event_id: str, patch: dict[str, Any]) -> None:
        self._check("update", (event_id, patch))
        await super().update(event_id, patch)

    async def update_many(self, event_ids: list[str], patch: dict[str, Any]) -> None:
        self._check("update_many", (list(event_ids), patch))
        await super().update_many(event_ids, patch)

    async def delete(self, event_id: str) -> None:
        self._check("delete", event_id)
        await super().delete(event_id)


def make_event(
    title: str = "Test event",
    start: datetime | None = None,
    duration: timedelta = timedelta(hours=1),
    **overrides: Any,
) -> Event:
    start = start or NOW + timedelta(days=2)
    defaults: dict[str, Any] = dict(title=title, start_date=start, end_date=start + duration)
    defaults.update(overrides)
    return Event(**defaults)


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def store(bus: EventBus) -> FakeEventStore:
    return FakeEventStore(bus=bus)


@pytest.fixture()
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture()
def settings_repo(kv: InMemoryKeyValueStore) -> SettingsRepository:
    return SettingsRepository(kv)


@pytest.fixture()
def timers() -> TimerRegistry:
    return TimerRegistry()


@pytest.fixture()
def platform() -> InMemoryNotificationPlatform:
    return InMemoryNotificationPlatform(permission=PermissionState.GRANTED)


@pytest.fixture()
def dispatcher(platform, settings_repo, timers, bus) -> NotificationDispatcher:
    d = NotificationDispatcher(
        platform=platform, settings_repo=settings_repo, timers=timers, bus=bus
    )
    d.bind_user(USER)
    return d


@pytest.fixture()
def reminders(dispatcher, timers, clock, bus) -> ReminderScheduler:
    return ReminderScheduler(dispatcher=dispatcher, timers=timers, clock=clock, bus=bus)


@pytest.fixture()
async def coordinator(store, dispatcher, reminders, settings_repo, timers, clock):
    coord = EventCoordinator(
        store=store,
        dispatcher=dispatcher,
        reminders=reminders,
        settings_repo=settings_repo,
        timers=timers,
        clock=clock,
    )
    yield coord
    await coord.stop()
