"""In-memory repositories for events and settings."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from app.domain.bus import EventBus
from app.domain.errors import EventNotFoundError, StoreError
from app.domain.events import EventsChanged
from app.domain.models import Event, EventCategory, EventFilter
from app.repos.interfaces import EventStore, KeyValueStore
from app.services.filters import apply_filter

logger = logging.getLogger(__name__)

# Fields a caller may never overwrite through update().
_PROTECTED_FIELDS = frozenset({"id", "created_at", "created_by"})


class InMemoryEventStore(EventStore):
    """Dict-backed event store, keyed by id, with a bus-backed change feed.

    Returned events are copies; mutating them never touches stored state.
    """

    def __init__(self, bus: EventBus | None = None, table: str = "events") -> None:
        self._store: dict[str, Event] = {}
        self._bus = bus or EventBus()
        self._table = table

    async def list(self, event_filter: EventFilter | None = None) -> list[Event]:
        events = apply_filter(list(self._store.values()), event_filter)
        return [e.model_copy(deep=True) for e in events]

    async def get(self, event_id: str) -> Event | None:
        event = self._store.get(event_id)
        return event.model_copy(deep=True) if event is not None else None

    async def create(self, data: dict[str, Any], created_by: str | None = None) -> Event:
        try:
            event = Event.model_validate({**data, "created_by": created_by})
        except ValueError as exc:
            raise StoreError(f"Invalid event data: {exc}") from exc
        self._store[event.id] = event
        self._publish("insert")
        return event.model_copy(deep=True)

    async def update(self, event_id: str, patch: dict[str, Any]) -> None:
        if event_id not in self._store:
            raise EventNotFoundError(event_id)
        self._store[event_id] = self._patched(self._store[event_id], patch)
        self._publish("update")

    async def update_many(self, event_ids: list[str], patch: dict[str, Any]) -> None:
        if not event_ids:
            return
        missing = [eid for eid in event_ids if eid not in self._store]
        if missing:
            raise EventNotFoundError(missing[0])
        # Validate every row before committing any of them.
        updated = {eid: self._patched(self._store[eid], patch) for eid in event_ids}
        self._store.update(updated)
        self._publish("update")

    async def delete(self, event_id: str) -> None:
        if self._store.pop(event_id, None) is None:
            raise EventNotFoundError(event_id)
        self._publish("delete")

    def subscribe(self, on_change: Callable[[EventsChanged], None]) -> Callable[[], None]:
        return self._bus.subscribe(EventsChanged, on_change)

    def add(self, event: Event) -> None:
        """Insert a fully-formed event without notifying subscribers (seeding)."""
        self._store[event.id] = event

    def clear(self) -> None:
        self._store.clear()

    def _patched(self, event: Event, patch: dict[str, Any]) -> Event:
        changes = {k: v for k, v in patch.items() if k not in _PROTECTED_FIELDS}
        try:
            return Event.model_validate(
                {
                    **event.model_dump(),
                    **changes,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
        except ValueError as exc:
            raise StoreError(f"Invalid event data: {exc}") from exc

    def _publish(self, operation: str) -> None:
        self._bus.publish(EventsChanged(table=self._table, operation=operation))


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed string store."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class JsonFileKeyValueStore(KeyValueStore):
    """String store persisted as one JSON object on disk.

    The file is re-written in full on every change.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._values: dict[str, str] = self._load()

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._flush()

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.exception("Could not read key-value file %s, starting empty", self._path)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Key-value file %s is not a JSON object, ignoring it", self._path)
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._values, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self._path)


# ---------------------------------------------------------------------------
# Seed data – a few events spread around "now" for local development
# ---------------------------------------------------------------------------


def _seed_events(store: InMemoryEventStore) -> None:
    now = datetime.now(timezone.utc)

    store.add(
        Event(
            title="Rose arranging workshop",
            description="Hands-on session with seasonal roses",
            location="Main shop",
            start_date=now + timedelta(hours=1),
            end_date=now + timedelta(hours=3),
            category=EventCategory.WORKSHOP,
        )
    )
    store.add(
        Event(
            title="Supplier meeting",
            location="Back office",
            start_date=now + timedelta(days=1),
            end_date=now + timedelta(days=1, hours=1),
            category=EventCategory.COMMERCIAL,
        )
    )
    store.add(
        Event(
            title="Spring open house",
            description="Open doors for neighbours and regular customers",
            location="Main shop",
            start_date=now + timedelta(weeks=1),
            end_date=now + timedelta(weeks=1, hours=4),
            category=EventCategory.SOCIAL,
        )
    )
    store.add(
        Event(
            title="Inventory count",
            location="Warehouse",
            start_date=now - timedelta(days=2),
            end_date=now - timedelta(days=2) + timedelta(hours=5),
            category=EventCategory.OTHER,
        )
    )


def create_event_store(bus: EventBus | None = None, seed: bool = False) -> InMemoryEventStore:
    """Return an InMemoryEventStore, optionally pre-loaded with sample data."""
    store = InMemoryEventStore(bus=bus)
    if seed:
        _seed_events(store)
    return store
