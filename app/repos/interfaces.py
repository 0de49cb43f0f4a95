"""Store interfaces (repository pattern).

Stores must be swappable and return domain models.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

from app.domain.events import EventsChanged
from app.domain.models import Event, EventFilter


class EventStore(ABC):
    """Interface for event persistence and its change feed.

    Every method may raise :class:`app.domain.errors.StoreError`. No retries
    are performed at this layer.
    """

    @abstractmethod
    async def list(self, event_filter: EventFilter | None = None) -> list[Event]:
        """Return events matching *event_filter*, ordered by start_date ascending."""
        ...

    @abstractmethod
    async def get(self, event_id: str) -> Event | None:
        """Return an event by id, or None if not found."""
        ...

    @abstractmethod
    async def create(self, data: dict[str, Any], created_by: str | None = None) -> Event:
        """Persist a new event and return it with id and timestamps assigned."""
        ...

    @abstractmethod
    async def update(self, event_id: str, patch: dict[str, Any]) -> None:
        """Apply *patch* to one event.

        Raises:
            EventNotFoundError: If the event does not exist.
        """
        ...

    @abstractmethod
    async def update_many(self, event_ids: list[str], patch: dict[str, Any]) -> None:
        """Apply the same *patch* to every listed event in one write."""
        ...

    @abstractmethod
    async def delete(self, event_id: str) -> None:
        """Remove an event.

        Raises:
            EventNotFoundError: If the event does not exist.
        """
        ...

    @abstractmethod
    def subscribe(self, on_change: Callable[[EventsChanged], None]) -> Callable[[], None]:
        """Register a change listener; returns the unsubscribe callable."""
        ...


class KeyValueStore(ABC):
    """String-keyed string storage used for per-user settings."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...
