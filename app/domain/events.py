"""Domain events emitted on the in-process bus."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from app.domain.models import NotificationKind


class EventsChanged(BaseModel):
    """Fired by a store after any successful write to a table.

    Listeners get no payload guarantees beyond the table name; they are
    expected to re-read rather than diff.
    """

    table: str = "events"
    operation: Literal["insert", "update", "delete"]


class NotificationDispatched(BaseModel):
    """Fired after the dispatcher has delivered a notification."""

    notification_id: str
    title: str
    kind: NotificationKind
    event_id: str | None = None
    channels: list[str]


class ReminderFired(BaseModel):
    """Fired when a deferred reminder reaches its fire time."""

    event_id: str
    reminder_id: str
    lead_hours: int
    fired_at: datetime
