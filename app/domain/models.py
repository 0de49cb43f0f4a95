"""Domain models for the event lifecycle and notification system."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum

from dateutil import parser as date_parser
from pydantic import BaseModel, Field, field_validator, model_validator


class EventCategory(StrEnum):
    SOCIAL = "social"
    ACADEMIC = "academic"
    CULTURAL = "cultural"
    COMMERCIAL = "commercial"
    WORKSHOP = "workshop"
    OTHER = "other"


class EventStatus(StrEnum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    FINISHED = "finished"
    CANCELLED = "cancelled"


class UpdateType(StrEnum):
    UPDATED = "updated"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    STARTING = "starting"


class NotificationKind(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    REMINDER = "reminder"


class PermissionState(StrEnum):
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


TERMINAL_STATUSES = frozenset({EventStatus.FINISHED, EventStatus.CANCELLED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def coerce_timestamp(value):
    """Parse ISO-8601 strings (date-only allowed) and pin naive values to UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = date_parser.isoparse(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Event(BaseModel):
    """A calendar event as persisted by the store.

    ``status`` is a cached projection of the dates; see
    :func:`app.services.status.derive_status`. The ``start_date < end_date``
    rule is enforced by the request models, not here.
    """

    id: str = Field(default_factory=_new_id)
    title: str
    description: str = ""
    location: str = ""
    start_date: datetime
    end_date: datetime
    category: EventCategory = EventCategory.OTHER
    status: EventStatus = EventStatus.UPCOMING
    max_attendees: int | None = None
    current_attendees: int = 0
    created_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _aware_timestamps(cls, value):
        return coerce_timestamp(value)


class EventFilter(BaseModel):
    start_date: datetime | None = None
    end_date: datetime | None = None
    category: EventCategory | str = "all"
    status: EventStatus | str = "all"
    search: str | None = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _aware_timestamps(cls, value):
        return coerce_timestamp(value)


class NotificationSettings(BaseModel):
    push_notifications: bool = True
    event_reminders: bool = True
    event_updates: bool = True
    sound_enabled: bool = True
    # Carried for the rest of the application; not acted on here.
    low_stock_alerts: bool = True
    inventory_movements: bool = True
    system_alerts: bool = False
    email_notifications: bool = True


class ScheduledReminder(BaseModel):
    id: str = Field(default_factory=_new_id)
    event_id: str
    event_title: str
    lead_hours: int
    fire_at: datetime


class Notification(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    body: str = ""
    kind: NotificationKind = NotificationKind.INFO
    event_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    channels: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class EventCreate(BaseModel):
    """New events always start out ``upcoming``; any ``status`` sent is ignored."""

    title: str = Field(min_length=1)
    description: str = ""
    location: str = ""
    start_date: datetime
    end_date: datetime
    category: EventCategory = EventCategory.OTHER
    max_attendees: int | None = Field(default=None, gt=0)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _aware_timestamps(cls, value):
        return coerce_timestamp(value)

    @model_validator(mode="after")
    def _end_after_start(self) -> EventCreate:
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


# Fields an update may omit but never clear.
_NON_NULLABLE_UPDATE_FIELDS = (
    "title",
    "description",
    "location",
    "start_date",
    "end_date",
    "category",
    "status",
)


class EventUpdate(BaseModel):
    """Partial update. ``status`` may only be set to ``cancelled``; the other
    statuses follow from the dates.
    """

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    location: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    category: EventCategory | None = None
    status: EventStatus | None = None
    max_attendees: int | None = Field(default=None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def _no_explicit_nulls(cls, data):
        if not isinstance(data, dict):
            return data
        nulls = sorted(
            name
            for name in _NON_NULLABLE_UPDATE_FIELDS
            if name in data and (data[name] is None or data[name] == "")
        )
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
        return data

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _aware_timestamps(cls, value):
        return coerce_timestamp(value)

    @field_validator("status")
    @classmethod
    def _only_cancellation(cls, value):
        if value is not None and value != EventStatus.CANCELLED:
            raise ValueError("status can only be set to cancelled")
        return value

    @model_validator(mode="after")
    def _end_after_start(self) -> EventUpdate:
        if (
            self.start_date is not None
            and self.end_date is not None
            and self.end_date <= self.start_date
        ):
            raise ValueError("end_date must be after start_date")
        return self


class NotificationSettingsUpdate(BaseModel):
    push_notifications: bool | None = None
    event_reminders: bool | None = None
    event_updates: bool | None = None
    sound_enabled: bool | None = None
    low_stock_alerts: bool | None = None
    inventory_movements: bool | None = None
    system_alerts: bool | None = None
    email_notifications: bool | None = None


class NotificationStatus(BaseModel):
    supported: bool
    permission: PermissionState
    enabled: bool
    settings: NotificationSettings


class ReconcileResult(BaseModel):
    to_ongoing: list[str] = Field(default_factory=list)
    to_finished: list[str] = Field(default_factory=list)
    titles: dict[str, str] = Field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.to_ongoing or self.to_finished)


class TickResult(BaseModel):
    time: datetime
    reminders_fired: list[str]
    horizon_notifications: list[str]
