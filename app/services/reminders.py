"""Service for arming, firing and scanning event reminders."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.domain.bus import EventBus
from app.domain.events import ReminderFired
from app.domain.models import (
    Event,
    EventStatus,
    Notification,
    NotificationKind,
    ScheduledReminder,
)
from app.services.clock import Clock
from app.services.notifications import NotificationDispatcher
from app.services.timers import Timer, TimerRegistry

logger = logging.getLogger(__name__)

DEFAULT_LEAD_TIMES_HOURS = (24, 1)
UPCOMING_PANEL_DAYS = 3


@dataclass(frozen=True)
class HorizonBand:
    """Open interval of hours-until-start that counts as hitting a lead time."""

    label: str
    low_hours: float
    high_hours: float

    def contains(self, hours: float) -> bool:
        return self.low_hours < hours < self.high_hours


HORIZON_BANDS = (
    HorizonBand("in 1 hour", 0.9, 1.1),
    HorizonBand("tomorrow", 23.5, 24.5),
    HorizonBand("in 1 week", 167.0, 169.0),
)


def hours_until(event: Event, now: datetime) -> float:
    return (event.start_date - now).total_seconds() / 3600


def scan_horizon(events: list[Event], now: datetime) -> list[tuple[Event, HorizonBand]]:
    """Return every upcoming event whose start falls inside a tolerance band."""
    hits = []
    for event in events:
        if event.status != EventStatus.UPCOMING:
            continue
        hours = hours_until(event, now)
        for band in HORIZON_BANDS:
            if band.contains(hours):
                hits.append((event, band))
                break
    return hits


def upcoming_within(events: list[Event], now: datetime, days: int = UPCOMING_PANEL_DAYS) -> list[Event]:
    """Upcoming events starting between *now* and *now + days*, soonest first."""
    until = now + timedelta(days=days)
    return sorted(
        (
            e
            for e in events
            if e.status == EventStatus.UPCOMING and now <= e.start_date <= until
        ),
        key=lambda e: e.start_date,
    )


def reminder_body(lead_hours: int) -> str:
    unit = "hour" if lead_hours == 1 else "hours"
    return f"The event starts in {lead_hours} {unit}"


class ReminderScheduler:
    """Deferred one-shot reminders plus the periodic horizon scan.

    Armed reminders are tracked per event id so they can be cancelled when
    the event is deleted and re-armed when it is rescheduled. Both mechanisms
    are no-ops while the ``event_reminders`` setting is off.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        timers: TimerRegistry,
        clock: Clock,
        bus: EventBus | None = None,
        lead_times_hours: tuple[int, ...] = DEFAULT_LEAD_TIMES_HOURS,
        dedupe_horizon: bool = False,
    ) -> None:
        self._dispatcher = dispatcher
        self._timers = timers
        self._clock = clock
        self._bus = bus
        self.lead_times_hours = lead_times_hours
        self.dedupe_horizon = dedupe_horizon
        self._armed: dict[str, dict[str, tuple[ScheduledReminder, Timer]]] = {}
        self._horizon_seen: set[tuple[str, str]] = set()

    @property
    def enabled(self) -> bool:
        return self._dispatcher.settings.event_reminders

    # ------------------------------------------------------------------
    # Deferred reminders
    # ------------------------------------------------------------------

    def arm(self, event: Event, now: datetime | None = None) -> list[ScheduledReminder]:
        """Arm one reminder per lead time whose fire time is still ahead.

        Lead times already in the past are skipped; nothing is caught up.
        """
        if not self.enabled:
            return []
        now = now or self._clock.now()

        armed: list[ScheduledReminder] = []
        for lead in self.lead_times_hours:
            fire_at = event.start_date - timedelta(hours=lead)
            if fire_at <= now:
                logger.debug(
                    "Skipping %dh reminder for event %s: window already passed", lead, event.id
                )
                continue
            reminder = ScheduledReminder(
                event_id=event.id,
                event_title=event.title,
                lead_hours=lead,
                fire_at=fire_at,
            )
            timer = self._timers.call_later(
                (fire_at - now).total_seconds(),
                self._on_timer,
                event.id,
                reminder.id,
                name=f"reminder:{event.id}:{lead}h",
            )
            self._armed.setdefault(event.id, {})[reminder.id] = (reminder, timer)
            armed.append(reminder)

        if armed:
            logger.info(
                "Armed %d reminder(s) for event %s: %s",
                len(armed),
                event.id,
                ", ".join(f"{r.lead_hours}h" for r in armed),
            )
        return armed

    def rearm(self, event: Event, now: datetime | None = None) -> list[ScheduledReminder]:
        self.cancel(event.id)
        return self.arm(event, now)

    def cancel(self, event_id: str) -> int:
        """Cancel every armed reminder for *event_id*; returns how many."""
        entries = self._armed.pop(event_id, {})
        for _, timer in entries.values():
            timer.cancel()
        self._horizon_seen = {key for key in self._horizon_seen if key[0] != event_id}
        if entries:
            logger.info("Cancelled %d reminder(s) for event %s", len(entries), event_id)
        return len(entries)

    def cancel_all(self) -> None:
        for event_id in list(self._armed):
            self.cancel(event_id)

    def armed(self, event_id: str | None = None) -> list[ScheduledReminder]:
        if event_id is not None:
            entries = self._armed.get(event_id, {}).values()
        else:
            entries = (e for per_event in self._armed.values() for e in per_event.values())
        return sorted((r for r, _ in entries), key=lambda r: r.fire_at)

    def fire_due(self, now: datetime | None = None) -> list[ScheduledReminder]:
        """Fire every armed reminder whose time has come, ahead of its timer."""
        now = now or self._clock.now()
        due = [r for r in self.armed() if r.fire_at <= now]
        for reminder in due:
            entry = self._pop(reminder.event_id, reminder.id)
            if entry is not None:
                entry[1].cancel()
                self._fire(reminder, now)
        return due

    def _on_timer(self, event_id: str, reminder_id: str) -> None:
        entry = self._pop(event_id, reminder_id)
        if entry is not None:
            self._fire(entry[0], self._clock.now())

    def _pop(self, event_id: str, reminder_id: str) -> tuple[ScheduledReminder, Timer] | None:
        per_event = self._armed.get(event_id)
        if not per_event:
            return None
        entry = per_event.pop(reminder_id, None)
        if not per_event:
            self._armed.pop(event_id, None)
        return entry

    def _fire(self, reminder: ScheduledReminder, now: datetime) -> Notification | None:
        if not self.enabled:
            logger.info("Event reminders disabled, dropping reminder %s", reminder.id)
            return None
        notification = self._dispatcher.notify(
            f"Reminder: {reminder.event_title}",
            reminder_body(reminder.lead_hours),
            kind=NotificationKind.REMINDER,
            event_id=reminder.event_id,
        )
        if self._bus is not None:
            self._bus.publish(
                ReminderFired(
                    event_id=reminder.event_id,
                    reminder_id=reminder.id,
                    lead_hours=reminder.lead_hours,
                    fired_at=now,
                )
            )
        return notification

    # ------------------------------------------------------------------
    # Horizon scan
    # ------------------------------------------------------------------

    def scan(self, events: list[Event], now: datetime | None = None) -> list[Notification]:
        """Notify every upcoming event sitting inside a tolerance band.

        Without ``dedupe_horizon`` an event that stays inside a band across
        consecutive scans is notified on each of them.
        """
        if not self.enabled:
            return []
        now = now or self._clock.now()

        sent: list[Notification] = []
        for event, band in scan_horizon(events, now):
            if self.dedupe_horizon:
                key = (event.id, band.label)
                if key in self._horizon_seen:
                    continue
                self._horizon_seen.add(key)
            sent.append(
                self._dispatcher.notify(
                    f"Reminder: {event.title}",
                    f"The event starts {band.label}",
                    kind=NotificationKind.REMINDER,
                    event_id=event.id,
                )
            )
        if sent:
            logger.info("Horizon scan sent %d reminder(s)", len(sent))
        return sent

    def reset_horizon_history(self) -> None:
        self._horizon_seen.clear()
