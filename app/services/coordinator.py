"""Event coordinator, the entry point the API talks to.

Owns the in-memory event snapshot and wires the store, the status
reconciler, the reminder scheduler and the notification dispatcher together.
Writes are always followed by an awaited re-fetch; there is no optimistic
local patching.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from app.domain.errors import EventNotFoundError, EventOperationError, StoreError
from app.domain.events import EventsChanged
from app.domain.models import (
    Event,
    EventFilter,
    Notification,
    NotificationKind,
    ReconcileResult,
    TickResult,
    UpdateType,
)
from app.repos.interfaces import EventStore
from app.repos.settings import SettingsRepository
from app.services.clock import Clock
from app.services.notifications import NotificationDispatcher
from app.services.reminders import UPCOMING_PANEL_DAYS, ReminderScheduler, upcoming_within
from app.services.status import StatusReconciler, with_derived_status
from app.services.timers import TimerRegistry

logger = logging.getLogger(__name__)

RECONCILE_INTERVAL_SECONDS = 5 * 60
HORIZON_SCAN_INTERVAL_SECONDS = 60 * 60


def _as_payload(data: dict[str, Any] | BaseModel, partial: bool = False) -> dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_unset=partial)
    return dict(data)


class EventCoordinator:
    def __init__(
        self,
        store: EventStore,
        dispatcher: NotificationDispatcher,
        reminders: ReminderScheduler,
        settings_repo: SettingsRepository,
        timers: TimerRegistry,
        clock: Clock,
        reconciler: StatusReconciler | None = None,
        reconcile_interval_seconds: float = RECONCILE_INTERVAL_SECONDS,
        horizon_scan_interval_seconds: float = HORIZON_SCAN_INTERVAL_SECONDS,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.reminders = reminders
        self.reconciler = reconciler or StatusReconciler(store)
        self.settings_repo = settings_repo
        self.timers = timers
        self.clock = clock
        self.reconcile_interval_seconds = reconcile_interval_seconds
        self.horizon_scan_interval_seconds = horizon_scan_interval_seconds

        self.events: list[Event] = []
        self.loading = False
        self.filters: EventFilter | None = None
        self.user_id: str | None = None

        self._generation = 0
        self._unsubscribe = None
        self._started = False
        self._reconcile_lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, user_id: str) -> None:
        """Identify the user, subscribe to changes and start the periodic jobs."""
        if self._started:
            logger.warning("Event coordinator already started for user %s", self.user_id)
            return

        self.user_id = user_id
        self.settings_repo.load(user_id)
        self.dispatcher.bind_user(user_id)
        self._unsubscribe = self.store.subscribe(self._on_store_change)
        self._started = True

        await self.fetch()
        await self.reconcile_statuses()

        self.timers.every(self.reconcile_interval_seconds, self.reconcile_statuses, name="reconcile")
        self.timers.every(self.horizon_scan_interval_seconds, self.scan_horizon, name="horizon-scan")
        logger.info("Event coordinator started for user %s", user_id)

    async def stop(self) -> None:
        """Release the subscription, every timer and every armed reminder."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.reminders.cancel_all()
        await self.timers.cancel_all()
        self._started = False
        logger.info("Event coordinator stopped for user %s", self.user_id)

    async def settle(self) -> None:
        """Wait for change-feed refreshes that are still in flight."""
        await self.timers.drain()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch(self, filters: EventFilter | None = None) -> list[Event]:
        """Reload the snapshot from the store.

        *filters* replaces the remembered filter; when omitted the last one is
        reused. Only the most recently issued fetch may update the snapshot.
        A failed read keeps the previous list.
        """
        if filters is not None:
            self.filters = filters
        self._generation += 1
        generation = self._generation
        self.loading = True

        try:
            events = await self.store.list(self.filters)
        except StoreError:
            logger.exception("Error fetching events")
            if generation == self._generation:
                self.dispatcher.toast("Error loading events", NotificationKind.ERROR)
            return self.events
        finally:
            if generation == self._generation:
                self.loading = False

        if generation != self._generation:
            logger.debug(
                "Discarding stale fetch %d (latest is %d)", generation, self._generation
            )
            return self.events

        self.events = events
        self.reminders.scan(events, self.clock.now())
        return events

    def get_event(self, event_id: str) -> Event | None:
        return next((e for e in self.events if e.id == event_id), None)

    def visible_events(self, now: datetime | None = None) -> list[Event]:
        """The snapshot with statuses projected to *now* for display."""
        return with_derived_status(self.events, now or self.clock.now())

    def upcoming(self, days: int = UPCOMING_PANEL_DAYS, now: datetime | None = None) -> list[Event]:
        return upcoming_within(self.events, now or self.clock.now(), days)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, data: dict[str, Any] | BaseModel) -> Event:
        try:
            event = await self.store.create(_as_payload(data), created_by=self.user_id)
        except StoreError as exc:
            logger.exception("Error creating event")
            self.dispatcher.toast(f"Error creating event: {exc.message}", NotificationKind.ERROR)
            raise EventOperationError(f"Error creating event: {exc.message}") from exc

        logger.info("Created event %s (%s)", event.id, event.title)
        self.dispatcher.toast("Event created", NotificationKind.SUCCESS)
        self.reminders.arm(event, self.clock.now())
        await self.fetch()
        return event

    async def update(self, event_id: str, changes: dict[str, Any] | BaseModel) -> Event:
        patch = _as_payload(changes, partial=True)
        try:
            before = self.get_event(event_id) or await self.store.get(event_id)
            if before is None:
                raise EventNotFoundError(event_id)
            await self.store.update(event_id, patch)
            after = await self.store.get(event_id)
        except EventNotFoundError:
            logger.warning("Cannot update missing event %s", event_id)
            self.dispatcher.toast("Event not found", NotificationKind.ERROR)
            raise
        except StoreError as exc:
            logger.exception("Error updating event %s", event_id)
            self.dispatcher.toast(f"Error updating event: {exc.message}", NotificationKind.ERROR)
            raise EventOperationError(
                f"Error updating event: {exc.message}", event_id=event_id
            ) from exc

        if after is None:
            # Deleted between our write and the read-back.
            await self.fetch()
            raise EventNotFoundError(event_id)

        rescheduled = (
            before.start_date != after.start_date or before.end_date != after.end_date
        )
        logger.info("Updated event %s (rescheduled=%s)", event_id, rescheduled)
        self.dispatcher.toast("Event updated", NotificationKind.SUCCESS)
        self.dispatcher.notify_event_update(
            after.title,
            UpdateType.RESCHEDULED if rescheduled else UpdateType.UPDATED,
            event_id=event_id,
        )
        self.reminders.rearm(after, self.clock.now())
        await self.fetch()
        return after

    async def delete(self, event_id: str) -> Event:
        """Delete an event, then announce it as cancelled under its old title."""
        try:
            # Captured up front: the title is gone once the row is.
            captured = self.get_event(event_id) or await self.store.get(event_id)
            if captured is None:
                raise EventNotFoundError(event_id)
            await self.store.delete(event_id)
        except EventNotFoundError:
            logger.warning("Cannot delete missing event %s", event_id)
            self.dispatcher.toast("Event not found", NotificationKind.ERROR)
            raise
        except StoreError as exc:
            logger.exception("Error deleting event %s", event_id)
            self.dispatcher.toast(f"Error deleting event: {exc.message}", NotificationKind.ERROR)
            raise EventOperationError(
                f"Error deleting event: {exc.message}", event_id=event_id
            ) from exc

        logger.info("Deleted event %s (%s)", event_id, captured.title)
        self.reminders.cancel(event_id)
        self.dispatcher.toast("Event deleted", NotificationKind.SUCCESS)
        self.dispatcher.notify_event_update(captured.title, UpdateType.CANCELLED, event_id=event_id)
        await self.fetch()
        return captured

    # ------------------------------------------------------------------
    # Reconciliation and reminders
    # ------------------------------------------------------------------

    async def reconcile_statuses(self, now: datetime | None = None) -> ReconcileResult:
        """Run one reconciliation pass; failures are logged and dropped.

        Passes are serialised so overlapping triggers never announce the same
        transition twice.
        """
        async with self._reconcile_lock:
            try:
                plan = await self.reconciler.reconcile(now or self.clock.now())
            except StoreError:
                logger.exception("Error reconciling event statuses")
                return ReconcileResult()

            for event_id in plan.to_ongoing:
                self.dispatcher.notify_event_update(
                    plan.titles.get(event_id, event_id), UpdateType.STARTING, event_id=event_id
                )
        if plan.changed:
            await self.fetch()
        return plan

    async def refresh(self) -> list[Event]:
        """Manual refresh: reconcile, then reload with the current filters."""
        plan = await self.reconcile_statuses()
        if not plan.changed:
            await self.fetch()
        self.dispatcher.toast("Events refreshed", NotificationKind.SUCCESS)
        return self.events

    async def scan_horizon(self, now: datetime | None = None) -> list[Notification]:
        return self.reminders.scan(self.events, now or self.clock.now())

    async def tick(self, now: datetime | None = None) -> TickResult:
        """Fire due deferred reminders and run a horizon scan at *now*."""
        now = now or self.clock.now()
        fired = self.reminders.fire_due(now)
        scanned = await self.scan_horizon(now)
        return TickResult(
            time=now,
            reminders_fired=[r.id for r in fired],
            horizon_notifications=[n.event_id for n in scanned if n.event_id],
        )

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    def _on_store_change(self, change: EventsChanged) -> None:
        if not self._started:
            return
        logger.debug("Change on %s (%s), refreshing", change.table, change.operation)
        self.timers.spawn(self._refresh_after_change(), name="change-refresh")

    async def _refresh_after_change(self) -> None:
        await self.fetch()
        await self.reconcile_statuses()
