"""Service for deriving and reconciling time-based event statuses.

Transitions, evaluated against ``now``:

* ``upcoming -> ongoing`` when ``start_date <= now < end_date``
* ``upcoming | ongoing -> finished`` when ``now >= end_date``

``finished`` and ``cancelled`` are terminal; ``cancelled`` is never reached
from here.
"""

from __future__ import annotations

import logging
from datetime import datetime

from app.domain.models import (
    TERMINAL_STATUSES,
    Event,
    EventStatus,
    ReconcileResult,
)
from app.repos.interfaces import EventStore

logger = logging.getLogger(__name__)


def derive_status(event: Event, now: datetime) -> EventStatus:
    """Return the status *event* should have at *now*.

    Never raises, even when ``start_date >= end_date``.
    """
    if event.status in TERMINAL_STATUSES:
        return event.status
    if now >= event.end_date:
        return EventStatus.FINISHED
    if event.start_date <= now:
        return EventStatus.ONGOING
    return event.status


def plan_transitions(events: list[Event], now: datetime) -> ReconcileResult:
    """Partition *events* into the ids that must become ongoing or finished."""
    plan = ReconcileResult()
    for event in events:
        if event.status in TERMINAL_STATUSES:
            continue
        target = derive_status(event, now)
        if target == event.status:
            continue
        if target == EventStatus.FINISHED:
            plan.to_finished.append(event.id)
        elif target == EventStatus.ONGOING and event.status == EventStatus.UPCOMING:
            plan.to_ongoing.append(event.id)
        else:
            continue
        plan.titles[event.id] = event.title
    return plan


def with_derived_status(events: list[Event], now: datetime) -> list[Event]:
    """Copy *events* with their status projected to *now* for display."""
    projected = []
    for event in events:
        status = derive_status(event, now)
        projected.append(
            event if status == event.status else event.model_copy(update={"status": status})
        )
    return projected


class StatusReconciler:
    """Applies one reconciliation pass against the store.

    Each pass issues at most two batched writes: one naming every event that
    becomes ongoing, one naming every event that becomes finished.
    """

    def __init__(self, store: EventStore) -> None:
        self._store = store

    async def reconcile(self, now: datetime) -> ReconcileResult:
        events = await self._store.list()
        plan = plan_transitions(events, now)

        if plan.to_ongoing:
            await self._store.update_many(plan.to_ongoing, {"status": EventStatus.ONGOING})
        if plan.to_finished:
            await self._store.update_many(plan.to_finished, {"status": EventStatus.FINISHED})

        if plan.changed:
            logger.info(
                "Reconciled event statuses: %d ongoing, %d finished",
                len(plan.to_ongoing),
                len(plan.to_finished),
            )
        return plan
