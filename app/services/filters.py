"""Service for matching events against list filters."""

from __future__ import annotations

from app.domain.models import Event, EventFilter

ALL = "all"


def matches(event: Event, event_filter: EventFilter) -> bool:
    """Return True when *event* satisfies every field set on *event_filter*.

    Date bounds are inclusive: ``start_date`` is a lower bound on the event's
    start and ``end_date`` an upper bound on its end. ``search`` is a
    case-insensitive substring match against title, description or location.
    """
    if event_filter.start_date is not None and event.start_date < event_filter.start_date:
        return False
    if event_filter.end_date is not None and event.end_date > event_filter.end_date:
        return False
    if event_filter.category and event_filter.category != ALL:
        if event.category != event_filter.category:
            return False
    if event_filter.status and event_filter.status != ALL:
        if event.status != event_filter.status:
            return False
    if event_filter.search:
        needle = event_filter.search.casefold()
        haystacks = (event.title, event.description or "", event.location or "")
        if not any(needle in h.casefold() for h in haystacks):
            return False
    return True


def apply_filter(events: list[Event], event_filter: EventFilter | None) -> list[Event]:
    """Filter *events* and order them by start_date ascending."""
    selected = events if event_filter is None else [
        e for e in events if matches(e, event_filter)
    ]
    return sorted(selected, key=lambda e: e.start_date)
