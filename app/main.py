"""FastAPI application: entry point for the event lifecycle service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, Response
from pydantic import ValidationError

from app.config import load_settings
from app.domain.bus import EventBus
from app.domain.errors import EventNotFoundError, EventOperationError
from app.domain.models import (
    Event,
    EventCreate,
    EventFilter,
    EventUpdate,
    Notification,
    NotificationSettings,
    NotificationSettingsUpdate,
    NotificationStatus,
    ReconcileResult,
    ScheduledReminder,
    TickResult,
)
from app.logging_config import setup_logging
from app.repos.memory import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    create_event_store,
)
from app.repos.settings import SettingsRepository
from app.services.clock import SystemClock
from app.services.coordinator import EventCoordinator
from app.services.notifications import InMemoryNotificationPlatform, NotificationDispatcher
from app.services.reminders import UPCOMING_PANEL_DAYS, ReminderScheduler
from app.services.sound import beep_wav
from app.services.timers import TimerRegistry

settings = load_settings()
setup_logging(settings.log_level)

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
event_store = create_event_store(bus=event_bus, seed=settings.seed_demo_data)
kv_store = (
    JsonFileKeyValueStore(settings.settings_path)
    if settings.settings_path
    else InMemoryKeyValueStore()
)
settings_repo = SettingsRepository(kv_store)
timers = TimerRegistry()
clock = SystemClock()
platform = InMemoryNotificationPlatform()
dispatcher = NotificationDispatcher(
    platform=platform,
    settings_repo=settings_repo,
    timers=timers,
    bus=event_bus,
    dismiss_after_seconds=settings.alert_dismiss_seconds,
)
reminder_scheduler = ReminderScheduler(
    dispatcher=dispatcher,
    timers=timers,
    clock=clock,
    bus=event_bus,
    dedupe_horizon=settings.dedupe_horizon_reminders,
)
coordinator = EventCoordinator(
    store=event_store,
    dispatcher=dispatcher,
    reminders=reminder_scheduler,
    settings_repo=settings_repo,
    timers=timers,
    clock=clock,
    reconcile_interval_seconds=settings.reconcile_interval_seconds,
    horizon_scan_interval_seconds=settings.horizon_scan_interval_seconds,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    await coordinator.start(settings.user_id)
    try:
        yield
    finally:
        await coordinator.stop()


app = FastAPI(title="Event Lifecycle Service", lifespan=lifespan)


def _current_user() -> str:
    return coordinator.user_id or settings.user_id


# ── Events ────────────────────────────────────────────────────────────


@app.get("/events", response_model=list[Event])
async def list_events(
    start_date: str | None = None,
    end_date: str | None = None,
    category: str = "all",
    status: str = "all",
    search: str | None = None,
) -> list[Event]:
    """Return events matching the filters, with statuses projected to now."""
    try:
        event_filter = EventFilter(
            start_date=start_date,
            end_date=end_date,
            category=category,
            status=status,
            search=search,
        )
    except (ValidationError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    await coordinator.fetch(event_filter)
    return coordinator.visible_events()


@app.get("/events/upcoming", response_model=list[Event])
def list_upcoming_events(days: int = UPCOMING_PANEL_DAYS) -> list[Event]:
    """Upcoming events starting within the next *days* days."""
    return coordinator.upcoming(days=days)


@app.get("/events/{event_id}", response_model=Event)
async def get_event(event_id: str) -> Event:
    event = coordinator.get_event(event_id) or await event_store.get(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@app.post("/events", response_model=Event, status_code=201)
async def create_event(payload: EventCreate) -> Event:
    try:
        return await coordinator.create(payload)
    except EventOperationError as exc:
        raise HTTPException(status_code=502, detail=exc.message) from exc


@app.put("/events/{event_id}", response_model=Event)
async def update_event(event_id: str, payload: EventUpdate) -> Event:
    # A partial date change is checked against the stored counterpart.
    if (payload.start_date is None) != (payload.end_date is None):
        current = coordinator.get_event(event_id) or await event_store.get(event_id)
        if current is None:
            raise HTTPException(status_code=404, detail="Event not found")
        start = payload.start_date or current.start_date
        end = payload.end_date or current.end_date
        if end <= start:
            raise HTTPException(status_code=422, detail="end_date must be after start_date")
    try:
        return await coordinator.update(event_id, payload)
    except EventNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except EventOperationError as exc:
        raise HTTPException(status_code=502, detail=exc.message) from exc


@app.delete("/events/{event_id}")
async def delete_event(event_id: str) -> dict:
    try:
        deleted = await coordinator.delete(event_id)
    except EventNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except EventOperationError as exc:
        raise HTTPException(status_code=502, detail=exc.message) from exc
    return {"status": "deleted", "id": deleted.id, "title": deleted.title}


@app.post("/events/reconcile", response_model=ReconcileResult)
async def reconcile_events() -> ReconcileResult:
    return await coordinator.reconcile_statuses()


@app.post("/events/refresh", response_model=list[Event])
async def refresh_events() -> list[Event]:
    """Manual refresh: reconcile statuses and reload with the current filters."""
    await coordinator.refresh()
    return coordinator.visible_events()


# ── Reminders ─────────────────────────────────────────────────────────


@app.get("/reminders", response_model=list[ScheduledReminder])
def list_reminders(event_id: str | None = None) -> list[ScheduledReminder]:
    return reminder_scheduler.armed(event_id)


@app.post("/tick", response_model=TickResult)
async def tick(now: datetime | None = None) -> TickResult:
    """Fire due reminders and run a horizon scan at a simulated time.

    Pass *now* as a query param to control the simulated clock.
    Defaults to the system clock when omitted.
    """
    if now is not None and now.tzinfo is None:
        raise HTTPException(status_code=422, detail="now must include a timezone")
    return await coordinator.tick(now)


# ── Settings ──────────────────────────────────────────────────────────


@app.get("/settings/notifications", response_model=NotificationSettings)
def get_notification_settings() -> NotificationSettings:
    return settings_repo.load(_current_user())


@app.patch("/settings/notifications", response_model=NotificationSettings)
def update_notification_settings(payload: NotificationSettingsUpdate) -> NotificationSettings:
    return settings_repo.update(_current_user(), **payload.model_dump(exclude_none=True))


@app.post("/settings/notifications/reset", response_model=NotificationSettings)
def reset_notification_settings() -> NotificationSettings:
    return settings_repo.reset(_current_user())


# ── Notifications ─────────────────────────────────────────────────────


@app.get("/notifications", response_model=list[Notification])
def list_notifications(limit: int = 50) -> list[Notification]:
    """Most recent in-app notifications first."""
    return dispatcher.toasts.recent(limit)


@app.get("/notifications/status", response_model=NotificationStatus)
def notification_status() -> NotificationStatus:
    return dispatcher.status()


@app.post("/notifications/permission")
async def request_notification_permission() -> dict:
    state = await dispatcher.request_permission()
    return {"permission": state}


@app.post("/notifications/test")
async def send_test_notification() -> dict:
    return {"sent": await dispatcher.send_test_notification()}


@app.get("/notifications/alerts")
def list_native_alerts() -> list[dict]:
    """Native-style alerts that are currently visible."""
    return [
        {"title": a.title, "body": a.body, "tag": a.tag, "data": a.data}
        for a in platform.visible_alerts()
    ]


@app.get("/notifications/sound")
def notification_sound() -> Response:
    return Response(content=beep_wav(), media_type="audio/wav")
