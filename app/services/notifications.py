"""Service for dispatching in-app toasts, native alerts and sounds."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from app.domain.bus import EventBus
from app.domain.events import NotificationDispatched
from app.domain.models import (
    Notification,
    NotificationKind,
    NotificationSettings,
    NotificationStatus,
    PermissionState,
    UpdateType,
)
from app.repos.settings import SettingsRepository
from app.services.sound import DEFAULT_SAMPLE_RATE, render_beep
from app.services.timers import TimerRegistry

logger = logging.getLogger(__name__)

ALERT_TAG = "event-notifications"
DEFAULT_DISMISS_SECONDS = 5.0

_UPDATE_TEMPLATES = {
    UpdateType.UPDATED: 'The event "{title}" has been updated',
    UpdateType.CANCELLED: 'The event "{title}" has been cancelled',
    UpdateType.RESCHEDULED: 'The event "{title}" has been rescheduled',
    UpdateType.STARTING: 'The event "{title}" is starting',
}
_GENERIC_UPDATE = 'Update for event "{title}"'


def update_message(title: str, update_type: str) -> str:
    """Render the human-readable text for an event update.

    Unknown update types fall back to a generic message.
    """
    try:
        template = _UPDATE_TEMPLATES[UpdateType(update_type)]
    except ValueError:
        template = _GENERIC_UPDATE
    return template.format(title=title)


# ---------------------------------------------------------------------------
# Platform
# ---------------------------------------------------------------------------


@dataclass
class NativeAlert:
    title: str
    body: str
    tag: str
    data: dict[str, Any] = field(default_factory=dict)
    closed: bool = False

    def close(self) -> None:
        self.closed = True


class NotificationPlatform(ABC):
    """Native notification surface: permission prompt, alerts, audio."""

    @property
    @abstractmethod
    def supported(self) -> bool:
        ...

    @property
    @abstractmethod
    def permission(self) -> PermissionState:
        ...

    @abstractmethod
    async def request_permission(self) -> PermissionState:
        """Prompt the user and return the resulting permission."""
        ...

    @abstractmethod
    def show(self, title: str, body: str, tag: str, data: dict[str, Any]) -> NativeAlert:
        ...

    @abstractmethod
    def play(self, pcm: bytes, sample_rate: int) -> None:
        ...


class InMemoryNotificationPlatform(NotificationPlatform):
    """Platform that keeps alerts in memory for a client to pick up.

    Showing an alert whose tag matches a visible one replaces it.
    """

    def __init__(
        self,
        supported: bool = True,
        permission: PermissionState = PermissionState.DEFAULT,
        prompt_result: PermissionState = PermissionState.GRANTED,
    ) -> None:
        self._supported = supported
        self._permission = permission
        self.prompt_result = prompt_result
        self.prompts = 0
        self.alerts: list[NativeAlert] = []
        self.sounds: list[bytes] = []

    @property
    def supported(self) -> bool:
        return self._supported

    @property
    def permission(self) -> PermissionState:
        return self._permission

    async def request_permission(self) -> PermissionState:
        self.prompts += 1
        await asyncio.sleep(0)
        self._permission = self.prompt_result
        return self._permission

    def show(self, title: str, body: str, tag: str, data: dict[str, Any]) -> NativeAlert:
        for alert in self.alerts:
            if alert.tag == tag and not alert.closed:
                alert.close()
        alert = NativeAlert(title=title, body=body, tag=tag, data=data)
        self.alerts.append(alert)
        return alert

    def play(self, pcm: bytes, sample_rate: int) -> None:
        self.sounds.append(pcm)

    def visible_alerts(self) -> list[NativeAlert]:
        return [a for a in self.alerts if not a.closed]


class ToastSink:
    """Bounded buffer of recent in-app notifications."""

    def __init__(self, maxlen: int = 100) -> None:
        self._items: deque[Notification] = deque(maxlen=maxlen)

    def push(self, notification: Notification) -> None:
        self._items.append(notification)

    def recent(self, limit: int | None = None) -> list[Notification]:
        items = list(self._items)
        items.reverse()
        return items if limit is None else items[:limit]

    def clear(self) -> None:
        self._items.clear()


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class NotificationDispatcher:
    """Fans a notification out to the toast sink, native alerts and sound.

    Each channel is gated independently: toasts are always shown, native
    alerts need both a granted permission and ``push_notifications``, and the
    beep needs ``sound_enabled``.
    """

    def __init__(
        self,
        platform: NotificationPlatform,
        settings_repo: SettingsRepository,
        timers: TimerRegistry,
        toasts: ToastSink | None = None,
        bus: EventBus | None = None,
        dismiss_after_seconds: float = DEFAULT_DISMISS_SECONDS,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
    ) -> None:
        self.platform = platform
        self.toasts = toasts or ToastSink()
        self._settings_repo = settings_repo
        self._timers = timers
        self._bus = bus
        self._dismiss_after = dismiss_after_seconds
        self._sample_rate = sample_rate
        self._beep = render_beep(sample_rate)
        self._permission_prompt: asyncio.Future | None = None
        self.user_id: str | None = None

    def bind_user(self, user_id: str) -> None:
        self.user_id = user_id

    @property
    def settings(self) -> NotificationSettings:
        if self.user_id is None:
            return NotificationSettings()
        return self._settings_repo.load(self.user_id)

    @property
    def permission(self) -> PermissionState:
        return self.platform.permission

    def toast(self, message: str, kind: NotificationKind = NotificationKind.INFO) -> Notification:
        """Show an in-app toast only."""
        notification = Notification(title=message, kind=kind, channels=["toast"])
        self.toasts.push(notification)
        return notification

    def notify(
        self,
        title: str,
        body: str = "",
        kind: NotificationKind = NotificationKind.INFO,
        event_id: str | None = None,
    ) -> Notification:
        settings = self.settings
        notification = Notification(
            title=title, body=body, kind=kind, event_id=event_id, channels=["toast"]
        )
        self.toasts.push(notification)

        if settings.push_notifications and self.platform.permission == PermissionState.GRANTED:
            try:
                alert = self.platform.show(
                    title,
                    body,
                    ALERT_TAG,
                    {"event_id": event_id, "type": str(kind)},
                )
                self._timers.call_later(self._dismiss_after, alert.close, name="alert-dismiss")
                notification.channels.append("native")
            except Exception:
                logger.exception("Error showing native notification %r", title)

        if settings.sound_enabled:
            try:
                self.platform.play(self._beep, self._sample_rate)
                notification.channels.append("sound")
            except Exception:
                logger.exception("Error playing notification sound")

        logger.info("Notification %r dispatched via %s", title, ", ".join(notification.channels))
        if self._bus is not None:
            self._bus.publish(
                NotificationDispatched(
                    notification_id=notification.id,
                    title=title,
                    kind=kind,
                    event_id=event_id,
                    channels=list(notification.channels),
                )
            )
        return notification

    def notify_event_update(
        self, title: str, update_type: str, event_id: str | None = None
    ) -> Notification | None:
        """Announce a change to an event; no-op when event updates are disabled."""
        if not self.settings.event_updates:
            return None
        kind = (
            NotificationKind.ERROR
            if update_type == UpdateType.CANCELLED
            else NotificationKind.INFO
        )
        return self.notify(
            "Event update", update_message(title, update_type), kind=kind, event_id=event_id
        )

    async def request_permission(self) -> PermissionState:
        """Ask for native notification permission.

        Only prompts from the ``default`` state. Concurrent callers share the
        same prompt.
        """
        if not self.platform.supported:
            self.toast("Notifications are not supported on this platform", NotificationKind.ERROR)
            return PermissionState.DENIED
        if self.platform.permission != PermissionState.DEFAULT:
            return self.platform.permission

        if self._permission_prompt is None:
            self._permission_prompt = asyncio.ensure_future(self._prompt())
        return await asyncio.shield(self._permission_prompt)

    async def _prompt(self) -> PermissionState:
        try:
            state = await self.platform.request_permission()
        except Exception:
            logger.exception("Error requesting notification permission")
            self.toast("Error requesting notification permission", NotificationKind.ERROR)
            return self.platform.permission
        finally:
            self._permission_prompt = None

        if state == PermissionState.GRANTED:
            self.toast("Notification permission granted", NotificationKind.SUCCESS)
        elif state == PermissionState.DENIED:
            self.toast("Notification permission denied", NotificationKind.ERROR)
        else:
            self.toast("Notification permission pending", NotificationKind.INFO)
        return state

    async def send_test_notification(self) -> bool:
        if self.platform.permission != PermissionState.GRANTED:
            if await self.request_permission() != PermissionState.GRANTED:
                return False
        self.notify("Test notification", "Notifications are working correctly")
        self.toast("Test notification sent", NotificationKind.SUCCESS)
        return True

    def status(self) -> NotificationStatus:
        settings = self.settings
        permission = self.platform.permission if self.platform.supported else PermissionState.DENIED
        return NotificationStatus(
            supported=self.platform.supported,
            permission=permission,
            enabled=settings.push_notifications and permission == PermissionState.GRANTED,
            settings=settings,
        )
