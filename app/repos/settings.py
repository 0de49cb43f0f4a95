"""Per-user notification settings backed by a key-value store."""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from app.domain.models import NotificationSettings
from app.repos.interfaces import KeyValueStore

logger = logging.getLogger(__name__)


def settings_key(user_id: str) -> str:
    return f"notification_settings:{user_id}"


class SettingsRepository:
    """Loads and saves :class:`NotificationSettings`, caching them per user.

    Reads after the first one are served from the cache; writes go through to
    the underlying store immediately.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv
        self._cache: dict[str, NotificationSettings] = {}

    def load(self, user_id: str) -> NotificationSettings:
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached.model_copy()

        settings = self._read(user_id)
        self._cache[user_id] = settings
        return settings.model_copy()

    def save(self, user_id: str, settings: NotificationSettings) -> NotificationSettings:
        self._kv.set(settings_key(user_id), settings.model_dump_json())
        self._cache[user_id] = settings.model_copy()
        logger.info("Saved notification settings for user %s", user_id)
        return settings.model_copy()

    def update(self, user_id: str, **changes: bool) -> NotificationSettings:
        """Apply the non-None *changes* on top of the current settings."""
        current = self.load(user_id)
        patch = {k: v for k, v in changes.items() if v is not None}
        unknown = set(patch) - set(NotificationSettings.model_fields)
        if unknown:
            raise ValueError(f"Unknown notification settings: {', '.join(sorted(unknown))}")
        return self.save(user_id, current.model_copy(update=patch))

    def reset(self, user_id: str) -> NotificationSettings:
        self._kv.delete(settings_key(user_id))
        self._cache[user_id] = NotificationSettings()
        logger.info("Reset notification settings for user %s to defaults", user_id)
        return NotificationSettings()

    def forget(self, user_id: str) -> None:
        """Drop the cached copy so the next load re-reads the store."""
        self._cache.pop(user_id, None)

    def _read(self, user_id: str) -> NotificationSettings:
        raw = self._kv.get(settings_key(user_id))
        if raw is None:
            return NotificationSettings()
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("settings blob is not an object")
            # Unknown keys are dropped, missing ones take the defaults.
            known = {k: v for k, v in data.items() if k in NotificationSettings.model_fields}
            return NotificationSettings.model_validate(known)
        except (ValueError, ValidationError):
            logger.exception(
                "Error loading notification settings for user %s, using defaults", user_id
            )
            return NotificationSettings()
