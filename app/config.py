"""Environment configuration.

Values come from the process environment, after loading a ``.env`` file if
one exists. Every variable is prefixed with ``EVENTS_``.
"""

from __future__ import annotations

import logging
import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_PREFIX = "EVENTS_"
_TRUE = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    environment: Literal["development", "production"] = "development"
    user_id: str = "local-user"
    settings_path: str | None = None
    reconcile_interval_seconds: float = Field(default=300, gt=0)
    horizon_scan_interval_seconds: float = Field(default=3600, gt=0)
    alert_dismiss_seconds: float = Field(default=5, gt=0)
    dedupe_horizon_reminders: bool = False
    log_level: str = "INFO"
    seed_demo_data: bool = False
    host: str = "127.0.0.1"
    port: int = Field(default=8000, gt=0)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def _env(name: str) -> str | None:
    value = os.environ.get(_PREFIX + name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def load_settings() -> Settings:
    """Build :class:`Settings` from ``EVENTS_*`` environment variables."""
    load_dotenv()

    values: dict[str, object] = {}

    environment = (_env("ENVIRONMENT") or "development").lower()
    if environment not in ("development", "production"):
        logger.warning(
            "Environment setting '%s' is invalid. Expected 'development' or "
            "'production'. Defaulting to development environment.",
            environment,
        )
        environment = "development"
    values["environment"] = environment

    # pydantic coerces the numeric ones.
    for name in (
        "user_id",
        "settings_path",
        "log_level",
        "host",
        "reconcile_interval_seconds",
        "horizon_scan_interval_seconds",
        "alert_dismiss_seconds",
        "port",
    ):
        raw = _env(name.upper())
        if raw is not None:
            values[name] = raw

    for name in ("dedupe_horizon_reminders", "seed_demo_data"):
        raw = _env(name.upper())
        if raw is not None:
            values[name] = raw.lower() in _TRUE

    return Settings.model_validate(values)
