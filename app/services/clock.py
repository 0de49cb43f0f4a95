"""Wall-clock sources."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Current UTC time from the operating system."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
