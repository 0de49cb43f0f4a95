"""Timer registry owning every deferred callback and recurring loop.

All one-shot timers, interval loops and fire-and-forget tasks created through
a registry are released by a single :meth:`TimerRegistry.cancel_all` call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class Timer:
    """Handle for a one-shot callback armed with :meth:`TimerRegistry.call_later`."""

    def __init__(self, registry: TimerRegistry, name: str) -> None:
        self.name = name
        self.fired = False
        self.cancelled = False
        self._registry = registry
        self._handle: asyncio.TimerHandle | None = None

    @property
    def active(self) -> bool:
        return not (self.fired or self.cancelled)

    def cancel(self) -> None:
        if not self.active:
            return
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        self._registry._timers.discard(self)


class TimerRegistry:
    def __init__(self) -> None:
        self._timers: set[Timer] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    @property
    def running_tasks(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def call_later(
        self, delay_seconds: float, callback: Callable[..., Any], *args: Any, name: str = "timer"
    ) -> Timer:
        """Run ``callback(*args)`` once after *delay_seconds* on the running loop."""
        loop = asyncio.get_running_loop()
        timer = Timer(self, name)

        def _run() -> None:
            if not timer.active:
                return
            timer.fired = True
            self._timers.discard(timer)
            try:
                callback(*args)
            except Exception:
                logger.exception("Timer %s callback failed", name)

        timer._handle = loop.call_later(max(0.0, delay_seconds), _run)
        self._timers.add(timer)
        return timer

    def every(
        self,
        interval_seconds: float,
        job: Callable[[], Awaitable[Any]],
        name: str = "interval",
    ) -> asyncio.Task:
        """Run *job* every *interval_seconds* until cancelled.

        The first run happens one interval after the call. A failing run is
        logged and the loop keeps going.
        """

        async def _loop() -> None:
            try:
                while True:
                    await asyncio.sleep(interval_seconds)
                    try:
                        await job()
                    except Exception:
                        logger.exception("Interval job %s failed", name)
            except asyncio.CancelledError:
                logger.debug("Interval job %s cancelled", name)
                raise

        return self.spawn(_loop(), name=f"every:{name}")

    def spawn(self, coro: Awaitable[Any], name: str = "task") -> asyncio.Task:
        """Start *coro* as a tracked background task."""
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every tracked background task that is not a loop has finished."""
        while True:
            pending = [
                t for t in self._tasks if not t.done() and not t.get_name().startswith("every:")
            ]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel every timer and task owned by this registry."""
        for timer in list(self._timers):
            timer.cancel()

        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
