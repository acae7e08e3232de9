"""Idle monitor that schedules proactive screen checks."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from typing import Any

from livetutor.logging_config import get_logger

logger: Any = get_logger(__name__)


class IdleMonitor:
    """Periodic timer that calls `on_idle` once the user has been quiet long enough.

    `on_idle` decides on its own whether a check may run; the monitor only
    tracks time since the last committed utterance.
    """

    def __init__(
        self,
        *,
        interval: float,
        idle_threshold: float,
        on_idle: Callable[[], Awaitable[None] | None],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self.idle_threshold = idle_threshold
        self._on_idle = on_idle
        self._clock = clock
        self._last_activity: float | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def touch(self) -> None:
        """Record a committed user utterance."""
        self._last_activity = self._clock()

    def idle_for(self) -> float | None:
        """Seconds since last activity, None if the user never spoke."""
        if self._last_activity is None:
            return None
        return self._clock() - self._last_activity

    @property
    def is_idle(self) -> bool:
        elapsed = self.idle_for()
        return elapsed is None or elapsed >= self.idle_threshold

    def start(self) -> None:
        if self.running:
            return
        logger.info(
            f"Recurring check: every {self.interval:.1f}s, idle {self.idle_threshold:.1f}s"
        )
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def tick(self) -> None:
        """Run one timer tick."""
        if not self.is_idle:
            return
        result = self._on_idle()
        if asyncio.iscoroutine(result):
            await result

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception as e:
                logger.exception(f"Idle check callback failed: {e}")
