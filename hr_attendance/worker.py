"""Background loop that drives the attendance schedulers inside the API process."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
from typing import Any, Callable

from hr_attendance.services.schedulers import run_scheduler_tick

logger = logging.getLogger("hr_attendance.scheduler_worker")

MIN_INTERVAL_SECONDS = 30


class SchedulerWorker:
    def __init__(
        self,
        interval_seconds: int,
        tick: Callable[[datetime], dict[str, Any]] = run_scheduler_tick,
    ) -> None:
        self.interval_seconds = max(MIN_INTERVAL_SECONDS, int(interval_seconds))
        self._tick = tick
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> dict[str, Any] | None:
        try:
            counts = await asyncio.to_thread(self._tick, datetime.now(timezone.utc))
        except Exception:
            logger.exception("scheduler_tick_failed")
            return None
        if any(counts.values()):
            logger.info("scheduler_tick", extra=counts)
        return counts

    async def _loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            await self.run_once()
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event))
        logger.info("scheduler_worker_started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        self._stop_event = None
        self._task = None
