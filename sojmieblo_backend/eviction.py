from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from .config import CLEANUP_INTERVAL_SECONDS, CLEANUP_STARTUP_DELAY_SECONDS, MAX_AGE_DAYS
from .errors import WorkError, WorkNotFoundError
from .registry import WorkRegistry


logger = logging.getLogger(__name__)


class EvictionScheduler:
    """Periodically delete works older than ``max_age``.

    The first sweep runs ``startup_delay`` seconds after ``start()``, then every
    ``interval`` seconds. ``stop()`` prevents further sweeps but lets a sweep
    that is already running finish.
    """

    def __init__(
        self,
        registry: WorkRegistry,
        *,
        max_age: timedelta = timedelta(days=MAX_AGE_DAYS),
        interval: float = CLEANUP_INTERVAL_SECONDS,
        startup_delay: float = CLEANUP_STARTUP_DELAY_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.registry = registry
        self.max_age = max_age
        self.interval = interval
        self.startup_delay = startup_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> int:
        """Run one eviction pass. Returns the number of works removed.

        Orphan image files past ``max_age`` are removed too but not counted.
        """
        now = self._clock()
        works = await self.registry.list_works()
        deleted = 0
        for work in works:
            if now - work.created_at <= self.max_age:
                continue
            try:
                await self.registry.delete(work.id)
            except WorkNotFoundError:
                # Removed concurrently (user delete); nothing left to do.
                logger.debug("Work %s already gone during eviction", work.id)
                continue
            except (WorkError, OSError) as exc:
                logger.warning("Eviction of work %s failed: %s", work.id, exc)
                continue
            deleted += 1

        # Image files left behind by a failed save age out on the same schedule.
        await self.registry.remove_orphan_blobs(now - self.max_age)

        if deleted:
            logger.info("Eviction sweep removed %d work(s)", deleted)
        return deleted

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True when stop() was requested meanwhile."""
        assert self._stop_event is not None
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return False
        return True

    async def _run(self) -> None:
        if await self._wait(self.startup_delay):
            return
        while True:
            try:
                await self.sweep()
            except Exception:
                # Keep the loop resilient to unexpected filesystem errors.
                logger.exception("Eviction sweep failed")
            if await self._wait(self.interval):
                return

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Work eviction started (max age %s, every %ss, first sweep in %ss)",
            self.max_age,
            self.interval,
            self.startup_delay,
        )

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        assert self._stop_event is not None
        self._stop_event.set()
        try:
            await task
        finally:
            self._task = None
            self._stop_event = None
        logger.info("Work eviction stopped")
