"""
selectstart.services.scheduler — Single-flight poll loop
=========================================================

Runs one async job at a fixed interval.  A cycle always runs to
completion; the next one starts ``interval`` seconds after the previous
one *finished*, so a slow cycle can never overlap with itself.

``stop()`` waits for an in-flight cycle and then ends the loop; it never
cancels a cycle half way through a board.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class PollScheduler:
    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[Any]],
    ) -> None:
        self.name = name
        self._job = job
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._in_cycle = False
        self.cycles_completed = 0
        self.cycles_failed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_cycle(self) -> bool:
        return self._in_cycle

    def start(
        self,
        interval: float,
        loop: asyncio.AbstractEventLoop | None = None,
        *,
        run_immediately: bool = True,
    ) -> bool:
        """Start the loop.  Returns False (no-op) if it is already running."""
        if self.running:
            logger.debug("%s scheduler already running", self.name)
            return False
        loop = loop or asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._task = loop.create_task(
            self._loop(interval, run_immediately), name=f"poll-{self.name}"
        )
        logger.info("%s scheduler started (every %.0fs)", self.name, interval)
        return True

    async def stop(self) -> None:
        """Let the current cycle finish, then end the loop."""
        task = self._task
        if task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await task
        finally:
            self._task = None
        logger.info("%s scheduler stopped after %d cycles", self.name, self.cycles_completed)

    async def run_once(self) -> bool:
        """Run one cycle now unless one is already in flight."""
        if self._in_cycle:
            logger.warning("%s cycle still running; skipping this tick", self.name)
            return False
        self._in_cycle = True
        try:
            await self._job()
            self.cycles_completed += 1
        except Exception:
            self.cycles_failed += 1
            logger.exception("%s cycle failed", self.name)
        finally:
            self._in_cycle = False
        return True

    async def _loop(self, interval: float, run_immediately: bool) -> None:
        assert self._stop_event is not None
        stop = self._stop_event
        if not run_immediately and await self._wait(stop, interval):
            return
        while not stop.is_set():
            await self.run_once()
            if await self._wait(stop, interval):
                return

    @staticmethod
    async def _wait(stop: asyncio.Event, interval: float) -> bool:
        """Sleep up to *interval*; True if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            return False
        return True
