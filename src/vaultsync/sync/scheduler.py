"""Periodic sync trigger.

Fires on a fixed period, first one period after ``start()``. It does not
check whether the previous sync is still running; the orchestrator's
session guard turns overlapping triggers into no-ops.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

from vaultsync.logger import logger


class PeriodicSync:
    def __init__(self, trigger: Callable[[], Awaitable[Any]], period: float) -> None:
        if period <= 0:
            raise ValueError("period must be positive")
        self._trigger = trigger
        self.period = period
        self._timer: asyncio.Task[None] | None = None
        self._runs: set[asyncio.Task[None]] = set()

    @classmethod
    def every_minutes(cls, trigger: Callable[[], Awaitable[Any]], minutes: int) -> PeriodicSync:
        return cls(trigger, minutes * 60.0)

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        if self.running:
            logger.debug("Periodic sync already running, skipping duplicate start")
            return
        self._timer = asyncio.create_task(self._loop(), name="vaultsync-periodic")
        logger.info("Periodic sync started", period_s=self.period)

    async def stop(self) -> None:
        """Cancel the timer, then wait for any run it already fired.

        Sessions are never cancelled midway; they finish or fail on their own.
        """
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer
            logger.info("Periodic sync stopped")
        if self._runs:
            await asyncio.gather(*self._runs, return_exceptions=True)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.period)
            task = asyncio.create_task(self._fire())
            self._runs.add(task)
            task.add_done_callback(self._runs.discard)

    async def _fire(self) -> None:
        try:
            await self._trigger()
        except Exception:
            logger.exception("Periodic sync run failed")
