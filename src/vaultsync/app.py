"""Application lifecycle — wires settings, backend and triggers together.

All three trigger sources (manual sync, startup check, periodic timer) go
through the single orchestrator owned here, so its session guard covers
every one of them.
"""

from __future__ import annotations

import asyncio
import signal

from vaultsync.backends import Backend, select_backend
from vaultsync.config import Settings, get_settings
from vaultsync.logger import logger
from vaultsync.notify import ConsoleNotifier, EventKind, SyncDeps, SyncEvent
from vaultsync.sync import PeriodicSync, StatusMonitor, StatusVerdict, SyncOrchestrator
from vaultsync.types import SyncSession


class SyncApp:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        backend: Backend | None = None,
        deps: SyncDeps | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.backend = backend or select_backend(self.settings)
        self.deps = deps or ConsoleNotifier()
        config = self.settings.sync
        self.orchestrator = SyncOrchestrator(self.backend, config, self.deps)
        self.monitor = StatusMonitor(self.backend, config, self.deps, self.orchestrator)
        self.scheduler: PeriodicSync | None = None
        self._stopping: asyncio.Event | None = None

    # --- Trigger surface ---

    async def sync(self) -> SyncSession | None:
        """Manual sync action."""
        return await self.orchestrator.run()

    async def check_status(self, *, force: bool = False) -> StatusVerdict:
        """Startup hook (or on-demand check with ``force``)."""
        return await self.monitor.check(force=force)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Activate the periodic timer and run the startup check."""
        config = self.settings.sync
        if config.periodic_enabled:
            self.scheduler = PeriodicSync.every_minutes(self.sync, config.interval_minutes)
            self.scheduler.start()
            await self._emit(
                EventKind.AUTO_SYNC_ENABLED,
                f"Auto sync enabled every {config.interval_minutes} min",
            )
        if config.check_status_on_startup:
            await self.check_status()

    async def stop(self) -> None:
        """Tear down the periodic timer so no orphaned trigger survives."""
        if self.scheduler is not None:
            await self.scheduler.stop()
            self.scheduler = None

    async def run_forever(self) -> None:
        """Start, then block until SIGINT/SIGTERM."""
        self._stopping = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._request_stop, sig.name)

        await self.start()
        try:
            await self._stopping.wait()
        finally:
            await self.stop()

    async def _emit(self, kind: EventKind, message: str) -> None:
        try:
            await self.deps.notify(SyncEvent(kind, message))
        except Exception:
            logger.exception("Notification sink failed", kind=str(kind))

    def _request_stop(self, sig_name: str) -> None:
        logger.info("Shutdown signal received", signal=sig_name)
        if self._stopping is not None:
            self._stopping.set()
