"""Startup divergence check.

Advisory only: it never stages, commits, pulls or pushes on its own, and an
unreachable or not-yet-configured remote is logged and swallowed so it can't
block the host from starting.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum

from vaultsync.backends.base import Backend
from vaultsync.config import SyncConfig
from vaultsync.errors import SyncError
from vaultsync.logger import logger
from vaultsync.notify import EventKind, SyncDeps, SyncEvent
from vaultsync.sync.orchestrator import SyncOrchestrator, missing_settings


class StatusVerdict(StrEnum):
    UP_TO_DATE = "up_to_date"
    BEHIND = "behind"
    DIVERGED = "diverged"
    UNREACHABLE = "unreachable"
    SKIPPED = "skipped"


class StatusMonitor:
    def __init__(
        self,
        backend: Backend,
        config: SyncConfig,
        deps: SyncDeps,
        orchestrator: SyncOrchestrator,
    ) -> None:
        self.backend = backend
        self.config = config
        self.deps = deps
        self.orchestrator = orchestrator

    async def check(self, *, force: bool = False) -> StatusVerdict:
        """Compare local and remote HEAD; sync or notify when behind.

        ``force`` runs the check even when ``check_status_on_startup`` is off
        (used for on-demand checks).
        """
        if not force and not self.config.check_status_on_startup:
            return StatusVerdict.SKIPPED
        if missing_settings(self.backend, self.config):
            logger.debug("Status check skipped, sync not configured")
            return StatusVerdict.SKIPPED

        try:
            verdict, behind = await self._compare()
        except SyncError as exc:
            logger.info("Status check could not reach remote", error=exc.message)
            return StatusVerdict.UNREACHABLE
        except Exception:
            logger.exception("Status check failed")
            return StatusVerdict.UNREACHABLE

        if verdict is StatusVerdict.SKIPPED:
            logger.debug("Status check skipped, vault repository not initialized")
            return verdict

        if verdict is StatusVerdict.UP_TO_DATE:
            await self._emit(EventKind.UP_TO_DATE, "Up to date with remote.")
        elif self.config.auto_sync_on_startup:
            logger.info("Behind remote, starting sync", behind=behind, verdict=str(verdict))
            await self.orchestrator.run()
        else:
            await self._emit(
                EventKind.BEHIND_REMOTE,
                f"{behind} commits behind remote.\nRun `vaultsync sync` to update.",
            )
        return verdict

    async def _compare(self) -> tuple[StatusVerdict, int]:
        backend = self.backend
        timeout = self.config.network_timeout

        async def call(fn, *args):
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=timeout)

        try:
            if not await call(backend.is_initialized):
                return StatusVerdict.SKIPPED, 0
            ref = await call(backend.fetch)
            if ref.commit_id is not None:
                await call(backend.bind_upstream, self.config.branch)
            state = await call(backend.status)
        except TimeoutError as exc:
            raise SyncError(f"status check exceeded {timeout:g}s") from exc

        if state.behind == 0:
            return StatusVerdict.UP_TO_DATE, 0
        if state.ahead > 0:
            return StatusVerdict.DIVERGED, state.behind
        return StatusVerdict.BEHIND, state.behind

    async def _emit(self, kind: EventKind, message: str) -> None:
        try:
            await self.deps.notify(SyncEvent(kind, message))
        except Exception:
            logger.exception("Notification sink failed", kind=str(kind))
