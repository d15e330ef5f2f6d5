"""Sync orchestrator — runs one complete sync attempt against a backend.

Order is always commit first, merge second: local edits are committed before
anything is fetched or pulled, so a remote change can never overwrite them.
Push is never attempted while a merge conflict is outstanding, and a failed
push never rolls back the local commit.

Only one session may be active at a time. The guard is set synchronously at
entry (before the first await), so manual, startup and periodic triggers
racing on the same event loop collapse into a single session.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import SecretStr

from vaultsync.backends.base import REMOTE_NAME, Backend
from vaultsync.config import SyncConfig
from vaultsync.errors import (
    ConfigMissing,
    MergeConflict,
    RemoteUnreachable,
    RepoUnavailable,
    SyncError,
)
from vaultsync.logger import logger, redact_url
from vaultsync.notify import EventKind, SyncDeps, SyncEvent, format_conflict_message
from vaultsync.types import (
    ConflictReport,
    SyncOutcome,
    SyncSession,
    SyncState,
    build_commit_message,
)

T = TypeVar("T")


def missing_settings(backend: Backend, config: SyncConfig) -> list[str]:
    """Names from ``backend.required_settings`` that are empty in *config*."""
    missing = []
    for name in backend.required_settings:
        value = getattr(config, name, None)
        if isinstance(value, SecretStr):
            value = value.get_secret_value()
        if not str(value or "").strip():
            missing.append(name)
    return missing


class SyncOrchestrator:
    def __init__(self, backend: Backend, config: SyncConfig, deps: SyncDeps) -> None:
        self.backend = backend
        self.config = config
        self.deps = deps
        self._state = SyncState.IDLE
        self._session: SyncSession | None = None
        self._straggler: asyncio.Future[Any] | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def active(self) -> bool:
        return self._session is not None

    async def run(self) -> SyncSession | None:
        """Run one sync session. Returns None if a session is already active.

        Never raises: every failure becomes a terminal outcome plus a single
        notification.
        """
        if self._session is not None:
            logger.info("Sync already in progress, ignoring trigger")
            return None

        session = SyncSession(
            backend_kind=self.backend.kind,
            commit_message=build_commit_message(self.config.device),
        )
        self._session = session
        try:
            await self._run_session(session)
        except SyncError as exc:
            session.fail(exc)
            await self._report_failure(exc)
        except Exception as exc:
            logger.exception("Unexpected error during sync")
            session.fail(SyncError(str(exc)))
            await self._emit(EventKind.FAILURE, f"Sync failed: {exc}")
        finally:
            await self._drain_straggler()
            self._state = SyncState.IDLE
            self._session = None

        logger.info(
            "Sync finished",
            outcome=str(session.outcome),
            steps=[str(s) for s in session.steps],
            commit=session.commit_id[:8] if session.commit_id else None,
        )
        return session

    # ------------------------------------------------------------------
    # Session steps
    # ------------------------------------------------------------------

    async def _run_session(self, session: SyncSession) -> None:
        config = self.config
        missing = missing_settings(self.backend, config)
        if missing:
            raise ConfigMissing(missing)

        await self._emit(EventKind.SYNC_STARTED, "Syncing with remote...")
        await self._ensure_repository()

        # 1. Status — decides whether there is anything to commit
        self._state = SyncState.STAGING
        state = await self._call(self.backend.status)

        # 2. Commit local edits before touching the remote
        if state.is_clean:
            session.mark(SyncOutcome.NO_CHANGES_TO_COMMIT)
            await self._emit(EventKind.WORKING_TREE_CLEAN, "Working branch clean")
        else:
            await self._call(self.backend.stage_all)
            self._state = SyncState.COMMITTING
            session.commit_id = await self._call(self.backend.commit, session.commit_message)
            session.mark(SyncOutcome.COMMITTED)
            await self._emit(EventKind.COMMIT_CREATED, f"Committed {session.commit_message}")

        # 3. Remote configuration (idempotent replace)
        self._state = SyncState.CONFIGURING_REMOTE
        await self._call(self.backend.set_remote, REMOTE_NAME, config.remote_url)

        # 4. Fetch purely to validate URL and credentials
        self._state = SyncState.FETCHING
        await self._call(self.backend.fetch)
        await self._emit(
            EventKind.REMOTE_SET,
            f"Successfully set remote origin url {redact_url(config.remote_url)}",
        )

        # 5. Pull (merge, never rebase)
        self._state = SyncState.PULLING
        result = await self._call(self.backend.pull, config.branch)
        if isinstance(result, ConflictReport):
            await self._handle_conflicts(session, result)
            return

        session.pulled_changes = result.changed_count
        if result.changed_count:
            session.mark(SyncOutcome.PULLED_CLEAN)
        await self._emit(EventKind.PULLED, f"Pulled {result.changed_count} changes")

        # 6. Push only when this session committed
        if not session.committed:
            session.mark(SyncOutcome.PUSH_SKIPPED)
            return

        self._state = SyncState.PUSHING
        await self._call(self.backend.push, config.branch, True)
        session.mark(SyncOutcome.PUSHED_OK)
        await self._emit(EventKind.PUSH_SUCCEEDED, f"Pushed on {session.commit_message}")

    async def _ensure_repository(self) -> None:
        if await self._call(self.backend.is_initialized):
            return
        if not self.config.init_if_missing:
            raise RepoUnavailable()
        await self._call(self.backend.initialize, self.config.remote_url)
        await self._emit(EventKind.REPO_INITIALIZED, "Initialized vault repository")

    async def _handle_conflicts(self, session: SyncSession, report: ConflictReport) -> None:
        self._state = SyncState.CONFLICT_HANDLING
        paths = report.paths
        if not paths:
            # Backend couldn't name the paths from the pull itself.
            state = await self._call(self.backend.status)
            paths = frozenset(state.conflicted_paths)

        session.conflicts = ConflictReport(paths)
        session.mark(SyncOutcome.CONFLICT_DETECTED)
        conflict = MergeConflict(paths)
        ordered = conflict.paths
        logger.warning("Merge conflict, push skipped", error=conflict.message, paths=list(ordered))
        await self._emit(EventKind.MERGE_CONFLICT, format_conflict_message(ordered), ordered)

        if self.config.open_conflicts:
            for path in ordered:
                try:
                    await self.deps.reveal_path(path)
                except Exception:
                    logger.exception("Failed to reveal conflicted file", path=path)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking backend call in a worker thread under a deadline.

        A thread can't be cancelled, so on timeout the call keeps running as
        ``_straggler`` and ``run()`` waits for it before releasing the guard.
        """
        timeout = self.config.network_timeout
        work = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        try:
            return await asyncio.wait_for(asyncio.shield(work), timeout=timeout)
        except TimeoutError as exc:
            self._straggler = work
            name = getattr(fn, "__name__", "backend call")
            raise RemoteUnreachable(f"{name} did not finish within {timeout:g}s") from exc

    async def _drain_straggler(self) -> None:
        work, self._straggler = self._straggler, None
        if work is None or work.done():
            return
        logger.warning("Waiting for timed-out backend call to finish before releasing sync")
        await asyncio.gather(work, return_exceptions=True)

    async def _report_failure(self, exc: SyncError) -> None:
        state = self._state
        if isinstance(exc, ConfigMissing):
            kind, text = EventKind.CONFIG_MISSING, str(exc)
        elif isinstance(exc, RepoUnavailable):
            kind = EventKind.REPO_NOT_FOUND
            text = exc.user_hint
            if exc.message != exc.user_hint:
                text = f"{exc.user_hint} ({exc.message})"
        elif state is SyncState.FETCHING and isinstance(exc, RemoteUnreachable):
            kind, text = EventKind.INVALID_REMOTE, f"{exc.message}\n{exc.user_hint}"
        elif state is SyncState.PUSHING:
            kind, text = EventKind.PUSH_FAILED, f"Push failed: {exc.message}\n{exc.user_hint}"
        else:
            kind, text = EventKind.FAILURE, f"Sync failed: {exc.message}"
        logger.warning("Sync session failed", state=str(state), error=exc.message)
        await self._emit(kind, text)

    async def _emit(self, kind: EventKind, message: str, paths: tuple[str, ...] = ()) -> None:
        try:
            await self.deps.notify(SyncEvent(kind, message, paths))
        except Exception:
            logger.exception("Notification sink failed", kind=str(kind))
