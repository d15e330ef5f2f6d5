"""Tests for application wiring and lifecycle."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeBackend, RecordingDeps, make_sync_config

from vaultsync.app import SyncApp
from vaultsync.config import Settings
from vaultsync.notify import EventKind
from vaultsync.sync import StatusVerdict
from vaultsync.types import RepositoryState, SyncOutcome


def _app(backend: FakeBackend, deps: RecordingDeps, **sync) -> SyncApp:
    settings = Settings.model_construct(sync=make_sync_config(**sync))
    return SyncApp(settings, backend=backend, deps=deps)


class TestSyncApp:
    @pytest.mark.asyncio
    async def test_manual_sync(self, deps):
        backend = FakeBackend(state=RepositoryState(is_clean=False))
        session = await _app(backend, deps).sync()
        assert session.outcome is SyncOutcome.PUSHED_OK

    @pytest.mark.asyncio
    async def test_start_without_interval_runs_only_status_check(self, deps):
        backend = FakeBackend()
        app = _app(backend, deps)
        await app.start()

        assert app.scheduler is None
        assert deps.kinds == [EventKind.UP_TO_DATE]
        await app.stop()

    @pytest.mark.asyncio
    async def test_start_with_interval_enables_timer(self, deps):
        backend = FakeBackend()
        app = _app(backend, deps, interval_minutes=5, check_status_on_startup=False)
        await app.start()

        assert app.scheduler is not None
        assert app.scheduler.running
        assert app.scheduler.period == 300.0
        assert "5 min" in deps.first(EventKind.AUTO_SYNC_ENABLED).message
        assert backend.calls["fetch"] == 0

        scheduler = app.scheduler
        await app.stop()
        assert app.scheduler is None
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_check_status_force(self, deps):
        backend = FakeBackend(state=RepositoryState(is_clean=True, behind=1))
        app = _app(backend, deps, check_status_on_startup=False)
        assert await app.check_status() is StatusVerdict.SKIPPED
        assert await app.check_status(force=True) is StatusVerdict.BEHIND

    @pytest.mark.asyncio
    async def test_all_triggers_share_one_guard(self, deps):
        backend = FakeBackend(state=RepositoryState(is_clean=False, behind=1))
        app = _app(backend, deps, auto_sync_on_startup=True)

        await asyncio.gather(app.sync(), app.check_status())

        assert backend.calls["commit"] == 1
        assert backend.calls["push"] == 1

    @pytest.mark.asyncio
    async def test_run_forever_stops_on_request(self, deps):
        backend = FakeBackend()
        app = _app(backend, deps, interval_minutes=1, check_status_on_startup=False)

        task = asyncio.create_task(app.run_forever())
        await asyncio.sleep(0.05)
        assert app.scheduler is not None
        app._request_stop("SIGTERM")
        await asyncio.wait_for(task, timeout=2)

        assert app.scheduler is None

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_abort_startup(self):
        class BrokenSink(RecordingDeps):
            async def notify(self, event):
                raise RuntimeError("ui gone")

        backend = FakeBackend()
        app = _app(backend, BrokenSink(), interval_minutes=5)
        await app.start()

        assert app.scheduler is not None and app.scheduler.running
        assert backend.calls["fetch"] == 1
        await app.stop()
