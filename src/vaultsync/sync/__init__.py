"""Sync engine — orchestrator, startup status monitor, periodic scheduler."""

from vaultsync.sync.monitor import StatusMonitor, StatusVerdict
from vaultsync.sync.orchestrator import SyncOrchestrator, missing_settings
from vaultsync.sync.scheduler import PeriodicSync

__all__ = [
    "PeriodicSync",
    "StatusMonitor",
    "StatusVerdict",
    "SyncOrchestrator",
    "missing_settings",
]
