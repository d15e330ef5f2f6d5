"""Type definitions shared across the sync engine."""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from vaultsync.errors import SyncError


class BackendKind(StrEnum):
    DESKTOP = "desktop"
    SANDBOXED = "sandboxed"


@dataclass(frozen=True)
class RepositoryState:
    """Snapshot of the working tree relative to its upstream.

    Always computed fresh by ``Backend.status()``; never cache one across
    calls since the remote can move in between.
    """

    is_clean: bool
    ahead: int = 0
    behind: int = 0
    conflicted_paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class RemoteRef:
    name: str
    commit_id: str | None  # None when the branch doesn't exist on the remote yet


@dataclass(frozen=True)
class PullResult:
    changed_count: int


@dataclass(frozen=True)
class ConflictReport:
    paths: frozenset[str] = frozenset()

    def __bool__(self) -> bool:
        return bool(self.paths)


class SyncOutcome(StrEnum):
    PENDING = "pending"
    COMMITTED = "committed"
    NO_CHANGES_TO_COMMIT = "no_changes_to_commit"
    PULLED_CLEAN = "pulled_clean"
    CONFLICT_DETECTED = "conflict_detected"
    PUSHED_OK = "pushed_ok"
    PUSH_SKIPPED = "push_skipped"
    FAILED = "failed"


class SyncState(StrEnum):
    IDLE = "idle"
    STAGING = "staging"
    COMMITTING = "committing"
    CONFIGURING_REMOTE = "configuring_remote"
    FETCHING = "fetching"
    PULLING = "pulling"
    CONFLICT_HANDLING = "conflict_handling"
    PUSHING = "pushing"


def build_commit_message(device_id: str | None = None, now: datetime | None = None) -> str:
    """``<device> <YYYY-MM-DD HH:MM:SS>`` in local time."""
    device = device_id or socket.gethostname()
    stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    return f"{device} {stamp}"


@dataclass
class SyncSession:
    """One in-flight sync attempt. Created per run, never persisted."""

    backend_kind: BackendKind
    commit_message: str
    started_at: datetime = field(default_factory=datetime.now)
    outcome: SyncOutcome = SyncOutcome.PENDING
    steps: list[SyncOutcome] = field(default_factory=list)
    failure: SyncError | None = None
    commit_id: str | None = None
    pulled_changes: int = 0
    conflicts: ConflictReport | None = None

    def mark(self, outcome: SyncOutcome) -> None:
        self.outcome = outcome
        self.steps.append(outcome)

    def fail(self, error: SyncError) -> None:
        self.failure = error
        self.mark(SyncOutcome.FAILED)

    @property
    def committed(self) -> bool:
        return self.commit_id is not None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (SyncOutcome.PUSHED_OK, SyncOutcome.PUSH_SKIPPED)
