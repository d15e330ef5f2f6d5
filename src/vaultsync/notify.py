"""Notification contract between the sync engine and its host.

The host owns rendering. The engine only emits discrete ``SyncEvent``s whose
``kind`` lets a consumer tell the categories apart without parsing text.
"""

from __future__ import annotations

import sys
from collections import deque
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, TextIO

from vaultsync.logger import logger


class EventKind(StrEnum):
    SYNC_STARTED = "sync_started"
    WORKING_TREE_CLEAN = "working_tree_clean"
    COMMIT_CREATED = "commit_created"
    REMOTE_SET = "remote_set"
    INVALID_REMOTE = "invalid_remote"
    PULLED = "pulled"
    MERGE_CONFLICT = "merge_conflict"
    PUSH_SUCCEEDED = "push_succeeded"
    PUSH_FAILED = "push_failed"
    REPO_NOT_FOUND = "repo_not_found"
    REPO_INITIALIZED = "repo_initialized"
    FAILURE = "failure"
    CONFIG_MISSING = "config_missing"
    BEHIND_REMOTE = "behind_remote"
    UP_TO_DATE = "up_to_date"
    AUTO_SYNC_ENABLED = "auto_sync_enabled"


# Events that deserve a longer on-screen lifetime in hosts that auto-dismiss.
ERROR_KINDS = frozenset(
    {
        EventKind.INVALID_REMOTE,
        EventKind.MERGE_CONFLICT,
        EventKind.PUSH_FAILED,
        EventKind.REPO_NOT_FOUND,
        EventKind.FAILURE,
        EventKind.CONFIG_MISSING,
    }
)


@dataclass(frozen=True)
class SyncEvent:
    kind: EventKind
    message: str
    paths: tuple[str, ...] = ()

    @property
    def is_error(self) -> bool:
        return self.kind in ERROR_KINDS


class SyncDeps(Protocol):
    """What the engine needs from its host."""

    async def notify(self, event: SyncEvent) -> None: ...

    async def reveal_path(self, path: str) -> None: ...


def format_conflict_message(paths: tuple[str, ...]) -> str:
    lines = ["Merge conflicts in:"]
    lines.extend(f"\t{p}" for p in paths)
    lines.append("Resolve them, then sync again to publish the merge.")
    return "\n".join(lines)


class ConsoleNotifier:
    """Host implementation for the CLI: prints events and logs them."""

    def __init__(self, stream: TextIO | None = None, *, history: int = 50) -> None:
        self._stream = stream
        # Most recent events only; watch mode runs indefinitely.
        self.events: deque[SyncEvent] = deque(maxlen=history)

    async def notify(self, event: SyncEvent) -> None:
        self.events.append(event)
        log = logger.warning if event.is_error else logger.info
        log("Sync event", kind=str(event.kind), paths=list(event.paths) or None)
        stream = self._stream or sys.stdout
        print(f"vaultsync: {event.message}", file=stream, flush=True)

    async def reveal_path(self, path: str) -> None:
        stream = self._stream or sys.stdout
        print(f"vaultsync: conflicted file: {path}", file=stream, flush=True)
