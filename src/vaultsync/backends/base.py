"""Backend capability interface — "a local repository with a single remote".

The orchestrator and status monitor are written against this protocol only.
Every method is blocking (process spawn or network round-trip); callers run
them off the event loop.
"""

from __future__ import annotations

from typing import Protocol

from vaultsync.types import BackendKind, ConflictReport, PullResult, RemoteRef, RepositoryState

REMOTE_NAME = "origin"


class Backend(Protocol):
    kind: BackendKind
    # Settings (SyncConfig attribute names) that must be non-empty before any call.
    required_settings: tuple[str, ...]

    def is_initialized(self) -> bool: ...

    def initialize(self, remote_url: str) -> None: ...

    def status(self) -> RepositoryState: ...

    def stage_all(self) -> None: ...

    def commit(self, message: str) -> str: ...

    def set_remote(self, name: str, url: str) -> None: ...

    def bind_upstream(self, branch: str) -> None: ...

    def fetch(self) -> RemoteRef: ...

    def pull(self, branch: str) -> PullResult | ConflictReport: ...

    def push(self, branch: str, set_upstream: bool = True) -> None: ...
