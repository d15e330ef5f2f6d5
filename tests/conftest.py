"""Shared test fixtures for vaultsync."""

from __future__ import annotations

import subprocess
import threading
from collections import Counter
from pathlib import Path

import pytest

from vaultsync.config import SyncConfig
from vaultsync.errors import SyncError
from vaultsync.notify import EventKind, SyncEvent
from vaultsync.types import BackendKind, ConflictReport, PullResult, RemoteRef, RepositoryState

# Backend calls that change the working tree, the index, history or the remote.
MUTATING_CALLS = frozenset({"initialize", "stage_all", "commit", "set_remote", "pull", "push"})

REMOTE_URL = "https://example.com/me/vault.git"


# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures — importable by test files)
# ---------------------------------------------------------------------------


def make_sync_config(**overrides) -> SyncConfig:
    """SyncConfig with a remote configured and a short deadline."""
    defaults = {
        "remote_url": REMOTE_URL,
        "device_id": "test-host",
        "network_timeout": 5.0,
    }
    defaults.update(overrides)
    return SyncConfig(**defaults)


def git(cwd: Path, *args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=True,
    )


def configure_identity(repo: Path) -> None:
    git(repo, "config", "user.email", "test@test.com")
    git(repo, "config", "user.name", "Test")


def make_bare_origin(tmp_path: Path) -> Path:
    """Create a bare 'origin' repo with one commit on main."""
    origin = tmp_path / "origin.git"
    origin.mkdir()
    git(origin, "init", "--bare", "--initial-branch=main")

    clone = tmp_path / "setup-clone"
    git(tmp_path, "clone", str(origin), str(clone))
    configure_identity(clone)
    git(clone, "checkout", "-B", "main")
    (clone / "README.md").write_text("initial\n")
    git(clone, "add", "README.md")
    git(clone, "commit", "-m", "initial commit")
    git(clone, "push", "origin", "main")
    return origin


def make_clone(tmp_path: Path, origin: Path, name: str) -> Path:
    clone = tmp_path / name
    git(tmp_path, "clone", str(origin), str(clone))
    configure_identity(clone)
    return clone


def head_sha(repo: Path, ref: str = "HEAD") -> str:
    return git(repo, "rev-parse", ref).stdout.strip()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeBackend:
    """Counting in-memory backend.

    ``errors`` maps an operation name to the SyncError it should raise.
    ``gate``, when set, makes ``status()`` block until the event is set.
    """

    kind = BackendKind.DESKTOP
    required_settings: tuple[str, ...] = ("remote_url",)

    def __init__(
        self,
        *,
        state: RepositoryState | None = None,
        pull_result: PullResult | ConflictReport | None = None,
        remote: RemoteRef | None = None,
        initialized: bool = True,
    ) -> None:
        self.state = state or RepositoryState(is_clean=True)
        self.pull_result = pull_result if pull_result is not None else PullResult(changed_count=0)
        self.remote = remote or RemoteRef("origin", "b" * 40)
        self.initialized = initialized
        self.errors: dict[str, BaseException] = {}
        self.calls: Counter[str] = Counter()
        self.call_log: list[str] = []
        self.commit_messages: list[str] = []
        self.gate: threading.Event | None = None

    def _record(self, name: str) -> None:
        self.calls[name] += 1
        self.call_log.append(name)
        if name in self.errors:
            raise self.errors[name]

    @property
    def mutating_calls(self) -> int:
        return sum(n for name, n in self.calls.items() if name in MUTATING_CALLS)

    def is_initialized(self) -> bool:
        self._record("is_initialized")
        return self.initialized

    def initialize(self, remote_url: str) -> None:
        self._record("initialize")
        self.initialized = True

    def status(self) -> RepositoryState:
        self._record("status")
        if self.gate is not None:
            self.gate.wait(timeout=5)
        return self.state

    def stage_all(self) -> None:
        self._record("stage_all")

    def commit(self, message: str) -> str:
        self._record("commit")
        if self.state.is_clean:
            raise SyncError("Nothing staged to commit")
        self.commit_messages.append(message)
        self.state = RepositoryState(is_clean=True, ahead=self.state.ahead + 1)
        return "c" * 40

    def set_remote(self, name: str, url: str) -> None:
        self._record("set_remote")

    def bind_upstream(self, branch: str) -> None:
        self._record("bind_upstream")

    def fetch(self) -> RemoteRef:
        self._record("fetch")
        return self.remote

    def pull(self, branch: str) -> PullResult | ConflictReport:
        self._record("pull")
        return self.pull_result

    def push(self, branch: str, set_upstream: bool = True) -> None:
        self._record("push")
        self.state = RepositoryState(is_clean=True)


class RecordingDeps:
    """Notification sink that records everything it receives."""

    def __init__(self) -> None:
        self.events: list[SyncEvent] = []
        self.revealed: list[str] = []

    async def notify(self, event: SyncEvent) -> None:
        self.events.append(event)

    async def reveal_path(self, path: str) -> None:
        self.revealed.append(path)

    @property
    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]

    def first(self, kind: EventKind) -> SyncEvent:
        return next(e for e in self.events if e.kind == kind)


@pytest.fixture
def deps() -> RecordingDeps:
    return RecordingDeps()


@pytest.fixture
def git_remote(tmp_path: Path) -> dict[str, Path]:
    """Bare origin plus a working clone ('vault') and a second clone ('other')."""
    origin = make_bare_origin(tmp_path)
    return {
        "origin": origin,
        "vault": make_clone(tmp_path, origin, "vault"),
        "other": make_clone(tmp_path, origin, "other"),
    }
