"""Desktop backend — drives the system git binary in the vault directory."""

from __future__ import annotations

import os
import subprocess
import threading
from pathlib import Path

from vaultsync.backends.base import REMOTE_NAME
from vaultsync.errors import (
    AuthFailed,
    GitCommandError,
    PushRejected,
    RemoteUnreachable,
    RepoUnavailable,
    SyncError,
)
from vaultsync.logger import logger, redact_url
from vaultsync.types import BackendKind, ConflictReport, PullResult, RemoteRef, RepositoryState

_SUBPROCESS_TIMEOUT = 30
_NETWORK_TIMEOUT = 120

_AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "permission denied",
    "invalid username or password",
    "the requested url returned error: 403",
    "the requested url returned error: 401",
)
_REJECTED_MARKERS = ("[rejected]", "non-fast-forward", "fetch first", "failed to push some refs")
_MISSING_REF_MARKERS = ("couldn't find remote ref",)
_NETWORK_MARKERS = (
    "unable to access",
    "could not resolve",
    "could not read from remote",
    "repository not found",
    "connection timed out",
)


def _classify_remote_error(command: str, stderr: str) -> SyncError:
    lowered = stderr.lower()
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return AuthFailed(f"git {command}: {stderr}")
    return RemoteUnreachable(f"git {command}: {stderr}")


def parse_porcelain_v2(output: str) -> RepositoryState:
    """Parse ``git status --porcelain=v2 --branch -z`` output."""
    ahead = behind = 0
    conflicted: list[str] = []
    dirty = False

    records = iter(output.split("\0"))
    for record in records:
        if not record:
            continue
        if record.startswith("# branch.ab "):
            # "# branch.ab +3 -1"
            _, _, plus, minus = record.split(" ")
            ahead, behind = int(plus.lstrip("+")), int(minus.lstrip("-"))
        elif record.startswith("#"):
            continue
        elif record.startswith("u "):
            dirty = True
            conflicted.append(record.split(" ", 10)[10])
        elif record.startswith("2 "):
            dirty = True
            next(records, None)  # rename/copy source path follows as its own record
        elif record[0] in "1?":
            dirty = True

    return RepositoryState(
        is_clean=not dirty,
        ahead=ahead,
        behind=behind,
        conflicted_paths=tuple(conflicted),
    )


class ShellBackend:
    """Backend over an external git binary.

    At most ``max_concurrent`` git processes run at once across all threads
    using this instance.
    """

    kind = BackendKind.DESKTOP
    required_settings = ("remote_url",)

    def __init__(
        self,
        root: Path,
        *,
        git_binary: str = "git",
        branch: str = "main",
        max_concurrent: int = 6,
        timeout: int = _SUBPROCESS_TIMEOUT,
        network_timeout: int = _NETWORK_TIMEOUT,
    ) -> None:
        self.root = root
        self.git_binary = git_binary
        self.branch = branch
        self.timeout = timeout
        self.network_timeout = network_timeout
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}

    # ------------------------------------------------------------------
    # Process plumbing
    # ------------------------------------------------------------------

    def run_git(self, *args: str, network: bool = False) -> subprocess.CompletedProcess[str]:
        """Run a git command in the vault with timeout and error capture.

        A missing binary or vault directory raises RepoUnavailable; a timeout
        raises RemoteUnreachable for network commands and SyncError otherwise.
        """
        timeout = self.network_timeout if network else self.timeout
        with self._slots:
            try:
                return subprocess.run(
                    [self.git_binary, *args],
                    cwd=str(self.root),
                    capture_output=True,
                    text=True,
                    timeout=timeout,
                    env=self._env,
                )
            except subprocess.TimeoutExpired as exc:
                msg = f"git {args[0]} timed out after {timeout}s"
                if network:
                    raise RemoteUnreachable(msg) from exc
                raise SyncError(msg) from exc
            except OSError as exc:
                raise RepoUnavailable(f"Cannot run {self.git_binary}: {exc}") from exc

    def _require(self, *args: str, network: bool = False) -> str:
        result = self.run_git(*args, network=network)
        if result.returncode != 0:
            stderr = result.stderr.strip()
            if "not a git repository" in stderr.lower():
                raise RepoUnavailable(stderr)
            raise GitCommandError(args[0], stderr, result.returncode)
        return result.stdout.strip()

    def _head(self) -> str | None:
        result = self.run_git("rev-parse", "--verify", "--quiet", "HEAD")
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    # ------------------------------------------------------------------
    # Backend operations
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        try:
            result = self.run_git("rev-parse", "--is-inside-work-tree")
        except SyncError:
            return False
        return result.returncode == 0 and result.stdout.strip() == "true"

    def initialize(self, remote_url: str) -> None:
        """Create a repository in the vault without touching existing files.

        If the remote already has the branch, HEAD is pointed at it with a
        mixed reset so local files show up as modifications on top of it, and
        files that only exist remotely are checked out. Otherwise the current
        content becomes the initial commit.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        self._require("init", f"--initial-branch={self.branch}")
        self.set_remote(REMOTE_NAME, remote_url)
        try:
            ref = self.fetch()
        except RemoteUnreachable as exc:
            logger.info("Remote not reachable during init, starting fresh history", err=str(exc))
            ref = RemoteRef(REMOTE_NAME, None)

        if ref.commit_id:
            self._require("reset", "--quiet", "--mixed", f"{REMOTE_NAME}/{self.branch}")
            missing = [p for p in self._require("ls-files", "--deleted", "-z").split("\0") if p]
            if missing:
                self._require("checkout", "--", *missing)
            self.bind_upstream(self.branch)
            logger.info("Initialized vault from remote", commit=ref.commit_id[:8])
            return

        self.stage_all()
        if not self.status().is_clean:
            self.commit("Initial commit")
        logger.info("Initialized empty vault repository", root=str(self.root))

    def status(self) -> RepositoryState:
        output = self._require("status", "--porcelain=v2", "--branch", "-z")
        return parse_porcelain_v2(output)

    def stage_all(self) -> None:
        self._require("add", "--all")

    def commit(self, message: str) -> str:
        result = self.run_git("commit", "-m", message)
        if result.returncode != 0:
            combined = f"{result.stdout}\n{result.stderr}".strip()
            if "nothing to commit" in combined:
                raise SyncError("Nothing staged to commit")
            raise GitCommandError("commit", result.stderr.strip(), result.returncode)
        return self._require("rev-parse", "HEAD")

    def set_remote(self, name: str, url: str) -> None:
        # set-url keeps the tracking refs and branch upstream of an existing remote.
        existing = self.run_git("remote", "get-url", name)
        if existing.returncode == 0:
            self._require("remote", "set-url", name, url)
        else:
            self._require("remote", "add", name, url)
        logger.debug("Remote configured", remote=name, url=redact_url(url))

    def bind_upstream(self, branch: str) -> None:
        self._require("branch", f"--set-upstream-to={REMOTE_NAME}/{branch}")

    def fetch(self) -> RemoteRef:
        result = self.run_git("fetch", REMOTE_NAME, network=True)
        if result.returncode != 0:
            raise _classify_remote_error("fetch", result.stderr.strip())
        ref = self.run_git(
            "rev-parse", "--verify", "--quiet", f"refs/remotes/{REMOTE_NAME}/{self.branch}"
        )
        commit_id = ref.stdout.strip() if ref.returncode == 0 else None
        return RemoteRef(REMOTE_NAME, commit_id or None)

    def conflicted_paths(self) -> list[str]:
        output = self._require("diff", "--name-only", "--diff-filter=U", "-z")
        return [p for p in output.split("\0") if p]

    def pull(self, branch: str) -> PullResult | ConflictReport:
        before = self._head()
        result = self.run_git("pull", "--no-rebase", "--no-edit", REMOTE_NAME, branch, network=True)
        if result.returncode != 0:
            conflicted = self.conflicted_paths()
            if conflicted:
                return ConflictReport(frozenset(conflicted))
            stderr = result.stderr.strip()
            if any(marker in stderr.lower() for marker in _MISSING_REF_MARKERS):
                # Empty remote: nothing to merge yet, the first push creates the branch.
                logger.info("Remote branch does not exist yet", branch=branch)
                return PullResult(changed_count=0)
            if "conflict" in result.stdout.lower():
                return ConflictReport()
            lowered = stderr.lower()
            if any(marker in lowered for marker in _NETWORK_MARKERS + _AUTH_MARKERS):
                raise _classify_remote_error("pull", stderr)
            raise GitCommandError("pull", stderr, result.returncode)

        after = self._head()
        if before is None or after is None:
            return PullResult(changed_count=0 if after is None else self._count_files(after))
        if before == after:
            return PullResult(changed_count=0)
        changed = self._require("diff", "--name-only", before, after)
        return PullResult(changed_count=len(changed.splitlines()))

    def _count_files(self, commit: str) -> int:
        return len(self._require("ls-tree", "-r", "--name-only", commit).splitlines())

    def push(self, branch: str, set_upstream: bool = True) -> None:
        args = ["push"]
        if set_upstream:
            args.append("-u")
        result = self.run_git(*args, REMOTE_NAME, branch, network=True)
        if result.returncode == 0:
            return
        stderr = result.stderr.strip()
        lowered = stderr.lower()
        if any(marker in lowered for marker in _AUTH_MARKERS):
            raise AuthFailed(f"git push: {stderr}")
        if any(marker in lowered for marker in _REJECTED_MARKERS):
            raise PushRejected(f"git push: {stderr}")
        raise _classify_remote_error("push", stderr)
