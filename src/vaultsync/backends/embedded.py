"""Sandboxed backend — pure-Python git via dulwich, no binary required.

The repository lives at a fixed root inside the sandbox's storage. Only one
branch is tracked (``main`` by default) and history is only ever merged,
never rebased. HTTP(S) remotes authenticate with the access token on every
network call; the token is never written to the repository config.
"""

from __future__ import annotations

import io
import os
from pathlib import Path
from typing import Any

from dulwich import porcelain
from dulwich.client import HTTPUnauthorized
from dulwich.diff_tree import tree_changes
from dulwich.errors import GitProtocolError, NotGitRepository
from dulwich.index import ConflictedIndexEntry, build_index_from_tree
from dulwich.repo import Repo
from urllib3.exceptions import HTTPError

from vaultsync.backends.base import REMOTE_NAME
from vaultsync.errors import (
    AuthFailed,
    PushRejected,
    RemoteUnreachable,
    RepoUnavailable,
    SyncError,
)
from vaultsync.logger import logger, redact_url
from vaultsync.types import BackendKind, ConflictReport, PullResult, RemoteRef, RepositoryState

_TRANSPORT_ERRORS = (GitProtocolError, NotGitRepository, HTTPError, OSError)


def _decode(path: bytes | str) -> str:
    return os.fsdecode(path)


class EmbeddedBackend:
    kind = BackendKind.SANDBOXED
    required_settings = ("remote_url", "auth_token")

    def __init__(
        self,
        root: Path,
        *,
        token: str,
        branch: str = "main",
        author: str = "vaultsync <vaultsync@localhost>",
        network_timeout: float = 120.0,
    ) -> None:
        self.root = root
        self.network_timeout = network_timeout
        self.branch = branch
        self._token = token
        self._author = author.encode()

    @property
    def _branch_ref(self) -> bytes:
        return f"refs/heads/{self.branch}".encode()

    @property
    def _tracking_ref(self) -> bytes:
        return f"refs/remotes/{REMOTE_NAME}/{self.branch}".encode()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _open(self) -> Repo:
        try:
            return Repo(str(self.root))
        except (NotGitRepository, FileNotFoundError) as exc:
            raise RepoUnavailable(f"No repository at {self.root}") from exc

    def _remote_url(self, repo: Repo) -> str:
        try:
            return _decode(repo.get_config().get((b"remote", REMOTE_NAME.encode()), b"url"))
        except KeyError as exc:
            raise RemoteUnreachable(f"Remote {REMOTE_NAME!r} is not configured") from exc

    def _transport_kwargs(self, url: str) -> dict[str, Any]:
        """Per-call credentials and socket timeout; only HTTP transports take them."""
        if not url.startswith(("http://", "https://")):
            return {}
        kwargs: dict[str, Any] = {"timeout": self.network_timeout}
        if self._token:
            kwargs.update(username="x-access-token", password=self._token)
        return kwargs

    @staticmethod
    def _ref(repo: Repo, name: bytes) -> bytes | None:
        try:
            return repo.refs[name]
        except KeyError:
            return None

    @staticmethod
    def _count_commits(repo: Repo, include: bytes, exclude: bytes | None) -> int:
        walker = repo.get_walker(include=[include], exclude=[exclude] if exclude else [])
        return sum(1 for _ in walker)

    @staticmethod
    def _count_changes(repo: Repo, old: bytes | None, new: bytes) -> int:
        old_tree = repo[old].tree if old else None
        return sum(1 for _ in tree_changes(repo.object_store, old_tree, repo[new].tree))

    def _has_files(self) -> bool:
        return any(entry.name != ".git" for entry in self.root.iterdir())

    def _checkout(self, repo: Repo, commit_id: bytes) -> None:
        repo.refs[self._branch_ref] = commit_id
        build_index_from_tree(
            repo.path, repo.index_path(), repo.object_store, repo[commit_id].tree
        )

    # ------------------------------------------------------------------
    # Backend operations
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        try:
            with Repo(str(self.root)):
                return True
        except (NotGitRepository, FileNotFoundError):
            return False

    def initialize(self, remote_url: str) -> None:
        """Create the repository: check out the remote branch into an empty
        vault, otherwise commit whatever is already there as the first commit.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        with porcelain.init(str(self.root)) as repo:
            repo.refs.set_symbolic_ref(b"HEAD", self._branch_ref)
        self.set_remote(REMOTE_NAME, remote_url)

        try:
            ref = self.fetch()
        except RemoteUnreachable as exc:
            logger.info("Remote not reachable during init, starting fresh history", err=str(exc))
            ref = RemoteRef(REMOTE_NAME, None)

        if ref.commit_id and not self._has_files():
            with self._open() as repo:
                self._checkout(repo, ref.commit_id.encode())
            self.bind_upstream(self.branch)
            logger.info("Cloned vault from remote", commit=ref.commit_id[:8])
            return

        self.stage_all()
        if not self.status().is_clean:
            self.commit("Initial commit")
        logger.info("Initialized vault repository", root=str(self.root))

    def status(self) -> RepositoryState:
        with self._open() as repo:
            conflicted = sorted(
                _decode(path)
                for path, entry in repo.open_index().items()
                if isinstance(entry, ConflictedIndexEntry)
            )
            st = porcelain.status(repo)
            dirty = any(st.staged.values()) or bool(st.unstaged) or bool(st.untracked)

            local = self._ref(repo, self._branch_ref)
            remote = self._ref(repo, self._tracking_ref)
            ahead = self._count_commits(repo, local, remote) if local else 0
            behind = self._count_commits(repo, remote, local) if remote else 0

        return RepositoryState(
            is_clean=not dirty and not conflicted,
            ahead=ahead,
            behind=behind,
            conflicted_paths=tuple(conflicted),
        )

    def stage_all(self) -> None:
        with self._open() as repo:
            st = porcelain.status(repo)
            candidates = [_decode(p) for p in st.unstaged] + [_decode(p) for p in st.untracked]
            present = [str(self.root / p) for p in candidates if (self.root / p).exists()]
            if present:
                porcelain.add(repo, paths=present)

            # porcelain.add only sees files on disk; drop deletions from the index.
            index = repo.open_index()
            gone = [p for p in candidates if not (self.root / p).exists()]
            for path in gone:
                key = os.fsencode(path)
                if key in index:
                    del index[key]
            if gone:
                index.write()

    def commit(self, message: str) -> str:
        with self._open() as repo:
            st = porcelain.status(repo)
            if not any(st.staged.values()):
                raise SyncError("Nothing staged to commit")
            commit_id = porcelain.commit(
                repo, message=message, author=self._author, committer=self._author
            )
        return _decode(commit_id)

    def set_remote(self, name: str, url: str) -> None:
        with self._open() as repo:
            try:
                porcelain.remote_remove(repo, name)
            except KeyError:
                logger.debug("No existing remote to remove", remote=name)
            porcelain.remote_add(repo, name, url)
        logger.debug("Remote configured", remote=name, url=redact_url(url))

    def bind_upstream(self, branch: str) -> None:
        with self._open() as repo:
            config = repo.get_config()
            section = (b"branch", branch.encode())
            config.set(section, b"remote", REMOTE_NAME.encode())
            config.set(section, b"merge", f"refs/heads/{branch}".encode())
            config.write_to_path()

    def fetch(self) -> RemoteRef:
        with self._open() as repo:
            url = self._remote_url(repo)
            try:
                porcelain.fetch(
                    repo,
                    REMOTE_NAME,
                    outstream=io.BytesIO(),
                    errstream=io.BytesIO(),
                    **self._transport_kwargs(url),
                )
            except HTTPUnauthorized as exc:
                raise AuthFailed(f"fetch {redact_url(url)}: unauthorized") from exc
            except _TRANSPORT_ERRORS as exc:
                raise RemoteUnreachable(f"fetch {redact_url(url)}: {exc}") from exc
            commit_id = self._ref(repo, self._tracking_ref)
        return RemoteRef(REMOTE_NAME, _decode(commit_id) if commit_id else None)

    def pull(self, branch: str) -> PullResult | ConflictReport:
        ref = self.fetch()
        if ref.commit_id is None:
            logger.info("Remote branch does not exist yet", branch=branch)
            return PullResult(changed_count=0)

        remote = ref.commit_id.encode()
        with self._open() as repo:
            local = self._ref(repo, self._branch_ref)
            if local is None:
                self._checkout(repo, remote)
                return PullResult(changed_count=self._count_changes(repo, None, remote))
            if self._count_commits(repo, remote, local) == 0:
                return PullResult(changed_count=0)

            try:
                _, conflicts = porcelain.merge(
                    repo,
                    remote,
                    message=f"Merge {REMOTE_NAME}/{branch}",
                    author=self._author,
                    committer=self._author,
                )
            except porcelain.Error as exc:
                raise SyncError(f"merge {REMOTE_NAME}/{branch}: {exc}") from exc
            if conflicts:
                return ConflictReport(frozenset(_decode(p) for p in conflicts))

            head = self._ref(repo, self._branch_ref)
            return PullResult(changed_count=self._count_changes(repo, local, head))

    def push(self, branch: str, set_upstream: bool = True) -> None:
        ref = f"refs/heads/{branch}".encode()
        with self._open() as repo:
            url = self._remote_url(repo)
            try:
                porcelain.push(
                    repo,
                    REMOTE_NAME,
                    ref,
                    outstream=io.BytesIO(),
                    errstream=io.BytesIO(),
                    **self._transport_kwargs(url),
                )
            except porcelain.DivergedBranches as exc:
                raise PushRejected(f"push {redact_url(url)}: non-fast-forward") from exc
            except HTTPUnauthorized as exc:
                raise AuthFailed(f"push {redact_url(url)}: unauthorized") from exc
            except porcelain.Error as exc:
                raise PushRejected(f"push {redact_url(url)}: {exc}") from exc
            except _TRANSPORT_ERRORS as exc:
                raise RemoteUnreachable(f"push {redact_url(url)}: {exc}") from exc

            head = self._ref(repo, ref)
            if head is not None:
                repo.refs[f"refs/remotes/{REMOTE_NAME}/{branch}".encode()] = head
        if set_upstream:
            self.bind_upstream(branch)
