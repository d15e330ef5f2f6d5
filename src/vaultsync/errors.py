"""Error taxonomy for sync sessions.

Backends translate subprocess and dulwich failures into these types. The
orchestrator and status monitor catch them at their boundary and turn them
into a session outcome plus a single notification, so none of them ever
reach the host.
"""

from __future__ import annotations

from collections.abc import Iterable


class SyncError(Exception):
    """Base class for every failure a sync session can end with."""

    user_hint = "Sync failed."

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.user_hint)
        self.message = message or self.user_hint


class RepoUnavailable(SyncError):
    """Not a repository, or the git binary / embedded engine can't be reached."""

    user_hint = "Vault is not a Git repo or git binary cannot be found."


class RemoteUnreachable(SyncError):
    """Bad remote URL, network failure, or rejected credentials."""

    user_hint = "Invalid remote URL or remote unreachable."


class AuthFailed(RemoteUnreachable):
    user_hint = "Authentication with the remote failed. Check your access token."


class MergeConflict(SyncError):
    user_hint = "Merge conflicts need to be resolved."

    def __init__(self, paths: Iterable[str], message: str = "") -> None:
        self.paths = tuple(sorted(paths))
        super().__init__(message or f"Merge conflicts in {len(self.paths)} file(s)")


class PushRejected(SyncError):
    """The remote refused a push (non-fast-forward)."""

    user_hint = "Push rejected by remote. Your commit is kept locally; sync again later."


class ConfigMissing(SyncError):
    user_hint = "Please configure the remote URL in settings."

    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = tuple(missing)
        names = ", ".join(self.missing)
        super().__init__(f"Missing required settings: {names}. Set them in config.toml.")


class GitCommandError(SyncError):
    """Raised when a git command exits non-zero."""

    def __init__(self, command: str, stderr: str, returncode: int) -> None:
        self.command = command
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(f"git {command} failed (exit {returncode}): {stderr}")
