"""Backend capability interface and its two implementations."""

from __future__ import annotations

import shutil

from vaultsync.backends.base import REMOTE_NAME, Backend
from vaultsync.backends.embedded import EmbeddedBackend
from vaultsync.backends.shell import ShellBackend
from vaultsync.config import Settings
from vaultsync.logger import logger
from vaultsync.types import BackendKind


def detect_backend_kind(settings: Settings) -> BackendKind:
    """Environment probe: desktop when the git binary is on hand, sandboxed otherwise."""
    forced = settings.vault.forced_kind
    if forced is not None:
        return forced
    if shutil.which(settings.vault.git_binary):
        return BackendKind.DESKTOP
    return BackendKind.SANDBOXED


def select_backend(settings: Settings) -> Backend:
    """Build the backend for this environment. Called once per app start."""
    kind = detect_backend_kind(settings)
    logger.info("Selected sync backend", kind=str(kind))
    if kind is BackendKind.DESKTOP:
        return ShellBackend(
            settings.vault_path,
            git_binary=settings.vault.git_binary,
            branch=settings.sync.branch,
            max_concurrent=settings.vault.max_concurrent_processes,
            network_timeout=int(settings.sync.network_timeout),
        )
    return EmbeddedBackend(
        settings.sandbox_root,
        token=settings.sync.token,
        branch=settings.sync.branch,
        author=f"{settings.vault.author_name} <{settings.vault.author_email}>",
        network_timeout=settings.sync.network_timeout,
    )


__all__ = [
    "REMOTE_NAME",
    "Backend",
    "EmbeddedBackend",
    "ShellBackend",
    "detect_backend_kind",
    "select_backend",
]
