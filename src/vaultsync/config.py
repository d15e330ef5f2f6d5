"""Centralized configuration — Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml. The remote access token belongs in
.env. Environment variables override both using ``__`` as the nested
delimiter (e.g. ``SYNC__AUTH_TOKEN``). Secrets use SecretStr for masking in
logs.

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from vaultsync.config import get_settings

    s = get_settings()
    print(s.sync.remote_url)
    print(s.vault.path)
"""

from __future__ import annotations

import socket
from functools import cached_property
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from vaultsync.types import BackendKind

_DEFAULT_SANDBOX_ROOT = Path.home() / ".local" / "share" / "vaultsync" / "vault"

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models — reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class SyncConfig(_StrictModel):
    remote_url: str = ""
    auth_token: SecretStr | None = None  # sandboxed backend only
    interval_minutes: int = 0  # 0 disables periodic sync
    auto_sync_on_startup: bool = False
    check_status_on_startup: bool = True
    branch: str = "main"
    device_id: str = ""  # empty → hostname
    open_conflicts: bool = True  # ask the host to reveal each conflicted file
    init_if_missing: bool = False
    network_timeout: float = 120.0  # seconds, per backend call

    @field_validator("remote_url", mode="before")
    @classmethod
    def strip_remote_url(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("interval_minutes", mode="before")
    @classmethod
    def coerce_interval(cls, v: Any) -> int:
        # Non-numeric and negative values disable periodic sync rather than
        # failing config load.
        try:
            minutes = int(str(v).strip())
        except (TypeError, ValueError):
            return 0
        return max(0, minutes)

    @field_validator("network_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("network_timeout must be positive")
        return v

    @property
    def token(self) -> str:
        return self.auth_token.get_secret_value().strip() if self.auth_token else ""

    @property
    def device(self) -> str:
        return self.device_id or socket.gethostname()

    @property
    def periodic_enabled(self) -> bool:
        return self.interval_minutes >= 1


class VaultConfig(_StrictModel):
    path: str | None = None  # None → current working directory
    backend: Literal["auto", "desktop", "sandboxed"] = "auto"
    git_binary: str = "git"
    max_concurrent_processes: int = 6
    sandbox_root: str | None = None  # None → ~/.local/share/vaultsync/vault
    author_name: str = "vaultsync"
    author_email: str = "vaultsync@localhost"

    @field_validator("max_concurrent_processes")
    @classmethod
    def clamp_max_concurrent(cls, v: int) -> int:
        return max(1, v)

    @field_validator("path", "sandbox_root")
    @classmethod
    def resolve_path(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return str(Path(v).expanduser().resolve())

    @property
    def forced_kind(self) -> BackendKind | None:
        if self.backend == "auto":
            return None
        return BackendKind(self.backend)


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    sync: SyncConfig = SyncConfig()
    vault: VaultConfig = VaultConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def vault_path(self) -> Path:
        return Path(self.vault.path) if self.vault.path else Path.cwd()

    @cached_property
    def sandbox_root(self) -> Path:
        return Path(self.vault.sandbox_root) if self.vault.sandbox_root else _DEFAULT_SANDBOX_ROOT


_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(config_file: Path) -> Settings:
    """Load settings from an explicit TOML file and make them the cached singleton."""
    global _settings

    class _FileSettings(Settings):
        model_config = SettingsConfigDict(
            toml_file=str(config_file),
            env_file=".env",
            env_nested_delimiter="__",
            extra="ignore",
        )

    _settings = _FileSettings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
