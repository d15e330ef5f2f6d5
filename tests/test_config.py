"""Tests for settings loading and backend selection."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from vaultsync.backends import (
    EmbeddedBackend,
    ShellBackend,
    detect_backend_kind,
    select_backend,
)
from vaultsync.config import (
    Settings,
    SyncConfig,
    VaultConfig,
    get_settings,
    load_settings,
    reset_settings,
)
from vaultsync.types import BackendKind


@pytest.fixture(autouse=True)
def _isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Run from an empty directory so no stray config.toml/.env is read."""
    monkeypatch.chdir(tmp_path)
    for name in ("SYNC__REMOTE_URL", "SYNC__AUTH_TOKEN", "SYNC__INTERVAL_MINUTES", "LOGGING__LEVEL"):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


class TestSyncConfig:
    def test_defaults(self):
        cfg = SyncConfig()
        assert cfg.remote_url == ""
        assert cfg.interval_minutes == 0
        assert cfg.check_status_on_startup is True
        assert cfg.auto_sync_on_startup is False
        assert cfg.branch == "main"
        assert not cfg.periodic_enabled

    def test_remote_url_is_stripped(self):
        assert SyncConfig(remote_url="  https://h/r.git \n").remote_url == "https://h/r.git"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("15", 15), (" 5 ", 5), ("abc", 0), ("", 0), (-3, 0), (None, 0), (0, 0)],
    )
    def test_interval_coercion(self, raw, expected):
        assert SyncConfig(interval_minutes=raw).interval_minutes == expected

    def test_periodic_enabled_from_one_minute(self):
        assert SyncConfig(interval_minutes=1).periodic_enabled

    def test_token_is_secret_and_stripped(self):
        cfg = SyncConfig(auth_token=" ghp_secret ")
        assert cfg.token == "ghp_secret"
        assert "ghp_secret" not in repr(cfg)

    def test_no_token(self):
        assert SyncConfig().token == ""

    def test_device_falls_back_to_hostname(self):
        assert SyncConfig().device
        assert SyncConfig(device_id="phone").device == "phone"

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            SyncConfig(network_timeout=0)

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError):
            SyncConfig(remote="https://h/r.git")


class TestVaultConfig:
    def test_concurrency_clamped(self):
        assert VaultConfig(max_concurrent_processes=0).max_concurrent_processes == 1

    def test_paths_resolved(self, tmp_path):
        cfg = VaultConfig(path=str(tmp_path / "a" / ".." / "b"))
        assert cfg.path == str((tmp_path / "b").resolve())

    def test_forced_kind(self):
        assert VaultConfig().forced_kind is None
        assert VaultConfig(backend="sandboxed").forced_kind is BackendKind.SANDBOXED

    def test_invalid_backend_rejected(self):
        with pytest.raises(ValidationError):
            VaultConfig(backend="mobile")


class TestSettingsSources:
    def test_toml_file(self, tmp_path):
        (tmp_path / "config.toml").write_text(
            '[sync]\nremote_url = "https://h/vault.git"\ninterval_minutes = 10\n'
            '[logging]\nlevel = "debug"\n'
        )
        s = get_settings()
        assert s.sync.remote_url == "https://h/vault.git"
        assert s.sync.interval_minutes == 10
        assert s.logging.level == "DEBUG"

    def test_env_overrides_toml(self, tmp_path, monkeypatch):
        (tmp_path / "config.toml").write_text('[sync]\nremote_url = "https://h/a.git"\n')
        monkeypatch.setenv("SYNC__REMOTE_URL", "https://h/b.git")
        monkeypatch.setenv("SYNC__AUTH_TOKEN", "tok")
        s = Settings()
        assert s.sync.remote_url == "https://h/b.git"
        assert s.sync.token == "tok"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_load_settings_from_explicit_file(self, tmp_path):
        path = tmp_path / "elsewhere.toml"
        path.write_text('[sync]\nremote_url = "https://h/x.git"\n[vault]\nbackend = "desktop"\n')
        s = load_settings(path)
        assert s.sync.remote_url == "https://h/x.git"
        assert s.vault.forced_kind is BackendKind.DESKTOP
        assert get_settings() is s

    def test_vault_path_defaults_to_cwd(self, tmp_path):
        assert Settings().vault_path == Path.cwd()


class TestBackendSelection:
    def test_forced_kind_wins(self):
        s = Settings(vault=VaultConfig(backend="sandboxed"))
        assert detect_backend_kind(s) is BackendKind.SANDBOXED

    def test_desktop_when_binary_present(self):
        s = Settings(vault=VaultConfig(git_binary="git"))
        assert detect_backend_kind(s) is BackendKind.DESKTOP

    def test_sandboxed_when_binary_missing(self):
        s = Settings(vault=VaultConfig(git_binary="no-such-git-binary-xyz"))
        assert detect_backend_kind(s) is BackendKind.SANDBOXED

    def test_select_builds_matching_backend(self, tmp_path):
        desktop = select_backend(Settings(vault=VaultConfig(backend="desktop", path=str(tmp_path))))
        assert isinstance(desktop, ShellBackend)
        assert desktop.root == tmp_path.resolve()

        sandboxed = select_backend(
            Settings(
                sync=SyncConfig(auth_token="tok"),
                vault=VaultConfig(backend="sandboxed", sandbox_root=str(tmp_path / "sb")),
            )
        )
        assert isinstance(sandboxed, EmbeddedBackend)
        assert sandboxed.required_settings == ("remote_url", "auth_token")
