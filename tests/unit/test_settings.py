"""Tests for runtime settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from ssh_manager.settings import (
    AgentExitCodes,
    ManagerSettings,
    SettingsError,
    default_ssh_dir,
    ensure_ssh_dir,
)


class TestAgentExitCodes:
    def test_defaults(self) -> None:
        codes = AgentExitCodes()
        assert (codes.running, codes.no_keys, codes.not_running) == (0, 1, 2)

    def test_parse_subset(self) -> None:
        codes = AgentExitCodes.parse("no_keys=3, not_running=4")
        assert (codes.running, codes.no_keys, codes.not_running) == (0, 3, 4)

    @pytest.mark.parametrize("text", ["bogus=1", "running", "running=yes"])
    def test_parse_invalid(self, text: str) -> None:
        with pytest.raises(SettingsError):
            AgentExitCodes.parse(text)


class TestManagerSettings:
    def test_derived_paths(self, tmp_path: Path) -> None:
        settings = ManagerSettings(ssh_dir=tmp_path)

        assert settings.config_file == tmp_path / "config"
        assert settings.backup_dir == tmp_path / "backups"
        assert settings.config_backup_dir == tmp_path / "backups" / "config"

    def test_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SSH_MANAGER_SSH_DIR", str(tmp_path / "keys"))
        monkeypatch.setenv("SSH_MANAGER_LOG", str(tmp_path / "log.txt"))
        monkeypatch.setenv("SSH_MANAGER_CONNECT_TIMEOUT", "3")
        monkeypatch.setenv("SSH_MANAGER_AGENT_EXIT_CODES", "not_running=5")

        settings = ManagerSettings.from_env()

        assert settings.ssh_dir == tmp_path / "keys"
        assert settings.log_path == tmp_path / "log.txt"
        assert settings.connect_timeout == 3
        assert settings.agent_exit_codes.not_running == 5

    def test_from_env_defaults(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in (
            "SSH_MANAGER_SSH_DIR",
            "SSH_MANAGER_LOG",
            "SSH_MANAGER_CONNECT_TIMEOUT",
            "SSH_MANAGER_AGENT_EXIT_CODES",
        ):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))

        settings = ManagerSettings.from_env()

        assert settings.ssh_dir == tmp_path / ".ssh"
        assert settings.connect_timeout == 10
        assert settings.backup_retention == 5

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_invalid_timeout(self, value: str, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SSH_MANAGER_CONNECT_TIMEOUT", value)
        with pytest.raises(SettingsError):
            ManagerSettings.from_env()


class TestSSHDir:
    def test_default_ssh_dir_expands_user(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SSH_MANAGER_SSH_DIR", "~/custom")
        assert default_ssh_dir() == Path("~/custom").expanduser()

    def test_ensure_creates_with_mode(self, tmp_path: Path) -> None:
        target = tmp_path / "new" / ".ssh"

        result = ensure_ssh_dir(target)

        assert result.unwrap() == target
        assert target.stat().st_mode & 0o777 == 0o700

    def test_ensure_existing(self, ssh_dir: Path) -> None:
        assert ensure_ssh_dir(ssh_dir).is_ok()
