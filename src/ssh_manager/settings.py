from __future__ import annotations

import os
import platform
from dataclasses import dataclass, field
from pathlib import Path

from .errors import FilesystemError
from .types import SSH_DIR_MODE, Result

VERSION = "2.0.0"


class SettingsError(Exception):
    pass


@dataclass(frozen=True)
class AgentExitCodes:
    """Exit statuses of ``ssh-add -l`` and the agent state each one means.

    The values are agent-implementation specific, so they are data rather
    than constants baked into the agent bridge. Any status not listed here
    is treated as a communication error.
    """

    running: int = 0
    no_keys: int = 1
    not_running: int = 2

    @classmethod
    def parse(cls, text: str) -> AgentExitCodes:
        """Parse ``running=0,no_keys=1,not_running=2`` (any subset)."""
        values: dict[str, int] = {}
        for part in text.split(","):
            part = part.strip()
            if not part:
                continue
            name, sep, raw = part.partition("=")
            name = name.strip()
            if not sep or name not in ("running", "no_keys", "not_running"):
                raise SettingsError(f"Invalid agent exit code entry: {part!r}")
            try:
                values[name] = int(raw.strip())
            except ValueError as e:
                raise SettingsError(f"Exit code for {name} must be an integer") from e
        return cls(**values)


def default_ssh_dir() -> Path:
    """Get the SSH credential directory."""
    env_dir = os.environ.get("SSH_MANAGER_SSH_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".ssh"


@dataclass
class ManagerSettings:
    ssh_dir: Path = field(default_factory=default_ssh_dir)
    log_path: Path = field(default_factory=lambda: Path.home() / ".ssh-manager" / "errors.log")
    connect_timeout: int = 10
    backup_retention: int = 5
    config_backup_retention: int = 10
    agent_exit_codes: AgentExitCodes = field(default_factory=AgentExitCodes)

    @property
    def config_file(self) -> Path:
        return self.ssh_dir / "config"

    @property
    def backup_dir(self) -> Path:
        return self.ssh_dir / "backups"

    @property
    def config_backup_dir(self) -> Path:
        return self.backup_dir / "config"

    @classmethod
    def from_env(cls) -> ManagerSettings:
        settings = cls()

        log_path = os.environ.get("SSH_MANAGER_LOG")
        if log_path:
            settings.log_path = Path(log_path).expanduser()

        timeout = os.environ.get("SSH_MANAGER_CONNECT_TIMEOUT")
        if timeout:
            try:
                settings.connect_timeout = int(timeout)
            except ValueError as e:
                raise SettingsError("SSH_MANAGER_CONNECT_TIMEOUT must be an integer") from e
            if settings.connect_timeout <= 0:
                raise SettingsError("SSH_MANAGER_CONNECT_TIMEOUT must be positive")

        exit_codes = os.environ.get("SSH_MANAGER_AGENT_EXIT_CODES")
        if exit_codes:
            settings.agent_exit_codes = AgentExitCodes.parse(exit_codes)

        return settings


def ensure_ssh_dir(ssh_dir: Path) -> Result[Path]:
    """Ensure the SSH directory exists with correct permissions."""
    if ssh_dir.is_dir():
        return Result.ok(ssh_dir)

    try:
        ssh_dir.mkdir(parents=True, exist_ok=True)

        if platform.system() != "Windows":
            ssh_dir.chmod(SSH_DIR_MODE)

        return Result.ok(ssh_dir)
    except OSError as e:
        return Result.err(FilesystemError(f"Could not create SSH directory: {e}", ssh_dir, e))
