from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import DelegatedCommandError, FilesystemError
from .types import DEFAULT_PORT, Result, SSHTarget

logger = logging.getLogger("ssh-manager.remote")

# Appends the key read from stdin to authorized_keys unless it is already listed
MANUAL_INSTALL_COMMAND = (
    "mkdir -p ~/.ssh && chmod 700 ~/.ssh && touch ~/.ssh/authorized_keys && "
    'key="$(cat)" && { grep -qxF "$key" ~/.ssh/authorized_keys || '
    "printf '%s\\n' \"$key\" >> ~/.ssh/authorized_keys; } && "
    "chmod 600 ~/.ssh/authorized_keys"
)


class RemoteCopier(Protocol):
    def copy_key(self, public_key_path: Path, target: SSHTarget) -> Result[str]: ...


class ConnectionProber(Protocol):
    def probe(self, target: SSHTarget, identity_file: Path | None = None) -> ProbeResult: ...


@dataclass(frozen=True)
class ProbeResult:
    success: bool
    target: SSHTarget
    exit_status: int | None = None
    message: str = ""


def _port_args(flag: str, port: int) -> list[str]:
    return [flag, str(port)] if port != DEFAULT_PORT else []


class SSHCopyId:
    """Installs a public key on a remote host.

    Uses ``ssh-copy-id`` when present and otherwise pipes the key to a
    single ``ssh`` invocation that creates ``~/.ssh`` and appends to
    ``authorized_keys``. Both paths end with 700/600 remote permissions.
    The return value names the method that was used.
    """

    def __init__(self, copy_id_command: str = "ssh-copy-id") -> None:
        self._copy_id_command = copy_id_command

    def copy_id_available(self) -> bool:
        return shutil.which(self._copy_id_command) is not None

    def copy_key(self, public_key_path: Path, target: SSHTarget) -> Result[str]:
        if not public_key_path.is_file():
            return Result.err(
                FilesystemError(f"Public key not found: {public_key_path}", public_key_path)
            )

        if self.copy_id_available():
            return self._copy_with_copy_id(public_key_path, target)
        logger.info("%s not found, using manual install", self._copy_id_command)
        return self._copy_manually(public_key_path, target)

    def _copy_with_copy_id(self, public_key_path: Path, target: SSHTarget) -> Result[str]:
        cmd = [
            self._copy_id_command,
            *_port_args("-p", target.port),
            "-i",
            str(public_key_path),
            target.destination,
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            return Result.err(
                DelegatedCommandError("ssh-copy-id failed to start", "ssh-copy-id", cause=e)
            )

        if result.returncode != 0:
            return Result.err(
                DelegatedCommandError(
                    f"Failed to copy key to {target}",
                    tool="ssh-copy-id",
                    exit_status=result.returncode,
                    output=result.stderr,
                )
            )

        logger.info("Copied %s to %s with ssh-copy-id", public_key_path.name, target)
        return Result.ok("ssh-copy-id")

    def _copy_manually(self, public_key_path: Path, target: SSHTarget) -> Result[str]:
        key_text = public_key_path.read_text().strip() + "\n"
        cmd = [
            "ssh",
            *_port_args("-p", target.port),
            target.destination,
            MANUAL_INSTALL_COMMAND,
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, input=key_text)
        except OSError as e:
            return Result.err(DelegatedCommandError("ssh failed to start", "ssh", cause=e))

        if result.returncode != 0:
            return Result.err(
                DelegatedCommandError(
                    f"Failed to copy key to {target}",
                    tool="ssh",
                    exit_status=result.returncode,
                    output=result.stderr,
                )
            )

        logger.info("Copied %s to %s manually", public_key_path.name, target)
        return Result.ok("manual")


class BatchModeProber:
    """Non-interactive connection probe with a bounded timeout."""

    def __init__(self, connect_timeout: int = 10) -> None:
        self._connect_timeout = connect_timeout

    @property
    def connect_timeout(self) -> int:
        return self._connect_timeout

    def build_command(self, target: SSHTarget, identity_file: Path | None = None) -> list[str]:
        cmd = [
            "ssh",
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self._connect_timeout}",
        ]
        if identity_file is not None:
            cmd += ["-i", str(identity_file), "-o", "IdentitiesOnly=yes"]
        cmd += _port_args("-p", target.port)
        cmd += [target.destination, "exit"]
        return cmd

    def probe(self, target: SSHTarget, identity_file: Path | None = None) -> ProbeResult:
        cmd = self.build_command(target, identity_file)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                # ConnectTimeout only covers the TCP connect
                timeout=self._connect_timeout * 2,
            )
        except subprocess.TimeoutExpired:
            return ProbeResult(False, target, message="Connection probe timed out")
        except FileNotFoundError:
            return ProbeResult(False, target, message="ssh not found")

        if result.returncode == 0:
            logger.info("Connection probe to %s succeeded", target)
            return ProbeResult(True, target, 0, "Connection successful")

        message = result.stderr.strip().splitlines()[-1] if result.stderr.strip() else ""
        logger.info("Connection probe to %s failed: %s", target, message)
        return ProbeResult(False, target, result.returncode, message or "Connection failed")
