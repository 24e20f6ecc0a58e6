"""Bridge to the running ssh-agent through ``ssh-add``.

``ssh-add -l`` reports the agent state through its exit status. The
mapping from status to meaning lives in ``AgentExitCodes`` so it can be
overridden for agents that use different codes.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

import pexpect

from .errors import DelegatedCommandError
from .keys import parse_key_info
from .settings import AgentExitCodes
from .types import KeyAlgorithm, Result, SecureString

logger = logging.getLogger("ssh-manager.agent")


class AgentState(Enum):
    RUNNING = "running"
    RUNNING_NO_KEYS = "running-no-keys"
    NOT_RUNNING = "not-running"
    COMMUNICATION_ERROR = "communication-error"


@dataclass(frozen=True)
class LoadedKey:
    bits: int | None
    fingerprint: str
    comment: str
    algorithm: KeyAlgorithm


@dataclass
class AgentStatus:
    state: AgentState
    keys: list[LoadedKey] = field(default_factory=list)
    detail: str = ""

    @property
    def is_running(self) -> bool:
        return self.state in (AgentState.RUNNING, AgentState.RUNNING_NO_KEYS)

    def loaded_pairs(self) -> list[tuple[str, str]]:
        """``(fingerprint, comment)`` for each loaded key."""
        return [(key.fingerprint, key.comment) for key in self.keys]


class AgentController(Protocol):
    def status(self) -> AgentStatus: ...

    def add(self, private_key_path: Path, passphrase: SecureString | None = None) -> Result[None]: ...

    def remove(self, private_key_path: Path) -> Result[None]: ...

    def remove_all(self) -> Result[None]: ...


def parse_loaded_keys(output: str) -> list[LoadedKey]:
    keys = []
    for line in output.splitlines():
        info = parse_key_info(line)
        if info is not None:
            keys.append(LoadedKey(info.bits, info.fingerprint, info.comment, info.algorithm))
    return keys


def agent_environment() -> dict[str, str | None]:
    return {
        "SSH_AUTH_SOCK": os.environ.get("SSH_AUTH_SOCK"),
        "SSH_AGENT_PID": os.environ.get("SSH_AGENT_PID"),
    }


class AgentBridge:
    def __init__(self, exit_codes: AgentExitCodes | None = None, timeout: int = 30) -> None:
        self._exit_codes = exit_codes or AgentExitCodes()
        self._timeout = timeout

    @property
    def exit_codes(self) -> AgentExitCodes:
        return self._exit_codes

    def _run_ssh_add(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            ["ssh-add", *args],
            capture_output=True,
            text=True,
            stdin=subprocess.DEVNULL,
            timeout=self._timeout,
        )

    def status(self) -> AgentStatus:
        try:
            result = self._run_ssh_add(["-l"])
        except FileNotFoundError:
            return AgentStatus(AgentState.COMMUNICATION_ERROR, detail="ssh-add not found")
        except subprocess.TimeoutExpired:
            return AgentStatus(AgentState.COMMUNICATION_ERROR, detail="ssh-add timed out")

        code = result.returncode
        if code == self._exit_codes.running:
            keys = parse_loaded_keys(result.stdout)
            if keys:
                return AgentStatus(AgentState.RUNNING, keys)
            # Some agents exit 0 with "The agent has no identities."
            return AgentStatus(AgentState.RUNNING_NO_KEYS)
        if code == self._exit_codes.no_keys:
            return AgentStatus(AgentState.RUNNING_NO_KEYS)
        if code == self._exit_codes.not_running:
            return AgentStatus(AgentState.NOT_RUNNING, detail=result.stderr.strip())

        logger.warning("Unexpected ssh-add -l exit status %d: %s", code, result.stderr.strip())
        return AgentStatus(
            AgentState.COMMUNICATION_ERROR,
            detail=result.stderr.strip() or f"exit status {code}",
        )

    def add(self, private_key_path: Path, passphrase: SecureString | None = None) -> Result[None]:
        """Load a key into the agent. A passphrase is answered through a pty."""
        if passphrase is None:
            return self._simple("Could not add key to agent", [str(private_key_path)])

        try:
            child = pexpect.spawn(
                "ssh-add",
                [str(private_key_path)],
                encoding="utf-8",
                timeout=self._timeout,
            )

            index = child.expect([r"Enter passphrase", pexpect.EOF])
            if index == 0:
                child.sendline(passphrase.get())
                index = child.expect([r"Identity added", r"Bad passphrase", pexpect.EOF])
                if index == 1:
                    child.close(force=True)
                    return Result.err(
                        DelegatedCommandError(
                            "Could not add key to agent: bad passphrase",
                            tool="ssh-add",
                            output="bad passphrase",
                        )
                    )
                if index == 0:
                    child.expect(pexpect.EOF)
            child.close()

            if child.exitstatus != 0:
                return Result.err(
                    DelegatedCommandError(
                        f"ssh-add failed with status {child.exitstatus}",
                        tool="ssh-add",
                        exit_status=child.exitstatus,
                    )
                )

        except pexpect.exceptions.TIMEOUT as e:
            return Result.err(DelegatedCommandError(f"Timeout adding key: {e}", "ssh-add"))
        except pexpect.exceptions.ExceptionPexpect as e:
            return Result.err(DelegatedCommandError(f"Could not run ssh-add: {e}", "ssh-add", cause=e))

        logger.info("Added %s to agent", private_key_path)
        return Result.ok(None)

    def remove(self, private_key_path: Path) -> Result[None]:
        return self._simple("Could not remove key from agent", ["-d", str(private_key_path)])

    def remove_all(self) -> Result[None]:
        return self._simple("Could not remove keys from agent", ["-D"])

    def _simple(self, message: str, args: list[str]) -> Result[None]:
        try:
            result = self._run_ssh_add(args)
        except FileNotFoundError as e:
            return Result.err(DelegatedCommandError("ssh-add not found", tool="ssh-add", cause=e))
        except subprocess.TimeoutExpired as e:
            return Result.err(DelegatedCommandError(f"{message}: timed out", tool="ssh-add", cause=e))

        if result.returncode != 0:
            output = (result.stderr or result.stdout).strip()
            return Result.err(
                DelegatedCommandError(
                    f"{message}: {output}" if output else message,
                    tool="ssh-add",
                    exit_status=result.returncode,
                    output=output,
                )
            )

        logger.info("ssh-add %s", " ".join(args))
        return Result.ok(None)
