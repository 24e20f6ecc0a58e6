from __future__ import annotations

import logging
import re
import shutil
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import pexpect

from .errors import DelegatedCommandError, FilesystemError, MissingPrerequisiteError
from .types import KeyAlgorithm, KeyInfo, KeyPair, Result, SecureString

logger = logging.getLogger("ssh-manager.keys")

PUBLIC_KEY_SUFFIX = ".pub"

# "256 SHA256:abc... user@host (ED25519)"
_KEY_INFO_RE = re.compile(
    r"^(?P<bits>\d+)\s+(?P<fingerprint>\S+)\s+(?P<comment>.*?)\s*\((?P<label>[A-Za-z0-9-]+)\)\s*$"
)


@dataclass(frozen=True)
class KeyPreset:
    label: str
    algorithm: KeyAlgorithm
    bits: int | None
    note: str


KEY_PRESETS: tuple[KeyPreset, ...] = (
    KeyPreset("Ed25519", KeyAlgorithm.ED25519, None, "recommended"),
    KeyPreset("RSA 4096", KeyAlgorithm.RSA, 4096, "widely compatible"),
    KeyPreset("ECDSA 256", KeyAlgorithm.ECDSA, 256, "compact"),
    KeyPreset("RSA 2048", KeyAlgorithm.RSA, 2048, "legacy systems"),
)


class KeyGenerator(Protocol):
    def generate(
        self,
        algorithm: KeyAlgorithm,
        bits: int | None,
        output_path: Path,
        comment: str,
        passphrase: SecureString | None = None,
    ) -> Result[Path]: ...


class KeyInfoProbe(Protocol):
    def key_info(self, public_key_path: Path) -> Result[KeyInfo]: ...

    def can_read_without_passphrase(self, private_key_path: Path) -> bool: ...


def sanitize_key_name(name: str) -> str:
    """Lowercase a user-supplied key name and replace unsafe characters with ``_``."""
    return re.sub(r"[^a-z0-9_-]", "_", name.strip().lower())


def key_filename(algorithm: KeyAlgorithm, name: str) -> str:
    return f"id_{algorithm.value}_{sanitize_key_name(name)}"


def parse_key_info(output: str) -> KeyInfo | None:
    """Parse one line of ``ssh-keygen -l`` output."""
    for line in output.splitlines():
        match = _KEY_INFO_RE.match(line.strip())
        if match:
            return KeyInfo(
                bits=int(match.group("bits")),
                fingerprint=match.group("fingerprint"),
                comment=match.group("comment"),
                algorithm=KeyAlgorithm.from_label(match.group("label")),
            )
    return None


class SSHKeygen:
    """Delegates key generation and inspection to ``ssh-keygen``."""

    def __init__(self, timeout: int = 60) -> None:
        self._timeout = timeout

    def _run_keygen(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            ["ssh-keygen", *args],
            capture_output=True,
            text=True,
            stdin=subprocess.DEVNULL,
        )

    def key_info(self, public_key_path: Path) -> Result[KeyInfo]:
        try:
            result = self._run_keygen(["-l", "-f", str(public_key_path)])
        except FileNotFoundError as e:
            return Result.err(
                DelegatedCommandError("ssh-keygen not found", tool="ssh-keygen", cause=e)
            )

        if result.returncode != 0:
            return Result.err(
                DelegatedCommandError(
                    f"Could not read key info for {public_key_path.name}",
                    tool="ssh-keygen",
                    exit_status=result.returncode,
                    output=result.stderr,
                )
            )

        info = parse_key_info(result.stdout)
        if info is None:
            return Result.err(
                DelegatedCommandError(
                    f"Unrecognized ssh-keygen output for {public_key_path.name}",
                    tool="ssh-keygen",
                    output=result.stdout,
                )
            )
        return Result.ok(info)

    def can_read_without_passphrase(self, private_key_path: Path) -> bool:
        """True when the private key loads with an empty passphrase."""
        try:
            result = subprocess.run(
                ["ssh-keygen", "-y", "-P", "", "-f", str(private_key_path)],
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
            )
        except FileNotFoundError:
            return False
        return result.returncode == 0

    def generate(
        self,
        algorithm: KeyAlgorithm,
        bits: int | None,
        output_path: Path,
        comment: str,
        passphrase: SecureString | None = None,
    ) -> Result[Path]:
        if output_path.exists():
            return Result.err(
                FilesystemError(f"Key already exists: {output_path}", output_path)
            )

        args = ["-t", algorithm.value]
        if bits:
            args += ["-b", str(bits)]
        args += ["-C", comment, "-f", str(output_path)]

        if passphrase is None or not passphrase.get():
            try:
                result = self._run_keygen([*args, "-N", ""])
            except FileNotFoundError as e:
                return Result.err(
                    DelegatedCommandError("ssh-keygen not found", tool="ssh-keygen", cause=e)
                )
            if result.returncode != 0:
                return Result.err(
                    DelegatedCommandError(
                        "Key generation failed",
                        tool="ssh-keygen",
                        exit_status=result.returncode,
                        output=result.stderr,
                    )
                )
            logger.info("Generated %s key at %s", algorithm.value, output_path)
            return Result.ok(output_path)

        try:
            child = pexpect.spawn(
                "ssh-keygen",
                args,
                encoding="utf-8",
                timeout=self._timeout,
            )

            child.expect(r"Enter passphrase")
            child.sendline(passphrase.get())

            child.expect(r"Enter same passphrase again")
            child.sendline(passphrase.get())

            child.expect(pexpect.EOF)
            child.close()

            if child.exitstatus != 0:
                return Result.err(
                    DelegatedCommandError(
                        f"Key generation failed with status {child.exitstatus}",
                        tool="ssh-keygen",
                        exit_status=child.exitstatus,
                    )
                )

        except pexpect.exceptions.TIMEOUT as e:
            return Result.err(DelegatedCommandError(f"Timeout generating key: {e}", "ssh-keygen"))
        except pexpect.exceptions.EOF as e:
            return Result.err(
                DelegatedCommandError(f"Unexpected EOF generating key: {e}", "ssh-keygen")
            )
        except pexpect.exceptions.ExceptionPexpect as e:
            return Result.err(
                DelegatedCommandError(f"Could not run ssh-keygen: {e}", "ssh-keygen", cause=e)
            )

        logger.info("Generated passphrase-protected %s key at %s", algorithm.value, output_path)
        return Result.ok(output_path)

    def change_passphrase(
        self,
        private_key_path: Path,
        old_passphrase: SecureString | None,
        new_passphrase: SecureString,
    ) -> Result[None]:
        """Change (or set, or clear) the passphrase of a private key.

        ``ssh-keygen -p`` only asks for the old passphrase when the key has
        one, so the first prompt decides which branch we are on.
        """
        try:
            child = pexpect.spawn(
                "ssh-keygen",
                ["-p", "-f", str(private_key_path)],
                encoding="utf-8",
                timeout=self._timeout,
            )

            index = child.expect([r"Enter old passphrase", r"Enter new passphrase"])
            if index == 0:
                child.sendline(old_passphrase.get() if old_passphrase else "")
                index = child.expect([r"Enter new passphrase", r"[Ii]ncorrect passphrase|Bad"])
                if index == 1:
                    child.expect(pexpect.EOF)
                    child.close()
                    return Result.err(
                        DelegatedCommandError(
                            "Old passphrase is incorrect",
                            tool="ssh-keygen",
                            output="bad passphrase",
                        )
                    )

            child.sendline(new_passphrase.get())
            child.expect(r"Enter same passphrase again")
            child.sendline(new_passphrase.get())

            child.expect(pexpect.EOF)
            child.close()

            if child.exitstatus != 0:
                return Result.err(
                    DelegatedCommandError(
                        f"Passphrase change failed with status {child.exitstatus}",
                        tool="ssh-keygen",
                        exit_status=child.exitstatus,
                    )
                )

        except pexpect.exceptions.TIMEOUT as e:
            return Result.err(
                DelegatedCommandError(f"Timeout changing passphrase: {e}", "ssh-keygen")
            )
        except pexpect.exceptions.EOF as e:
            return Result.err(
                DelegatedCommandError(f"Unexpected EOF changing passphrase: {e}", "ssh-keygen")
            )
        except pexpect.exceptions.ExceptionPexpect as e:
            return Result.err(
                DelegatedCommandError(f"Could not run ssh-keygen: {e}", "ssh-keygen", cause=e)
            )

        logger.info("Changed passphrase for %s", private_key_path)
        return Result.ok(None)


def keygen_available() -> bool:
    return shutil.which("ssh-keygen") is not None


class KeyInventory:
    """Enumerates key pairs in a credential directory."""

    def __init__(self, ssh_dir: Path, probe: KeyInfoProbe | None = None) -> None:
        self._ssh_dir = ssh_dir
        self._probe = probe or SSHKeygen()
        self._warnings: list[str] = []

    @property
    def ssh_dir(self) -> Path:
        return self._ssh_dir

    @property
    def warnings(self) -> list[str]:
        """Non-fatal conditions found by the last scan."""
        return list(self._warnings)

    def scan(self, directory: Path | None = None) -> list[KeyPair]:
        """Pair every ``*.pub`` file with its private key.

        A public key without a private key is kept and recorded as a
        warning. Passphrase status is only probed when the private key
        exists.
        """
        directory = directory or self._ssh_dir
        self._warnings = []

        if not directory.is_dir():
            return []

        pairs: list[KeyPair] = []
        for public_key in sorted(directory.glob(f"*{PUBLIC_KEY_SUFFIX}")):
            if not public_key.is_file():
                continue

            private_key = public_key.with_suffix("")
            info_result = self._probe.key_info(public_key)
            if info_result.is_ok():
                info = info_result.unwrap()
                algorithm, bits, fingerprint = info.algorithm, info.bits, info.fingerprint
            else:
                logger.warning("Could not inspect %s: %s", public_key, info_result.unwrap_err())
                algorithm, bits, fingerprint = KeyAlgorithm.UNKNOWN, None, None

            pair = KeyPair(
                name=private_key.name,
                algorithm=algorithm,
                bits=bits,
                public_key_path=public_key,
                private_key_path=private_key,
                fingerprint=fingerprint,
            )

            if private_key.is_file():
                pair.has_passphrase = self.passphrase_status(private_key)
            else:
                self._warnings.append(f"Private key missing for {public_key.name}")

            pairs.append(pair)

        return pairs

    def passphrase_status(self, private_key_path: Path) -> bool:
        """True when the key is passphrase protected (the empty-passphrase probe fails)."""
        return not self._probe.can_read_without_passphrase(private_key_path)

    def agent_loaded_status(
        self, key_pair: KeyPair, loaded: Iterable[tuple[str, str]]
    ) -> bool:
        """Match a key pair against ``(fingerprint, comment)`` pairs loaded in the agent."""
        for fingerprint, comment in loaded:
            if key_pair.fingerprint and fingerprint == key_pair.fingerprint:
                return True
            if comment and comment in (str(key_pair.private_key_path), key_pair.name):
                return True
        return False

    def find(self, name: str) -> KeyPair | None:
        for pair in self.scan():
            if pair.name == name:
                return pair
        return None

    def require_keys(self) -> Result[list[KeyPair]]:
        pairs = self.scan()
        if not pairs:
            return Result.err(
                MissingPrerequisiteError("No SSH keys found", hint="Generate a key first")
            )
        return Result.ok(pairs)

    def delete_key(self, key_pair: KeyPair) -> Result[list[Path]]:
        """Delete both halves of a key pair. Returns the paths removed."""
        removed: list[Path] = []
        for path in (key_pair.private_key_path, key_pair.public_key_path):
            if not path.exists():
                continue
            try:
                path.unlink()
            except OSError as e:
                return Result.err(FilesystemError(f"Could not delete {path}: {e}", path, e))
            removed.append(path)

        logger.info("Deleted key pair %s", key_pair.name)
        return Result.ok(removed)
