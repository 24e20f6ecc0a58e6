"""Permission and key-strength audit of the credential directory.

The audit is read-only and reports every finding it sees. ``fix_permissions``
is the separate remediation step offered by the maintenance menu.
"""

from __future__ import annotations

import logging
import stat
from dataclasses import dataclass, field
from pathlib import Path

from .errors import FilesystemError
from .keys import PUBLIC_KEY_SUFFIX, KeyInfoProbe, SSHKeygen
from .types import (
    CONFIG_FILE_MODE,
    KNOWN_HOSTS_MODE,
    PRIVATE_KEY_MODE,
    PUBLIC_KEY_MODE,
    SSH_DIR_MODE,
    FindingKind,
    KeyAlgorithm,
    Result,
    SecurityFinding,
)

logger = logging.getLogger("ssh-manager.security")

MIN_RSA_BITS = 2048


@dataclass
class AuditReport:
    findings: list[SecurityFinding] = field(default_factory=list)

    @property
    def issue_count(self) -> int:
        return len(self.findings)

    @property
    def passed(self) -> bool:
        return not self.findings

    def by_kind(self, kind: FindingKind) -> list[SecurityFinding]:
        return [finding for finding in self.findings if finding.kind == kind]


def file_mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


def format_mode(mode: int) -> str:
    return f"{mode:03o}"


def is_too_permissive(mode: int, expected: int) -> bool:
    """True when ``mode`` grants any bit that ``expected`` does not."""
    return bool(mode & ~expected)


def private_key_files(directory: Path) -> list[Path]:
    """``id_*`` files and the private half of every ``*.pub``, public keys excluded."""
    candidates = {path for path in directory.glob("id_*") if path.suffix != PUBLIC_KEY_SUFFIX}
    candidates.update(
        public_key.with_suffix("") for public_key in directory.glob(f"*{PUBLIC_KEY_SUFFIX}")
    )
    return sorted(path for path in candidates if path.is_file())


def _mode_finding(
    path: Path, kind: FindingKind, expected: int
) -> SecurityFinding | None:
    mode = file_mode(path)
    if is_too_permissive(mode, expected):
        return SecurityFinding(str(path), kind, format_mode(mode), format_mode(expected))
    return None


def audit(
    directory: Path,
    config_path: Path | None = None,
    probe: KeyInfoProbe | None = None,
) -> AuditReport:
    """Check directory, key and config modes, then each public key's strength."""
    probe = probe or SSHKeygen()
    report = AuditReport()

    if not directory.is_dir():
        return report

    dir_finding = _mode_finding(directory, FindingKind.DIR_MODE, SSH_DIR_MODE)
    if dir_finding:
        report.findings.append(dir_finding)

    for private_key in private_key_files(directory):
        finding = _mode_finding(private_key, FindingKind.KEY_MODE, PRIVATE_KEY_MODE)
        if finding:
            report.findings.append(finding)

    config_path = config_path or directory / "config"
    if config_path.is_file():
        finding = _mode_finding(config_path, FindingKind.CONFIG_MODE, CONFIG_FILE_MODE)
        if finding:
            report.findings.append(finding)

    for public_key in sorted(directory.glob(f"*{PUBLIC_KEY_SUFFIX}")):
        info_result = probe.key_info(public_key)
        if info_result.is_err():
            logger.warning("Skipping strength check for %s: %s", public_key, info_result.unwrap_err())
            continue

        info = info_result.unwrap()
        if info.algorithm == KeyAlgorithm.DSA:
            report.findings.append(
                SecurityFinding(
                    str(public_key), FindingKind.DEPRECATED_ALGORITHM, "DSA", "Ed25519 or RSA"
                )
            )
        elif info.algorithm == KeyAlgorithm.RSA and info.bits is not None and info.bits < MIN_RSA_BITS:
            report.findings.append(
                SecurityFinding(
                    str(public_key),
                    FindingKind.WEAK_KEY,
                    f"RSA {info.bits}",
                    f"RSA {MIN_RSA_BITS} or more",
                )
            )

    logger.info("Security audit of %s: %d issue(s)", directory, report.issue_count)
    return report


def fix_permissions(directory: Path, config_path: Path | None = None) -> Result[list[Path]]:
    """Apply the permission policy. Returns the paths whose mode changed."""
    config_path = config_path or directory / "config"
    targets: list[tuple[Path, int]] = [(directory, SSH_DIR_MODE)]
    targets += [(key, PRIVATE_KEY_MODE) for key in private_key_files(directory)]
    targets += [
        (path, PUBLIC_KEY_MODE)
        for path in sorted(directory.glob(f"*{PUBLIC_KEY_SUFFIX}"))
        if path.is_file()
    ]
    targets.append((config_path, CONFIG_FILE_MODE))
    targets.append((directory / "known_hosts", KNOWN_HOSTS_MODE))

    fixed: list[Path] = []
    for path, mode in targets:
        if not path.exists():
            continue
        try:
            if file_mode(path) != mode:
                path.chmod(mode)
                fixed.append(path)
        except OSError as e:
            return Result.err(FilesystemError(f"Could not set mode on {path}: {e}", path, e))

    logger.info("Fixed permissions on %d path(s) in %s", len(fixed), directory)
    return Result.ok(fixed)
