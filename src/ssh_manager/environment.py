from __future__ import annotations

import platform
import shutil
import subprocess
from dataclasses import dataclass, field

from .errors import MissingPrerequisiteError
from .types import Result

INSTALL_HINT = (
    "Install OpenSSH: apt install openssh-client (Debian/Ubuntu) "
    "or brew install openssh (macOS)"
)


@dataclass
class CheckResult:
    """Result of an environment check."""

    name: str
    passed: bool
    message: str
    critical: bool = True
    fix_hint: str | None = None


@dataclass
class EnvironmentReport:
    system: str
    checks: list[CheckResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        return all(c.passed for c in self.checks if c.critical)

    @property
    def critical_failures(self) -> list[CheckResult]:
        return [c for c in self.checks if c.critical and not c.passed]

    @property
    def non_critical_failures(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.critical and not c.passed]


def check_tool(name: str, critical: bool = True, fix_hint: str | None = INSTALL_HINT) -> CheckResult:
    """Check that ``name`` is on PATH."""
    path = shutil.which(name)
    if path:
        return CheckResult(name=name, passed=True, message=f"Found: {path}", critical=critical)
    return CheckResult(
        name=name,
        passed=False,
        message=f"{name} not found in PATH",
        critical=critical,
        fix_hint=fix_hint,
    )


def check_ssh_version() -> CheckResult:
    """Report the OpenSSH client version (``ssh -V`` prints to stderr)."""
    try:
        result = subprocess.run(["ssh", "-V"], capture_output=True, text=True)
    except OSError as e:
        return CheckResult(
            name="ssh version",
            passed=False,
            message=f"Error checking ssh: {e}",
            critical=False,
            fix_hint=INSTALL_HINT,
        )

    version = (result.stderr or result.stdout).strip().splitlines()
    if result.returncode == 0 and version:
        return CheckResult(name="ssh version", passed=True, message=version[0], critical=False)

    return CheckResult(
        name="ssh version",
        passed=False,
        message="Could not determine ssh version",
        critical=False,
    )


def verify_environment(include_optional: bool = True) -> EnvironmentReport:
    report = EnvironmentReport(system=platform.system())

    report.checks.append(check_tool("ssh"))
    report.checks.append(check_tool("ssh-keygen"))
    report.checks.append(check_tool("ssh-add"))

    if include_optional:
        report.checks.append(
            check_tool(
                "ssh-copy-id",
                critical=False,
                fix_hint="Keys will be installed with a manual ssh command instead",
            )
        )
        report.checks.append(check_ssh_version())

    if not report.all_passed:
        report.warnings.append("Some required OpenSSH tools are missing.")

    return report


def verify_environment_result() -> Result[EnvironmentReport]:
    report = verify_environment()

    if report.all_passed:
        return Result.ok(report)
    failures = ", ".join(c.name for c in report.critical_failures)
    return Result.err(
        MissingPrerequisiteError(f"Required tools missing: {failures}", hint=INSTALL_HINT)
    )
