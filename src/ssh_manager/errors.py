"""Structured error types with recovery hints for SSH management.

This module provides a hierarchy of error types that include:
- Error categorization matching how the interactive session reacts
- Recovery hints that guide users to fix issues
- Error logging capabilities
- Graceful interrupt handling
"""

from __future__ import annotations

import contextlib
import logging
import signal
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, auto
from pathlib import Path
from types import FrameType
from typing import NoReturn


class ErrorCategory(Enum):
    """Categories of errors for routing recovery strategies."""

    CONSTRAINT = auto()  # Duplicate alias, alias not found
    MISSING_PREREQUISITE = auto()  # No keys, empty config, no backups
    DELEGATED_COMMAND = auto()  # ssh, ssh-keygen, ssh-add, ssh-copy-id failures
    FILESYSTEM = auto()  # Permission denied, disk full
    USER_INPUT = auto()  # Invalid input, cancelled operations
    INTERNAL = auto()  # Unexpected errors, bugs


@dataclass
class RecoveryHint:
    """A suggested recovery action for an error."""

    action: str
    command: str | None = None

    def __str__(self) -> str:
        result = self.action
        if self.command:
            result += f"\n  Command: {self.command}"
        return result


@dataclass
class SSHManagerError(Exception):
    """Base error type with recovery hints."""

    message: str
    category: ErrorCategory
    recovery_hints: list[RecoveryHint] = field(default_factory=list)
    cause: Exception | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __str__(self) -> str:
        return self.message

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def is_warning(self) -> bool:
        """Warnings return control to the current screen instead of failing it."""
        return self.category in (ErrorCategory.CONSTRAINT, ErrorCategory.MISSING_PREREQUISITE)

    def format_full(self) -> str:
        """Format error with all recovery hints."""
        lines = [f"Error: {self.message}"]

        if self.cause:
            lines.append(f"Caused by: {self.cause}")

        if self.recovery_hints:
            lines.append("\nRecovery options:")
            for i, hint in enumerate(self.recovery_hints, 1):
                lines.append(f"  {i}. {hint}")

        return "\n".join(lines)


class ConstraintViolation(SSHManagerError):
    """A config mutation would break the store's invariants."""

    def __init__(
        self,
        message: str,
        alias: str | None = None,
        hints: list[RecoveryHint] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.CONSTRAINT,
            recovery_hints=hints or [],
        )
        self.alias = alias


class DuplicateAliasError(ConstraintViolation):
    def __init__(self, alias: str) -> None:
        super().__init__(
            f"Host '{alias}' already exists in SSH config",
            alias=alias,
            hints=[
                RecoveryHint("Choose a different alias"),
                RecoveryHint("Remove the existing host first"),
            ],
        )


class HostNotFoundError(ConstraintViolation):
    def __init__(self, alias: str) -> None:
        super().__init__(
            f"Host '{alias}' not found in SSH config",
            alias=alias,
            hints=[RecoveryHint("Show the SSH config to list configured hosts")],
        )


class MissingPrerequisiteError(SSHManagerError):
    """Something the operation needs does not exist yet."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.MISSING_PREREQUISITE,
            recovery_hints=[RecoveryHint(hint)] if hint else [],
        )


class DelegatedCommandError(SSHManagerError):
    """An external tool (ssh, ssh-keygen, ssh-add, ssh-copy-id) failed."""

    def __init__(
        self,
        message: str,
        tool: str | None = None,
        exit_status: int | None = None,
        output: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = get_recovery_hints_for_message(output) if output else []
        if tool and isinstance(cause, FileNotFoundError):
            hints.append(RecoveryHint(f"Install {tool}", command="apt install openssh-client"))

        super().__init__(
            message=message,
            category=ErrorCategory.DELEGATED_COMMAND,
            recovery_hints=hints,
            cause=cause,
        )
        self.tool = tool
        self.exit_status = exit_status
        self.output = output


class FilesystemError(SSHManagerError):
    """Error reading or writing the credential directory."""

    def __init__(
        self,
        message: str,
        path: Path | str | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = []
        if path:
            hints.append(RecoveryHint(f"Check permissions on {path}"))
        hints.append(RecoveryHint("Verify the disk has enough free space"))

        super().__init__(
            message=message,
            category=ErrorCategory.FILESYSTEM,
            recovery_hints=hints,
            cause=cause,
        )
        self.path = path


class InvalidInputError(SSHManagerError):
    """Input that does not name any action available on the current screen."""

    def __init__(self, raw_input: str, expected: str | None = None) -> None:
        message = f"Invalid option: {raw_input!r}"
        if expected:
            message += f" (expected {expected})"
        super().__init__(message=message, category=ErrorCategory.USER_INPUT)
        self.raw_input = raw_input


class UserCancelledError(SSHManagerError):
    """Error when user cancels an operation."""

    def __init__(
        self,
        message: str = "Operation cancelled by user",
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.USER_INPUT,
            cause=cause,
        )


# Error logging


class ErrorLogger:
    """Logger for structured error tracking."""

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path or Path.home() / ".ssh-manager" / "errors.log"
        self._logger = logging.getLogger("ssh-manager.errors")
        # Module loggers are children of "ssh-manager", so their warnings land here too
        self._root = logging.getLogger("ssh-manager")
        self._setup_logging()

    @property
    def log_path(self) -> Path:
        return self._log_path

    def _setup_logging(self) -> None:
        """Configure file logging."""
        self._log_path.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.FileHandler(self._log_path)
        handler.setLevel(logging.WARNING)
        formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")
        handler.setFormatter(formatter)

        self._root.addHandler(handler)
        self._root.setLevel(logging.WARNING)

    def close(self) -> None:
        for handler in list(self._root.handlers):
            if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == self._log_path:
                handler.close()
                self._root.removeHandler(handler)

    def log_error(self, error: SSHManagerError) -> None:
        """Log an error with full context."""
        context = {
            "category": error.category.name,
            "error_message": error.message,
            "timestamp": error.timestamp.isoformat(),
        }
        if error.cause:
            context["cause"] = str(error.cause)

        self._logger.error(
            f"[{error.category.name}] {error.message}",
            extra=context,
        )

    def log_warning(self, message: str, category: ErrorCategory) -> None:
        """Log a warning."""
        self._logger.warning(f"[{category.name}] {message}")

    def get_recent_errors(self, count: int = 10) -> list[str]:
        """Get recent error log entries."""
        if not self._log_path.exists():
            return []

        with open(self._log_path) as f:
            lines = f.readlines()

        return lines[-count:]


# Interrupt handling


class InterruptHandler:
    """Graceful handling of user interrupts (Ctrl+C)."""

    def __init__(self) -> None:
        self._original_handler: Callable[[int, FrameType | None], None] | int | None = None
        self._cleanup_callbacks: list[Callable[[], None]] = []
        self._interrupted = False

    def register_cleanup(self, callback: Callable[[], None]) -> None:
        """Register a cleanup callback to run on interrupt."""
        self._cleanup_callbacks.append(callback)

    def _handle_interrupt(self, _signum: int, _frame: FrameType | None) -> NoReturn:
        """Handle SIGINT (Ctrl+C)."""
        self._interrupted = True

        for callback in reversed(self._cleanup_callbacks):
            with contextlib.suppress(Exception):
                callback()  # Best effort cleanup

        raise UserCancelledError("Interrupted by user (Ctrl+C)")

    def __enter__(self) -> InterruptHandler:
        """Install interrupt handler."""
        self._original_handler = signal.signal(signal.SIGINT, self._handle_interrupt)
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Restore original handler."""
        if self._original_handler is not None:
            signal.signal(signal.SIGINT, self._original_handler)

    @property
    def was_interrupted(self) -> bool:
        """Check if an interrupt occurred."""
        return self._interrupted


# Common error patterns and their solutions

COMMON_ERROR_PATTERNS: dict[str, list[RecoveryHint]] = {
    "permission denied": [
        RecoveryHint("Ensure your public key is in the remote authorized_keys file"),
        RecoveryHint("Fix local permissions from the maintenance menu"),
    ],
    "connection refused": [
        RecoveryHint("Verify the SSH service is running on the target"),
        RecoveryHint("Check the port number and firewall settings"),
    ],
    "connection timed out": [
        RecoveryHint("Check the host is reachable"),
        RecoveryHint("Check firewall settings"),
    ],
    "could not resolve hostname": [
        RecoveryHint("Check the hostname spelling or use an IP address"),
    ],
    "host key verification failed": [
        RecoveryHint(
            "Remove the stale host key if the server was reinstalled",
            command="ssh-keygen -R <host>",
        ),
    ],
    "could not open a connection to your authentication agent": [
        RecoveryHint("Start the SSH agent", command='eval "$(ssh-agent -s)"'),
    ],
    "bad passphrase": [
        RecoveryHint("Re-enter the key passphrase"),
    ],
}


def get_recovery_hints_for_message(error_message: str) -> list[RecoveryHint]:
    """Get recovery hints based on error message patterns."""
    hints = []
    lower_message = error_message.lower()

    for pattern, pattern_hints in COMMON_ERROR_PATTERNS.items():
        if pattern in lower_message:
            hints.extend(pattern_hints)

    return hints


def wrap_exception(
    exception: Exception,
    category: ErrorCategory = ErrorCategory.INTERNAL,
) -> SSHManagerError:
    """Wrap a generic exception in an SSHManagerError with recovery hints."""
    if isinstance(exception, SSHManagerError):
        return exception

    message = str(exception)
    hints = get_recovery_hints_for_message(message)

    return SSHManagerError(
        message=message,
        category=category,
        recovery_hints=hints,
        cause=exception,
    )
