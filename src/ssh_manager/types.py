from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")

DEFAULT_PORT = 22

# Permission policy for the credential directory
SSH_DIR_MODE = 0o700
PRIVATE_KEY_MODE = 0o600
PUBLIC_KEY_MODE = 0o644
CONFIG_FILE_MODE = 0o600
KNOWN_HOSTS_MODE = 0o644


class KeyAlgorithm(Enum):
    ED25519 = "ed25519"
    RSA = "rsa"
    ECDSA = "ecdsa"
    DSA = "dsa"
    UNKNOWN = "unknown"

    @classmethod
    def from_label(cls, label: str) -> KeyAlgorithm:
        """Map an ssh-keygen type label such as ``(ED25519)`` to an algorithm."""
        normalized = label.strip("()").lower()
        for algorithm in cls:
            if normalized == algorithm.value:
                return algorithm
        if normalized.startswith("ecdsa"):
            return cls.ECDSA
        if normalized.startswith("ed25519"):
            return cls.ED25519
        return cls.UNKNOWN


class StepResult(Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


class FindingKind(Enum):
    DIR_MODE = "dir-mode"
    KEY_MODE = "key-mode"
    CONFIG_MODE = "config-mode"
    WEAK_KEY = "weak-key"
    DEPRECATED_ALGORITHM = "deprecated-algorithm"


@dataclass(frozen=True)
class KeyInfo:
    """Parsed output of ``ssh-keygen -l`` for one public key."""

    bits: int | None
    fingerprint: str
    comment: str
    algorithm: KeyAlgorithm


@dataclass
class KeyPair:
    name: str
    algorithm: KeyAlgorithm
    bits: int | None
    public_key_path: Path
    private_key_path: Path
    has_passphrase: bool = False
    loaded_in_agent: bool = False
    fingerprint: str | None = None

    @property
    def has_private_key(self) -> bool:
        return self.private_key_path.exists()

    @property
    def description(self) -> str:
        if self.bits:
            return f"{self.algorithm.value.upper()} {self.bits}"
        return self.algorithm.value.upper()


@dataclass(frozen=True)
class ConfigLine:
    """A line inside a host block that has no typed field.

    ``keyword`` is ``None`` for opaque text such as comments or lines
    without a directive shape. ``raw`` is written back verbatim.
    """

    keyword: str | None
    value: str
    raw: str

    @classmethod
    def directive(cls, keyword: str, value: str) -> ConfigLine:
        return cls(keyword, value, f"    {keyword} {value}")


@dataclass
class HostEntry:
    """One ``Host`` block of the SSH client config.

    ``port`` and ``identities_only`` are ``None`` when the block does not
    specify them, so unspecified directives are not invented on rewrite.
    ``extra_lines`` keeps unrecognized directives and opaque text in file
    order.

    A ``Match`` block is carried as an entry whose ``opener`` is the
    ``Match`` keyword and whose ``alias`` holds the criteria; its lines all
    stay in ``extra_lines`` so it is written back exactly where it was.
    """

    alias: str
    host_name: str = ""
    user: str = ""
    port: int | None = DEFAULT_PORT
    identity_file: str | None = None
    identities_only: bool | None = None
    extra_lines: list[ConfigLine] = field(default_factory=list)
    opener: str = "Host"

    @property
    def is_match(self) -> bool:
        return self.opener.lower() == "match"

    @property
    def effective_port(self) -> int:
        return self.port if self.port is not None else DEFAULT_PORT

    @property
    def extra_directives(self) -> list[tuple[str, str]]:
        return [(line.keyword, line.value) for line in self.extra_lines if line.keyword]

    @property
    def target(self) -> str:
        host = self.host_name or self.alias
        return f"{self.user}@{host}" if self.user else host


@dataclass(frozen=True)
class SSHTarget:
    user: str
    host: str
    port: int = DEFAULT_PORT

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}" if self.user else self.host

    def __str__(self) -> str:
        if self.port != DEFAULT_PORT:
            return f"{self.destination}:{self.port}"
        return self.destination


@dataclass(frozen=True)
class SecurityFinding:
    subject: str
    kind: FindingKind
    observed: str
    expected: str

    def describe(self) -> str:
        return f"{self.subject}: {self.kind.value} is {self.observed} (expected {self.expected})"


@dataclass(frozen=True)
class BackupArchive:
    path: Path
    captured_at: datetime

    @property
    def size_bytes(self) -> int:
        try:
            return self.path.stat().st_size
        except OSError:
            return 0


class SecureString:
    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        self._value = value

    def get(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return "SecureString(****)"

    def __str__(self) -> str:
        return "****"

    def __len__(self) -> int:
        return len(self._value)

    def clear(self) -> None:
        self._value = "\x00" * len(self._value)
        self._value = ""


class Result(Generic[T]):
    __slots__ = ("_value", "_error", "_is_ok")

    def __init__(self, value: T | None, error: Exception | None, is_ok: bool) -> None:
        self._value = value
        self._error = error
        self._is_ok = is_ok

    @staticmethod
    def ok(value: T) -> Result[T]:
        return Result(value, None, True)

    @staticmethod
    def err(error: Exception) -> Result[T]:
        return Result(None, error, False)

    def is_ok(self) -> bool:
        return self._is_ok

    def is_err(self) -> bool:
        return not self._is_ok

    def unwrap(self) -> T:
        if not self._is_ok:
            raise self._error if self._error else RuntimeError("Result is error but no error set")
        return self._value  # type: ignore

    def unwrap_err(self) -> Exception:
        if self._is_ok:
            raise RuntimeError("Called unwrap_err on Ok result")
        return self._error  # type: ignore

    def unwrap_or(self, default: T) -> T:
        return self._value if self._is_ok else default  # type: ignore

    def map(self, fn: Callable[[T], U]) -> Result[U]:
        if self._is_ok:
            try:
                return Result.ok(fn(self._value))  # type: ignore
            except Exception as e:
                return Result.err(e)
        return Result.err(self._error)  # type: ignore

    def and_then(self, fn: Callable[[T], Result[U]]) -> Result[U]:
        if self._is_ok:
            return fn(self._value)  # type: ignore
        return Result.err(self._error)  # type: ignore
