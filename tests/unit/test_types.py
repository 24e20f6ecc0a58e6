"""Tests for core types."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from ssh_manager.types import (
    BackupArchive,
    ConfigLine,
    FindingKind,
    HostEntry,
    KeyAlgorithm,
    KeyPair,
    Result,
    SecureString,
    SecurityFinding,
    SSHTarget,
)


class TestKeyAlgorithm:
    @pytest.mark.parametrize(
        ("label", "expected"),
        [
            ("ED25519", KeyAlgorithm.ED25519),
            ("(RSA)", KeyAlgorithm.RSA),
            ("ECDSA-SK", KeyAlgorithm.ECDSA),
            ("dsa", KeyAlgorithm.DSA),
            ("XMSS", KeyAlgorithm.UNKNOWN),
        ],
    )
    def test_from_label(self, label: str, expected: KeyAlgorithm) -> None:
        assert KeyAlgorithm.from_label(label) == expected


class TestKeyPair:
    def test_description(self, tmp_path: Path) -> None:
        pair = KeyPair("id_rsa_x", KeyAlgorithm.RSA, 4096, tmp_path / "x.pub", tmp_path / "x")
        assert pair.description == "RSA 4096"

        pair.bits = None
        assert pair.description == "RSA"

    def test_has_private_key(self, tmp_path: Path) -> None:
        pair = KeyPair("x", KeyAlgorithm.ED25519, 256, tmp_path / "x.pub", tmp_path / "x")
        assert not pair.has_private_key

        (tmp_path / "x").write_text("key")
        assert pair.has_private_key


class TestHostEntry:
    def test_defaults(self) -> None:
        entry = HostEntry(alias="web")

        assert entry.port == 22
        assert entry.identity_file is None
        assert entry.extra_lines == []

    def test_effective_port(self) -> None:
        assert HostEntry(alias="a", port=None).effective_port == 22
        assert HostEntry(alias="a", port=2222).effective_port == 2222

    def test_extra_directives_skip_opaque_lines(self) -> None:
        entry = HostEntry(
            alias="a",
            extra_lines=[
                ConfigLine(None, "# note", "    # note"),
                ConfigLine.directive("ForwardAgent", "no"),
            ],
        )
        assert entry.extra_directives == [("ForwardAgent", "no")]

    def test_target(self) -> None:
        assert HostEntry(alias="a", host_name="10.0.0.5", user="alice").target == "alice@10.0.0.5"
        assert HostEntry(alias="a").target == "a"


class TestSSHTarget:
    def test_destination_and_str(self) -> None:
        assert str(SSHTarget("alice", "10.0.0.5")) == "alice@10.0.0.5"
        assert str(SSHTarget("alice", "10.0.0.5", 2222)) == "alice@10.0.0.5:2222"
        assert SSHTarget("", "prod").destination == "prod"


class TestSecurityFinding:
    def test_describe(self) -> None:
        finding = SecurityFinding("id_rsa", FindingKind.KEY_MODE, "644", "600")
        assert finding.describe() == "id_rsa: key-mode is 644 (expected 600)"


class TestBackupArchive:
    def test_size_of_missing_file_is_zero(self, tmp_path: Path) -> None:
        archive = BackupArchive(tmp_path / "missing.tar.gz", datetime.now(UTC))
        assert archive.size_bytes == 0


class TestSecureString:
    def test_hidden_in_repr_and_str(self) -> None:
        secret = SecureString("hunter22")

        assert secret.get() == "hunter22"
        assert "hunter22" not in repr(secret)
        assert str(secret) == "****"
        assert len(secret) == 8

    def test_clear(self) -> None:
        secret = SecureString("hunter22")
        secret.clear()
        assert secret.get() == ""


class TestResult:
    def test_ok(self) -> None:
        result = Result.ok(42)

        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == 42

    def test_err(self) -> None:
        result: Result[int] = Result.err(ValueError("bad"))

        assert result.is_err()
        assert isinstance(result.unwrap_err(), ValueError)
        with pytest.raises(ValueError, match="bad"):
            result.unwrap()

    def test_unwrap_err_on_ok_raises(self) -> None:
        with pytest.raises(RuntimeError):
            Result.ok(1).unwrap_err()

    def test_unwrap_or(self) -> None:
        assert Result.ok(1).unwrap_or(0) == 1
        assert Result.err(ValueError()).unwrap_or(0) == 0

    def test_map(self) -> None:
        assert Result.ok(2).map(lambda x: x * 3).unwrap() == 6
        assert Result.ok(2).map(lambda x: 1 / 0).is_err()
        assert Result.err(ValueError()).map(lambda x: x).is_err()

    def test_and_then(self) -> None:
        assert Result.ok(2).and_then(lambda x: Result.ok(x + 1)).unwrap() == 3
        assert Result.ok(2).and_then(lambda x: Result.err(ValueError())).is_err()
