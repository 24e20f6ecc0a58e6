"""Tests for the credential directory audit."""

from __future__ import annotations

from pathlib import Path

import pytest

from ssh_manager.security import (
    audit,
    file_mode,
    fix_permissions,
    format_mode,
    is_too_permissive,
    private_key_files,
)
from ssh_manager.types import FindingKind, KeyAlgorithm


class TestModeHelpers:
    @pytest.mark.parametrize(
        ("mode", "expected", "too_open"),
        [
            (0o600, 0o600, False),
            (0o400, 0o600, False),
            (0o644, 0o600, True),
            (0o640, 0o600, True),
            (0o755, 0o700, True),
            (0o700, 0o700, False),
        ],
    )
    def test_is_too_permissive(self, mode: int, expected: int, too_open: bool) -> None:
        assert is_too_permissive(mode, expected) is too_open

    def test_format_mode(self) -> None:
        assert format_mode(0o600) == "600"
        assert format_mode(0o44) == "044"

    def test_private_key_files(self, ssh_dir: Path, make_key) -> None:
        make_key("id_ed25519_a")
        (ssh_dir / "known_hosts").write_text("")

        assert private_key_files(ssh_dir) == [ssh_dir / "id_ed25519_a"]

    def test_private_key_files_paired_by_stem(self, ssh_dir: Path, make_key) -> None:
        make_key("work")
        make_key("orphan", private=False)

        assert private_key_files(ssh_dir) == [ssh_dir / "work"]


class TestAudit:
    """Test audit findings."""

    def test_clean_directory_passes(self, ssh_dir: Path, keygen, make_key) -> None:
        make_key("id_ed25519_a")
        (ssh_dir / "config").write_text("")
        (ssh_dir / "config").chmod(0o600)

        report = audit(ssh_dir, probe=keygen)

        assert report.passed
        assert report.issue_count == 0

    def test_world_readable_private_key(self, ssh_dir: Path, keygen, make_key) -> None:
        private_key = make_key("id_ed25519_a")
        private_key.chmod(0o644)

        report = audit(ssh_dir, probe=keygen)

        assert report.issue_count == 1
        finding = report.findings[0]
        assert finding.kind == FindingKind.KEY_MODE
        assert finding.subject == str(private_key)
        assert finding.observed == "644"
        assert finding.expected == "600"

    def test_key_without_id_prefix_is_audited(self, ssh_dir: Path, keygen, make_key) -> None:
        private_key = make_key("work")
        private_key.chmod(0o640)

        report = audit(ssh_dir, None, keygen)

        assert [(f.kind, f.subject) for f in report.findings] == [
            (FindingKind.KEY_MODE, str(private_key))
        ]

    def test_directory_mode(self, ssh_dir: Path, keygen) -> None:
        ssh_dir.chmod(0o755)

        report = audit(ssh_dir, probe=keygen)

        assert [finding.kind for finding in report.findings] == [FindingKind.DIR_MODE]

    def test_config_mode_checked_only_when_present(self, ssh_dir: Path, keygen) -> None:
        assert audit(ssh_dir, probe=keygen).passed

        config = ssh_dir / "config"
        config.write_text("Host a\n")
        config.chmod(0o664)

        assert audit(ssh_dir, probe=keygen).by_kind(FindingKind.CONFIG_MODE)

    def test_dsa_key_is_deprecated(self, ssh_dir: Path, keygen, make_key) -> None:
        make_key("id_dsa_old", KeyAlgorithm.DSA)

        report = audit(ssh_dir, probe=keygen)

        findings = report.by_kind(FindingKind.DEPRECATED_ALGORITHM)
        assert len(findings) == 1
        assert findings[0].observed == "DSA"

    def test_short_rsa_key_is_weak(self, ssh_dir: Path, keygen, make_key) -> None:
        make_key("id_rsa_short", KeyAlgorithm.RSA, 1024)
        make_key("id_rsa_ok", KeyAlgorithm.RSA, 2048)

        report = audit(ssh_dir, probe=keygen)

        weak = report.by_kind(FindingKind.WEAK_KEY)
        assert len(weak) == 1
        assert weak[0].subject.endswith("id_rsa_short.pub")

    def test_audit_does_not_change_modes(self, ssh_dir: Path, keygen, make_key) -> None:
        private_key = make_key("id_ed25519_a")
        private_key.chmod(0o644)

        audit(ssh_dir, probe=keygen)

        assert file_mode(private_key) == 0o644

    def test_missing_directory(self, tmp_path: Path, keygen) -> None:
        assert audit(tmp_path / "missing", probe=keygen).passed


class TestFixPermissions:
    def test_fixes_every_target(self, ssh_dir: Path, make_key) -> None:
        private_key = make_key("id_ed25519_a")
        public_key = ssh_dir / "id_ed25519_a.pub"
        config = ssh_dir / "config"
        config.write_text("")
        ssh_dir.chmod(0o755)
        private_key.chmod(0o644)
        public_key.chmod(0o600)
        config.chmod(0o644)

        fixed = fix_permissions(ssh_dir).unwrap()

        assert set(fixed) == {ssh_dir, private_key, public_key, config}
        assert file_mode(ssh_dir) == 0o700
        assert file_mode(private_key) == 0o600
        assert file_mode(public_key) == 0o644
        assert file_mode(config) == 0o600

    def test_idempotent(self, ssh_dir: Path, make_key) -> None:
        make_key("id_ed25519_a")
        (ssh_dir / "known_hosts").write_text("")
        (ssh_dir / "known_hosts").chmod(0o600)

        assert fix_permissions(ssh_dir).unwrap() == [ssh_dir / "known_hosts"]
        assert fix_permissions(ssh_dir).unwrap() == []

    def test_fixed_directory_passes_audit(self, ssh_dir: Path, keygen, make_key) -> None:
        make_key("id_ed25519_a").chmod(0o666)
        ssh_dir.chmod(0o777)

        fix_permissions(ssh_dir).unwrap()

        assert audit(ssh_dir, probe=keygen).passed
