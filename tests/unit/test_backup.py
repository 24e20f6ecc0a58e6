"""Tests for backup and restore of the credential directory."""

from __future__ import annotations

import tarfile
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ssh_manager.backup import BackupManager, archive_name, parse_archive_name
from ssh_manager.errors import FilesystemError, MissingPrerequisiteError
from ssh_manager.types import BackupArchive

FIXED_TIME = datetime(2024, 3, 1, 12, 30, 45, tzinfo=UTC)


@pytest.fixture
def manager(ssh_dir: Path) -> BackupManager:
    return BackupManager(ssh_dir / "backups", retention=5, clock=lambda: FIXED_TIME)


class TestArchiveNames:
    def test_archive_name(self) -> None:
        assert archive_name(FIXED_TIME) == "ssh_backup_20240301_123045.tar.gz"

    def test_parse_archive_name(self) -> None:
        archive = parse_archive_name(Path("/b/ssh_backup_20240301_123045.tar.gz"))

        assert archive is not None
        assert archive.captured_at == FIXED_TIME

    @pytest.mark.parametrize(
        "name", ["notes.txt", "ssh_backup_2024.tar.gz", "ssh_backup_20240301_123045.zip"]
    )
    def test_foreign_files_ignored(self, name: str) -> None:
        assert parse_archive_name(Path(name)) is None


class TestBackup:
    def test_backup_creates_archive(self, manager: BackupManager, ssh_dir: Path, make_key) -> None:
        make_key("id_ed25519_a")
        (ssh_dir / "config").write_text("Host a\n")

        archive = manager.backup(ssh_dir).unwrap()

        assert archive.path.name == "ssh_backup_20240301_123045.tar.gz"
        with tarfile.open(archive.path, "r:gz") as tar:
            names = set(tar.getnames())
        assert {"id_ed25519_a", "id_ed25519_a.pub", "config"} <= names

    def test_backup_dir_not_archived(self, manager: BackupManager, ssh_dir: Path) -> None:
        (ssh_dir / "config").write_text("")
        manager.backup(ssh_dir).unwrap()

        archive = manager.backup(ssh_dir).unwrap()

        with tarfile.open(archive.path, "r:gz") as tar:
            assert not any(name.startswith("backups") for name in tar.getnames())

    def test_retention_keeps_five_newest(self, manager: BackupManager, ssh_dir: Path) -> None:
        created = [manager.backup(ssh_dir).unwrap() for _ in range(7)]

        remaining = manager.list_archives()

        assert len(remaining) == 5
        assert [a.path for a in remaining] == [a.path for a in created[2:]]

    def test_same_second_names_stay_unique(self, manager: BackupManager, ssh_dir: Path) -> None:
        first = manager.backup(ssh_dir).unwrap()
        second = manager.backup(ssh_dir).unwrap()

        assert first.path != second.path
        assert second.captured_at > first.captured_at

    def test_missing_directory(self, manager: BackupManager, tmp_path: Path) -> None:
        result = manager.backup(tmp_path / "missing")
        assert isinstance(result.unwrap_err(), MissingPrerequisiteError)

    def test_archiver_failure(self, ssh_dir: Path) -> None:
        archiver = MagicMock()
        archiver.create.side_effect = OSError("disk full")
        manager = BackupManager(ssh_dir / "backups", archiver=archiver)

        result = manager.backup(ssh_dir)

        assert isinstance(result.unwrap_err(), FilesystemError)

    def test_list_archives_empty(self, manager: BackupManager) -> None:
        assert manager.list_archives() == []


class TestRestore:
    def test_round_trip(self, manager: BackupManager, ssh_dir: Path, make_key) -> None:
        private_key = make_key("id_ed25519_a")
        original = private_key.read_text()
        archive = manager.backup(ssh_dir).unwrap()

        private_key.unlink()
        (ssh_dir / "config").write_text("Host changed\n")

        safety = manager.restore(archive, ssh_dir).unwrap()

        assert private_key.read_text() == original
        assert safety.path != archive.path
        with tarfile.open(safety.path, "r:gz") as tar:
            assert "config" in tar.getnames()

    def test_restore_keeps_chosen_archive_at_retention_limit(self, ssh_dir: Path) -> None:
        manager = BackupManager(ssh_dir / "backups", retention=1, clock=lambda: FIXED_TIME)
        archive = manager.backup(ssh_dir).unwrap()

        safety = manager.restore(archive, ssh_dir).unwrap()

        assert archive.path.exists()
        assert safety.path.exists()

    def test_restore_missing_archive(self, manager: BackupManager, ssh_dir: Path) -> None:
        missing = BackupArchive(ssh_dir / "backups" / "ssh_backup_20200101_000000.tar.gz", FIXED_TIME)

        result = manager.restore(missing, ssh_dir)

        assert isinstance(result.unwrap_err(), MissingPrerequisiteError)
