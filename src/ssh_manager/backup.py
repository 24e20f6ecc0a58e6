from __future__ import annotations

import contextlib
import logging
import re
import tarfile
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from .errors import FilesystemError, MissingPrerequisiteError
from .types import SSH_DIR_MODE, BackupArchive, Result

logger = logging.getLogger("ssh-manager.backup")

ARCHIVE_PREFIX = "ssh_backup_"
ARCHIVE_SUFFIX = ".tar.gz"
STAMP_FORMAT = "%Y%m%d_%H%M%S"

_ARCHIVE_RE = re.compile(rf"^{ARCHIVE_PREFIX}(?P<stamp>\d{{8}}_\d{{6}}){re.escape(ARCHIVE_SUFFIX)}$")


class Archiver(Protocol):
    def create(self, source: Path, destination: Path, exclude: set[str]) -> None: ...

    def extract(self, archive: Path, destination: Path) -> None: ...


class TarArchiver:
    """gzip-compressed tar archives of a directory's top-level entries."""

    def create(self, source: Path, destination: Path, exclude: set[str]) -> None:
        with tarfile.open(destination, "w:gz") as tar:
            for child in sorted(source.iterdir()):
                if child.name in exclude:
                    continue
                tar.add(child, arcname=child.name)

    def extract(self, archive: Path, destination: Path) -> None:
        with tarfile.open(archive, "r:gz") as tar:
            tar.extractall(destination, filter="data")


def archive_name(captured_at: datetime) -> str:
    return f"{ARCHIVE_PREFIX}{captured_at.strftime(STAMP_FORMAT)}{ARCHIVE_SUFFIX}"


def parse_archive_name(path: Path) -> BackupArchive | None:
    match = _ARCHIVE_RE.match(path.name)
    if not match:
        return None
    captured_at = datetime.strptime(match.group("stamp"), STAMP_FORMAT).replace(tzinfo=UTC)
    return BackupArchive(path, captured_at)


class BackupManager:
    """Time-stamped snapshots of the credential directory.

    Archives live in ``backup_dir``, which is excluded from every
    snapshot when it sits inside the archived directory. Only the most
    recent ``retention`` archives are kept.
    """

    def __init__(
        self,
        backup_dir: Path,
        retention: int = 5,
        archiver: Archiver | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._backup_dir = backup_dir
        self._retention = retention
        self._archiver = archiver or TarArchiver()
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    @property
    def retention(self) -> int:
        return self._retention

    def list_archives(self) -> list[BackupArchive]:
        """Archives ordered oldest first."""
        if not self._backup_dir.is_dir():
            return []

        archives = []
        for path in self._backup_dir.iterdir():
            archive = parse_archive_name(path)
            if archive is not None and path.is_file():
                archives.append(archive)
        return sorted(archives, key=lambda archive: archive.captured_at)

    def backup(self, directory: Path, protect: Path | None = None) -> Result[BackupArchive]:
        """Archive ``directory`` and prune old archives.

        ``protect`` names an archive that pruning must not delete, used by
        restore so the archive being restored survives the safety backup.
        """
        if not directory.is_dir():
            return Result.err(
                MissingPrerequisiteError(f"Nothing to back up: {directory} does not exist")
            )

        try:
            self._backup_dir.mkdir(parents=True, exist_ok=True)
            with contextlib.suppress(OSError):
                self._backup_dir.chmod(SSH_DIR_MODE)

            archive = self._next_archive()
            exclude = {self._backup_dir.name} if self._backup_dir.parent == directory else set()
            self._archiver.create(directory, archive.path, exclude)
        except (OSError, tarfile.TarError) as e:
            logger.error("Backup of %s failed: %s", directory, e)
            return Result.err(FilesystemError(f"Backup failed: {e}", self._backup_dir, e))

        logger.info("Created backup %s", archive.path.name)
        self.prune(protect=protect)
        return Result.ok(archive)

    def prune(self, protect: Path | None = None) -> list[Path]:
        """Delete all but the newest ``retention`` archives.

        The newest archive and ``protect`` are never deleted.
        """
        archives = self.list_archives()
        excess = len(archives) - self._retention
        if excess <= 0:
            return []

        removed = []
        for archive in archives[:-1]:
            if len(removed) >= excess:
                break
            if protect is not None and archive.path == protect:
                continue
            try:
                archive.path.unlink()
            except OSError as e:
                logger.warning("Could not delete old backup %s: %s", archive.path, e)
                continue
            removed.append(archive.path)

        return removed

    def restore(self, archive: BackupArchive | Path, directory: Path) -> Result[BackupArchive]:
        """Back up the current state, then extract ``archive`` over ``directory``.

        Returns the safety backup taken before extraction.
        """
        archive_path = archive.path if isinstance(archive, BackupArchive) else archive
        if not archive_path.is_file():
            return Result.err(
                MissingPrerequisiteError(f"Backup archive not found: {archive_path}")
            )

        safety = self.backup(directory, protect=archive_path)
        if safety.is_err():
            return safety

        try:
            self._archiver.extract(archive_path, directory)
        except (OSError, tarfile.TarError) as e:
            logger.error("Restore from %s failed: %s", archive_path, e)
            return Result.err(FilesystemError(f"Restore failed: {e}", directory, e))

        logger.info("Restored %s from %s", directory, archive_path.name)
        return safety

    def _next_archive(self) -> BackupArchive:
        captured_at = self._clock().replace(microsecond=0)
        if captured_at.tzinfo is None:
            captured_at = captured_at.replace(tzinfo=UTC)
        existing = {archive.captured_at for archive in self.list_archives()}
        latest = max(existing, default=None)

        # Names must stay unique and sort after every existing archive
        if latest is not None and captured_at <= latest:
            captured_at = latest + timedelta(seconds=1)
        return BackupArchive(self._backup_dir / archive_name(captured_at), captured_at)
