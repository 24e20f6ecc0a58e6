"""SSH client config store.

Parses the block-oriented ``~/.ssh/config`` format into ``HostEntry``
objects and writes it back without disturbing unrelated entries:
- ``Host <alias>`` opens a block; every following line up to the next
  ``Host`` or ``Match`` line belongs to it
- ``Match`` blocks are kept verbatim in place and never listed as hosts
- Known directives populate typed fields, everything else is kept verbatim
- Every rewrite copies the current file into the backup directory and then
  atomically replaces the config, so a crash never leaves a partial file
"""

from __future__ import annotations

import contextlib
import logging
import os
import re
import shutil
import tempfile
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path

from .errors import ConstraintViolation, DuplicateAliasError, FilesystemError, HostNotFoundError
from .types import CONFIG_FILE_MODE, DEFAULT_PORT, SSH_DIR_MODE, ConfigLine, HostEntry, Result

logger = logging.getLogger("ssh-manager.config")

INDENT = "    "

# Canonical output order of the typed directives
KNOWN_DIRECTIVES = ("HostName", "User", "Port", "IdentityFile", "IdentitiesOnly")
_KNOWN_LOOKUP = {name.lower(): name for name in KNOWN_DIRECTIVES}

_BLOCK_RE = re.compile(
    r"^\s*(?P<opener>host|match)(?:\s*=\s*|\s+)(?P<alias>\S.*?)\s*$", re.IGNORECASE
)
_DIRECTIVE_RE = re.compile(r"^\s*(?P<key>[A-Za-z][A-Za-z0-9]*)(?:\s*=\s*|\s+)(?P<value>\S.*?)\s*$")


@dataclass
class ConfigDocument:
    """A parsed config file: global lines before the first block, then blocks."""

    preamble: list[str] = field(default_factory=list)
    entries: list[HostEntry] = field(default_factory=list)

    @property
    def hosts(self) -> list[HostEntry]:
        """``Host`` blocks only; ``Match`` blocks are kept but never listed."""
        return [entry for entry in self.entries if not entry.is_match]

    @property
    def aliases(self) -> list[str]:
        return [entry.alias for entry in self.hosts]

    def find(self, alias: str) -> HostEntry | None:
        for entry in self.hosts:
            if entry.alias == alias:
                return entry
        return None


def _apply_directive(entry: HostEntry, key: str, value: str, raw: str) -> None:
    canonical = _KNOWN_LOOKUP.get(key.lower())

    if canonical == "HostName" and not entry.host_name:
        entry.host_name = value
    elif canonical == "User" and not entry.user:
        entry.user = value
    elif canonical == "Port" and entry.port is None and value.isdigit():
        entry.port = int(value)
    elif canonical == "IdentityFile" and entry.identity_file is None:
        entry.identity_file = value
    elif (
        canonical == "IdentitiesOnly"
        and entry.identities_only is None
        and value.lower() in ("yes", "no")
    ):
        entry.identities_only = value.lower() == "yes"
    else:
        # Repeated or unparseable known directives are kept as written
        entry.extra_lines.append(ConfigLine(key, value, raw))


def parse_document(text: str) -> ConfigDocument:
    """Parse config text into a preamble and an ordered list of host blocks."""
    document = ConfigDocument()
    current: HostEntry | None = None

    for raw_line in text.splitlines():
        line = raw_line.rstrip()

        block = _BLOCK_RE.match(line)
        if block:
            opener = block.group("opener")
            current = HostEntry(
                alias=block.group("alias"),
                port=None,
                opener="Host" if opener.lower() == "host" else opener,
            )
            document.entries.append(current)
            continue

        if current is None:
            document.preamble.append(line)
            continue

        if not line.strip():
            continue

        directive = _DIRECTIVE_RE.match(line)
        if directive is None:
            current.extra_lines.append(ConfigLine(None, line.strip(), line))
            continue

        if current.is_match:
            # Match criteria decide where these apply, so none become typed fields
            current.extra_lines.append(
                ConfigLine(directive.group("key"), directive.group("value"), line)
            )
            continue

        _apply_directive(current, directive.group("key"), directive.group("value"), line)

    while document.preamble and not document.preamble[0].strip():
        document.preamble.pop(0)
    while document.preamble and not document.preamble[-1].strip():
        document.preamble.pop()

    return document


def parse(text: str) -> list[HostEntry]:
    """Parse config text into host entries, in file order."""
    return parse_document(text).entries


def render_entry(entry: HostEntry) -> str:
    lines = [f"{entry.opener} {entry.alias}"]

    if entry.host_name:
        lines.append(f"{INDENT}HostName {entry.host_name}")
    if entry.user:
        lines.append(f"{INDENT}User {entry.user}")
    if entry.port is not None:
        lines.append(f"{INDENT}Port {entry.port}")
    if entry.identity_file:
        lines.append(f"{INDENT}IdentityFile {entry.identity_file}")
    if entry.identities_only is not None:
        lines.append(f"{INDENT}IdentitiesOnly {'yes' if entry.identities_only else 'no'}")

    lines.extend(extra.raw for extra in entry.extra_lines)
    return "\n".join(lines)


def serialize(entries: Iterable[HostEntry], preamble: Iterable[str] = ()) -> str:
    """Serialize entries in canonical form: one blank line between blocks."""
    blocks: list[str] = []

    preamble_lines = list(preamble)
    if preamble_lines:
        blocks.append("\n".join(preamble_lines))

    blocks.extend(render_entry(entry) for entry in entries)

    if not blocks:
        return ""
    return "\n\n".join(blocks) + "\n"


def serialize_document(document: ConfigDocument) -> str:
    return serialize(document.entries, document.preamble)


def validate_alias(alias: str) -> Result[str]:
    alias = alias.strip()
    if not alias:
        return Result.err(ConstraintViolation("Host alias cannot be empty"))
    if any(ch.isspace() for ch in alias):
        return Result.err(ConstraintViolation(f"Host alias cannot contain spaces: {alias!r}", alias))
    if any(ch in alias for ch in "*?!"):
        return Result.err(
            ConstraintViolation(f"Host alias cannot contain wildcard patterns: {alias!r}", alias)
        )
    return Result.ok(alias)


def new_host_entry(
    alias: str,
    host_name: str,
    user: str,
    port: int = DEFAULT_PORT,
    identity_file: Path | str | None = None,
) -> HostEntry:
    """Build an entry the way the add-host screen and wizard write them."""
    return HostEntry(
        alias=alias,
        host_name=host_name,
        user=user,
        port=port,
        identity_file=str(identity_file) if identity_file else None,
        identities_only=True,
    )


def add(entries: list[HostEntry], new_entry: HostEntry) -> Result[list[HostEntry]]:
    """Return a new list with ``new_entry`` appended; fails on a duplicate alias."""
    alias_result = validate_alias(new_entry.alias)
    if alias_result.is_err():
        return Result.err(alias_result.unwrap_err())

    if any(entry.alias == new_entry.alias for entry in entries if not entry.is_match):
        return Result.err(DuplicateAliasError(new_entry.alias))

    return Result.ok([*entries, new_entry])


def remove(entries: list[HostEntry], alias: str) -> Result[list[HostEntry]]:
    """Return a new list without the Host block(s) for ``alias``."""
    remaining = [entry for entry in entries if entry.is_match or entry.alias != alias]
    if len(remaining) == len(entries):
        return Result.err(HostNotFoundError(alias))
    return Result.ok(remaining)


def _refers_to(value: str, key_path: Path) -> bool:
    candidate = Path(os.path.expanduser(value.strip('"')))
    if candidate == key_path:
        return True
    return candidate.name == key_path.name and candidate.parent == key_path.parent.expanduser()


def strip_identity_references(
    entries: list[HostEntry], key_path: Path
) -> tuple[list[HostEntry], int]:
    """Drop ``IdentityFile`` lines pointing at ``key_path``.

    Returns the rewritten entries and the number of references removed.
    """
    removed = 0
    rewritten: list[HostEntry] = []

    for entry in entries:
        identity_file = entry.identity_file
        if identity_file and _refers_to(identity_file, key_path):
            identity_file = None
            removed += 1

        extra_lines = []
        for line in entry.extra_lines:
            if line.keyword and line.keyword.lower() == "identityfile" and _refers_to(
                line.value, key_path
            ):
                removed += 1
                continue
            extra_lines.append(line)

        rewritten.append(replace(entry, identity_file=identity_file, extra_lines=extra_lines))

    return rewritten, removed


def atomic_write_text(path: Path, text: str, mode: int = CONFIG_FILE_MODE) -> None:
    """Write ``text`` to ``path`` through a temp file and ``os.replace``."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as tmp_file:
            tmp_file.write(text)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise


class ConfigStore:
    """Read-modify-write access to one SSH config file."""

    def __init__(
        self,
        config_path: Path,
        backup_dir: Path,
        retention: int = 10,
    ) -> None:
        self._path = config_path
        self._backup_dir = backup_dir
        self._retention = retention

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> Result[ConfigDocument]:
        """Load the current config; a missing file is an empty document."""
        if not self._path.exists():
            return Result.ok(ConfigDocument())

        try:
            return Result.ok(parse_document(self._path.read_text()))
        except (OSError, UnicodeDecodeError) as e:
            return Result.err(FilesystemError(f"Could not read {self._path}: {e}", self._path, e))

    def entries(self) -> Result[list[HostEntry]]:
        return self.load().map(lambda document: document.hosts)

    def get(self, alias: str) -> HostEntry | None:
        return self.load().map(lambda document: document.find(alias)).unwrap_or(None)

    def add_host(self, entry: HostEntry) -> Result[HostEntry]:
        """Append a host block; fails without touching the file on a duplicate alias."""

        def apply(document: ConfigDocument) -> Result[ConfigDocument]:
            return add(document.entries, entry).map(
                lambda entries: ConfigDocument(document.preamble, entries)
            )

        return self._mutate(apply).map(lambda _: entry)

    def remove_host(self, alias: str) -> Result[HostEntry]:
        """Delete the block for ``alias``; fails with HostNotFoundError if absent."""
        removed: list[HostEntry] = []

        def apply(document: ConfigDocument) -> Result[ConfigDocument]:
            found = document.find(alias)
            if found is not None:
                removed.append(found)
            return remove(document.entries, alias).map(
                lambda entries: ConfigDocument(document.preamble, entries)
            )

        return self._mutate(apply).map(lambda _: removed[0])

    def remove_identity_references(self, key_path: Path) -> Result[int]:
        """Remove ``IdentityFile`` lines for a deleted key. Returns how many were removed."""
        load_result = self.load()
        if load_result.is_err():
            return Result.err(load_result.unwrap_err())

        document = load_result.unwrap()
        entries, removed = strip_identity_references(document.entries, key_path)
        if removed == 0:
            return Result.ok(0)

        write_result = self._write(serialize(entries, document.preamble))
        return write_result.map(lambda _: removed)

    def list_backups(self) -> list[Path]:
        """Pre-write config copies, oldest first."""
        if not self._backup_dir.is_dir():
            return []
        return sorted(self._backup_dir.glob("config_*.bak"))

    def _mutate(
        self, apply: Callable[[ConfigDocument], Result[ConfigDocument]]
    ) -> Result[ConfigDocument]:
        load_result = self.load()
        if load_result.is_err():
            return load_result

        mutated = apply(load_result.unwrap())
        if mutated.is_err():
            return mutated

        document = mutated.unwrap()
        return self._write(serialize_document(document)).map(lambda _: document)

    def _write(self, text: str) -> Result[Path]:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            if self._path.exists():
                self._backup_current()
            atomic_write_text(self._path, text)
        except OSError as e:
            logger.error("Failed to rewrite %s: %s", self._path, e)
            return Result.err(FilesystemError(f"Could not write {self._path}: {e}", self._path, e))

        logger.info("Rewrote %s", self._path)
        return Result.ok(self._path)

    def _backup_current(self) -> Path:
        self._backup_dir.mkdir(parents=True, exist_ok=True)
        with contextlib.suppress(OSError):
            self._backup_dir.chmod(SSH_DIR_MODE)

        stamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S_%f")
        backup_path = self._backup_dir / f"config_{stamp}.bak"
        shutil.copy2(self._path, backup_path)
        backup_path.chmod(CONFIG_FILE_MODE)

        for stale in self.list_backups()[: -max(self._retention, 1)]:
            with contextlib.suppress(OSError):
                stale.unlink()

        return backup_path
