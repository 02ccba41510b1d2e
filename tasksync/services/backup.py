"""Backups and atomic writes for tasks files.

Backups sit next to the target as ``<stem>.backup-<unixMillis>.json`` and are
never deleted automatically. Writes go through a temp file in the same
directory, fsync and rename, so readers see either the old or the new file.
"""

import asyncio
import os
import re
import tempfile
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from ..core.errors import NotFoundError, ValidationError, WriteError
from ..core.logging import get_logger

logger = get_logger(__name__)

BACKUP_PATTERN = re.compile(r"^(?P<stem>.+)\.backup-(?P<millis>\d+)\.json$")


@dataclass
class BackupInfo:
    """Backup file next to a target."""

    path: str
    created_at: datetime
    size_bytes: int


def backup_name(target: Path, millis: int) -> str:
    return f"{target.stem}.backup-{millis}.json"


def is_backup_of(backup_path: Path, target: Path) -> bool:
    """Backup naming and location match the target."""
    match = BACKUP_PATTERN.match(backup_path.name)
    return (
        match is not None
        and match.group("stem") == target.stem
        and backup_path.parent.resolve() == target.parent.resolve()
    )


class BackupManager:
    """Snapshot, restore and atomic write of one file at a time."""

    def __init__(self, clock=time.time):
        """
        Args:
            clock: Returns seconds since epoch (replaced in tests)
        """
        self.clock = clock

    # =========================================================================
    # ASYNC API
    # =========================================================================

    async def snapshot(self, path: str | Path) -> Path:
        """Copy the target to a new backup, verified byte-for-byte.

        Raises:
            NotFoundError: target does not exist
            WriteError: backup could not be written or verified
        """
        return await asyncio.to_thread(self._snapshot, Path(path))

    async def restore(self, backup_path: str | Path, path: str | Path) -> None:
        """Atomically replace the target with the backup content.

        Raises:
            NotFoundError: backup does not exist
            WriteError: target could not be written
        """
        await asyncio.to_thread(self._restore, Path(backup_path), Path(path))

    async def write_atomic(self, path: str | Path, content: bytes) -> None:
        """Write content via temp file + fsync + rename.

        Raises:
            WriteError: disk or permission failure (target left untouched)
        """
        await asyncio.to_thread(self._write_atomic, Path(path), content)

    async def list_backups(self, path: str | Path) -> list[BackupInfo]:
        """Backups of a target, newest first."""
        return await asyncio.to_thread(self._list_backups, Path(path))

    def validate_backup_path(self, backup_path: str | Path, target: str | Path) -> Path:
        """Resolve a caller-supplied backup path and check it belongs to the target.

        Relative paths are taken relative to the target's directory.

        Raises:
            ValidationError: wrong name or directory
        """
        target = Path(target)
        backup = Path(backup_path)
        if not backup.is_absolute():
            backup = target.parent / backup
        if not is_backup_of(backup, target):
            raise ValidationError(
                f"Invalid backup path: {backup_path}",
                details=[{"field": "backupPath", "message": "not a backup of the tasks file"}],
            )
        return backup

    # =========================================================================
    # BLOCKING IMPLEMENTATION
    # =========================================================================

    def _next_backup_path(self, target: Path) -> Path:
        millis = int(self.clock() * 1000)
        candidate = target.parent / backup_name(target, millis)
        while candidate.exists():
            millis += 1
            candidate = target.parent / backup_name(target, millis)
        return candidate

    def _snapshot(self, target: Path) -> Path:
        if not target.is_file():
            raise NotFoundError(f"Cannot back up missing file: {target}")

        try:
            original = target.read_bytes()
        except OSError as e:
            raise WriteError(f"Cannot read {target} for backup: {e.strerror or e}") from e

        backup = self._next_backup_path(target)
        self._write_atomic(backup, original)

        if backup.read_bytes() != original:
            raise WriteError(f"Backup verification failed: {backup}")

        logger.info(
            "Backup created",
            extra={"target": str(target), "backup": str(backup), "bytes": len(original)},
        )
        return backup

    def _restore(self, backup: Path, target: Path) -> None:
        if not backup.is_file():
            raise NotFoundError(f"Backup not found: {backup}")
        try:
            content = backup.read_bytes()
        except OSError as e:
            raise WriteError(f"Cannot read backup {backup}: {e.strerror or e}") from e

        self._write_atomic(target, content)
        logger.info("Backup restored", extra={"target": str(target), "backup": str(backup)})

    def _write_atomic(self, target: Path, content: bytes) -> None:
        tmp_name: str | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".tmp", dir=target.parent
            )
            with os.fdopen(fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
            tmp_name = None
        except OSError as e:
            raise WriteError(f"Cannot write {target}: {e.strerror or e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def _list_backups(self, target: Path) -> list[BackupInfo]:
        if not target.parent.is_dir():
            return []
        backups = []
        for candidate in target.parent.glob(f"{target.stem}.backup-*.json"):
            match = BACKUP_PATTERN.match(candidate.name)
            if match is None or match.group("stem") != target.stem:
                continue
            backups.append(
                BackupInfo(
                    path=str(candidate),
                    created_at=datetime.fromtimestamp(
                        int(match.group("millis")) / 1000, tz=UTC
                    ).replace(tzinfo=None),
                    size_bytes=candidate.stat().st_size,
                )
            )
        backups.sort(key=lambda b: b.created_at, reverse=True)
        return backups
