"""Backups taken immediately before a destructive write.

A backup is a byte copy of the original, so the original stays visible until
the staged replacement is renamed over it. It is deleted when the owning
transaction commits, or consumed when the owning step's rollback restores it.
A failed restore leaves the backup on disk and is logged, never discarded.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import structlog

from sitekeeper.fs.filesystem import FileSystem
from sitekeeper.fs.paths import get_backup_path
from sitekeeper.utils.debug import debug

logger = structlog.get_logger(__name__)


@dataclass
class Backup:
    """A restorable copy of ``original_path`` stored at ``backup_path``."""

    original_path: Path
    backup_path: Path
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    async def create(cls, fs: FileSystem, original_path: Path) -> "Backup":
        """Copy *original_path* to a timestamped sibling and return the backup.

        Raises:
            OSError: If the copy fails
        """
        created_at = datetime.now(UTC)
        backup_path = get_backup_path(original_path, created_at)
        attempt = 0
        while await fs.exists(backup_path):
            attempt += 1
            backup_path = get_backup_path(original_path, created_at, attempt)
        await fs.copy_file(original_path, backup_path)
        debug("Backed up", original=original_path, backup=backup_path)
        return cls(original_path, backup_path, created_at)

    async def restore(self, fs: FileSystem) -> None:
        """Move the backup back over the original path.

        Raises:
            OSError: If the backup is missing or the rename fails. The backup
                path is left untouched in that case.
        """
        try:
            await fs.rename(self.backup_path, self.original_path)
        except OSError as exc:
            logger.error(
                "backup.restore.failed",
                original_path=str(self.original_path),
                backup_path=str(self.backup_path),
                error=str(exc),
            )
            raise
        logger.info(
            "backup.restored",
            original_path=str(self.original_path),
            backup_path=str(self.backup_path),
        )

    async def discard(self, fs: FileSystem) -> bool:
        """Delete the backup after a successful commit.

        Returns:
            True if the backup was removed (or was already gone)
        """
        try:
            if await fs.exists(self.backup_path):
                await fs.remove_tree(self.backup_path, recursive=False)
        except OSError as exc:
            logger.warning(
                "backup.discard.failed",
                backup_path=str(self.backup_path),
                error=str(exc),
            )
            return False
        debug(f"Discarded backup {self.backup_path}")
        return True
