"""Timestamped backups of the queue file."""

import logging
import shutil
import time
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_MAX_BACKUPS = 10
BACKUP_PREFIX = "queue_"


class BackupRotation:
    """Copies the queue file to ``queue_{unixMillis}.json`` and prunes old copies."""

    def __init__(
        self,
        source: Path,
        *,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        prefix: str = BACKUP_PREFIX,
    ):
        self.source = source
        self.directory = source.parent
        self.max_backups = max_backups
        self.prefix = prefix

    def backups(self) -> list[Path]:
        """Existing backups, oldest first by modification time."""
        found = [
            path
            for path in self.directory.glob(f"{self.prefix}*.json")
            if path.is_file() and path != self.source
        ]
        return sorted(found, key=lambda p: (p.stat().st_mtime, p.name))

    def next_backup_path(self) -> Path:
        stamp = int(time.time() * 1000)
        path = self.directory / f"{self.prefix}{stamp}.json"
        # two rotations within the same millisecond
        while path.exists():
            stamp += 1
            path = self.directory / f"{self.prefix}{stamp}.json"
        return path

    def rotate(self) -> Path | None:
        """Create a backup and delete the oldest ones beyond the cap.

        Errors are logged, never raised: a failed backup must not prevent
        the queue from loading.
        """
        try:
            backup = self.next_backup_path()
            shutil.copyfile(self.source, backup)
            logger.info(f"Backup created: {backup.name}")
        except OSError as e:
            logger.warning(f"Error creating queue backup: {e}")
            return None

        try:
            existing = self.backups()
            excess = len(existing) - self.max_backups
            for old in existing[: max(excess, 0)]:
                old.unlink()
                logger.debug("Deleted old backup %s", old.name)
        except OSError as e:
            logger.warning(f"Error pruning queue backups: {e}")

        return backup
