"""Persisted media queue."""

import json
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from ripit.error_handling import PersistenceError
from ripit.media.models import MediaFileData, MediaFileStatus
from ripit.storage.rotation import DEFAULT_MAX_BACKUPS, BackupRotation
from ripit.storage.validation import InvalidRecord, validated_clone
from ripit.storage.writer import SafeFileWriter
from ripit.tasks.types import BROADCAST, BroadcastType, TaskEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[TaskEvent], None]


class QueueStore:
    """In-memory list of queue entries mirrored to a JSON array on disk.

    Every mutation schedules a full-array write through a ``SafeFileWriter``.
    Entries that fail validation on load are kept aside in
    ``invalid_entries`` instead of being dropped silently; a backup is only
    rotated in when the whole file loaded cleanly.
    """

    def __init__(self, path: Path, *, max_backups: int = DEFAULT_MAX_BACKUPS):
        self.path = path
        self.writer = SafeFileWriter(path)
        self.rotation = BackupRotation(path, max_backups=max_backups)
        self._files: list[MediaFileData] = []
        self._invalid: list[InvalidRecord] = []
        self._subscribers: list[Subscriber] = []

    # Lifecycle

    def init(self) -> None:
        """Create the file if missing, then load and validate its entries."""
        self._files = []
        self._invalid = []

        if not self.path.exists():
            logger.info(f"No queue file found, creating {self.path}")
            try:
                self.writer.write_now([])
            except OSError as e:
                error = PersistenceError(
                    f"Failed to create queue file {self.path}",
                    path=self.path,
                    details=str(e),
                    original_error=e,
                )
                self._record_failure(error)
                return

        if self.load() and self._files:
            self.rotation.rotate()

    def load(self) -> bool:
        """Load and validate the file without creating, rotating or rewriting it.

        Returns True when every entry was valid.
        """
        try:
            data = self.read()
        except PersistenceError as e:
            self._files = []
            self._record_failure(e)
            return False

        valid, invalid = validated_clone(data)
        self._files = valid
        self._invalid = invalid

        if invalid:
            logger.warning(
                "Queue file %s has %d invalid entries, backup rotation skipped",
                self.path,
                len(invalid),
            )
            for record in invalid:
                logger.warning("Invalid queue entry %d: %s", record.index, record.error)

        logger.info(f"Loaded {len(valid)} queue entries from {self.path}")
        return not invalid

    def read(self) -> Any:
        """Parse the queue file. Raises PersistenceError if it cannot be read or parsed."""
        try:
            return json.loads(self.writer.read())
        except (OSError, json.JSONDecodeError) as e:
            msg = f"Failed to load the queue from {self.path}"
            raise PersistenceError(msg, path=self.path, details=str(e), original_error=e) from e

    def _record_failure(self, error: PersistenceError) -> None:
        text = f"{error.message}: {error.details}"
        logger.error(text)
        self._invalid = [InvalidRecord(index=-1, error=text, raw_record=None)]

    async def flush(self) -> None:
        """Wait for all scheduled writes to reach the disk."""
        await self.writer.flush()

    # Queries

    @property
    def invalid_entries(self) -> list[InvalidRecord]:
        return list(self._invalid)

    def get_list(self) -> list[MediaFileData]:
        """Deep copies of every entry; mutating them does not affect the store."""
        return [file.model_copy(deep=True) for file in self._files]

    def get(self, file_id: str) -> MediaFileData | None:
        for file in self._files:
            if file.id == file_id:
                return file.model_copy(deep=True)
        return None

    def count_by_status(self) -> dict[MediaFileStatus, int]:
        counts: dict[MediaFileStatus, int] = {}
        for file in self._files:
            counts[file.status] = counts.get(file.status, 0) + 1
        return counts

    # Mutations

    def add(self, file: MediaFileData) -> bool:
        """Append a new entry. Returns False if the id is already present."""
        if any(item.id == file.id for item in self._files):
            logger.debug("Queue entry %s already exists", file.id)
            return False
        self._files.append(file.model_copy(deep=True))
        self._schedule_write()
        return True

    def update(self, file: MediaFileData) -> bool:
        """Replace the entry with the same id. Returns False for an unknown id."""
        for index, item in enumerate(self._files):
            if item.id == file.id:
                self._files[index] = file.model_copy(deep=True)
                self._schedule_write()
                return True
        logger.debug("Queue entry %s not found for update", file.id)
        return False

    def set_status(self, file_id: str, status: MediaFileStatus) -> bool:
        for item in self._files:
            if item.id == file_id:
                item.status = status
                self._schedule_write()
                return True
        return False

    def remove_files(self, ids: Iterable[str]) -> int:
        """Remove entries by id. Returns how many were removed."""
        wanted = set(ids)
        before = len(self._files)
        self._files = [item for item in self._files if item.id not in wanted]
        removed = before - len(self._files)
        self._schedule_write()
        if removed:
            logger.info(f"Removed {removed} queue entries")
        return removed

    # Broadcasts

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def request_list(self) -> None:
        """Send the current list to every subscriber as a MEDIAFILES_LIST broadcast."""
        for subscriber in list(self._subscribers):
            event = TaskEvent(
                task_id=BROADCAST,
                type=BroadcastType.MEDIAFILES_LIST.value,
                payload=[file.to_dict() for file in self._files],
            )
            try:
                subscriber(event)
            except Exception:
                logger.exception("Queue subscriber failed")

    def _schedule_write(self) -> None:
        self.writer.schedule_write([file.to_dict() for file in self._files])
