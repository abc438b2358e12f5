"""Serialized, atomic JSON file writer."""

import asyncio
import json
import logging
import os
from collections import deque
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class SafeFileWriter:
    """Writes JSON documents to one file, one write at a time.

    Writes are queued and executed in order by a single drain task, so they
    never interleave. Each write goes to a sibling temp file which then
    replaces the target, so readers only ever see a complete document.
    Write failures are logged and do not stop later writes.
    """

    def __init__(self, path: Path):
        self.path = path
        self._pending: deque[Any] = deque()
        self._drain: asyncio.Task | None = None
        self.failed_writes = 0

    @property
    def temp_path(self) -> Path:
        return self.path.with_name(f".{self.path.name}.tmp")

    def read(self) -> str:
        """Read the file as UTF-8 text."""
        return self.path.read_text(encoding="utf-8")

    def schedule_write(self, data: Any) -> None:
        """Queue a full-document write of ``data``.

        The document is serialized immediately so later mutation of ``data``
        by the caller does not affect what is written.
        """
        document = data if isinstance(data, str) else json.dumps(data, indent=2, ensure_ascii=False)
        self._pending.append(document)
        if self._drain is None or self._drain.done():
            self._drain = asyncio.get_running_loop().create_task(
                self._process_queue(),
                name=f"ripit-writer-{self.path.name}",
            )

    def write_now(self, data: Any) -> None:
        """Write synchronously, bypassing the queue. Only safe while nothing is queued."""
        document = data if isinstance(data, str) else json.dumps(data, indent=2, ensure_ascii=False)
        self._write_atomic(document)

    async def flush(self) -> None:
        """Wait until every scheduled write has been executed."""
        while self._drain is not None and not self._drain.done():
            await asyncio.shield(self._drain)

    async def _process_queue(self) -> None:
        while self._pending:
            document = self._pending.popleft()
            try:
                await asyncio.to_thread(self._write_atomic, document)
            except OSError as e:
                self.failed_writes += 1
                logger.error(f"File write error for {self.path}: {e}")

    def _write_atomic(self, document: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp = self.temp_path
        with open(temp, "w", encoding="utf-8") as f:
            f.write(document)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp, self.path)
