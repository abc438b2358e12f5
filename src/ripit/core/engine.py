"""Wiring of services, lanes and handlers into one engine."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ripit.config import RipitConfig
from ripit.process.runner import ProcessRunner
from ripit.services.settings import AppSettings, JsonSettingsStore, SettingsStore
from ripit.storage.queue import QueueStore
from ripit.tasks.dispatcher import TaskDispatcher
from ripit.tasks.handlers import TaskHandlers, register_handlers
from ripit.tasks.processor import TaskProcessor
from ripit.tasks.sequential import SequentialTaskProcessor
from ripit.tasks.types import EventSink, TaskEnvelope, TaskEvent

logger = logging.getLogger(__name__)


class RipitEngine:
    """Owns every component and multiplexes their events to subscribers.

    Callers submit task envelopes and receive all task-scoped and broadcast
    events through ``subscribe``. Must be started inside a running event loop.
    """

    def __init__(self, config: RipitConfig, *, settings: SettingsStore | None = None):
        self.config = config
        self._subscribers: list[EventSink] = []

        # Core components
        self.runner = ProcessRunner(
            force_kill_delay=config.force_kill_delay,
            max_buffer_bytes=config.max_buffer_bytes,
        )
        self.queue = QueueStore(config.queue_file, max_backups=config.max_backup_files)
        self.settings = settings or JsonSettingsStore(
            config.settings_file,
            AppSettings(baseDownloadDir=str(config.base_download_dir)),
        )

        # Lanes
        self.concurrent = TaskProcessor(self._emit, max_concurrent=config.max_concurrent_tasks)
        self.sequential = SequentialTaskProcessor(
            self._emit,
            monitor_min_interval=config.monitor_min_interval,
            monitor_default_interval=config.monitor_default_interval,
        )

        self.handlers = TaskHandlers(config, self.runner, self.queue, self.settings)
        register_handlers(self.handlers, self.concurrent, self.sequential)
        self.dispatcher = TaskDispatcher(self.concurrent, self.sequential)

        self.queue.subscribe(self._emit)
        self.is_running = False

    def start(self) -> None:
        """Create directories and load the persisted queue."""
        if self.is_running:
            logger.warning("Engine is already running")
            return

        logger.info("Starting ripit engine")
        self.config.ensure_directories()
        self.queue.init()
        if self.queue.invalid_entries:
            logger.warning(
                "%d queue entries failed validation and were not loaded",
                len(self.queue.invalid_entries),
            )
        self.is_running = True

    async def shutdown(self) -> None:
        """Cancel running work and wait for pending queue writes."""
        if not self.is_running:
            return

        logger.info("Stopping ripit engine")
        await asyncio.gather(self.sequential.shutdown(), self.concurrent.shutdown())
        await self.queue.flush()
        self.is_running = False
        logger.info("Engine stopped")

    # Transport-facing API

    def subscribe(self, listener: EventSink) -> Callable[[], None]:
        self._subscribers.append(listener)

        def unsubscribe() -> None:
            if listener in self._subscribers:
                self._subscribers.remove(listener)

        return unsubscribe

    def submit(self, envelope: TaskEnvelope | dict[str, Any]) -> list[str]:
        return self.dispatcher.submit(envelope)

    def abort(self, task_id: str) -> bool:
        return self.dispatcher.abort(task_id)

    async def wait_idle(self) -> None:
        """Wait for both lanes to finish their work, then for queue writes."""
        await self.sequential.wait_idle()
        await self.concurrent.wait_idle()
        await self.queue.flush()

    def _emit(self, event: TaskEvent) -> None:
        for listener in list(self._subscribers):
            try:
                listener(event)
            except Exception:
                logger.exception("Event subscriber failed")
