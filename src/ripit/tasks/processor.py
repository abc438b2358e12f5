"""Concurrent task lane."""

import asyncio
import logging

from ripit.error_handling import RegistrationError, ValidationError
from ripit.process.cancellation import CancellationToken
from ripit.tasks.lane import TaskLane
from ripit.tasks.types import (
    EventSink,
    EventType,
    Handler,
    Task,
    TaskEnvelope,
    TaskEvent,
    new_task_id,
)

logger = logging.getLogger(__name__)


class TaskProcessor(TaskLane):
    """Runs every submitted task immediately, without waiting for others.

    Each task owns a cancellation token. ``abort`` only affects tasks that are
    currently running; there is no pending queue in this lane. With
    ``max_concurrent`` > 0 handlers beyond the limit wait for a free slot.
    """

    lane_name = "concurrent"

    def __init__(self, sink: EventSink, *, max_concurrent: int = 0):
        super().__init__(sink)
        self._handlers: dict[str, Handler] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent > 0 else None

    def register(self, task_type: str, handler: Handler) -> None:
        if task_type in self._handlers:
            raise RegistrationError(task_type)
        self._handlers[task_type] = handler

    def handles(self, task_type: str) -> bool:
        return task_type in self._handlers

    @property
    def active_task_ids(self) -> list[str]:
        return list(self._tokens)

    def run(self, envelope: TaskEnvelope) -> str:
        """Admit a task and start it in the background. Returns its id."""
        handler = self._handlers.get(envelope.type)
        if handler is None:
            msg = f'No handler registered for type "{envelope.type}"'
            raise ValidationError(msg)

        task = Task(id=new_task_id(), type=envelope.type, payload=envelope.payload)
        token = CancellationToken()
        self._tokens[task.id] = token

        running = asyncio.get_running_loop().create_task(
            self._run_task(handler, task, token),
            name=f"ripit-task-{task.id}",
        )
        self._tasks[task.id] = running
        return task.id

    async def _run_task(self, handler: Handler, task: Task, token: CancellationToken) -> None:
        try:
            if self._semaphore is None:
                await self.execute(handler, task, token)
            else:
                async with self._semaphore:
                    if token.cancelled:
                        self.emit_raw(TaskEvent(task.id, EventType.CANCELLED.value))
                        return
                    await self.execute(handler, task, token)
        finally:
            self._tokens.pop(task.id, None)
            self._tasks.pop(task.id, None)

    def abort(self, task_id: str) -> bool:
        """Cancel a running task. Unknown or finished ids are ignored."""
        token = self._tokens.get(task_id)
        if token is None:
            logger.debug("Abort ignored, task %s is not running", task_id)
            return False
        token.cancel()
        return True

    async def wait_idle(self) -> None:
        """Wait until every admitted task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all running tasks and wait for them."""
        for token in list(self._tokens.values()):
            token.cancel()
        await self.wait_idle()
