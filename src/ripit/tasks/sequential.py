"""Strict FIFO task lane with batch expansion and queue-state broadcasts."""

import asyncio
import logging
from collections import deque
from typing import Any

from ripit.error_handling import RegistrationError, ValidationError
from ripit.process.cancellation import CancellationToken
from ripit.tasks.lane import TaskLane
from ripit.tasks.types import (
    BROADCAST,
    BroadcastType,
    EventSink,
    Handler,
    Task,
    TaskEnvelope,
    TaskEvent,
    TaskType,
    new_task_id,
)

logger = logging.getLogger(__name__)

STATUS_IN_PROGRESS = "in progress"
STATUS_PENDING = "pending"

CONTROL_TYPES = frozenset(
    {TaskType.TASKS_STATE_PUSH_ON.value, TaskType.TASKS_STATE_PUSH_OFF.value},
)


class SequentialTaskProcessor(TaskLane):
    """Executes queued tasks one after another, in submission order.

    Batch task types take a list payload; every element becomes its own
    queued task sharing the batch type, so each one can be aborted on its
    own. Aborting the running task cancels its token; aborting a pending
    task just removes it from the queue.

    Every change to the queue is followed by a ``SEQ-PROCESSOR-TASKS-LIST``
    broadcast. Periodic broadcasts can be switched on with the
    ``BTID_BATCH_TASKS_STATE_PUSH_ON`` control task.
    """

    lane_name = "sequential"

    def __init__(
        self,
        sink: EventSink,
        *,
        monitor_min_interval: int = 100,
        monitor_default_interval: int = 2000,
    ):
        super().__init__(sink)
        self.monitor_min_interval = monitor_min_interval
        self.monitor_default_interval = monitor_default_interval

        self._handlers: dict[str, Handler] = {}
        self._batch_handlers: dict[str, Handler] = {}
        self._queue: deque[Task] = deque()
        self._current: Task | None = None
        self._current_token: CancellationToken | None = None
        self._worker: asyncio.Task | None = None
        self._monitor: asyncio.Task | None = None
        self._closed = False

    # Registration

    def register_task(self, task_type: str, handler: Handler) -> None:
        self._check_unregistered(task_type)
        self._handlers[task_type] = handler

    def register_batch_task(self, task_type: str, handler: Handler) -> None:
        self._check_unregistered(task_type)
        self._batch_handlers[task_type] = handler

    def _check_unregistered(self, task_type: str) -> None:
        if (
            task_type in self._handlers
            or task_type in self._batch_handlers
            or task_type in CONTROL_TYPES
        ):
            raise RegistrationError(task_type)

    def handles(self, task_type: str) -> bool:
        return (
            task_type in CONTROL_TYPES
            or task_type in self._handlers
            or task_type in self._batch_handlers
        )

    def is_batch(self, task_type: str) -> bool:
        return task_type in self._batch_handlers

    # State

    @property
    def is_processing(self) -> bool:
        return self._current is not None

    @property
    def is_monitoring(self) -> bool:
        return self._monitor is not None and not self._monitor.done()

    def snapshot(self) -> list[dict[str, Any]]:
        """Current task first (in progress), then pending ones, as detached copies."""
        tasks = []
        if self._current is not None:
            tasks.append({**self._current.to_dict(), "status": STATUS_IN_PROGRESS})
        for task in self._queue:
            tasks.append({**task.to_dict(), "status": STATUS_PENDING})
        return tasks

    def broadcast_state(self) -> None:
        self.emit_raw(
            TaskEvent(
                task_id=BROADCAST,
                type=BroadcastType.TASKS_LIST.value,
                payload={"tasks": self.snapshot()},
            ),
        )

    # Queue operations

    def enqueue(self, envelope: TaskEnvelope) -> list[str]:
        """Queue a task (or every element of a batch). Returns the generated ids."""
        if self._closed:
            msg = "Sequential processor is shut down"
            raise ValidationError(msg)

        if envelope.type == TaskType.TASKS_STATE_PUSH_ON.value:
            self.start_monitoring(envelope.payload)
            return []
        if envelope.type == TaskType.TASKS_STATE_PUSH_OFF.value:
            self.stop_monitoring()
            return []

        if envelope.type in self._batch_handlers:
            tasks = self._expand_batch(envelope)
        elif envelope.type in self._handlers:
            tasks = [Task(id=new_task_id(), type=envelope.type, payload=envelope.payload)]
        else:
            msg = f'No handler registered for type "{envelope.type}"'
            raise ValidationError(msg)

        self._queue.extend(tasks)
        logger.info("Queued %d %s task(s)", len(tasks), envelope.type)

        self._process_next()
        self.broadcast_state()
        return [task.id for task in tasks]

    @staticmethod
    def _expand_batch(envelope: TaskEnvelope) -> list[Task]:
        if not isinstance(envelope.payload, list | tuple):
            msg = "Expected payload to be an array of entities"
            raise ValidationError(msg)
        return [
            Task(id=new_task_id(), type=envelope.type, payload=entity)
            for entity in envelope.payload
        ]

    def abort(self, task_id: str) -> bool:
        """Cancel the running task or drop a pending one."""
        found = False
        if self._current is not None and self._current.id == task_id:
            if self._current_token is not None:
                self._current_token.cancel()
            found = True
        else:
            remaining = deque(task for task in self._queue if task.id != task_id)
            found = len(remaining) != len(self._queue)
            self._queue = remaining
            if found:
                logger.info("Removed pending task %s", task_id)

        self.broadcast_state()
        return found

    def _process_next(self) -> None:
        if self._current is not None or self._closed:
            return
        if not self._queue:
            self.broadcast_state()
            return

        task = self._queue.popleft()
        token = CancellationToken()
        self._current = task
        self._current_token = token
        self.broadcast_state()

        handler = self._batch_handlers.get(task.type) or self._handlers[task.type]
        self._worker = asyncio.get_running_loop().create_task(
            self._run(handler, task, token),
            name=f"ripit-seq-{task.id}",
        )

    async def _run(self, handler: Handler, task: Task, token: CancellationToken) -> None:
        try:
            await self.execute(handler, task, token)
        finally:
            self._current = None
            self._current_token = None
            self._worker = None
            self._process_next()

    async def wait_idle(self) -> None:
        """Wait until the queue is drained."""
        while self._worker is not None:
            await asyncio.gather(self._worker, return_exceptions=True)

    async def shutdown(self) -> None:
        """Drop pending tasks, cancel the running one and stop monitoring."""
        self._closed = True
        self.stop_monitoring()
        self._queue.clear()
        if self._current_token is not None:
            self._current_token.cancel()
        await self.wait_idle()

    # Monitoring

    def start_monitoring(self, payload: Any) -> None:
        """Broadcast once (interval 0) or periodically (interval in ms)."""
        interval = _push_interval(payload)
        if interval == 0:
            self.broadcast_state()
            return

        self.stop_monitoring()
        if interval <= self.monitor_min_interval:
            interval = self.monitor_default_interval

        logger.debug("Queue state monitoring every %d ms", interval)
        self._monitor = asyncio.get_running_loop().create_task(
            self._monitor_loop(interval / 1000),
            name="ripit-seq-monitor",
        )

    def stop_monitoring(self) -> None:
        if self._monitor is None:
            return
        self._monitor.cancel()
        self._monitor = None

    async def _monitor_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.broadcast_state()


def _push_interval(payload: Any) -> int:
    if hasattr(payload, "push_interval"):
        value = payload.push_interval
    elif isinstance(payload, dict):
        value = payload.get("pushInterval", 0)
    else:
        value = payload
    if not isinstance(value, int | float) or isinstance(value, bool) or value < 0:
        msg = f"Invalid push interval: {value!r}"
        raise ValidationError(msg)
    return int(value)
