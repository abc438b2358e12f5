"""Shared handler execution for both task lanes."""

import asyncio
import logging
from typing import Any

from ripit.error_handling import AbortedError, RipitError
from ripit.process.cancellation import CancellationToken
from ripit.tasks.types import EventSink, EventType, Handler, Task, TaskContext, TaskEvent

logger = logging.getLogger(__name__)

_TERMINAL = {EventType.RESULT.value, EventType.ERROR.value, EventType.CANCELLED.value}


def error_payload(error: BaseException) -> Any:
    """Structured payload attached to an ``error`` event, if the error has one."""
    payload = getattr(error, "event_payload", None)
    if payload is not None:
        return payload
    if isinstance(error, RipitError) and error.details:
        return {"details": error.details}
    return None


def error_message(error: BaseException) -> str:
    if isinstance(error, RipitError):
        return error.message
    return str(error) or error.__class__.__name__


class TaskLane:
    """Base class owning the outbound sink and the handler-to-event boundary.

    Exceptions raised by a handler never escape the lane: they become an
    ``error`` event, or ``cancelled`` when the task's own token was cancelled.
    """

    lane_name = "lane"

    def __init__(self, sink: EventSink):
        self._sink = sink

    def emit_raw(self, event: TaskEvent) -> None:
        try:
            self._sink(event)
        except Exception:
            logger.exception("Event sink failed for %s event of %s", event.type, event.task_id)

    async def execute(self, handler: Handler, task: Task, token: CancellationToken) -> None:
        """Run one handler and translate its outcome into events."""
        terminal_sent = False

        def sink(event: TaskEvent) -> None:
            nonlocal terminal_sent
            if event.type in _TERMINAL:
                terminal_sent = True
            self.emit_raw(event)

        context = TaskContext(task=task, token=token, sink=sink)
        logger.debug("[%s] starting %s (%s)", self.lane_name, task.type, task.id)

        try:
            await handler(context)
        except asyncio.CancelledError:
            token.cancel()
            context.emit(EventType.CANCELLED)
            raise
        except Exception as e:
            if token.cancelled or isinstance(e, AbortedError):
                logger.info("[%s] task %s cancelled", self.lane_name, task.id)
                context.emit(EventType.CANCELLED)
            else:
                if isinstance(e, RipitError):
                    logger.error("[%s] task %s failed: %s", self.lane_name, task.id, e.message)
                else:
                    logger.exception("[%s] task %s failed", self.lane_name, task.id)
                context.emit(EventType.ERROR, error_payload(e), error_message(e))
        else:
            if token.cancelled and not terminal_sent:
                context.emit(EventType.CANCELLED)
            logger.debug("[%s] finished %s (%s)", self.lane_name, task.type, task.id)
