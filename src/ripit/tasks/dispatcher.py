"""Routes task envelopes to the lane that handles their type."""

import logging
from typing import Any

from ripit.error_handling import ValidationError
from ripit.tasks.payloads import validate_payload
from ripit.tasks.processor import TaskProcessor
from ripit.tasks.sequential import SequentialTaskProcessor
from ripit.tasks.types import TaskEnvelope

logger = logging.getLogger(__name__)


class TaskDispatcher:
    """Single entry point for task submission and abort.

    Payloads are validated here, before admission, so handlers only ever
    see typed payloads. Invalid submissions raise ``ValidationError`` to the
    caller and produce no events.
    """

    def __init__(self, concurrent: TaskProcessor, sequential: SequentialTaskProcessor):
        self.concurrent = concurrent
        self.sequential = sequential

    def submit(self, envelope: TaskEnvelope | dict[str, Any]) -> list[str]:
        """Admit a task. Returns the generated ids (several for a batch, none for control tasks)."""
        if isinstance(envelope, dict):
            if "type" not in envelope:
                msg = "Task envelope has no type"
                raise ValidationError(msg)
            envelope = TaskEnvelope.from_dict(envelope)

        if not (self.sequential.handles(envelope.type) or self.concurrent.handles(envelope.type)):
            msg = f'No handler registered for type "{envelope.type}"'
            raise ValidationError(msg)

        typed = TaskEnvelope(envelope.type, validate_payload(envelope.type, envelope.payload))

        if self.sequential.handles(typed.type):
            ids = self.sequential.enqueue(typed)
        else:
            ids = [self.concurrent.run(typed)]

        logger.debug("Submitted %s -> %s", typed.type, ids)
        return ids

    def abort(self, task_id: str) -> bool:
        """Abort a task on whichever lane owns it."""
        if self.concurrent.abort(task_id):
            return True
        return self.sequential.abort(task_id)
