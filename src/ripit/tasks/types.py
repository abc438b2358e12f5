"""Task and event envelopes shared by both lanes."""

import copy
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from ripit.process.cancellation import CancellationToken

BROADCAST = "BROADCAST"


class EventType(str, Enum):
    """Task-scoped event types."""

    PROGRESS = "progress"
    RESULT = "result"
    ERROR = "error"
    CANCELLED = "cancelled"


class BroadcastType(str, Enum):
    """Event types carried with ``taskId = BROADCAST``."""

    MEDIAFILES_LIST = "MEDIAFILES_LIST"
    TASKS_LIST = "SEQ-PROCESSOR-TASKS-LIST"


class TaskType(str, Enum):
    """Known task types."""

    ANALYZE_MEDIA_INFO = "TID_ANALYZE_MEDIA_INFO"
    ADD_MEDIAFILE = "TID_ADD_MEDIAFILE"
    UPDATE_MEDIAFILE = "TID_UPDATE_MEDIAFILE"
    DELETE_MEDIAFILES = "TID_DELETE_MEDIAFILES"
    GET_MEDIAFILES_REQ = "TID_GET_MEDIAFILES_REQ"
    APP_SETTINGS_GET = "TID_APP_SETTINGS_GET"
    APP_SETTINGS_SET = "TID_APP_SETTINGS_SET"
    DOWNLOAD_MEDIAFILES_REQ = "BTID_DOWNLOAD_MEDIAFILES_REQ"
    TASKS_STATE_PUSH_ON = "BTID_BATCH_TASKS_STATE_PUSH_ON"
    TASKS_STATE_PUSH_OFF = "BTID_BATCH_TASKS_STATE_PUSH_OFF"


def new_task_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class TaskEnvelope:
    """Inbound request: a type tag and its payload."""

    type: str
    payload: Any = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskEnvelope":
        return cls(type=str(data["type"]), payload=data.get("payload"))


@dataclass(frozen=True)
class Task:
    """An admitted task with its generated id."""

    id: str
    type: str
    payload: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Detached plain-data copy, safe to hand to other owners."""
        return {"taskId": self.id, "type": self.type, "payload": to_plain(self.payload)}


def to_plain(value: Any) -> Any:
    """Deep copy of a payload as plain JSON-compatible data."""
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, mode="json")
    if isinstance(value, list | tuple):
        return [to_plain(item) for item in value]
    if isinstance(value, dict):
        return {key: to_plain(item) for key, item in value.items()}
    return copy.deepcopy(value)


@dataclass
class TaskEvent:
    """Outbound event envelope."""

    task_id: str
    type: str
    payload: Any = None
    message: str | None = None

    @property
    def is_broadcast(self) -> bool:
        return self.task_id == BROADCAST

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"taskId": self.task_id, "type": self.type}
        if self.message is not None:
            data["message"] = self.message
        data["payload"] = self.payload
        return data


EventSink = Callable[[TaskEvent], None]


@dataclass
class TaskContext:
    """Everything a handler gets: its task, cancellation token and a send-only sink."""

    task: Task
    token: CancellationToken
    sink: EventSink = field(repr=False)

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def payload(self) -> Any:
        return self.task.payload

    def emit(
        self,
        event_type: EventType | str,
        payload: Any = None,
        message: str | None = None,
    ) -> None:
        """Send an event tagged with this task's id."""
        value = event_type.value if isinstance(event_type, EventType) else event_type
        self.sink(TaskEvent(self.task.id, value, payload, message))

    def progress(self, message: str, payload: Any = None) -> None:
        self.emit(EventType.PROGRESS, payload, message)

    def result(self, payload: Any = None, message: str | None = None) -> None:
        self.emit(EventType.RESULT, payload, message)


Handler = Callable[[TaskContext], Awaitable[None]]
