"""Payload models per task type, validated before a task is admitted."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ripit.error_handling import ValidationError
from ripit.media.models import MediaFileData
from ripit.tasks.types import TaskType


class Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class AnalyzeMediaInfoPayload(Payload):
    url: str = Field(min_length=1)


class AddMediaFilePayload(Payload):
    file: MediaFileData


class UpdateMediaFilePayload(Payload):
    updated_file: MediaFileData = Field(alias="updatedFile")


class DeleteMediaFilesPayload(Payload):
    delete_file_ids: list[str] = Field(alias="deleteFileIds")


class AppSettingsGetPayload(Payload):
    key: str | None = None


class AppSettingsSetPayload(Payload):
    key: str
    value: Any


class PushStateOnPayload(Payload):
    push_interval: int = Field(default=0, ge=0, alias="pushInterval")


DownloadBatchPayload = list[MediaFileData]

# Types whose payload must be null (or absent)
_NO_PAYLOAD = frozenset(
    {TaskType.GET_MEDIAFILES_REQ.value, TaskType.TASKS_STATE_PUSH_OFF.value},
)

PAYLOAD_SCHEMAS: dict[str, Any] = {
    TaskType.ANALYZE_MEDIA_INFO.value: AnalyzeMediaInfoPayload,
    TaskType.ADD_MEDIAFILE.value: AddMediaFilePayload,
    TaskType.UPDATE_MEDIAFILE.value: UpdateMediaFilePayload,
    TaskType.DELETE_MEDIAFILES.value: DeleteMediaFilesPayload,
    TaskType.APP_SETTINGS_GET.value: AppSettingsGetPayload,
    TaskType.APP_SETTINGS_SET.value: AppSettingsSetPayload,
    TaskType.DOWNLOAD_MEDIAFILES_REQ.value: DownloadBatchPayload,
    TaskType.TASKS_STATE_PUSH_ON.value: PushStateOnPayload,
}

_adapters: dict[str, TypeAdapter] = {}


def _adapter(task_type: str) -> TypeAdapter:
    adapter = _adapters.get(task_type)
    if adapter is None:
        adapter = TypeAdapter(PAYLOAD_SCHEMAS[task_type])
        _adapters[task_type] = adapter
    return adapter


def validate_payload(task_type: str, payload: Any) -> Any:
    """Return the typed payload for ``task_type`` or raise ValidationError."""
    if task_type in _NO_PAYLOAD:
        if payload not in (None, {}):
            msg = f'Task "{task_type}" takes no payload'
            raise ValidationError(msg)
        return None

    if task_type not in PAYLOAD_SCHEMAS:
        msg = f'Unknown task type "{task_type}"'
        raise ValidationError(msg)

    # already typed, e.g. built in-process by the command line
    schema = PAYLOAD_SCHEMAS[task_type]
    if isinstance(schema, type) and isinstance(payload, schema):
        return payload

    try:
        return _adapter(task_type).validate_python(payload)
    except PydanticValidationError as e:
        msg = f'Invalid payload for "{task_type}"'
        raise ValidationError(msg, details=str(e), original_error=e) from e
