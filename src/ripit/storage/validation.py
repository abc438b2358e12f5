"""Per-record validation of persisted queue entries."""

from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from ripit.media.models import MediaFileData


@dataclass
class InvalidRecord:
    """A persisted entry that failed validation, kept for diagnostics."""

    index: int
    error: str
    raw_record: Any

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "error": self.error, "record": self.raw_record}


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in issue['loc'])}: {issue['msg']}"
        for issue in error.errors()
    )


def validated_clone(data: Any) -> tuple[list[MediaFileData], list[InvalidRecord]]:
    """Split raw records into validated models and invalid records.

    Valid entries are fresh model instances, never the input objects. A root
    value that is not a list yields a single invalid record with index -1.
    """
    if not isinstance(data, list):
        return [], [InvalidRecord(index=-1, error="Root value is not an array", raw_record=data)]

    valid: list[MediaFileData] = []
    invalid: list[InvalidRecord] = []
    for index, entry in enumerate(data):
        try:
            valid.append(MediaFileData.model_validate(entry))
        except ValidationError as e:
            invalid.append(InvalidRecord(index=index, error=_describe(e), raw_record=entry))
    return valid, invalid
