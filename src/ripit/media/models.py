"""Media file data models.

These mirror the JSON stored in the queue file and exchanged in task
payloads, so field names keep their camelCase wire form through aliases.
Unknown keys are rejected; ``eData`` extension blocks without a ``__type``
tag are replaced by ``{"__type": "none"}``.
"""

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DATA_FORMAT_VERSION = "1"

Number = int | float

_NO_EXTENSION: dict[str, Any] = {"__type": "none"}


def _normalize_extension(value: Any) -> dict[str, Any]:
    if isinstance(value, dict) and value.get("__type"):
        return value
    return dict(_NO_EXTENSION)


class WireModel(BaseModel):
    """Base for models persisted or exchanged as camelCase JSON."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-compatible copy keeping only fields that were provided."""
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


class MediaFileStatus(str, Enum):
    ADDED = "Added"
    DOWNLOADING = "Downloading"
    LOADED = "Loaded"
    ERROR = "Error"
    ARCHIVED = "Archived"


class Chapter(BaseModel):
    start_time: Number
    end_time: Number | None = None
    title: str | None = None


class Track(WireModel):
    """A single audio or video format offered by the source."""

    format_id: str = Field(alias="formatId")
    format: str | None = None
    ext: str
    vcodec: str | None = None
    acodec: str | None = None
    url: str | None = None
    has_audio: bool | None = Field(default=None, alias="hasAudio")
    has_video: bool | None = Field(default=None, alias="hasVideo")
    width: Number | None = None
    height: Number | None = None
    fps: Number | None = None
    tbr: Number | None = None
    abr: Number | None = None
    vbr: Number | None = None
    asr: Number | None = None
    br: Number | None = None
    filesize: Number | None = None
    e_data: dict[str, Any] = Field(default_factory=lambda: dict(_NO_EXTENSION), alias="eData")

    @field_validator("e_data", mode="before")
    @classmethod
    def normalize_e_data(cls, v: Any) -> dict[str, Any]:
        return _normalize_extension(v)

    @property
    def codecs(self) -> str:
        parts = [c for c in (self.vcodec, self.acodec) if c and c != "none"]
        return "+".join(parts) or "none"


class SourceFile(WireModel):
    """Metadata of the original media as reported by the extractor."""

    id: str
    title: str
    extractor: str
    webpage_url: str = Field(alias="webpageUrl")
    tracks: list[Track]
    playlist_id: str | None = Field(default=None, alias="playlistId")
    uploader: str | None = None
    upload_date: str | None = Field(default=None, alias="uploadDate")
    duration: Number | None = None
    description: str | None = None
    thumbnail: str | None = None
    tags: list[str] | None = None
    e_data: dict[str, Any] = Field(default_factory=lambda: dict(_NO_EXTENSION), alias="eData")

    @field_validator("e_data", mode="before")
    @classmethod
    def normalize_e_data(cls, v: Any) -> dict[str, Any]:
        return _normalize_extension(v)

    @property
    def chapters(self) -> list[Chapter]:
        """Well-formed chapters from the extension block; malformed ones are dropped."""
        raw = self.e_data.get("chapters")
        if not isinstance(raw, list):
            return []
        chapters = []
        for item in raw:
            try:
                chapters.append(Chapter.model_validate(item))
            except ValidationError:
                continue
        return chapters


class MediaFileData(WireModel):
    """A queue entry: the source plus the tracks selected for download."""

    version: str = DATA_FORMAT_VERSION
    id: str
    status: MediaFileStatus
    file_name: str = Field(alias="fileName")
    track_ids: list[Track] = Field(alias="trackIds")
    size: Number | None = None
    created: Number | None = None
    source: SourceFile

    @classmethod
    def create(
        cls,
        source: SourceFile,
        tracks: list[Track],
        file_name: str | None = None,
    ) -> "MediaFileData":
        """New queue entry with a generated id and ``Added`` status."""
        return cls(
            version=DATA_FORMAT_VERSION,
            id=str(uuid.uuid4()),
            status=MediaFileStatus.ADDED,
            fileName=file_name or source.title,
            trackIds=tracks,
            source=source,
        )

    def mark_loaded(self, size: int) -> None:
        self.status = MediaFileStatus.LOADED
        self.size = size
        self.created = int(time.time())


class UrlInfo(WireModel):
    """Lightweight description of what a URL points at."""

    type: str
    count: int = 0
    title: str | None = None
    uploader: str | None = None
    channel_id: str | None = Field(default=None, alias="channelId")
    error: str | None = None
