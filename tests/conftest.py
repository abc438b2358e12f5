"""Shared test configuration and fixtures."""

import logging
from typing import Any

import pytest

from ripit.cli import cleanup_logging
from ripit.config import RipitConfig
from ripit.media.models import MediaFileData, SourceFile, Track
from ripit.tasks.types import TaskEvent


@pytest.fixture(scope="function", autouse=True)
def cleanup_logging_handlers():
    """Automatically cleanup logging handlers after each test to prevent ResourceWarnings."""
    yield
    cleanup_logging()


@pytest.fixture(scope="function", autouse=True)
def reset_logging():
    """Reset logging configuration after each test."""
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.WARNING)


class EventRecorder:
    """Event sink collecting everything it receives."""

    def __init__(self) -> None:
        self.events: list[TaskEvent] = []

    def __call__(self, event: TaskEvent) -> None:
        self.events.append(event)

    def for_task(self, task_id: str) -> list[TaskEvent]:
        return [e for e in self.events if e.task_id == task_id]

    def types_for(self, task_id: str) -> list[str]:
        return [e.type for e in self.for_task(task_id)]

    def broadcasts(self, event_type: str) -> list[TaskEvent]:
        return [e for e in self.events if e.is_broadcast and e.type == event_type]


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def config(tmp_path):
    """Configuration rooted in a temporary directory."""
    return RipitConfig(
        data_dir=tmp_path / "data",
        base_download_dir=tmp_path / "downloads",
        force_kill_delay=0.5,
    )


def make_track(format_id: str = "137", ext: str = "mp4", **extra: Any) -> Track:
    return Track.model_validate({"formatId": format_id, "ext": ext, **extra})


def make_source(
    source_id: str = "abc123",
    tracks: list[Track] | None = None,
    e_data: dict[str, Any] | None = None,
) -> SourceFile:
    data: dict[str, Any] = {
        "id": source_id,
        "title": "Test Video",
        "extractor": "youtube",
        "webpageUrl": f"https://www.youtube.com/watch?v={source_id}",
        "tracks": tracks if tracks is not None else [make_track("137"), make_track("140", "m4a")],
    }
    if e_data is not None:
        data["eData"] = e_data
    return SourceFile.model_validate(data)


def make_file(
    source: SourceFile | None = None,
    tracks: list[Track] | None = None,
    name: str | None = None,
) -> MediaFileData:
    source = source or make_source()
    return MediaFileData.create(source, tracks if tracks is not None else source.tracks, name)


@pytest.fixture
def media_file():
    return make_file()
