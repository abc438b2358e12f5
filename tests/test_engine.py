"""Integration tests for the engine wiring."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from ripit.config import RipitConfig
from ripit.error_handling import ValidationError
from ripit.core.engine import RipitEngine
from ripit.media.models import MediaFileStatus
from ripit.process.runner import ExitStatus, ProcessResult
from ripit.tasks.types import TaskType

from conftest import make_file


@pytest.fixture
def tool_config(tmp_path):
    """Configuration whose external tools exist as plain files."""
    tools = tmp_path / "bin"
    tools.mkdir()
    for name in ("yt-dlp", "ffmpeg"):
        (tools / name).write_text("")
    return RipitConfig(
        data_dir=tmp_path / "data",
        base_download_dir=tmp_path / "downloads",
        extractor_binary=str(tools / "yt-dlp"),
        transcoder_binary=str(tools / "ffmpeg"),
        prober_binary=str(tools / "missing-ffprobe"),
        force_kill_delay=0.5,
    )


async def fake_streaming(executable, args, *, on_stdout=None, **kwargs):
    """Writes the file each tool would produce."""
    if "-o" in args:
        Path(args[args.index("-o") + 1]).write_bytes(b"track")
    else:
        Path(args[-1]).write_bytes(b"merged")
        on_stdout("frame=1\nprogress=end\n")
    return ProcessResult(ExitStatus.COMPLETED, 0)


class TestRipitEngine:
    """Test the engine end to end with in-process handlers."""

    @pytest.fixture
    def engine(self, config, recorder):
        engine = RipitEngine(config)
        engine.subscribe(recorder)
        engine.start()
        return engine

    def test_start_creates_queue(self, engine, config):
        assert config.queue_file.exists()
        assert json.loads(config.queue_file.read_text()) == []
        assert engine.is_running is True

    @pytest.mark.asyncio
    async def test_add_and_list(self, engine, config, recorder):
        file = make_file()

        ids = engine.submit({"type": TaskType.ADD_MEDIAFILE.value, "payload": {"file": file.to_dict()}})
        await engine.wait_idle()

        assert recorder.types_for(ids[0]) == ["result"]
        assert recorder.broadcasts("MEDIAFILES_LIST")[-1].payload[0]["id"] == file.id
        assert json.loads(config.queue_file.read_text())[0]["id"] == file.id
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_settings_round_trip(self, engine, config, recorder):
        set_id = engine.submit(
            {
                "type": TaskType.APP_SETTINGS_SET.value,
                "payload": {"key": "baseDownloadDir", "value": str(config.data_dir / "media")},
            },
        )[0]
        await engine.wait_idle()
        get_id = engine.submit({"type": TaskType.APP_SETTINGS_GET.value, "payload": {"key": "baseDownloadDir"}})[0]
        await engine.wait_idle()

        assert recorder.types_for(set_id) == ["result"]
        assert recorder.for_task(get_id)[0].payload == {"baseDownloadDir": str(config.data_dir / "media")}
        assert json.loads(config.settings_file.read_text())["baseDownloadDir"] == str(config.data_dir / "media")
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_invalid_submission(self, engine, recorder):
        recorder.events.clear()

        with pytest.raises(ValidationError):
            engine.submit({"type": TaskType.DELETE_MEDIAFILES.value, "payload": {"ids": []}})

        assert recorder.events == []
        assert engine.abort("missing") is False
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_queue_state_push(self, engine, recorder):
        ids = engine.submit(
            {"type": TaskType.TASKS_STATE_PUSH_ON.value, "payload": {"pushInterval": 0}},
        )

        assert ids == []
        assert recorder.broadcasts("SEQ-PROCESSOR-TASKS-LIST")[-1].payload == {"tasks": []}
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_unsubscribe(self, config):
        engine = RipitEngine(config)
        listener = Mock()
        unsubscribe = engine.subscribe(listener)
        engine.start()

        unsubscribe()
        engine.submit({"type": TaskType.GET_MEDIAFILES_REQ.value})
        await engine.wait_idle()

        listener.assert_not_called()
        await engine.shutdown()


class TestEngineDownload:
    @pytest.mark.asyncio
    async def test_download_batch(self, tool_config, recorder):
        engine = RipitEngine(tool_config)
        engine.subscribe(recorder)
        engine.start()
        files = [make_file(name="First"), make_file(name="Second")]
        for file in files:
            engine.queue.add(file)

        with patch.object(engine.runner, "run_streaming", new=AsyncMock(side_effect=fake_streaming)), \
             patch("ripit.media.pipeline.shutil.disk_usage", return_value=Mock(free=10**15)):
            ids = engine.submit(
                {
                    "type": TaskType.DOWNLOAD_MEDIAFILES_REQ.value,
                    "payload": [file.to_dict() for file in files],
                },
            )
            await engine.wait_idle()

        for task_id in ids:
            assert recorder.types_for(task_id)[-1] == "result"
        assert (tool_config.base_download_dir / "First.mkv").read_bytes() == b"merged"
        assert (tool_config.base_download_dir / "Second.mkv").exists()
        assert {f.status for f in engine.queue.get_list()} == {MediaFileStatus.LOADED}

        stored = json.loads(tool_config.queue_file.read_text())
        assert [entry["status"] for entry in stored] == ["Loaded", "Loaded"]
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_missing_transcoder_fails_task(self, config, recorder):
        config = config.model_copy(update={"transcoder_binary": "/nonexistent/ffmpeg"})
        engine = RipitEngine(config)
        engine.subscribe(recorder)
        engine.start()
        file = make_file()
        engine.queue.add(file)

        ids = engine.submit({"type": TaskType.DOWNLOAD_MEDIAFILES_REQ.value, "payload": [file.to_dict()]})
        await engine.wait_idle()

        assert recorder.types_for(ids[0]) == ["error"]
        await engine.shutdown()
