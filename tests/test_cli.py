"""Essential CLI interface tests."""

import json
import re
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner
from rich.console import Console

from ripit.cli import cli, get_status_color
from ripit.error_handling import ProcessError
from ripit.media.models import MediaFileStatus

from conftest import make_file, make_source


@pytest.fixture
def cli_runner():
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def wide_console():
    """Render tables wide enough that ids and paths are not wrapped."""
    with patch("ripit.cli.console", Console(width=200)):
        yield


@pytest.fixture
def patched_config(config):
    with patch("ripit.cli.load_config", return_value=config):
        yield config


def write_queue(config, files):
    config.data_dir.mkdir(parents=True, exist_ok=True)
    config.queue_file.write_text(json.dumps([f.to_dict() for f in files]))


class TestCLIBasics:
    """Test essential CLI functionality."""

    def test_cli_entry_point(self, cli_runner):
        result = cli_runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "ripit" in result.output.lower()
        for command in ("add", "download", "queue", "analyze", "status"):
            assert command in result.output

    def test_config_show(self, cli_runner, patched_config):
        result = cli_runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0
        assert "Download Directory" in result.output
        assert "yt-dlp" in result.output
        assert "Unlimited" in result.output

    def test_config_init(self, cli_runner, patched_config, tmp_path):
        target = tmp_path / "conf" / "config.toml"

        result = cli_runner.invoke(cli, ["config", "init", "--path", str(target)])

        assert result.exit_code == 0
        assert target.exists()

    def test_config_validate_missing_tools(self, cli_runner, config, tmp_path):
        config = config.model_copy(update={"extractor_binary": str(tmp_path / "nope")})
        with patch("ripit.cli.load_config", return_value=config):
            result = cli_runner.invoke(cli, ["config", "validate"])

        assert result.exit_code == 1
        assert "Extractor not found" in result.output


class TestQueueCommands:
    """Test queue inspection and removal."""

    def test_empty_queue(self, cli_runner, patched_config):
        result = cli_runner.invoke(cli, ["queue", "list"])

        assert result.exit_code == 0
        assert "Queue is empty" in result.output

    def test_list_entries(self, cli_runner, patched_config):
        file = make_file(name="My Video")
        write_queue(patched_config, [file])

        result = cli_runner.invoke(cli, ["queue", "list"])

        assert result.exit_code == 0
        assert file.id in result.output
        assert "My Video" in result.output
        assert "137, 140" in result.output
        # listing never rotates backups
        assert list(patched_config.data_dir.glob("queue_*.json")) == []

    def test_list_reports_invalid_entries(self, cli_runner, patched_config):
        patched_config.data_dir.mkdir(parents=True, exist_ok=True)
        patched_config.queue_file.write_text(json.dumps([make_file().to_dict(), {"id": "x"}]))

        result = cli_runner.invoke(cli, ["queue", "list"])

        assert result.exit_code == 0
        assert "Invalid entry 1" in result.output

    def test_list_unreadable_queue(self, cli_runner, patched_config):
        patched_config.data_dir.mkdir(parents=True, exist_ok=True)
        patched_config.queue_file.write_text("{ truncated")

        result = cli_runner.invoke(cli, ["queue", "list"])

        assert result.exit_code == 0
        assert "Queue is empty" in result.output
        assert "Failed to load the queue" in result.output
        assert patched_config.queue_file.read_text() == "{ truncated"

    def test_remove(self, cli_runner, patched_config):
        keep, drop = make_file(), make_file()
        write_queue(patched_config, [keep, drop])

        result = cli_runner.invoke(cli, ["queue", "remove", drop.id])

        assert result.exit_code == 0
        assert "Success: 1 media file deleted" in result.output
        stored = json.loads(patched_config.queue_file.read_text())
        assert [entry["id"] for entry in stored] == [keep.id]

    def test_status(self, cli_runner, patched_config):
        write_queue(patched_config, [make_file(), make_file()])

        with patch("ripit.cli.check_dependencies", return_value=[]):
            result = cli_runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "All external tools available" in result.output
        assert re.search(r"Added\W+2\b", result.output)


class TestMediaCommands:
    """Test analyze, add and download with a stubbed analysis."""

    def test_add(self, cli_runner, patched_config):
        with patch("ripit.cli.analyze_url", new=AsyncMock(return_value=make_source())):
            result = cli_runner.invoke(
                cli,
                ["add", "https://www.youtube.com/watch?v=abc123", "-f", "140", "-n", "Audio only"],
            )

        assert result.exit_code == 0, result.output
        assert "Added to queue: Audio only" in result.output
        stored = json.loads(patched_config.queue_file.read_text())
        assert len(stored) == 1
        assert [t["formatId"] for t in stored[0]["trackIds"]] == ["140"]
        assert stored[0]["status"] == "Added"

    def test_add_unknown_format(self, cli_runner, patched_config):
        with patch("ripit.cli.analyze_url", new=AsyncMock(return_value=make_source())):
            result = cli_runner.invoke(cli, ["add", "https://x", "-f", "999"])

        assert result.exit_code == 1
        assert "Unknown format ids: 999" in result.output

    def test_analyze(self, cli_runner, patched_config):
        with patch("ripit.cli.analyze_url", new=AsyncMock(return_value=make_source())):
            result = cli_runner.invoke(cli, ["analyze", "https://x"])

        assert result.exit_code == 0
        assert '"webpageUrl"' in result.output

    def test_analyze_failure(self, cli_runner, patched_config):
        error = ProcessError("yt-dlp", exit_status="1", stderr="ERROR: Unsupported URL")
        with patch("ripit.cli.analyze_url", new=AsyncMock(side_effect=error)):
            result = cli_runner.invoke(cli, ["analyze", "https://x"])

        assert result.exit_code == 1

    def test_download_nothing(self, cli_runner, patched_config):
        loaded = make_file()
        loaded.mark_loaded(100)
        write_queue(patched_config, [loaded])

        result = cli_runner.invoke(cli, ["download"])

        assert result.exit_code == 0
        assert "Nothing to download" in result.output


class TestCLIUtilities:
    def test_status_colors(self):
        assert get_status_color(MediaFileStatus.LOADED) == "green"
        assert get_status_color(MediaFileStatus.ERROR) == "red"
