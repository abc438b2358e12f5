"""Tests for output stream parsing."""

from unittest.mock import Mock

from ripit.process.parsers import (
    SKIP,
    MergeProgressParser,
    OutputStreamParser,
    StreamState,
    format_download_progress,
    parse_download_progress,
)


class TestOutputStreamParser:
    """Test line buffering across chunks."""

    def test_partial_lines_are_buffered(self):
        seen: list[str] = []
        parser = OutputStreamParser(lambda line: seen.append(line) or SKIP)

        parser.feed("first li")
        assert seen == []
        parser.feed("ne\nsecond\r\nthi")

        assert seen == ["first line", "second"]
        assert parser.state.buffer == "thi"

    def test_flush_processes_trailing_line(self):
        seen: list[str] = []
        parser = OutputStreamParser(lambda line: seen.append(line) or SKIP)

        parser.feed("no newline")
        parser.flush()

        assert seen == ["no newline"]
        assert parser.state.buffer == ""

    def test_unparsed_lines_become_logs(self):
        on_progress = Mock()
        parser = OutputStreamParser(lambda line: None, on_progress)

        parser.feed("some output\n\nmore\n")

        assert parser.logs == ["some output", "more"]
        on_progress.assert_not_called()

    def test_records_forwarded(self):
        on_progress = Mock()
        parser = OutputStreamParser(lambda line: {"line": line}, on_progress)

        parser.feed("a\nb\n")

        assert on_progress.call_count == 2
        on_progress.assert_called_with({"line": "b"})
        assert parser.logs == []

    def test_skip_is_neither_logged_nor_forwarded(self):
        on_progress = Mock()
        parser = OutputStreamParser(lambda line: SKIP, on_progress)

        parser.feed("x=1\n")

        on_progress.assert_not_called()
        assert parser.logs == []

    def test_parser_exception_keeps_line(self):
        def broken(line: str):
            raise ValueError("bad")

        parser = OutputStreamParser(broken)
        parser.feed("kept\n")

        assert parser.logs == ["kept"]

    def test_shared_state(self):
        logs: list[str] = []
        first = OutputStreamParser(state=StreamState(logs=logs))
        second = OutputStreamParser(state=StreamState(logs=logs))

        first.feed("out\n")
        second.feed("err\n")

        assert logs == ["out", "err"]

    def test_bytes_accepted(self):
        parser = OutputStreamParser()
        parser.feed(b"raw bytes\n")

        assert parser.logs == ["raw bytes"]


class TestDownloadProgress:
    def test_progress_line(self):
        line = "[download]  42.3% of   50.00MiB at    1.23MiB/s ETA 00:30"

        assert parse_download_progress(line) == {
            "percent": 42.3,
            "speed": "1.23MiB/s",
            "eta": "00:30",
        }

    def test_approximate_size(self):
        line = "[download]   5.0% of ~ 120.50MiB at  500.00KiB/s ETA 03:59"

        progress = parse_download_progress(line)

        assert progress is not None
        assert progress["percent"] == 5.0

    def test_other_lines(self):
        assert parse_download_progress("[youtube] abc: Downloading webpage") is None
        assert parse_download_progress("[download] Destination: file.mp4") is None

    def test_format(self):
        text = format_download_progress({"percent": 42.7, "speed": "1MiB/s", "eta": "00:10"})

        assert text.startswith("Downloading track, ")
        assert "42%" in text
        assert "1MiB/s" in text

    def test_format_without_percent(self):
        assert format_download_progress({}) == "Downloading track in progress.."


class TestMergeProgressParser:
    def test_two_records(self):
        """Each record holds only what accumulated since the previous one."""
        records: list[dict] = []
        parser = OutputStreamParser(MergeProgressParser(), records.append)

        parser.feed("frame=10\nfps=25\nprogress=continue\n")
        parser.feed("frame=20\nprogress=end\n")

        assert records == [
            {"frame": 10, "fps": 25.0, "progress": "continue"},
            {"frame": 20, "progress": "end"},
        ]

    def test_intermediate_keys_skip(self):
        parser = MergeProgressParser()

        assert parser("frame=1") is SKIP
        assert parser("speed=1.5x") is SKIP
        assert parser.current == {"frame": 1, "speed": "1.5x"}

    def test_non_numeric_value_ignored(self):
        parser = MergeProgressParser()

        assert parser("frame=N/A") is None
        assert parser("total_size=1024") is SKIP
        assert parser("progress=continue") == {"total_size": 1024, "progress": "continue"}

    def test_non_key_value_line(self):
        parser = MergeProgressParser()

        assert parser("Input #0, matroska, from 'a.mkv':") is None

    def test_unknown_key(self):
        parser = MergeProgressParser()

        assert parser("stream_0_0_q=-1.0") is None
        assert parser.current == {}
