"""Line-buffered parsing of tool output into progress records."""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


class _Skip:
    """Sentinel returned by a line parser that is mid-accumulation."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SKIP"


SKIP = _Skip()

LineParser = Callable[[str], Any]
ProgressCallback = Callable[[dict[str, Any]], None]

_LINE_SPLIT = re.compile(r"\r?\n")


@dataclass
class StreamState:
    """Per-run mutable parse state."""

    buffer: str = ""
    logs: list[str] = field(default_factory=list)


class OutputStreamParser:
    """Turns raw stdout/stderr chunks into complete lines and parses them.

    A line parser returns either a progress record (forwarded to
    ``on_progress``), ``None`` (the line is kept in ``state.logs``) or
    ``SKIP`` (the line was consumed without producing anything yet).
    """

    def __init__(
        self,
        line_parser: LineParser | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        state: StreamState | None = None,
    ):
        self.line_parser = line_parser
        self.on_progress = on_progress
        self.state = state if state is not None else StreamState()

    @property
    def logs(self) -> list[str]:
        return self.state.logs

    def feed(self, chunk: str | bytes) -> None:
        """Append a chunk and process every completed line."""
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8", errors="replace")

        self.state.buffer += chunk
        lines = _LINE_SPLIT.split(self.state.buffer)
        self.state.buffer = lines.pop()

        for line in lines:
            self._handle_line(line)

    def flush(self) -> None:
        """Process a trailing line that never got its terminator."""
        if self.state.buffer:
            line, self.state.buffer = self.state.buffer, ""
            self._handle_line(line)

    def _handle_line(self, line: str) -> None:
        if self.line_parser is None:
            if line.strip():
                self.state.logs.append(line)
            return

        try:
            parsed = self.line_parser(line)
        except Exception as e:
            logger.warning(f"Progress parsing failed: {e}")
            self.state.logs.append(line)
            return

        if parsed is SKIP:
            return
        if parsed is None:
            if line.strip():
                self.state.logs.append(line)
            return

        if self.on_progress is not None:
            try:
                self.on_progress(parsed)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")


# [download]  42.3% of 50.00MiB at  1.23MiB/s ETA 00:30
_DOWNLOAD_PROGRESS = re.compile(
    r"\[download\]\s+(\d+(?:\.\d+)?)%\s+of\s+.*\s+at\s+(\S+)\s+ETA\s+(\S+)",
    re.IGNORECASE,
)


def parse_download_progress(line: str) -> dict[str, Any] | None:
    """Parse an extractor progress line into ``{percent, speed, eta}``."""
    match = _DOWNLOAD_PROGRESS.search(line)
    if not match:
        return None
    return {
        "percent": float(match.group(1)),
        "speed": match.group(2),
        "eta": match.group(3),
    }


def format_download_progress(progress: dict[str, Any]) -> str:
    """Human-readable one-line summary of a download progress record."""
    percent = progress.get("percent")
    if not isinstance(percent, int | float):
        return "Downloading track in progress.."
    info = [
        f"{int(percent):>5}%",
        f"{progress.get('speed', ''):>12}",
        f"{progress.get('eta', ''):>8}",
    ]
    return "Downloading track, " + ", ".join(part for part in info if part.strip())


_KEY_VALUE = re.compile(r"^(\w+)=(.+)$")


def _to_int(value: str) -> int | None:
    try:
        return int(value.strip())
    except ValueError:
        return None


def _to_float(value: str) -> float | None:
    try:
        return float(value.strip())
    except ValueError:
        return None


class MergeProgressParser:
    """Accumulates transcoder ``-progress`` key=value lines into records.

    Nothing is emitted until a ``progress=continue`` or ``progress=end`` line
    arrives; then the whole accumulated record is returned and the
    accumulator reset. Numeric keys with non-numeric values are ignored.
    """

    INT_KEYS = frozenset({"frame", "total_size", "out_time_ms", "out_time_us"})
    FLOAT_KEYS = frozenset({"fps"})
    STR_KEYS = frozenset({"bitrate", "out_time", "speed"})

    def __init__(self) -> None:
        self.current: dict[str, Any] = {}

    def __call__(self, line: str) -> dict[str, Any] | _Skip | None:
        match = _KEY_VALUE.match(line.strip())
        if not match:
            return None

        key, value = match.group(1), match.group(2)

        if key == "progress":
            if value in ("continue", "end"):
                record = {**self.current, "progress": value}
                self.current = {}
                return record
            return None

        if key in self.INT_KEYS:
            parsed = _to_int(value)
            if parsed is None:
                return None
            self.current[key] = parsed
        elif key in self.FLOAT_KEYS:
            parsed = _to_float(value)
            if parsed is None:
                return None
            self.current[key] = parsed
        elif key in self.STR_KEYS:
            self.current[key] = value
        else:
            return None

        return SKIP
