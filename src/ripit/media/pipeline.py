"""Per-file download and merge pipeline.

A run goes through these steps, each reported as a stage-numbered progress
event on the owning task:

- preflight: create the base and ``pending`` directories, check free space
- track download: one track at a time, skipping tracks already on disk
- chapter sidecar generation (only when the source has chapters)
- merge of every downloaded track into the final container (stream copy)
- verification of the merged file and a best-effort probe for the log

Tracks are downloaded to a temporary marker file and renamed to their final
marker name only once complete, so an interrupted run never leaves a file
that a later run would mistake for a finished track.
"""

import json
import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from rich.filesize import decimal

from ripit.config import RipitConfig, ToolPath
from ripit.error_handling import (
    AbortedError,
    ErrorCategory,
    ProcessError,
    ResourceError,
    RipitError,
)
from ripit.media.chapters import write_chapters_sidecar
from ripit.media.models import MediaFileData, Track
from ripit.process.parsers import (
    MergeProgressParser,
    OutputStreamParser,
    StreamState,
    parse_download_progress,
)
from ripit.process.runner import ProcessResult, ProcessRunner
from ripit.tasks.types import TaskContext

logger = logging.getLogger(__name__)

PENDING_DIR_NAME = "pending"

# Number of trailing tool output lines kept in error details
ERROR_LOG_TAIL = 20


class Stage(int, Enum):
    """Stage numbers carried in progress payloads."""

    PREFLIGHT = 1
    DOWNLOAD = 2
    TRACK_DONE = 3
    CHAPTERS = 4
    MERGE = 5
    RESULT = 6


class Marker(str, Enum):
    TEMPORARY = "*"
    FINAL = "+"


@dataclass
class PipelineResult:
    """Merged output of a successful run."""

    path: Path
    size: int

    @property
    def human_size(self) -> str:
        return decimal(self.size)


def marker_path(
    file: MediaFileData,
    track: Track,
    directory: Path,
    marker: Marker,
) -> Path:
    """``{sourceId}-{formatId}-[{marker}].{ext}`` inside ``directory``."""
    suffix = f".{track.ext}" if track.ext else ""
    return directory / f"{file.source.id}-{track.format_id}-[{marker.value}]{suffix}"


def output_file_name(file: MediaFileData, ext: str) -> str:
    """Final file name, with path separators in the display name replaced."""
    name = file.file_name.replace("/", "_").replace("\\", "_").strip() or file.source.id
    return f"{name}.{ext}"


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


class MediaPipeline:
    """Downloads the selected tracks of a queue entry and merges them."""

    def __init__(
        self,
        config: RipitConfig,
        runner: ProcessRunner,
        *,
        extractor: ToolPath,
        transcoder: ToolPath,
        prober: ToolPath | None = None,
    ):
        self.config = config
        self.runner = runner
        self.extractor = extractor
        self.transcoder = transcoder
        self.prober = prober

    async def run(
        self,
        file: MediaFileData,
        base_dir: Path,
        context: TaskContext,
    ) -> PipelineResult:
        """Run every stage for ``file``. Any failure stops the whole run.

        Failures other than cancellation are re-raised as ``RipitError`` with
        an ``event_payload`` naming the file and the stage that failed.
        """
        stage = Stage.PREFLIGHT
        try:
            pending_dir = self.preflight(file, base_dir)
            self._progress(
                context,
                file,
                stage,
                f"Starting download tracks for file '{file.source.title}'",
            )

            stage = Stage.DOWNLOAD
            for track in file.track_ids:
                context.token.raise_if_cancelled()
                await self.download_track(file, track, pending_dir, context)

            stage = Stage.CHAPTERS
            context.token.raise_if_cancelled()
            chapters = self.generate_chapters(file, pending_dir, context)

            stage = Stage.MERGE
            context.token.raise_if_cancelled()
            output = await self.merge(file, pending_dir, chapters, base_dir, context)

            size = self.verify(output)
            await self.probe(output, context)
            context.token.raise_if_cancelled()
        except AbortedError:
            raise
        except RipitError as e:
            e.event_payload = {"fileId": file.id, "stage": stage.value}
            raise
        except OSError as e:
            error = RipitError(
                str(e),
                ErrorCategory.FILESYSTEM,
                original_error=e,
            )
            error.event_payload = {"fileId": file.id, "stage": stage.value}
            raise error from e

        logger.info(f"Downloaded '{file.source.title}' to {output} ({decimal(size)})")
        return PipelineResult(path=output, size=size)

    # Stage 1

    def preflight(self, file: MediaFileData, base_dir: Path) -> Path:
        """Create output directories and check there is room for the download."""
        base_dir.mkdir(parents=True, exist_ok=True)
        pending_dir = base_dir / PENDING_DIR_NAME
        pending_dir.mkdir(parents=True, exist_ok=True)

        required = self.required_space(file)
        free = shutil.disk_usage(base_dir).free
        logger.debug(
            "Disk space for %s: required %s, free %s",
            file.id,
            decimal(required),
            decimal(free),
        )

        if free < required:
            msg = f"Not enough disk space. Required: {decimal(required)}, Available: {decimal(free)}"
            raise ResourceError(
                msg,
                solution=f"Free some space on the volume holding {base_dir}",
            )
        if required > self.config.max_required_bytes:
            msg = (
                "Required disk space exceeds absolute limit of "
                f"{decimal(self.config.max_required_bytes)}"
            )
            raise ResourceError(msg, solution="Select fewer tracks for this file")

        return pending_dir

    def required_space(self, file: MediaFileData) -> int:
        return (
            len(file.track_ids)
            * self.config.per_track_estimate_bytes
            * self.config.space_safety_factor
        )

    # Stage 2

    async def download_track(
        self,
        file: MediaFileData,
        track: Track,
        pending_dir: Path,
        context: TaskContext,
    ) -> Path:
        """Download one track unless its final marker file is already present."""
        final_path = marker_path(file, track, pending_dir, Marker.FINAL)
        temp_path = marker_path(file, track, pending_dir, Marker.TEMPORARY)

        if final_path.exists():
            self._progress(
                context,
                file,
                Stage.DOWNLOAD,
                f"Track {track.format_id} already downloaded: {final_path.name}",
            )
            return final_path

        self._progress(context, file, Stage.DOWNLOAD, f"Downloading track {track.format_id}")

        args = [
            file.source.webpage_url,
            "-f",
            track.format_id,
            "-o",
            str(temp_path),
            "--no-warnings",
            "--newline",
        ]

        def on_progress(progress: dict[str, Any]) -> None:
            self._progress(
                context,
                file,
                Stage.DOWNLOAD,
                "Downloading track in progress...",
                progress=progress,
            )

        try:
            result, logs = await self._run_parsed(
                self.extractor,
                args,
                context,
                line_parser=parse_download_progress,
                on_progress=on_progress,
            )
            if result.cancelled:
                msg = f"Download of track {track.format_id} aborted"
                raise AbortedError(msg)
            if not result.completed:
                self._log_failure(self.extractor, logs)
                raise ProcessError(
                    self.extractor.name,
                    exit_status=result.status.value,
                    details="\n".join(logs[-ERROR_LOG_TAIL:]) or None,
                )

            size = _file_size(temp_path)
            if size <= 0:
                msg = "Downloaded track not found"
                raise ResourceError(msg, details=str(temp_path))

            os.replace(temp_path, final_path)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        human = decimal(size)
        logger.info(f"Track {track.format_id} of {file.id} downloaded ({human})")
        self._progress(
            context,
            file,
            Stage.TRACK_DONE,
            f"Track {track.format_id} downloaded successfully ({human})",
            fileSize=human,
        )
        return final_path

    # Stage 3

    def generate_chapters(
        self,
        file: MediaFileData,
        pending_dir: Path,
        context: TaskContext,
    ) -> Path | None:
        if not file.source.chapters:
            return None

        self._progress(
            context,
            file,
            Stage.CHAPTERS,
            f"Generating chapter track for file '{file.source.title}'",
        )
        path = write_chapters_sidecar(file.source, pending_dir)
        if path is not None:
            self._progress(
                context,
                file,
                Stage.CHAPTERS,
                f"Chapter track generated: {path.name}",
            )
        return path

    # Stage 4

    def build_merge_args(
        self,
        file: MediaFileData,
        inputs: list[Path],
        chapters: Path | None,
        output: Path,
    ) -> list[str]:
        args: list[str] = []
        for path in inputs:
            args.extend(["-i", str(path)])
        if chapters is not None:
            args.extend(["-i", str(chapters)])

        args.extend(["-progress", "pipe:1"])

        if chapters is not None:
            # the sidecar is the input right after the tracks
            args.extend(["-map_metadata", str(len(inputs))])
        for index in range(len(inputs)):
            args.extend(["-map", f"{index}:0"])

        args.extend(
            [
                "-metadata",
                f"file_id={file.id}",
                "-metadata",
                f"media_id={file.source.id}",
                "-metadata",
                f"extractor={file.source.extractor}",
                "-c",
                "copy",
                "-y",
                str(output),
            ],
        )
        return args

    async def merge(
        self,
        file: MediaFileData,
        pending_dir: Path,
        chapters: Path | None,
        base_dir: Path,
        context: TaskContext,
    ) -> Path:
        inputs = []
        for track in file.track_ids:
            path = marker_path(file, track, pending_dir, Marker.FINAL)
            size = _file_size(path)
            if size <= 0:
                msg = "Downloaded track not found"
                raise ResourceError(msg, details=str(path))
            logger.debug("Track %s prepared for merge, size=%s", track.format_id, decimal(size))
            inputs.append(path)

        if not inputs:
            msg = "No tracks found for merging"
            raise ResourceError(msg)

        output = base_dir / output_file_name(file, self.config.output_format)
        args = self.build_merge_args(file, inputs, chapters, output)
        self._progress(context, file, Stage.MERGE, "Running ffmpeg to merge tracks")

        def on_progress(progress: dict[str, Any]) -> None:
            self._progress(
                context,
                file,
                Stage.MERGE,
                "Merging tracks in progress...",
                progress=progress,
            )

        result, logs = await self._run_parsed(
            self.transcoder,
            args,
            context,
            line_parser=MergeProgressParser(),
            on_progress=on_progress,
        )
        if result.cancelled:
            msg = "Merge aborted"
            raise AbortedError(msg)
        if not result.completed:
            self._log_failure(self.transcoder, logs)
            raise ProcessError(
                self.transcoder.name,
                exit_status=result.status.value,
                details="\n".join(logs[-ERROR_LOG_TAIL:]) or None,
            )
        return output

    # Stage 5

    def verify(self, output: Path) -> int:
        size = _file_size(output)
        if size <= 0:
            msg = f"Final file not created or empty: {output}"
            raise ResourceError(msg)
        return size

    async def probe(self, output: Path, context: TaskContext) -> dict[str, Any] | None:
        """Probe the merged file for the log. Failures are only logged."""
        if self.prober is None:
            logger.debug("No prober available, skipping probe of %s", output)
            return None

        args = ["-v", "quiet", "-print_format", "json", "-show_format", "-show_streams", str(output)]
        try:
            result = await self.runner.run_buffered(self.prober.path, args, token=context.token)
        except RipitError as e:
            logger.warning(f"Probe of {output.name} failed: {e.message}")
            return None

        if not result.completed:
            logger.warning(f"Probe of {output.name} exited with status {result.status.value}")
            return None
        try:
            info = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            logger.warning(f"Probe output for {output.name} is not JSON: {e}")
            return None

        logger.debug("Probe of %s: %s", output.name, json.dumps(info))
        return info

    # Helpers

    async def _run_parsed(
        self,
        tool: ToolPath,
        args: list[str],
        context: TaskContext,
        *,
        line_parser,
        on_progress,
    ) -> tuple[ProcessResult, list[str]]:
        """Stream a tool's output through line parsers sharing one log list."""
        logs: list[str] = []
        stdout = OutputStreamParser(line_parser, on_progress, state=StreamState(logs=logs))
        stderr = OutputStreamParser(line_parser, on_progress, state=StreamState(logs=logs))

        result = await self.runner.run_streaming(
            tool.path,
            args,
            token=context.token,
            on_stdout=stdout.feed,
            on_stderr=stderr.feed,
            force_kill_delay=self.config.force_kill_delay,
        )
        stdout.flush()
        stderr.flush()
        return result, logs

    @staticmethod
    def _log_failure(tool: ToolPath, logs: list[str]) -> None:
        if logs:
            logger.error("%s output:\n%s", tool.name, "\n".join(logs))

    @staticmethod
    def _progress(
        context: TaskContext,
        file: MediaFileData,
        stage: Stage,
        message: str,
        **extra: Any,
    ) -> None:
        context.progress(message, {"fileId": file.id, "stage": stage.value, **extra})
