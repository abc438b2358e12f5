"""Abortable wrapper around external executables."""

import asyncio
import codecs
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from os import PathLike

from ripit.error_handling import ProcessError
from ripit.process.cancellation import CancellationToken

logger = logging.getLogger(__name__)

ChunkSink = Callable[[str], None]

READ_CHUNK_SIZE = 64 * 1024
DEFAULT_FORCE_KILL_DELAY = 5.0
DEFAULT_MAX_BUFFER = 3 * 1024 * 1024


class ExitStatus(Enum):
    """Final status of a spawned process."""

    COMPLETED = "completed"  # exited with code 0
    FAILED = "failed"  # non-zero exit, not cancelled
    ABORTED = "aborted"  # cancelled, exited after the graceful signal
    TERMINATED = "terminated"  # cancelled, force killed after the delay


@dataclass
class ProcessResult:
    """Outcome of a process run."""

    status: ExitStatus
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    truncated: bool = False

    @property
    def completed(self) -> bool:
        return self.status is ExitStatus.COMPLETED

    @property
    def cancelled(self) -> bool:
        return self.status in (ExitStatus.ABORTED, ExitStatus.TERMINATED)


class _BoundedBuffer:
    """Collects decoded output up to a size limit."""

    def __init__(self, limit: int):
        self.limit = limit
        self.parts: list[str] = []
        self.size = 0
        self.truncated = False

    def __call__(self, chunk: str) -> None:
        if self.size >= self.limit:
            self.truncated = True
            return
        room = self.limit - self.size
        if len(chunk) > room:
            chunk = chunk[:room]
            self.truncated = True
        self.parts.append(chunk)
        self.size += len(chunk)

    def getvalue(self) -> str:
        return "".join(self.parts)


class ProcessRunner:
    """Spawns external tools with cooperative cancellation.

    Two delivery modes are offered. ``run_buffered`` collects stdout/stderr
    (bounded) and returns them with the exit status. ``run_streaming`` forwards
    each decoded chunk to caller supplied sinks without keeping it.

    On cancellation the process receives SIGTERM once; if it is still alive
    after ``force_kill_delay`` seconds it receives SIGKILL.
    """

    def __init__(
        self,
        *,
        force_kill_delay: float = DEFAULT_FORCE_KILL_DELAY,
        max_buffer_bytes: int = DEFAULT_MAX_BUFFER,
    ):
        self.force_kill_delay = force_kill_delay
        self.max_buffer_bytes = max_buffer_bytes

    async def run_buffered(
        self,
        executable: str | PathLike[str],
        args: Sequence[str],
        *,
        token: CancellationToken | None = None,
        force_kill_delay: float | None = None,
        cwd: str | PathLike[str] | None = None,
    ) -> ProcessResult:
        """Run to completion and return captured output."""
        stdout = _BoundedBuffer(self.max_buffer_bytes)
        stderr = _BoundedBuffer(self.max_buffer_bytes)

        result = await self._run(
            executable,
            args,
            token=token,
            on_stdout=stdout,
            on_stderr=stderr,
            force_kill_delay=force_kill_delay,
            cwd=cwd,
        )
        result.stdout = stdout.getvalue()
        result.stderr = stderr.getvalue()
        result.truncated = stdout.truncated or stderr.truncated
        if result.truncated:
            logger.warning(
                "Output of %s exceeded %d bytes and was truncated",
                executable,
                self.max_buffer_bytes,
            )
        return result

    async def run_streaming(
        self,
        executable: str | PathLike[str],
        args: Sequence[str],
        *,
        token: CancellationToken | None = None,
        on_stdout: ChunkSink | None = None,
        on_stderr: ChunkSink | None = None,
        force_kill_delay: float | None = None,
        cwd: str | PathLike[str] | None = None,
    ) -> ProcessResult:
        """Run to completion forwarding raw output chunks to the sinks."""
        return await self._run(
            executable,
            args,
            token=token,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
            force_kill_delay=force_kill_delay,
            cwd=cwd,
        )

    async def _run(
        self,
        executable: str | PathLike[str],
        args: Sequence[str],
        *,
        token: CancellationToken | None,
        on_stdout: ChunkSink | None,
        on_stderr: ChunkSink | None,
        force_kill_delay: float | None,
        cwd: str | PathLike[str] | None,
    ) -> ProcessResult:
        if token is not None and token.cancelled:
            logger.debug("Not spawning %s: already cancelled", executable)
            return ProcessResult(ExitStatus.ABORTED)

        delay = self.force_kill_delay if force_kill_delay is None else force_kill_delay
        cmd = [str(executable), *args]
        logger.debug("Spawning: %s", " ".join(cmd))

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as e:
            if token is not None and token.cancelled:
                return ProcessResult(ExitStatus.ABORTED)
            raise ProcessError(
                str(executable),
                details=f"Failed to start process: {e}",
                original_error=e,
            ) from e

        loop = asyncio.get_running_loop()
        graceful_sent = False
        force_killed = False
        kill_timer: asyncio.TimerHandle | None = None

        def force_kill() -> None:
            nonlocal force_killed
            if process.returncode is not None:
                return
            logger.warning(
                "Process %s ignored SIGTERM for %.1fs, sending SIGKILL",
                process.pid,
                delay,
            )
            force_killed = True
            try:
                process.kill()
            except ProcessLookupError:
                pass

        def on_cancel() -> None:
            nonlocal graceful_sent, kill_timer
            if graceful_sent or process.returncode is not None:
                return
            graceful_sent = True
            logger.debug("Cancelling process %s with SIGTERM", process.pid)
            try:
                process.terminate()
            except ProcessLookupError:
                # already gone, the exit path reports it as aborted
                return
            kill_timer = loop.call_later(delay, force_kill)

        unsubscribe = token.subscribe(on_cancel) if token is not None else None

        try:
            await asyncio.gather(
                self._pump(process.stdout, on_stdout),
                self._pump(process.stderr, on_stderr),
            )
            returncode = await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
            raise
        finally:
            if unsubscribe is not None:
                unsubscribe()
            if kill_timer is not None:
                kill_timer.cancel()

        if token is not None and token.cancelled:
            status = ExitStatus.TERMINATED if force_killed else ExitStatus.ABORTED
        elif returncode == 0:
            status = ExitStatus.COMPLETED
        else:
            status = ExitStatus.FAILED

        logger.debug(
            "Process %s exited with code %s (%s)",
            process.pid,
            returncode,
            status.value,
        )
        return ProcessResult(status, returncode)

    @staticmethod
    async def _pump(
        stream: asyncio.StreamReader | None,
        sink: ChunkSink | None,
    ) -> None:
        """Drain a pipe, decoding UTF-8 incrementally and feeding the sink."""
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            final = not data
            text = decoder.decode(data, final=final)
            if text and sink is not None:
                try:
                    sink(text)
                except Exception as e:
                    logger.warning(f"Output sink failed: {e}")
            if final:
                break
