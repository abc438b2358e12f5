"""Command-line interface for ripit."""

import asyncio
import json
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import click
from rich.console import Console
from rich.filesize import decimal
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TaskID, TextColumn
from rich.table import Table

from .config import RipitConfig, create_sample_config, load_config
from .core.engine import RipitEngine
from .error_handling import (
    ConfigurationError,
    RipitError,
    check_dependencies,
    handle_error,
)
from .media.models import MediaFileData, MediaFileStatus, SourceFile
from .process.parsers import format_download_progress
from .storage.queue import QueueStore
from .tasks.types import EventType, TaskEnvelope, TaskEvent, TaskType

console = Console()
logger = logging.getLogger(__name__)

T = TypeVar("T")

_TERMINAL = {EventType.RESULT.value, EventType.ERROR.value, EventType.CANCELLED.value}


def setup_logging(
    *,
    verbose: bool = False,
    config: RipitConfig | None = None,
) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    # Clean up existing handlers first to prevent resource leaks
    cleanup_logging()

    # Configure RichHandler to show path only at DEBUG level
    show_path = level == logging.DEBUG
    handlers: list[logging.Handler] = [
        RichHandler(console=console, rich_tracebacks=True, show_path=show_path),
    ]

    if config and config.data_dir:
        config.data_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            ),
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,  # Force reconfiguration of root logger
    )


def cleanup_logging() -> None:
    """Clean up logging handlers to prevent ResourceWarnings."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if isinstance(handler, logging.FileHandler):
            handler.close()
            root_logger.removeHandler(handler)


# Engine helpers


async def _with_engine(
    config: RipitConfig,
    body: Callable[[RipitEngine], Awaitable[T]],
) -> T:
    engine = RipitEngine(config)
    engine.start()
    try:
        return await body(engine)
    finally:
        await engine.shutdown()


async def run_tasks(
    engine: RipitEngine,
    envelope: TaskEnvelope,
    on_event: Callable[[TaskEvent], None] | None = None,
    *,
    abort_on_interrupt: bool = False,
) -> dict[str, TaskEvent]:
    """Submit a task and wait for the terminal event of every id it produced."""
    pending: set[str] = set()
    terminal: dict[str, TaskEvent] = {}
    done = asyncio.Event()

    def listener(event: TaskEvent) -> None:
        if on_event is not None:
            on_event(event)
        if event.task_id in pending and event.type in _TERMINAL:
            terminal[event.task_id] = event
            pending.discard(event.task_id)
            if not pending:
                done.set()

    unsubscribe = engine.subscribe(listener)
    loop = asyncio.get_running_loop()
    interrupt_installed = False
    try:
        ids = engine.submit(envelope)
        pending.update(ids)
        if not pending:
            return terminal

        if abort_on_interrupt:

            def abort_all() -> None:
                console.print("\n[yellow]Aborting...[/yellow]")
                for task_id in list(pending):
                    engine.abort(task_id)

            try:
                loop.add_signal_handler(signal.SIGINT, abort_all)
                interrupt_installed = True
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handlers not supported, Ctrl+C will stop immediately")

        await done.wait()
        return terminal
    finally:
        if interrupt_installed:
            loop.remove_signal_handler(signal.SIGINT)
        unsubscribe()


def _single(events: dict[str, TaskEvent]) -> TaskEvent:
    return next(iter(events.values()))


def _raise_on_failure(event: TaskEvent) -> None:
    if event.type == EventType.ERROR.value:
        raise click.ClickException(event.message or "Task failed")
    if event.type == EventType.CANCELLED.value:
        raise click.ClickException("Task cancelled")


async def analyze_url(engine: RipitEngine, url: str) -> SourceFile:
    def show(event: TaskEvent) -> None:
        if event.type == EventType.PROGRESS.value and event.message:
            console.print(f"[dim]{event.message}[/dim]")

    event = _single(
        await run_tasks(
            engine,
            TaskEnvelope(TaskType.ANALYZE_MEDIA_INFO.value, {"url": url}),
            show,
        ),
    )
    _raise_on_failure(event)
    return SourceFile.model_validate(event.payload)


def _read_queue(config: RipitConfig) -> QueueStore:
    """Load the queue file without creating, rotating or rewriting anything."""
    store = QueueStore(config.queue_file, max_backups=config.max_backup_files)
    if config.queue_file.exists():
        store.load()
    return store


class DownloadView:
    """Renders download events: one progress bar per running file."""

    def __init__(self, progress: Progress):
        self.progress = progress
        self.bars: dict[str, TaskID] = {}

    def _bar(self, task_id: str, description: str) -> TaskID:
        if task_id not in self.bars:
            self.bars[task_id] = self.progress.add_task(description, total=100)
        return self.bars[task_id]

    def __call__(self, event: TaskEvent) -> None:
        if event.is_broadcast:
            return

        payload = event.payload if isinstance(event.payload, dict) else {}
        record = payload.get("progress")

        if event.type == EventType.PROGRESS.value and isinstance(record, dict):
            bar = self._bar(event.task_id, event.message or "")
            if "percent" in record:
                self.progress.update(
                    bar,
                    completed=record["percent"],
                    description=format_download_progress(record),
                )
            else:
                self.progress.update(bar, description=event.message or "Merging tracks")
        elif event.type == EventType.PROGRESS.value:
            if event.task_id in self.bars:
                self.progress.update(self.bars[event.task_id], completed=0)
            self.progress.console.print(f"[dim]{event.message}[/dim]")
        elif event.type == EventType.RESULT.value:
            self._finish(event.task_id)
            self.progress.console.print(f"[green]✓[/green] {event.message}")
        elif event.type == EventType.ERROR.value:
            self._finish(event.task_id)
            stage = payload.get("stage")
            where = f" (stage {stage})" if stage else ""
            self.progress.console.print(f"[red]✗[/red] {event.message}{where}")
        elif event.type == EventType.CANCELLED.value:
            self._finish(event.task_id)
            self.progress.console.print("[yellow]Download cancelled[/yellow]")

    def _finish(self, task_id: str) -> None:
        bar = self.bars.pop(task_id, None)
        if bar is not None:
            self.progress.remove_task(bar)


# Commands


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """ripit - Download selected media tracks and merge them into one file."""
    try:
        ctx.ensure_object(dict)
        loaded_config = load_config(config)
        ctx.obj["config"] = loaded_config
        ctx.obj["verbose"] = verbose

        setup_logging(verbose=verbose, config=loaded_config)
    except (OSError, ValueError, RuntimeError) as e:
        config_error = ConfigurationError(
            f"Failed to load configuration: {e}",
            config_path=config,
            solution="Run 'ripit config validate' to check your configuration file",
        )
        console.print(f"[red]Configuration Error:[/red] {config_error}")
        sys.exit(1)


@cli.group("config")
@click.pass_context
def config_cmd(ctx: click.Context) -> None:
    """Configuration management commands."""


@config_cmd.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config: RipitConfig = ctx.obj["config"]

    table = Table()
    table.add_column("Setting")
    table.add_column("Value")

    table.add_row("Data Directory", str(config.data_dir))
    table.add_row("Download Directory", str(config.base_download_dir))
    table.add_row("Extractor", config.extractor_binary)
    table.add_row("Transcoder", config.transcoder_binary)
    table.add_row("Prober", config.prober_binary)
    table.add_row("Output Format", config.output_format)
    table.add_row("Force Kill Delay", f"{config.force_kill_delay}s")
    table.add_row(
        "Concurrent Tasks",
        str(config.max_concurrent_tasks) if config.max_concurrent_tasks else "Unlimited",
    )
    table.add_row("Queue Backups", str(config.max_backup_files))

    console.print(table)


@config_cmd.command("validate")
@click.pass_context
def config_validate(ctx: click.Context) -> None:
    """Validate current configuration."""
    config: RipitConfig = ctx.obj["config"]

    console.print("[bold]Configuration Validation[/bold]")

    errors = []

    for name, path in [
        ("Data", config.data_dir),
        ("Download", config.base_download_dir),
    ]:
        try:
            path.mkdir(parents=True, exist_ok=True)
            console.print(f"[green]✓[/green] {name} directory: {path}")
        except OSError as e:
            console.print(f"[red]✗[/red] {name} directory: {e}")
            errors.append(f"{name} directory: {e}")

    for label, binary, resolved in [
        ("Extractor", config.extractor_binary, config.extractor),
        ("Transcoder", config.transcoder_binary, config.transcoder),
        ("Prober", config.prober_binary, config.prober),
    ]:
        if resolved is None:
            console.print(f"[red]✗[/red] {label} not found: {binary}")
            errors.append(f"{label} not found: {binary}")
        else:
            console.print(f"[green]✓[/green] {label}: {resolved}")

    if errors:
        console.print(f"\n[red]Found {len(errors)} configuration errors[/red]")
        sys.exit(1)
    else:
        console.print("\n[green]Configuration is valid[/green]")


@config_cmd.command("init")
@click.option(
    "--path",
    "-p",
    type=click.Path(path_type=Path),
    default=Path.home() / ".config" / "ripit" / "config.toml",
    help="Path for the configuration file",
)
def config_init(path: Path) -> None:
    """Create a sample configuration file."""
    try:
        create_sample_config(path)
        console.print(f"[green]Created sample configuration at {path}[/green]")
        console.print("Please edit the configuration file with your settings.")
    except OSError as e:
        console.print(f"[red]Error creating configuration: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show tool availability and queue information."""
    config: RipitConfig = ctx.obj["config"]

    console.print("[bold]System Status[/bold]")
    missing = check_dependencies(config)
    if missing:
        for error in missing:
            console.print(f"[red]✗[/red] {error.message}")
    else:
        console.print("[green]✓[/green] All external tools available")

    store = _read_queue(config)
    files, invalid = store.get_list(), store.invalid_entries
    console.print(f"\n[bold]Queue[/bold] ({config.queue_file})")
    if not files:
        console.print("Queue is empty")
    else:
        table = Table()
        table.add_column("Status")
        table.add_column("Count", justify="right")
        for file_status, count in store.count_by_status().items():
            table.add_row(file_status.value, str(count))
        console.print(table)

    if invalid:
        console.print(f"[yellow]⚠[/yellow] {len(invalid)} invalid queue entries")


@cli.group()
@click.pass_context
def queue(ctx: click.Context) -> None:
    """Queue management commands."""


@queue.command("list")
@click.pass_context
def queue_list(ctx: click.Context) -> None:
    """List all entries in the queue."""
    config: RipitConfig = ctx.obj["config"]
    store = _read_queue(config)
    files, invalid = store.get_list(), store.invalid_entries

    if not files:
        console.print("Queue is empty")
    else:
        table = Table()
        table.add_column("ID")
        table.add_column("Name")
        table.add_column("Status")
        table.add_column("Tracks")
        table.add_column("Size", justify="right")

        for file in files:
            table.add_row(
                file.id,
                file.file_name,
                f"[{get_status_color(file.status)}]{file.status.value}[/{get_status_color(file.status)}]",
                ", ".join(track.format_id for track in file.track_ids),
                decimal(int(file.size)) if file.size else "",
            )
        console.print(table)

    for record in invalid:
        console.print(f"[yellow]⚠[/yellow] Invalid entry {record.index}: {record.error}")


@queue.command("remove")
@click.argument("file_ids", nargs=-1, required=True)
@click.pass_context
def queue_remove(ctx: click.Context, file_ids: tuple[str, ...]) -> None:
    """Remove entries from the queue."""
    config: RipitConfig = ctx.obj["config"]

    async def body(engine: RipitEngine) -> TaskEvent:
        return _single(
            await run_tasks(
                engine,
                TaskEnvelope(
                    TaskType.DELETE_MEDIAFILES.value,
                    {"deleteFileIds": list(file_ids)},
                ),
            ),
        )

    event = asyncio.run(_with_engine(config, body))
    _raise_on_failure(event)
    console.print(f"[green]{event.message}[/green]")


@cli.command()
@click.argument("url")
@click.pass_context
def analyze(ctx: click.Context, url: str) -> None:
    """Show the metadata and available tracks of a URL."""
    config: RipitConfig = ctx.obj["config"]

    try:
        source = asyncio.run(_with_engine(config, lambda engine: analyze_url(engine, url)))
    except RipitError as e:
        handle_error(e)
        sys.exit(1)

    click.echo(json.dumps(source.to_dict(), indent=2, ensure_ascii=False))


@cli.command()
@click.argument("url")
@click.option(
    "--format",
    "-f",
    "format_ids",
    multiple=True,
    required=True,
    help="Format id of a track to download (repeatable)",
)
@click.option("--name", "-n", help="File name of the merged result")
@click.pass_context
def add(ctx: click.Context, url: str, format_ids: tuple[str, ...], name: str | None) -> None:
    """Analyze a URL and queue the selected tracks."""
    config: RipitConfig = ctx.obj["config"]

    async def body(engine: RipitEngine) -> tuple[MediaFileData, TaskEvent]:
        source = await analyze_url(engine, url)

        by_id = {track.format_id: track for track in source.tracks}
        unknown = [format_id for format_id in format_ids if format_id not in by_id]
        if unknown:
            available = ", ".join(by_id) or "none"
            msg = f"Unknown format ids: {', '.join(unknown)} (available: {available})"
            raise click.ClickException(msg)

        file = MediaFileData.create(source, [by_id[f] for f in format_ids], name)
        event = _single(
            await run_tasks(
                engine,
                TaskEnvelope(TaskType.ADD_MEDIAFILE.value, {"file": file}),
            ),
        )
        return file, event

    try:
        file, event = asyncio.run(_with_engine(config, body))
    except RipitError as e:
        handle_error(e)
        sys.exit(1)

    _raise_on_failure(event)
    console.print(f"[green]Added to queue: {file.file_name}[/green] ({file.id})")


@cli.command()
@click.argument("file_ids", nargs=-1)
@click.pass_context
def download(ctx: click.Context, file_ids: tuple[str, ...]) -> None:
    """Download queued entries (all Added or Error entries by default)."""
    config: RipitConfig = ctx.obj["config"]

    async def body(engine: RipitEngine) -> dict[str, TaskEvent] | None:
        files = engine.queue.get_list()
        if file_ids:
            selected = [file for file in files if file.id in file_ids]
            missing = set(file_ids) - {file.id for file in selected}
            for file_id in sorted(missing):
                console.print(f"[yellow]⚠[/yellow] Not in queue: {file_id}")
        else:
            selected = [
                file
                for file in files
                if file.status in (MediaFileStatus.ADDED, MediaFileStatus.ERROR)
            ]

        if not selected:
            console.print("Nothing to download")
            return None

        console.print(f"Downloading {len(selected)} file(s), press Ctrl+C to abort")
        with Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>5.1f}%"),
            console=console,
        ) as progress:
            return await run_tasks(
                engine,
                TaskEnvelope(TaskType.DOWNLOAD_MEDIAFILES_REQ.value, selected),
                DownloadView(progress),
                abort_on_interrupt=True,
            )

    try:
        events = asyncio.run(_with_engine(config, body))
    except RipitError as e:
        handle_error(e)
        sys.exit(1)

    if events and any(event.type != EventType.RESULT.value for event in events.values()):
        sys.exit(1)


# CLI utility functions
def get_status_color(file_status: MediaFileStatus) -> str:
    """Get color code for status display."""
    status_colors = {
        MediaFileStatus.ADDED: "yellow",
        MediaFileStatus.DOWNLOADING: "blue",
        MediaFileStatus.LOADED: "green",
        MediaFileStatus.ERROR: "red",
        MediaFileStatus.ARCHIVED: "dim",
    }
    return status_colors.get(file_status, "white")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
