"""Error taxonomy and user-facing error reporting."""

import logging
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console

if TYPE_CHECKING:
    from ripit.config import RipitConfig

logger = logging.getLogger(__name__)
console = Console()


class ErrorCategory(Enum):
    """Categories of errors for better user experience."""

    CONFIGURATION = "configuration"
    DEPENDENCY = "dependency"
    VALIDATION = "validation"
    EXTERNAL_TOOL = "external_tool"
    FILESYSTEM = "filesystem"
    RESOURCE = "resource"
    PERSISTENCE = "persistence"
    CANCELLED = "cancelled"
    REGISTRATION = "registration"
    SYSTEM = "system"


class RipitError(Exception):
    """Base exception for ripit with enhanced user experience."""

    # Structured payload for the task error event, set by the code that raised it
    event_payload: dict[str, Any] | None = None

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        *,
        solution: str | None = None,
        details: str | None = None,
        recoverable: bool = True,
        log_level: int = logging.ERROR,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.solution = solution
        self.details = details
        self.recoverable = recoverable
        self.log_level = log_level
        self.original_error = original_error

    def display_to_user(self) -> None:
        """Display error to user with helpful context."""
        category_styles = {
            ErrorCategory.CONFIGURATION: ("⚙️", "yellow"),
            ErrorCategory.DEPENDENCY: ("📦", "red"),
            ErrorCategory.VALIDATION: ("🧾", "yellow"),
            ErrorCategory.EXTERNAL_TOOL: ("🔧", "red"),
            ErrorCategory.FILESYSTEM: ("📁", "red"),
            ErrorCategory.RESOURCE: ("💾", "red"),
            ErrorCategory.PERSISTENCE: ("🗄️", "red"),
            ErrorCategory.CANCELLED: ("⏹️", "blue"),
            ErrorCategory.REGISTRATION: ("🧩", "red"),
            ErrorCategory.SYSTEM: ("💻", "red"),
        }

        emoji, color = category_styles.get(self.category, ("❌", "red"))

        console.print(
            f"\n{emoji} [{color} bold]{self.category.value.replace('_', ' ').title()} Error[/{color} bold]",
        )
        console.print(f"[{color}]{self.message}[/{color}]")

        if self.details:
            console.print(f"\n[dim]Details:[/dim] {self.details}")

        if self.solution:
            console.print(f"\n[green]💡 Solution:[/green] {self.solution}")

        if self.recoverable:
            console.print(
                "\n[dim]This error may be temporary. You can try again.[/dim]",
            )
        else:
            console.print(
                "\n[dim]This error requires intervention before continuing.[/dim]",
            )

        if self.original_error:
            logger.log(
                self.log_level,
                "%s: %s",
                self.category.value,
                self.message,
                exc_info=self.original_error,
            )
        else:
            logger.log(self.log_level, "%s: %s", self.category.value, self.message)


class ConfigurationError(RipitError):
    """Configuration-related errors."""

    def __init__(self, message: str, *, config_path: Path | None = None, **kwargs):
        solution = kwargs.pop("solution", None)
        if not solution and config_path:
            solution = f"Check your configuration file at {config_path}"
        super().__init__(
            message,
            ErrorCategory.CONFIGURATION,
            solution=solution,
            **kwargs,
        )


class DependencyError(RipitError):
    """Missing or broken external tool."""

    def __init__(
        self,
        dependency: str,
        *,
        install_command: str | None = None,
        **kwargs,
    ):
        message = f"Required dependency '{dependency}' is not available"
        solution = kwargs.pop("solution", None)
        if not solution and install_command:
            solution = f"Install with: {install_command}"
        super().__init__(
            message,
            ErrorCategory.DEPENDENCY,
            solution=solution,
            recoverable=False,
            **kwargs,
        )


class ValidationError(RipitError):
    """Payload or persisted record failed schema validation."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.VALIDATION, **kwargs)


class ProcessError(RipitError):
    """External tool exited with a failure not caused by cancellation."""

    def __init__(
        self,
        tool: str,
        exit_status: str | None = None,
        stderr: str | None = None,
        **kwargs,
    ):
        message = f"{tool} failed"
        if exit_status is not None:
            message += f" with exit status: {exit_status}"

        details = kwargs.pop("details", stderr)
        solution = kwargs.pop(
            "solution",
            f"Check {tool} is properly installed and configured",
        )
        self.tool = tool
        self.exit_status = exit_status

        super().__init__(
            message,
            ErrorCategory.EXTERNAL_TOOL,
            details=details,
            solution=solution,
            **kwargs,
        )


class AbortedError(RipitError):
    """Operation stopped by its cancellation token. Not a failure."""

    def __init__(self, message: str = "Operation aborted", **kwargs):
        kwargs.setdefault("log_level", logging.INFO)
        super().__init__(message, ErrorCategory.CANCELLED, **kwargs)


class ResourceError(RipitError):
    """Insufficient disk space or a missing/empty expected output file."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.RESOURCE, **kwargs)


class PersistenceError(RipitError):
    """Queue file could not be read or written."""

    def __init__(self, message: str, *, path: Path | None = None, **kwargs):
        solution = kwargs.pop("solution", None)
        if not solution and path:
            solution = f"Check permissions and free space for {path}"
        super().__init__(
            message,
            ErrorCategory.PERSISTENCE,
            solution=solution,
            **kwargs,
        )


class RegistrationError(RipitError):
    """Duplicate handler registration. Fatal at startup."""

    def __init__(self, task_type: str, **kwargs):
        super().__init__(
            f'Handler for type "{task_type}" already registered',
            ErrorCategory.REGISTRATION,
            recoverable=False,
            **kwargs,
        )
        self.task_type = task_type


def handle_error(
    error: Exception,
    *,
    category: ErrorCategory | None = None,
    **kwargs,
) -> None:
    """Convert generic exceptions to RipitError and display to user."""
    if isinstance(error, RipitError):
        error.display_to_user()
        return

    if category is None:
        if isinstance(error, FileNotFoundError | PermissionError):
            category = ErrorCategory.FILESYSTEM
        else:
            category = ErrorCategory.SYSTEM

    ripit_error = RipitError(
        message=str(error) or "An unexpected error occurred",
        category=category,
        original_error=error,
        **kwargs,
    )
    ripit_error.display_to_user()


def check_dependencies(config: "RipitConfig") -> list[DependencyError]:
    """Check for missing external tools and return list of errors."""
    errors = []

    if config.extractor is None:
        errors.append(
            DependencyError(
                config.extractor_binary,
                install_command="pipx install yt-dlp",
                details="The extractor is required to analyze URLs and download tracks",
            ),
        )

    for binary, resolved in [
        (config.transcoder_binary, config.transcoder),
        (config.prober_binary, config.prober),
    ]:
        if resolved is None:
            errors.append(
                DependencyError(
                    binary,
                    solution="Install FFmpeg from https://ffmpeg.org/ or your package manager",
                    details="FFmpeg tools are required to merge and inspect downloaded tracks",
                ),
            )

    return errors

