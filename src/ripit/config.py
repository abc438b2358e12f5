"""Configuration management for ripit."""

import shutil
from pathlib import Path
from typing import Literal

import tomli
from pydantic import BaseModel, Field, field_validator


class ToolPath(BaseModel):
    """Resolved absolute path of an external executable."""

    name: str
    path: Path

    def __str__(self) -> str:
        return str(self.path)


class RipitConfig(BaseModel):
    """Main configuration for ripit."""

    # Paths
    data_dir: Path = Field(default=Path("~/.local/share/ripit"))
    base_download_dir: Path = Field(default=Path("~/Downloads/ripit"))

    # External tools (names on PATH or absolute paths)
    extractor_binary: str = Field(default="yt-dlp")
    transcoder_binary: str = Field(default="ffmpeg")
    prober_binary: str = Field(default="ffprobe")

    # Process control
    force_kill_delay: float = Field(default=5.0)  # seconds
    max_buffer_bytes: int = Field(default=3 * 1024 * 1024)  # 3 MiB

    # Task lanes
    max_concurrent_tasks: int = Field(default=0)  # 0 = unlimited
    monitor_min_interval: int = Field(default=100)  # ms
    monitor_default_interval: int = Field(default=2000)  # ms

    # Download preflight
    per_track_estimate_bytes: int = Field(default=100 * 1024 * 1024)  # 100 MiB
    space_safety_factor: int = Field(default=3)
    max_required_bytes: int = Field(default=30 * 1024 * 1024 * 1024)  # 30 GiB

    # Queue persistence
    max_backup_files: int = Field(default=10)

    # Output
    output_format: Literal["mkv", "mp4"] = Field(default="mkv")

    @field_validator("data_dir", "base_download_dir", mode="before")
    @classmethod
    def expand_paths(cls, v: Path | str) -> Path:
        """Expand user home directory in paths."""
        if isinstance(v, str):
            v = Path(v)
        return v.expanduser().resolve()

    @field_validator("force_kill_delay")
    @classmethod
    def positive_delay(cls, v: float) -> float:
        if v <= 0:
            msg = "force_kill_delay must be positive"
            raise ValueError(msg)
        return v

    @field_validator("max_concurrent_tasks", "max_backup_files")
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            msg = "value must not be negative"
            raise ValueError(msg)
        return v

    @property
    def queue_file(self) -> Path:
        """Path of the persisted media queue."""
        return self.data_dir / "queue.json"

    @property
    def settings_file(self) -> Path:
        """Path of the persisted key-value settings."""
        return self.data_dir / "settings.json"

    @property
    def log_file(self) -> Path:
        return self.data_dir / "ripit.log"

    def resolve_tool(self, binary: str) -> ToolPath | None:
        """Resolve a configured tool to an absolute path, or None if not found."""
        candidate = Path(binary).expanduser()
        if candidate.is_absolute():
            return ToolPath(name=candidate.name, path=candidate) if candidate.exists() else None

        found = shutil.which(binary)
        if found is None:
            return None
        return ToolPath(name=binary, path=Path(found).resolve())

    @property
    def extractor(self) -> ToolPath | None:
        return self.resolve_tool(self.extractor_binary)

    @property
    def transcoder(self) -> ToolPath | None:
        return self.resolve_tool(self.transcoder_binary)

    @property
    def prober(self) -> ToolPath | None:
        return self.resolve_tool(self.prober_binary)

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.data_dir, self.base_download_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)


def load_config(config_path: Path | None = None) -> RipitConfig:
    """Load configuration from file or defaults."""
    if config_path is None:
        possible_paths = [
            Path.home() / ".config" / "ripit" / "config.toml",  # User config
            Path.cwd() / "ripit.toml",  # Current directory
        ]

        for path in possible_paths:
            if path.exists():
                config_path = path
                break

    if config_path and config_path.exists():
        with open(config_path, "rb") as f:
            config_data = tomli.load(f)
        return RipitConfig(**config_data)
    return RipitConfig()


def create_sample_config(path: Path) -> None:
    """Create a sample configuration file."""
    sample_config = """# ripit Configuration
# ===================

# Directory paths
data_dir = "~/.local/share/ripit"                 # Queue file, backups, settings and logs
base_download_dir = "~/Downloads/ripit"           # Merged files land here, tracks in ./pending

# External tools - names on PATH or absolute paths
extractor_binary = "yt-dlp"
transcoder_binary = "ffmpeg"
prober_binary = "ffprobe"

# Output container for merged files: "mkv" or "mp4"
output_format = "mkv"

# ============================================================================
# ADVANCED SETTINGS - Most users can leave these as defaults
# ============================================================================

# Seconds between SIGTERM and SIGKILL when a task is cancelled
force_kill_delay = 5.0

# Maximum captured output of short tool invocations (bytes)
max_buffer_bytes = 3145728

# Concurrent tasks limit (0 = unlimited)
max_concurrent_tasks = 0

# Queue state broadcast intervals (milliseconds)
monitor_min_interval = 100
monitor_default_interval = 2000

# Disk space preflight
per_track_estimate_bytes = 104857600              # 100 MiB per track
space_safety_factor = 3
max_required_bytes = 32212254720                  # 30 GiB absolute cap

# Number of queue backups kept in data_dir
max_backup_files = 10
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(sample_config)
