"""Configuration data models.

Each section validates itself on construction so a bad config file fails
at startup rather than in the middle of a job.
"""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class ToolPathsConfig:
    """Configured paths to external tools (None = search PATH)."""

    ffmpeg: Path | None = None
    ffprobe: Path | None = None
    # Separator command line, e.g. "demucs" or "python -m demucs"
    demucs: str | None = None


@dataclass
class StorageConfig:
    """Object storage backend selection."""

    # "local" or "s3"
    backend: str = "local"

    # Root directory for the local backend
    root: Path = field(default_factory=lambda: Path.home() / ".sukudo" / "storage")

    # S3 settings
    bucket: str | None = None
    region: str | None = None
    endpoint_url: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        valid_backends = {"local", "s3"}
        if self.backend not in valid_backends:
            raise ValueError(
                f"backend must be one of {valid_backends}, got {self.backend}"
            )


@dataclass
class WorkerConfig:
    """Configuration for `sukudo worker`."""

    # Seconds between queue polls when idle
    poll_interval: float = 2.0

    # Seconds between heartbeats while a job runs
    heartbeat_interval: float = 30.0

    # Stop after this many jobs / seconds (None = no limit)
    max_jobs: int | None = None
    max_duration: int | None = None

    # Fail running jobs with no heartbeat for this many seconds
    # before each poll (None = never reap from the worker)
    reap_after: int | None = None

    # Subprocess timeouts in seconds
    ffmpeg_timeout: int = 1800
    separation_timeout: int = 3600

    # Source separation model and parallelism
    separator_model: str = "htdemucs"
    separator_jobs: int = 2

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.poll_interval <= 0:
            raise ValueError(
                f"poll_interval must be positive, got {self.poll_interval}"
            )
        if self.heartbeat_interval <= 0:
            raise ValueError(
                f"heartbeat_interval must be positive, got {self.heartbeat_interval}"
            )
        if self.reap_after is not None and self.reap_after <= 0:
            raise ValueError(f"reap_after must be positive, got {self.reap_after}")
        if self.separator_jobs < 1:
            raise ValueError(
                f"separator_jobs must be at least 1, got {self.separator_jobs}"
            )


@dataclass
class ServerConfig:
    """Configuration for `sukudo serve`.

    Controls bind address, port, and shutdown behavior.
    """

    bind: str = "127.0.0.1"
    """Network address to bind to. Default localhost."""

    port: int = 8340
    """Port number for the HTTP server."""

    shutdown_timeout: float = 30.0
    """Seconds to wait for graceful shutdown before cancelling tasks."""

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not 1 <= self.port <= 65535:
            raise ValueError(f"port must be 1-65535, got {self.port}")
        if self.shutdown_timeout <= 0:
            raise ValueError(
                f"shutdown_timeout must be positive, got {self.shutdown_timeout}"
            )


@dataclass
class FeedConfig:
    """Live event feed and asset link settings."""

    # Seconds between event polls on an open stream
    poll_interval: float = 1.0

    # Seconds before an open stream is closed
    max_duration: float = 900.0

    # Events fetched per poll
    page_size: int = 50

    # Reconnect delay advertised to clients (milliseconds)
    retry_ms: int = 1000

    # Lifetime of signed asset URLs (seconds)
    asset_url_ttl: int = 3600

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.poll_interval <= 0:
            raise ValueError(
                f"poll_interval must be positive, got {self.poll_interval}"
            )
        if self.max_duration <= 0:
            raise ValueError(f"max_duration must be positive, got {self.max_duration}")
        if not 1 <= self.page_size <= 500:
            raise ValueError(f"page_size must be 1-500, got {self.page_size}")


@dataclass
class LoggingConfig:
    """Configuration for structured logging."""

    # Log level: debug, info, warning, error
    level: str = "info"

    # Log file path (None = stderr only)
    file: Path | None = None

    # Log format: text or json
    format: str = "text"

    # Also log to stderr when file is set
    include_stderr: bool = False

    # Rotation threshold in bytes (default 10MB)
    max_bytes: int = 10_485_760

    # Number of rotated files to keep
    backup_count: int = 5

    def __post_init__(self) -> None:
        """Validate configuration."""
        valid_levels = {"debug", "info", "warning", "error"}
        if self.level.lower() not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}, got {self.level}")
        valid_formats = {"text", "json"}
        if self.format.lower() not in valid_formats:
            raise ValueError(
                f"format must be one of {valid_formats}, got {self.format}"
            )


@dataclass
class SukudoConfig:
    """Main configuration container. Aggregates all sections."""

    tools: ToolPathsConfig = field(default_factory=ToolPathsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Database path (None = default under the data directory)
    database_path: Path | None = None
