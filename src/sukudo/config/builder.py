"""Configuration builder with explicit layering.

ConfigBuilder composes ConfigSources from the config file, the environment
and the command line. Later sources override earlier ones.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from sukudo.config.env import EnvReader
from sukudo.config.models import (
    FeedConfig,
    LoggingConfig,
    ServerConfig,
    StorageConfig,
    SukudoConfig,
    ToolPathsConfig,
    WorkerConfig,
)


@dataclass
class ConfigSource:
    """Configuration values from a single source.

    None means "not specified here" and never overrides a value from a
    lower-precedence source.
    """

    # Tool paths
    ffmpeg_path: Path | None = None
    ffprobe_path: Path | None = None
    demucs_command: str | None = None

    # Database
    database_path: Path | None = None

    # Storage
    storage_backend: str | None = None
    storage_root: Path | None = None
    storage_bucket: str | None = None
    storage_region: str | None = None
    storage_endpoint_url: str | None = None

    # Worker
    worker_poll_interval: float | None = None
    worker_heartbeat_interval: float | None = None
    worker_max_jobs: int | None = None
    worker_max_duration: int | None = None
    worker_reap_after: int | None = None
    worker_ffmpeg_timeout: int | None = None
    worker_separation_timeout: int | None = None
    worker_separator_model: str | None = None
    worker_separator_jobs: int | None = None

    # Server
    server_bind: str | None = None
    server_port: int | None = None
    server_shutdown_timeout: float | None = None

    # Feed
    feed_poll_interval: float | None = None
    feed_max_duration: float | None = None
    feed_page_size: int | None = None
    feed_retry_ms: int | None = None
    feed_asset_url_ttl: int | None = None

    # Logging
    logging_level: str | None = None
    logging_file: Path | None = None
    logging_format: str | None = None
    logging_include_stderr: bool | None = None
    logging_max_bytes: int | None = None
    logging_backup_count: int | None = None


class ConfigBuilder:
    """Builds SukudoConfig by layering ConfigSources.

    Example:
        builder = ConfigBuilder()
        builder.apply(source_from_file(file_config))
        builder.apply(source_from_env(reader))
        builder.apply(cli_source)
        config = builder.build(data_dir)
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    def apply(self, source: ConfigSource) -> None:
        """Apply a source; its non-None values override existing ones."""
        for field_obj in fields(source):
            value = getattr(source, field_obj.name)
            if value is not None:
                self._values[field_obj.name] = value

    def _get(self, key: str, default: Any) -> Any:
        return self._values.get(key, default)

    def build(self, data_dir: Path) -> SukudoConfig:
        """Build the final SukudoConfig with defaults for unset values.

        Args:
            data_dir: Data directory; the local storage root defaults to
                ``<data_dir>/storage``.

        Raises:
            ValueError: If a resolved value fails section validation.
        """
        tools = ToolPathsConfig(
            ffmpeg=self._get("ffmpeg_path", None),
            ffprobe=self._get("ffprobe_path", None),
            demucs=self._get("demucs_command", None),
        )

        storage = StorageConfig(
            backend=self._get("storage_backend", "local"),
            root=self._get("storage_root", data_dir / "storage"),
            bucket=self._get("storage_bucket", None),
            region=self._get("storage_region", None),
            endpoint_url=self._get("storage_endpoint_url", None),
        )

        # 0 means "no limit"
        max_jobs = self._get("worker_max_jobs", None)
        max_duration = self._get("worker_max_duration", None)
        reap_after = self._get("worker_reap_after", None)

        worker = WorkerConfig(
            poll_interval=self._get("worker_poll_interval", 2.0),
            heartbeat_interval=self._get("worker_heartbeat_interval", 30.0),
            max_jobs=max_jobs if max_jobs else None,
            max_duration=max_duration if max_duration else None,
            reap_after=reap_after if reap_after else None,
            ffmpeg_timeout=self._get("worker_ffmpeg_timeout", 1800),
            separation_timeout=self._get("worker_separation_timeout", 3600),
            separator_model=self._get("worker_separator_model", "htdemucs"),
            separator_jobs=self._get("worker_separator_jobs", 2),
        )

        server = ServerConfig(
            bind=self._get("server_bind", "127.0.0.1"),
            port=self._get("server_port", 8340),
            shutdown_timeout=self._get("server_shutdown_timeout", 30.0),
        )

        feed = FeedConfig(
            poll_interval=self._get("feed_poll_interval", 1.0),
            max_duration=self._get("feed_max_duration", 900.0),
            page_size=self._get("feed_page_size", 50),
            retry_ms=self._get("feed_retry_ms", 1000),
            asset_url_ttl=self._get("feed_asset_url_ttl", 3600),
        )

        logging_config = LoggingConfig(
            level=self._get("logging_level", "info"),
            file=self._get("logging_file", None),
            format=self._get("logging_format", "text"),
            include_stderr=self._get("logging_include_stderr", False),
            max_bytes=self._get("logging_max_bytes", 10_485_760),
            backup_count=self._get("logging_backup_count", 5),
        )

        return SukudoConfig(
            tools=tools,
            storage=storage,
            worker=worker,
            server=server,
            feed=feed,
            logging=logging_config,
            database_path=self._get("database_path", None),
        )


def _optional_path(value: Any) -> Path | None:
    return Path(value).expanduser() if value else None


def source_from_file(file_config: dict[str, Any]) -> ConfigSource:
    """Create a ConfigSource from a parsed TOML config file."""
    tools = file_config.get("tools", {})
    storage = file_config.get("storage", {})
    worker = file_config.get("worker", {})
    server = file_config.get("server", {})
    feed = file_config.get("feed", {})
    logging_conf = file_config.get("logging", {})

    return ConfigSource(
        ffmpeg_path=_optional_path(tools.get("ffmpeg")),
        ffprobe_path=_optional_path(tools.get("ffprobe")),
        demucs_command=tools.get("demucs"),
        database_path=_optional_path(file_config.get("database_path")),
        storage_backend=storage.get("backend"),
        storage_root=_optional_path(storage.get("root")),
        storage_bucket=storage.get("bucket"),
        storage_region=storage.get("region"),
        storage_endpoint_url=storage.get("endpoint_url"),
        worker_poll_interval=worker.get("poll_interval"),
        worker_heartbeat_interval=worker.get("heartbeat_interval"),
        worker_max_jobs=worker.get("max_jobs"),
        worker_max_duration=worker.get("max_duration"),
        worker_reap_after=worker.get("reap_after"),
        worker_ffmpeg_timeout=worker.get("ffmpeg_timeout"),
        worker_separation_timeout=worker.get("separation_timeout"),
        worker_separator_model=worker.get("separator_model"),
        worker_separator_jobs=worker.get("separator_jobs"),
        server_bind=server.get("bind"),
        server_port=server.get("port"),
        server_shutdown_timeout=server.get("shutdown_timeout"),
        feed_poll_interval=feed.get("poll_interval"),
        feed_max_duration=feed.get("max_duration"),
        feed_page_size=feed.get("page_size"),
        feed_retry_ms=feed.get("retry_ms"),
        feed_asset_url_ttl=feed.get("asset_url_ttl"),
        logging_level=logging_conf.get("level"),
        logging_file=_optional_path(logging_conf.get("file")),
        logging_format=logging_conf.get("format"),
        logging_include_stderr=logging_conf.get("include_stderr"),
        logging_max_bytes=logging_conf.get("max_bytes"),
        logging_backup_count=logging_conf.get("backup_count"),
    )


def source_from_env(reader: EnvReader) -> ConfigSource:
    """Create a ConfigSource from SUKUDO_* environment variables."""
    return ConfigSource(
        ffmpeg_path=reader.get_path("SUKUDO_FFMPEG_PATH", must_exist=True),
        ffprobe_path=reader.get_path("SUKUDO_FFPROBE_PATH", must_exist=True),
        demucs_command=reader.get_str("SUKUDO_DEMUCS_COMMAND"),
        database_path=reader.get_path("SUKUDO_DATABASE_PATH"),
        storage_backend=reader.get_str("SUKUDO_STORAGE_BACKEND"),
        storage_root=reader.get_path("SUKUDO_STORAGE_ROOT"),
        storage_bucket=reader.get_str("SUKUDO_STORAGE_BUCKET"),
        storage_region=reader.get_str("SUKUDO_STORAGE_REGION"),
        storage_endpoint_url=reader.get_str("SUKUDO_STORAGE_ENDPOINT_URL"),
        worker_poll_interval=reader.get_float("SUKUDO_WORKER_POLL_INTERVAL"),
        worker_heartbeat_interval=reader.get_float(
            "SUKUDO_WORKER_HEARTBEAT_INTERVAL"
        ),
        worker_max_jobs=reader.get_int("SUKUDO_WORKER_MAX_JOBS"),
        worker_max_duration=reader.get_int("SUKUDO_WORKER_MAX_DURATION"),
        worker_reap_after=reader.get_int("SUKUDO_WORKER_REAP_AFTER"),
        worker_ffmpeg_timeout=reader.get_int("SUKUDO_FFMPEG_TIMEOUT"),
        worker_separation_timeout=reader.get_int("SUKUDO_SEPARATION_TIMEOUT"),
        worker_separator_model=reader.get_str("SUKUDO_SEPARATOR_MODEL"),
        worker_separator_jobs=reader.get_int("SUKUDO_SEPARATOR_JOBS"),
        server_bind=reader.get_str("SUKUDO_SERVER_BIND"),
        server_port=reader.get_int("SUKUDO_SERVER_PORT"),
        server_shutdown_timeout=reader.get_float("SUKUDO_SERVER_SHUTDOWN_TIMEOUT"),
        feed_poll_interval=reader.get_float("SUKUDO_FEED_POLL_INTERVAL"),
        feed_max_duration=reader.get_float("SUKUDO_FEED_MAX_DURATION"),
        feed_page_size=reader.get_int("SUKUDO_FEED_PAGE_SIZE"),
        feed_retry_ms=None,
        feed_asset_url_ttl=reader.get_int("SUKUDO_ASSET_URL_TTL"),
        logging_level=reader.get_str("SUKUDO_LOG_LEVEL"),
        logging_file=reader.get_path("SUKUDO_LOG_FILE"),
        logging_format=reader.get_str("SUKUDO_LOG_FORMAT"),
        logging_include_stderr=None,
        logging_max_bytes=None,
        logging_backup_count=None,
    )
