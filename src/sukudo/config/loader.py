"""Configuration loader with precedence handling.

Configuration is loaded with the following precedence (highest to lowest):
1. CLI arguments (passed directly to get_config)
2. Environment variables (SUKUDO_*)
3. Config file (~/.sukudo/config.toml)
4. Default values

Environment variables:
- SUKUDO_CONFIG_PATH: Path to config file (overrides default location)
- SUKUDO_DATA_DIR: Data directory (overrides ~/.sukudo/)
- SUKUDO_DATABASE_PATH: Path to database file
- SUKUDO_FFMPEG_PATH / SUKUDO_FFPROBE_PATH: Tool executables
- SUKUDO_DEMUCS_COMMAND: Source separator command line
- SUKUDO_STORAGE_BACKEND / SUKUDO_STORAGE_ROOT / SUKUDO_STORAGE_BUCKET
- SUKUDO_SERVER_BIND / SUKUDO_SERVER_PORT
- SUKUDO_LOG_LEVEL / SUKUDO_LOG_FILE / SUKUDO_LOG_FORMAT
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from sukudo.config.builder import (
    ConfigBuilder,
    ConfigSource,
    source_from_env,
    source_from_file,
)
from sukudo.config.env import EnvReader
from sukudo.config.models import LoggingConfig, SukudoConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".sukudo"
CONFIG_FILENAME = "config.toml"


class ConfigFileError(Exception):
    """The config file exists but could not be read or parsed."""

    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")


def get_data_dir() -> Path:
    """Get the data directory (~/.sukudo/ unless SUKUDO_DATA_DIR is set).

    Holds the database, the config file and the local storage root.
    """
    env_path = os.environ.get("SUKUDO_DATA_DIR")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_DIR


def get_default_config_path() -> Path:
    """Get the config file path, honoring SUKUDO_CONFIG_PATH."""
    env_path = os.environ.get("SUKUDO_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return get_data_dir() / CONFIG_FILENAME


def load_config_file(path: Path | None = None, *, strict: bool = False) -> dict:
    """Load configuration from a TOML file.

    Args:
        path: Path to config file. If None, uses the default location.
        strict: If True, raise ConfigFileError on read or parse failures.
            If False, log a warning and return an empty dict.

    Returns:
        Parsed configuration dict. Empty dict if the file doesn't exist.

    Raises:
        ConfigFileError: When strict=True and the file cannot be parsed.
    """
    if path is None:
        path = get_default_config_path()

    if not path.exists():
        logger.debug("Config file not found: %s", path)
        return {}

    try:
        with path.open("rb") as f:
            config: dict[str, Any] = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        if strict:
            raise ConfigFileError(path, str(e)) from e
        logger.warning("Failed to load config file %s: %s", path, e)
        return {}

    logger.debug("Loaded config from %s", path)
    return config


def get_config(
    config_path: Path | None = None,
    # CLI overrides (highest precedence)
    ffmpeg_path: Path | None = None,
    ffprobe_path: Path | None = None,
    database_path: Path | None = None,
    storage_root: Path | None = None,
    # Optional dependency injection for testing
    env_reader: EnvReader | None = None,
    *,
    strict: bool = False,
) -> SukudoConfig:
    """Get configuration with full precedence handling.

    Args:
        config_path: Path to config file (overrides SUKUDO_CONFIG_PATH).
        ffmpeg_path: CLI override for ffmpeg path.
        ffprobe_path: CLI override for ffprobe path.
        database_path: CLI override for database path.
        storage_root: CLI override for the local storage root.
        env_reader: Optional EnvReader for testing (uses os.environ if None).
        strict: If True, raise ConfigFileError on config file failures.

    Returns:
        SukudoConfig with merged configuration.

    Raises:
        ConfigFileError: When strict=True and the config file is unreadable.
        ValueError: If the merged values fail validation.
    """
    reader = env_reader or EnvReader()

    file_config = load_config_file(config_path, strict=strict)

    builder = ConfigBuilder()
    builder.apply(source_from_file(file_config))
    builder.apply(source_from_env(reader))
    builder.apply(
        ConfigSource(
            ffmpeg_path=ffmpeg_path,
            ffprobe_path=ffprobe_path,
            database_path=database_path,
            storage_root=storage_root,
        )
    )
    return builder.build(data_dir=get_data_dir())


def build_logging_config(
    base: LoggingConfig,
    *,
    level: str | None = None,
    file: Path | None = None,
    format: str | None = None,
    include_stderr: bool | None = None,
) -> LoggingConfig:
    """Merge CLI logging overrides into a base LoggingConfig.

    Non-None arguments replace the base values. Validation runs again via
    LoggingConfig.__post_init__, so invalid values raise ValueError.
    """
    return LoggingConfig(
        level=level if level is not None else base.level,
        file=file if file is not None else base.file,
        format=format if format is not None else base.format,
        include_stderr=(
            include_stderr if include_stderr is not None else base.include_stderr
        ),
        max_bytes=base.max_bytes,
        backup_count=base.backup_count,
    )
