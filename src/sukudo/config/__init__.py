"""Configuration management.

Precedence, highest first: CLI flags, SUKUDO_* environment variables,
the config file (~/.sukudo/config.toml), defaults.
"""

from sukudo.config.builder import (
    ConfigBuilder,
    ConfigSource,
    source_from_env,
    source_from_file,
)
from sukudo.config.env import EnvReader
from sukudo.config.loader import (
    ConfigFileError,
    build_logging_config,
    get_config,
    get_data_dir,
    get_default_config_path,
    load_config_file,
)
from sukudo.config.models import (
    FeedConfig,
    LoggingConfig,
    ServerConfig,
    StorageConfig,
    SukudoConfig,
    ToolPathsConfig,
    WorkerConfig,
)

__all__ = [
    # Models
    "FeedConfig",
    "LoggingConfig",
    "ServerConfig",
    "StorageConfig",
    "SukudoConfig",
    "ToolPathsConfig",
    "WorkerConfig",
    # Loading
    "ConfigBuilder",
    "ConfigFileError",
    "ConfigSource",
    "EnvReader",
    "build_logging_config",
    "get_config",
    "get_data_dir",
    "get_default_config_path",
    "load_config_file",
    "source_from_env",
    "source_from_file",
]
