"""Logging setup from LoggingConfig."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from sukudo.logging.context import JobContextFilter
from sukudo.logging.handlers import JSONFormatter

if TYPE_CHECKING:
    from sukudo.config.models import LoggingConfig

_LEVEL_MAP: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

TEXT_FORMAT = "%(asctime)s - %(job_tag)s%(name)s - %(levelname)s - %(message)s"
TEXT_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def configure_logging(config: LoggingConfig) -> None:
    """Replace the root logger's handlers according to config.

    Logs go to a rotating file when one is configured, and to stderr when
    include_stderr is set or the file cannot be opened.
    """
    level = _LEVEL_MAP.get(config.level.casefold(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if config.format.casefold() == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT)

    context_filter = JobContextFilter()

    file_handler_added = False
    if config.file:
        try:
            file_path = Path(config.file).expanduser()
            file_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                file_path,
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(context_filter)
            root_logger.addHandler(file_handler)
            file_handler_added = True
        except OSError as e:
            sys.stderr.write(f"Warning: Could not open log file {config.file}: {e}\n")

    if config.include_stderr or not file_handler_added:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(level)
        stderr_handler.setFormatter(formatter)
        stderr_handler.addFilter(context_filter)
        root_logger.addHandler(stderr_handler)
