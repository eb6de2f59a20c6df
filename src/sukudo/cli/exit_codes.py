"""Exit codes for CLI commands.

Exit code ranges:
    0: Success
    1-9: General errors
    10-19: Validation and configuration errors
    30-39: Tool/dependency errors
    40-49: Storage and database errors
"""

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes for sukudo CLI commands."""

    SUCCESS = 0

    GENERAL_ERROR = 1
    INTERRUPTED = 2

    VALIDATION_ERROR = 10
    CONFIG_ERROR = 11

    TOOL_NOT_AVAILABLE = 30

    DATABASE_ERROR = 42
