"""Environment variable reader.

EnvReader accepts an optional mapping in place of os.environ so tests can
inject variables without touching the process environment.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes", "on")


class EnvReader:
    """Typed access to environment variables.

    Unset variables return the default. Set but unparseable numbers log a
    warning and also return the default.

    Example:
        reader = EnvReader(env={"SUKUDO_SERVER_PORT": "9000"})
        port = reader.get_int("SUKUDO_SERVER_PORT", 8340)  # 9000
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env: Mapping[str, str] = env if env is not None else os.environ

    def get_str(self, var: str, default: str | None = None) -> str | None:
        value = self._env.get(var)
        if value is None:
            return default
        return value

    def get_int(self, var: str, default: int | None = None) -> int | None:
        value = self._env.get(var)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid integer value for %s: %s", var, value)
            return default

    def get_float(self, var: str, default: float | None = None) -> float | None:
        value = self._env.get(var)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            logger.warning("Invalid float value for %s: %s", var, value)
            return default

    def get_bool(self, var: str, default: bool | None = None) -> bool | None:
        """Read a boolean; "true", "1", "yes" and "on" are true."""
        value = self._env.get(var)
        if value is None:
            return default
        return value.strip().lower() in _TRUE_VALUES

    def get_path(
        self, var: str, must_exist: bool = False, default: Path | None = None
    ) -> Path | None:
        """Read a path with tilde expansion.

        Args:
            var: Environment variable name.
            must_exist: If True, a path that does not exist logs a warning
                and yields the default.
            default: Value returned when unset.
        """
        value = self._env.get(var)
        if value is None:
            return default

        path = Path(value).expanduser()
        if must_exist and not path.exists():
            logger.warning(
                "Environment variable %s points to non-existent path: %s",
                var,
                value,
            )
            return default
        return path
