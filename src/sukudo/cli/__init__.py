"""CLI for the sukudo enhancement service."""

import atexit
import logging
import sqlite3
from pathlib import Path

import click

from sukudo.config import (
    ConfigFileError,
    SukudoConfig,
    build_logging_config,
    get_config,
)
from sukudo.db.connection import get_default_db_path, open_connection
from sukudo.db.schema import initialize_database
from sukudo.logging import configure_logging

_db_conn: sqlite3.Connection | None = None
_logging_configured: bool = False

logger = logging.getLogger(__name__)


def _cleanup_db_connection() -> None:
    global _db_conn
    if _db_conn is not None:
        try:
            _db_conn.close()
        except sqlite3.Error as e:
            logger.debug("Error closing database connection: %s", e)
        _db_conn = None


def _get_db_connection(config: SukudoConfig) -> sqlite3.Connection | None:
    """Open the process-wide connection, creating the schema if needed.

    The connection lives for the rest of the process and is closed at
    exit.

    Returns:
        Database connection or None if it could not be opened.
    """
    global _db_conn

    if _db_conn is not None:
        return _db_conn

    db_path = config.database_path or get_default_db_path()
    try:
        conn = open_connection(db_path)
        initialize_database(conn)
    except (sqlite3.Error, OSError, RuntimeError) as e:
        logger.warning("Failed to open database %s: %s", db_path, e)
        return None

    _db_conn = conn
    atexit.register(_cleanup_db_connection)
    return conn


def _configure_logging(
    config: SukudoConfig,
    log_level: str | None,
    log_file: Path | None,
    log_json: bool,
) -> None:
    global _logging_configured
    if _logging_configured:
        return

    configure_logging(
        build_logging_config(
            config.logging,
            level=log_level,
            file=log_file,
            format="json" if log_json else None,
        )
    )
    _logging_configured = True


def get_db_conn(ctx: click.Context) -> sqlite3.Connection:
    """Return the command's database connection.

    Raises:
        click.ClickException: If the database is unavailable.
    """
    conn = ctx.obj.get("db_conn")
    if conn is None:
        conn = _get_db_connection(ctx.obj["config"])
        ctx.obj["db_conn"] = conn
    if conn is None:
        raise click.ClickException("Failed to connect to database.")
    return conn


@click.group()
@click.version_option(package_name="sukudo-enhance")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to configuration file (default: ~/.sukudo/config.toml).",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Override log level (default: info).",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Override log file path.",
)
@click.option(
    "--log-json",
    is_flag=True,
    default=False,
    help="Use JSON log format.",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    log_level: str | None,
    log_file: Path | None,
    log_json: bool,
) -> None:
    """Sukudo - clean up speech in audio and video files."""
    ctx.ensure_object(dict)

    # Tests pass a prepared config and connection through obj
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = get_config(config_path=config_path, strict=True)
        except (ConfigFileError, ValueError) as e:
            raise click.ClickException(f"Invalid configuration: {e}") from e
    ctx.obj["config_path"] = config_path

    _configure_logging(ctx.obj["config"], log_level, log_file, log_json)


def _register_commands() -> None:
    from sukudo.cli.doctor import doctor_command
    from sukudo.cli.jobs import jobs_group
    from sukudo.cli.serve import serve_command
    from sukudo.cli.worker import worker_command

    main.add_command(doctor_command)
    main.add_command(jobs_group)
    main.add_command(serve_command)
    main.add_command(worker_command)


_register_commands()
