"""CLI serve command for daemon mode.

This module provides the `sukudo serve` command that runs the job API and
live event feed as a long-lived service suitable for systemd management.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from sukudo.cli import get_db_conn
from sukudo.cli.exit_codes import ExitCode
from sukudo.db.connection import check_database_connectivity, get_default_db_path
from sukudo.storage import create_storage

if TYPE_CHECKING:
    from sukudo.config.models import FeedConfig
    from sukudo.storage import ObjectStorage

logger = logging.getLogger(__name__)


async def run_server(
    bind: str,
    port: int,
    shutdown_timeout: float,
    db_path: Path,
    storage: ObjectStorage | None = None,
    feed: FeedConfig | None = None,
) -> int:
    """Run the daemon server.

    Args:
        bind: Address to bind to.
        port: Port to bind to.
        shutdown_timeout: Seconds to wait for graceful shutdown.
        db_path: Path to database file.
        storage: Object storage used to sign output URLs.
        feed: Event feed settings.

    Returns:
        Exit code (0 for clean shutdown, non-zero for errors).
    """
    from aiohttp import web

    from sukudo.server.app import create_app
    from sukudo.server.lifecycle import DaemonLifecycle
    from sukudo.server.signals import remove_signal_handlers, setup_signal_handlers

    lifecycle = DaemonLifecycle(shutdown_timeout=shutdown_timeout)
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    setup_signal_handlers(loop, lifecycle, shutdown_event)

    app = create_app(db_path=db_path, storage=storage, feed=feed)
    app["lifecycle"] = lifecycle

    runner = web.AppRunner(app, shutdown_timeout=shutdown_timeout)
    await runner.setup()

    try:
        site = web.TCPSite(runner, bind, port)
        await site.start()

        logger.info(
            "Sukudo daemon started on http://%s:%d (PID %d)", bind, port, os.getpid()
        )
        logger.info("Health endpoint: http://%s:%d/health", bind, port)
        logger.info("Press Ctrl+C or send SIGTERM to stop")

        await shutdown_event.wait()

        logger.info(
            "Shutdown initiated, waiting up to %.1fs for cleanup", shutdown_timeout
        )
        # Brief pause for in-flight requests
        await asyncio.sleep(0.5)

    except OSError as e:
        if e.errno == 98:
            logger.error("Port %d is already in use", port)
            return ExitCode.GENERAL_ERROR
        if e.errno == 99:
            logger.error("Cannot bind to address %s", bind)
            return ExitCode.GENERAL_ERROR
        logger.error("Server error: %s", e)
        return ExitCode.GENERAL_ERROR
    finally:
        remove_signal_handlers(loop)
        await runner.cleanup()
        logger.info("Sukudo daemon stopped")

    return ExitCode.SUCCESS


@click.command("serve")
@click.option(
    "--bind",
    type=str,
    default=None,
    help="Address to bind to (default: 127.0.0.1).",
)
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="Port to bind to (default: 8340).",
)
@click.pass_context
def serve_command(ctx: click.Context, bind: str | None, port: int | None) -> None:
    """Run the job API and live event feed as a daemon.

    Serves job submission, job status, signed output URLs and a
    Server-Sent Events feed per job. Handles graceful shutdown on SIGTERM
    (from systemd) or SIGINT (Ctrl+C). Jobs are executed by separate
    `sukudo worker` processes sharing the same database.

    \b
    Examples:
        sukudo serve                    # Start with defaults
        sukudo serve --port 9000        # Custom port
        sukudo serve --bind 0.0.0.0     # Listen on all interfaces
    """
    config = ctx.obj["config"]

    server_bind = bind if bind is not None else config.server.bind
    server_port = port if port is not None else config.server.port
    shutdown_timeout = config.server.shutdown_timeout

    if not 1 <= server_port <= 65535:
        logger.error("Port must be 1-65535, got %d", server_port)
        sys.exit(ExitCode.VALIDATION_ERROR)

    # Opening the CLI connection creates the schema on first run
    get_db_conn(ctx)
    db_path = config.database_path or get_default_db_path()
    if not check_database_connectivity(db_path):
        logger.error("Database not accessible: %s", db_path)
        sys.exit(ExitCode.DATABASE_ERROR)

    try:
        storage = create_storage(config.storage)
    except ValueError as e:
        logger.error("Invalid storage configuration: %s", e)
        sys.exit(ExitCode.CONFIG_ERROR)

    logger.info(
        "Starting sukudo daemon (bind=%s, port=%d, timeout=%.1fs)",
        server_bind,
        server_port,
        shutdown_timeout,
    )

    try:
        exit_code = asyncio.run(
            run_server(
                server_bind,
                server_port,
                shutdown_timeout,
                db_path,
                storage=storage,
                feed=config.feed,
            )
        )
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted before server started")
        sys.exit(ExitCode.INTERRUPTED)
