"""HTTP application for daemon mode.

Provides the aiohttp Application with the health endpoint, the job API
and the live event feed.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from aiohttp import web

from sukudo import __version__
from sukudo.config.models import FeedConfig
from sukudo.db.connection import DaemonConnectionPool
from sukudo.db.schema import initialize_database
from sukudo.jobs.queue import get_queue_stats
from sukudo.server.api import setup_api_routes

if TYPE_CHECKING:
    from sukudo.server.lifecycle import DaemonLifecycle
    from sukudo.storage import ObjectStorage

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT = 5.0  # seconds


@dataclass
class HealthStatus:
    """Health check response payload."""

    status: str
    """Overall status: 'healthy', 'degraded', or 'unhealthy'."""

    database: str
    """Database connectivity: 'connected' or 'disconnected'."""

    uptime_seconds: float
    version: str
    shutting_down: bool = False
    jobs_queued: int = 0
    jobs_running: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


async def check_database_health(connection_pool: DaemonConnectionPool | None) -> bool:
    """Run SELECT 1 on the pool in a thread, with a timeout.

    Returns:
        True if the database answered, False otherwise.
    """
    if connection_pool is None:
        return False

    def _sync_check() -> bool:
        try:
            connection_pool.execute_read("SELECT 1")
            return True
        except sqlite3.Error as e:
            logger.warning("Database error during health check: %s", e)
            return False

    try:
        return await asyncio.wait_for(
            asyncio.to_thread(_sync_check),
            timeout=HEALTH_CHECK_TIMEOUT,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "Database health check timed out after %.1fs", HEALTH_CHECK_TIMEOUT
        )
        return False


async def _cleanup_connection_pool(app: web.Application) -> None:
    pool: DaemonConnectionPool | None = app.get("connection_pool")
    if pool is not None:
        logger.debug("Closing database connection pool")
        pool.close()


def create_app(
    db_path: Path | None = None,
    storage: ObjectStorage | None = None,
    feed: FeedConfig | None = None,
    db_timeout: float = 30.0,
) -> web.Application:
    """Create and configure the aiohttp Application.

    Args:
        db_path: Database file. When given the schema is created or
            checked and a connection pool is attached to the app.
        storage: Object storage used to sign asset URLs.
        feed: Live feed settings (defaults when None).
        db_timeout: SQLite busy timeout for the pool.

    Returns:
        Configured aiohttp Application instance.
    """
    app = web.Application()

    app["lifecycle"] = None  # Set by the serve command
    app["storage"] = storage
    app["feed_config"] = feed if feed is not None else FeedConfig()
    app["shutdown_event"] = asyncio.Event()

    if db_path is not None:
        pool = DaemonConnectionPool(db_path, timeout=db_timeout)
        pool.call(initialize_database)
        app["connection_pool"] = pool
        logger.debug("Created database connection pool for %s", db_path)
    else:
        app["connection_pool"] = None

    app.router.add_get("/health", health_handler)
    setup_api_routes(app)

    app.on_shutdown.append(_signal_streams)
    app.on_cleanup.append(_cleanup_connection_pool)

    return app


async def _signal_streams(app: web.Application) -> None:
    """Tell open event streams to close."""
    app["shutdown_event"].set()


async def health_handler(request: web.Request) -> web.Response:
    """Handle GET /health.

    Returns 200 when the database answers and the daemon is not shutting
    down, 503 otherwise.
    """
    lifecycle: DaemonLifecycle | None = request.app.get("lifecycle")
    connection_pool: DaemonConnectionPool | None = request.app.get("connection_pool")

    db_connected = await check_database_health(connection_pool)

    shutting_down = lifecycle.is_shutting_down if lifecycle else False
    uptime = lifecycle.uptime_seconds if lifecycle else 0.0

    stats: dict[str, int] = {}
    if db_connected and connection_pool is not None:
        try:
            stats = await asyncio.to_thread(connection_pool.call, get_queue_stats)
        except sqlite3.Error as e:
            logger.warning("Failed to get queue stats for health check: %s", e)

    if shutting_down:
        status = "unhealthy"
    elif not db_connected:
        status = "degraded"
    else:
        status = "healthy"

    health = HealthStatus(
        status=status,
        database="connected" if db_connected else "disconnected",
        uptime_seconds=round(uptime, 1),
        version=__version__,
        shutting_down=shutting_down,
        jobs_queued=stats.get("queued", 0),
        jobs_running=stats.get("running", 0),
    )

    http_status = 200 if status == "healthy" else 503
    return web.json_response(health.to_dict(), status=http_status)
