"""Decorator middleware for API handlers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from functools import wraps
from typing import TYPE_CHECKING

from aiohttp import web

from sukudo.server.errors import DATABASE_UNAVAILABLE, SHUTTING_DOWN, api_error

if TYPE_CHECKING:
    from sukudo.db.connection import DaemonConnectionPool

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def shutdown_check_middleware(handler: Handler) -> Handler:
    """Return 503 instead of calling handler while the daemon shuts down."""

    @wraps(handler)
    async def wrapper(request: web.Request) -> web.StreamResponse:
        lifecycle = request.app.get("lifecycle")
        if lifecycle and lifecycle.is_shutting_down:
            return api_error(
                "Service is shutting down", code=SHUTTING_DOWN, status=503
            )
        return await handler(request)

    return wrapper


def database_required_middleware(handler: Handler) -> Handler:
    """Return 503 when no database is configured.

    Otherwise stores the pool as ``request["connection_pool"]``.
    """

    @wraps(handler)
    async def wrapper(request: web.Request) -> web.StreamResponse:
        pool: DaemonConnectionPool | None = request.app.get("connection_pool")
        if pool is None:
            return api_error(
                "Database not available", code=DATABASE_UNAVAILABLE, status=503
            )
        request["connection_pool"] = pool
        return await handler(request)

    return wrapper
