"""JSON API and event feed routes.

- jobs.py: submission, listing, detail and signed asset URLs
- events.py: Server-Sent Events stream and paged event reads
"""

from aiohttp import web

from sukudo.server.api.events import get_events_routes
from sukudo.server.api.jobs import get_job_routes

__all__ = [
    "setup_api_routes",
]

_ROUTE_GETTERS = [
    get_job_routes,
    get_events_routes,
]


def setup_api_routes(app: web.Application) -> None:
    """Register all API routes with the application."""
    for getter in _ROUTE_GETTERS:
        for method, path, handler in getter():
            app.router.add_route(method, path, handler)
