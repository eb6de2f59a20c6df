"""Live job event feed.

Endpoints:
    GET /api/jobs/{job_id}/events - Server-Sent Events stream
    GET /api/jobs/{job_id}/events.json?after=N - One page for pull clients

Both read the append-only event log with a strict ``id > cursor`` query,
so a client that resumes from the last id it saw gets no gaps and no
duplicates. The SSE ``id:`` field carries the event id, letting browsers
resume through the Last-Event-ID header.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3

from aiohttp import web

from sukudo.config.models import FeedConfig
from sukudo.db.operations import get_job
from sukudo.db.types import JobEvent
from sukudo.jobs.events import get_events_after
from sukudo.server.api.jobs import is_valid_uuid
from sukudo.server.errors import (
    INVALID_ID_FORMAT,
    INVALID_PARAMETER,
    NOT_FOUND,
    api_error,
)
from sukudo.server.middleware import (
    database_required_middleware,
    shutdown_check_middleware,
)

logger = logging.getLogger(__name__)

SSE_WRITE_TIMEOUT = 5.0  # seconds - timeout for writing to slow clients

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def format_sse_event(event: JobEvent) -> bytes:
    """Encode one event as an SSE message with its id."""
    return f"id: {event.id}\ndata: {json.dumps(event.to_dict())}\n\n".encode()


def parse_cursor(request: web.Request) -> int:
    """Resume point: Last-Event-ID header, else ``?after=``, else 0.

    Raises:
        ValueError: If the cursor is not a non-negative integer.
    """
    raw = request.headers.get("Last-Event-ID") or request.query.get("after") or "0"
    cursor = int(raw)
    if cursor < 0:
        raise ValueError("cursor must not be negative")
    return cursor


async def _write(response: web.StreamResponse, payload: bytes) -> bool:
    """Write to the stream; False once the client is gone or too slow."""
    try:
        await asyncio.wait_for(response.write(payload), timeout=SSE_WRITE_TIMEOUT)
        return True
    except asyncio.TimeoutError:
        logger.warning("SSE write timeout - slow client")
        return False
    except ConnectionError:
        logger.debug("SSE client disconnected")
        return False


async def _lookup(
    request: web.Request,
) -> tuple[str, int] | web.Response:
    """Validate the job id and cursor, returning an error response if bad."""
    job_id = request.match_info["job_id"]
    if not is_valid_uuid(job_id):
        return api_error(f"Invalid job id: '{job_id}'", code=INVALID_ID_FORMAT)

    try:
        cursor = parse_cursor(request)
    except ValueError:
        return api_error(
            "after / Last-Event-ID must be a non-negative integer",
            code=INVALID_PARAMETER,
        )

    pool = request["connection_pool"]
    job = await asyncio.to_thread(pool.call, get_job, job_id)
    if job is None:
        return api_error(f"Job not found: {job_id}", code=NOT_FOUND, status=404)
    return job_id, cursor


@shutdown_check_middleware
@database_required_middleware
async def job_events_stream_handler(request: web.Request) -> web.StreamResponse:
    """Handle GET /api/jobs/{job_id}/events as a Server-Sent Events stream.

    Polls for new events every feed poll interval and writes each one with
    its id. The stream ends after the job's terminal event, on daemon
    shutdown, or when the feed's wall-clock ceiling is reached. A client
    resuming past the terminal event gets 204, which tells EventSource to
    stop reconnecting.
    """
    looked_up = await _lookup(request)
    if isinstance(looked_up, web.Response):
        return looked_up
    job_id, cursor = looked_up

    pool = request["connection_pool"]
    feed: FeedConfig = request.app["feed_config"]
    shutdown_event: asyncio.Event = request.app["shutdown_event"]

    events = await asyncio.to_thread(
        pool.call, get_events_after, job_id, cursor, feed.page_size
    )
    if not events and cursor > 0:
        job = await asyncio.to_thread(pool.call, get_job, job_id)
        if job is not None and job.status.is_terminal:
            return web.Response(status=204)

    response = web.StreamResponse(status=200, headers=SSE_HEADERS)
    await response.prepare(request)
    if not await _write(response, f"retry: {feed.retry_ms}\n\n".encode()):
        return response

    loop = asyncio.get_running_loop()
    deadline = loop.time() + feed.max_duration
    logger.debug("SSE stream opened for job %s from event %d", job_id, cursor)

    while True:
        finished = False
        for event in events:
            if not await _write(response, format_sse_event(event)):
                return response
            cursor = event.id
            finished = finished or event.is_terminal
        if finished:
            logger.debug("SSE stream for job %s reached terminal event", job_id)
            break

        remaining = deadline - loop.time()
        if remaining <= 0 or shutdown_event.is_set():
            break
        if len(events) < feed.page_size:
            await asyncio.sleep(min(feed.poll_interval, remaining))

        try:
            events = await asyncio.to_thread(
                pool.call, get_events_after, job_id, cursor, feed.page_size
            )
        except sqlite3.Error as e:
            logger.warning("SSE event query failed for job %s: %s", job_id, e)
            events = []

    return response


@shutdown_check_middleware
@database_required_middleware
async def job_events_page_handler(request: web.Request) -> web.Response:
    """Handle GET /api/jobs/{job_id}/events.json?after=N.

    Returns at most one page of events after the cursor, plus the cursor
    to pass next time and whether the terminal event has been delivered.
    """
    looked_up = await _lookup(request)
    if isinstance(looked_up, web.Response):
        return looked_up
    job_id, cursor = looked_up

    pool = request["connection_pool"]
    feed: FeedConfig = request.app["feed_config"]
    events = await asyncio.to_thread(
        pool.call, get_events_after, job_id, cursor, feed.page_size
    )
    return web.json_response(
        {
            "job_id": job_id,
            "events": [event.to_dict() for event in events],
            "next_after": events[-1].id if events else cursor,
            "terminal": any(event.is_terminal for event in events),
        }
    )


def get_events_routes() -> list[tuple[str, str, object]]:
    """Return event feed route definitions as (method, path, handler) tuples."""
    return [
        ("GET", "/api/jobs/{job_id}/events", job_events_stream_handler),
        ("GET", "/api/jobs/{job_id}/events.json", job_events_page_handler),
    ]
