"""Append-only job event log.

Events are inserted with a strictly increasing id and are never updated or
deleted. Readers tail the log with a strict ``id > cursor`` range query,
so a consumer that resumes from its last-seen id gets no gaps and no
duplicates.
"""

import logging
import sqlite3
from typing import Any

from sukudo.db.operations import insert_event, select_events_after
from sukudo.db.types import (
    EVENT_FALLBACK,
    EVENT_PROGRESS,
    EVENT_STARTED,
    EventLevel,
    JobEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


def append_event(
    conn: sqlite3.Connection,
    job_id: str,
    message: str,
    level: EventLevel = EventLevel.INFO,
    data: dict[str, Any] | None = None,
) -> int:
    """Append one event and commit.

    Returns:
        The new event's id.
    """
    event_id = insert_event(conn, job_id, message, level, data)
    conn.commit()
    return event_id


def get_events_after(
    conn: sqlite3.Connection,
    job_id: str,
    after_id: int = 0,
    limit: int = DEFAULT_PAGE_SIZE,
) -> list[JobEvent]:
    """Return up to limit events for a job with id greater than after_id.

    Args:
        conn: Database connection.
        job_id: Job UUID.
        after_id: Last id the consumer has seen; 0 reads from the start.
        limit: Page size.

    Returns:
        Events ordered by ascending id.
    """
    return select_events_after(conn, job_id, max(after_id, 0), max(limit, 1))


def get_all_events(conn: sqlite3.Connection, job_id: str) -> list[JobEvent]:
    """Read a job's whole log by paging through it."""
    events: list[JobEvent] = []
    cursor = 0
    while True:
        page = get_events_after(conn, job_id, cursor)
        if not page:
            return events
        events.extend(page)
        cursor = page[-1].id


class JobEventLog:
    """Event writer bound to one job.

    The orchestrator is the only writer of a job's events; it uses one of
    these per claimed job.
    """

    def __init__(self, conn: sqlite3.Connection, job_id: str) -> None:
        self.conn = conn
        self.job_id = job_id

    def append(
        self,
        message: str,
        level: EventLevel = EventLevel.INFO,
        data: dict[str, Any] | None = None,
    ) -> int:
        logger.debug("Job event %s: %s %s", self.job_id, message, data or "")
        return append_event(self.conn, self.job_id, message, level, data)

    def started(self, files: list[str]) -> int:
        return self.append(EVENT_STARTED, data={"files": list(files)})

    def progress(self, step: str, **details: Any) -> int:
        return self.append(EVENT_PROGRESS, data={"step": step, **details})

    def fallback(self, path: str, reason: str) -> int:
        return self.append(
            EVENT_FALLBACK, EventLevel.WARN, {"path": path, "reason": reason}
        )
