"""Job queue operations for Sukudo.

This module provides queue operations with SQLite-based job management:
- Atomic job claiming through a conditional update
- Terminal transitions that happen exactly once, with their terminal event
- Heartbeats and reaping of jobs whose worker stopped reporting
"""

import json
import logging
import os
import socket
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any

from sukudo.db.operations import get_job, insert_event, utc_now
from sukudo.db.types import (
    EVENT_COMPLETED,
    EVENT_FAILED,
    EventLevel,
    Job,
    JobStatus,
    JobType,
)

logger = logging.getLogger(__name__)

# Jobs without a heartbeat for this long are considered stale
DEFAULT_HEARTBEAT_TIMEOUT = 300  # 5 minutes


def default_worker_id() -> str:
    """Identify this worker process as ``host:pid``."""
    return f"{socket.gethostname()}:{os.getpid()}"


def _rollback_quietly(conn: sqlite3.Connection) -> None:
    try:
        conn.execute("ROLLBACK")
    except sqlite3.Error as e:
        logger.debug("Rollback failed: %s", e)


def try_claim_job(conn: sqlite3.Connection, job_id: str, worker_id: str) -> bool:
    """Conditionally move one job from queued to running.

    This is the only synchronization point between workers: the update
    matches only while the job is still queued, so at most one caller
    sees a row affected. The caller commits.

    Returns:
        True if this call claimed the job, False if it was no longer queued.
    """
    now = utc_now()
    cursor = conn.execute(
        """
        UPDATE jobs
        SET status = 'running',
            started_at = ?,
            updated_at = ?,
            worker_id = ?,
            worker_heartbeat = ?
        WHERE id = ? AND status = 'queued'
        """,
        (now, now, worker_id, now, job_id),
    )
    return cursor.rowcount == 1


def claim_next_job(
    conn: sqlite3.Connection,
    worker_id: str | None = None,
) -> Job | None:
    """Claim the oldest queued enhance job.

    Uses BEGIN IMMEDIATE so the select and the conditional update run
    under one write lock on this database. If the update still affects
    no rows another worker got there first and None is returned; the
    caller retries on its next tick.

    Args:
        conn: Database connection.
        worker_id: Worker identifier (defaults to host:pid).

    Returns:
        The claimed Job, or None if nothing was claimed.
    """
    if worker_id is None:
        worker_id = default_worker_id()

    try:
        conn.execute("BEGIN IMMEDIATE")

        cursor = conn.execute(
            """
            SELECT id FROM jobs
            WHERE status = 'queued' AND job_type = ?
            ORDER BY created_at ASC, rowid ASC
            LIMIT 1
            """,
            (JobType.ENHANCE.value,),
        )
        row = cursor.fetchone()
        if row is None:
            conn.execute("ROLLBACK")
            return None

        job_id = row[0]
        if not try_claim_job(conn, job_id, worker_id):
            conn.execute("ROLLBACK")
            logger.debug("Job %s was claimed by another worker", job_id)
            return None

        conn.execute("COMMIT")
        return get_job(conn, job_id)

    except sqlite3.OperationalError as e:
        _rollback_quietly(conn)
        error_msg = str(e).casefold()
        if "locked" in error_msg or "busy" in error_msg:
            logger.warning("Lock contention while claiming job: %s", e)
            return None  # Caller can retry
        logger.error("Database operational error while claiming job: %s", e)
        raise
    except sqlite3.DatabaseError as e:
        _rollback_quietly(conn)
        logger.error("Database error while claiming job: %s", e)
        raise


def _finish_job(
    conn: sqlite3.Connection,
    job_id: str,
    worker_id: str | None,
    status: JobStatus,
    event_level: EventLevel,
    event_message: str,
    event_data: dict[str, Any],
    result_url: str | None = None,
    output_urls: list[str] | None = None,
    error_message: str | None = None,
) -> bool:
    """Apply a terminal transition and its terminal event atomically.

    The update only matches a running job (owned by worker_id when given),
    so a second call for the same job changes nothing and appends no
    event.
    """
    now = utc_now()
    owner_clause = "AND worker_id = ?" if worker_id is not None else ""
    params: list[Any] = [
        status.value,
        now,
        now,
        result_url,
        json.dumps(output_urls) if output_urls else None,
        error_message,
        job_id,
    ]
    if worker_id is not None:
        params.append(worker_id)

    try:
        conn.execute("BEGIN IMMEDIATE")
        cursor = conn.execute(
            f"""
            UPDATE jobs
            SET status = ?,
                completed_at = ?,
                updated_at = ?,
                result_url = ?,
                output_urls_json = ?,
                error_message = ?,
                worker_heartbeat = NULL
            WHERE id = ? AND status = 'running' {owner_clause}
            """,  # nosec B608 - owner_clause is a fixed literal
            params,
        )
        if cursor.rowcount != 1:
            conn.execute("ROLLBACK")
            logger.warning(
                "Job %s was not running under this worker; %s not recorded",
                job_id,
                status.value,
            )
            return False
        insert_event(conn, job_id, event_message, event_level, event_data, ts=now)
        conn.execute("COMMIT")
        return True
    except sqlite3.Error:
        _rollback_quietly(conn)
        raise


def complete_job(
    conn: sqlite3.Connection,
    job_id: str,
    worker_id: str | None,
    outputs: list[str],
) -> bool:
    """Mark a running job completed and append its Completed event.

    Args:
        conn: Database connection.
        job_id: Job UUID.
        worker_id: Claiming worker; None skips the ownership check.
        outputs: Storage paths of every produced artifact, in input order.

    Returns:
        True if the transition happened, False if the job was not running.
    """
    return _finish_job(
        conn,
        job_id,
        worker_id,
        JobStatus.COMPLETED,
        EventLevel.INFO,
        EVENT_COMPLETED,
        {"outputs": list(outputs)},
        result_url=outputs[0] if outputs else None,
        output_urls=outputs,
    )


def fail_job(
    conn: sqlite3.Connection,
    job_id: str,
    worker_id: str | None,
    error: str,
) -> bool:
    """Mark a running job failed and append its Failed event.

    Returns:
        True if the transition happened, False if the job was not running.
    """
    return _finish_job(
        conn,
        job_id,
        worker_id,
        JobStatus.FAILED,
        EventLevel.ERROR,
        EVENT_FAILED,
        {"error": error},
        error_message=error,
    )


def update_heartbeat(
    conn: sqlite3.Connection,
    job_id: str,
    worker_id: str,
) -> bool:
    """Update job heartbeat timestamp.

    Returns:
        True if heartbeat updated, False if the job is no longer running
        under this worker.
    """
    cursor = conn.execute(
        """
        UPDATE jobs
        SET worker_heartbeat = ?
        WHERE id = ? AND status = 'running' AND worker_id = ?
        """,
        (utc_now(), job_id, worker_id),
    )
    conn.commit()
    return cursor.rowcount > 0


def reap_stale_jobs(
    conn: sqlite3.Connection,
    timeout_seconds: int = DEFAULT_HEARTBEAT_TIMEOUT,
) -> list[str]:
    """Fail running jobs whose worker has stopped heartbeating.

    Jobs never go back to queued; a stale job gets the same single
    terminal transition a worker would have made, with one Failed event.

    Args:
        conn: Database connection.
        timeout_seconds: How long without heartbeat before a job is stale.

    Returns:
        IDs of the jobs that were reaped.
    """
    cutoff = (
        datetime.now(timezone.utc) - timedelta(seconds=timeout_seconds)
    ).isoformat()

    cursor = conn.execute(
        """
        SELECT id, worker_id FROM jobs
        WHERE status = 'running'
            AND COALESCE(worker_heartbeat, started_at, updated_at) < ?
        ORDER BY created_at ASC
        """,
        (cutoff,),
    )
    stale = cursor.fetchall()

    reaped: list[str] = []
    for job_id, worker_id in stale:
        error = (
            f"Worker {worker_id or 'unknown'} stopped reporting for more than "
            f"{timeout_seconds} seconds"
        )
        if fail_job(conn, job_id, worker_id, error):
            reaped.append(job_id)

    if reaped:
        logger.info("Reaped %d stale job(s)", len(reaped))
    return reaped


def get_queue_stats(conn: sqlite3.Connection) -> dict[str, int]:
    """Get queue statistics.

    Returns:
        Dictionary with counts per status plus a total.
    """
    cursor = conn.execute(
        """
        SELECT status, COUNT(*) as count
        FROM jobs
        GROUP BY status
        """
    )

    stats = {status.value: 0 for status in JobStatus}
    stats["total"] = 0
    for row in cursor.fetchall():
        stats[row[0]] = row[1]
        stats["total"] += row[1]
    return stats
