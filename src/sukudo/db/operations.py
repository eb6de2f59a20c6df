"""Row-level operations on the jobs and job_events tables."""

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any

from sukudo.db.types import EventLevel, Job, JobEvent, JobStatus, JobType


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _row_to_job(row: sqlite3.Row) -> Job:
    return Job(
        id=row["id"],
        job_type=JobType(row["job_type"]),
        status=JobStatus(row["status"]),
        input_urls=json.loads(row["input_urls_json"]),
        params=json.loads(row["params_json"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        worker_id=row["worker_id"],
        worker_heartbeat=row["worker_heartbeat"],
        result_url=row["result_url"],
        output_urls=json.loads(row["output_urls_json"] or "[]"),
        error_message=row["error_message"],
    )


def _row_to_event(row: sqlite3.Row) -> JobEvent:
    data_json = row["data_json"]
    return JobEvent(
        id=row["id"],
        job_id=row["job_id"],
        ts=row["ts"],
        level=EventLevel(row["level"]),
        message=row["message"],
        data=json.loads(data_json) if data_json else None,
    )


def insert_job(conn: sqlite3.Connection, job: Job) -> None:
    """Insert a job record. The caller commits."""
    conn.execute(
        """
        INSERT INTO jobs (
            id, job_type, status, input_urls_json, params_json,
            created_at, updated_at, started_at, completed_at,
            worker_id, worker_heartbeat, result_url, output_urls_json,
            error_message
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            job.id,
            job.job_type.value,
            job.status.value,
            json.dumps(job.input_urls),
            json.dumps(job.params, sort_keys=True),
            job.created_at,
            job.updated_at,
            job.started_at,
            job.completed_at,
            job.worker_id,
            job.worker_heartbeat,
            job.result_url,
            json.dumps(job.output_urls) if job.output_urls else None,
            job.error_message,
        ),
    )


def get_job(conn: sqlite3.Connection, job_id: str) -> Job | None:
    """Fetch a job by id, or None if it does not exist."""
    cursor = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
    row = cursor.fetchone()
    return _row_to_job(row) if row else None


def list_jobs(
    conn: sqlite3.Connection,
    status: JobStatus | None = None,
    limit: int = 50,
) -> list[Job]:
    """List jobs newest first, optionally filtered by status."""
    if status is None:
        cursor = conn.execute(
            "SELECT * FROM jobs ORDER BY created_at DESC LIMIT ?", (limit,)
        )
    else:
        cursor = conn.execute(
            "SELECT * FROM jobs WHERE status = ? ORDER BY created_at DESC LIMIT ?",
            (status.value, limit),
        )
    return [_row_to_job(row) for row in cursor.fetchall()]


def insert_event(
    conn: sqlite3.Connection,
    job_id: str,
    message: str,
    level: EventLevel = EventLevel.INFO,
    data: dict[str, Any] | None = None,
    ts: str | None = None,
) -> int:
    """Insert one event row and return its id. The caller commits."""
    cursor = conn.execute(
        """
        INSERT INTO job_events (job_id, ts, level, message, data_json)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            job_id,
            ts or utc_now(),
            level.value,
            message,
            json.dumps(data, sort_keys=True) if data is not None else None,
        ),
    )
    assert cursor.lastrowid is not None
    return cursor.lastrowid


def select_events_after(
    conn: sqlite3.Connection, job_id: str, after_id: int, limit: int
) -> list[JobEvent]:
    """Events for a job with id strictly greater than after_id, ascending."""
    cursor = conn.execute(
        """
        SELECT * FROM job_events
        WHERE job_id = ? AND id > ?
        ORDER BY id ASC
        LIMIT ?
        """,
        (job_id, after_id, limit),
    )
    return [_row_to_event(row) for row in cursor.fetchall()]


def get_jobs_by_id_prefix(
    conn: sqlite3.Connection, prefix: str, limit: int = 10
) -> list[Job]:
    """Find jobs whose id starts with prefix, newest first."""
    cursor = conn.execute(
        "SELECT * FROM jobs WHERE id LIKE ? ORDER BY created_at DESC LIMIT ?",
        (f"{prefix}%", limit),
    )
    return [_row_to_job(row) for row in cursor.fetchall()]
