"""Database schema management for Sukudo."""

import sqlite3

SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS _meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Enhancement jobs
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    job_type TEXT NOT NULL DEFAULT 'enhance',
    status TEXT NOT NULL DEFAULT 'queued',

    -- Request
    input_urls_json TEXT NOT NULL,  -- ordered list of storage paths
    params_json TEXT NOT NULL,      -- normalized controls, wire form

    -- Timing
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,

    -- Worker
    worker_id TEXT,
    worker_heartbeat TEXT,

    -- Results
    result_url TEXT,
    output_urls_json TEXT,
    error_message TEXT,

    CONSTRAINT valid_status CHECK (
        status IN ('queued', 'running', 'completed', 'failed')
    ),
    CONSTRAINT valid_job_type CHECK (
        job_type IN ('enhance')
    )
);

CREATE INDEX IF NOT EXISTS idx_jobs_status_created
    ON jobs(status, created_at);

-- Append-only per-job event log
CREATE TABLE IF NOT EXISTS job_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL,
    ts TEXT NOT NULL,
    level TEXT NOT NULL DEFAULT 'info',
    message TEXT NOT NULL,
    data_json TEXT,

    FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE,
    CONSTRAINT valid_level CHECK (
        level IN ('info', 'warn', 'error')
    )
);

CREATE INDEX IF NOT EXISTS idx_job_events_job_id
    ON job_events(job_id, id);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """Create the database schema if it doesn't exist.

    Args:
        conn: An open database connection.
    """
    conn.executescript(SCHEMA_SQL)

    conn.execute(
        "INSERT OR IGNORE INTO _meta (key, value) VALUES ('schema_version', ?)",
        (str(SCHEMA_VERSION),),
    )
    # executescript() commits implicitly; the INSERT above opens a new
    # transaction that must be closed before claim_next_job() can BEGIN.
    conn.commit()


def get_schema_version(conn: sqlite3.Connection) -> int | None:
    """Get the current schema version from the database.

    Returns:
        The schema version number, or None if not set.
    """
    try:
        cursor = conn.execute("SELECT value FROM _meta WHERE key = 'schema_version'")
        row = cursor.fetchone()
        return int(row[0]) if row else None
    except sqlite3.OperationalError:
        # Table doesn't exist
        return None


def initialize_database(conn: sqlite3.Connection) -> None:
    """Initialize the database with schema, creating tables if needed.

    Raises:
        RuntimeError: If the database was written by a newer version.
    """
    current_version = get_schema_version(conn)
    if current_version is None:
        create_schema(conn)
    elif current_version > SCHEMA_VERSION:
        raise RuntimeError(
            f"Database schema version {current_version} is newer than "
            f"supported version {SCHEMA_VERSION}"
        )
