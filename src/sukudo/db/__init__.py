"""Job and event store backed by SQLite."""

from sukudo.db.connection import (
    DaemonConnectionPool,
    get_connection,
    get_default_db_path,
    open_connection,
)
from sukudo.db.operations import (
    get_job,
    get_jobs_by_id_prefix,
    insert_event,
    insert_job,
    list_jobs,
    select_events_after,
    utc_now,
)
from sukudo.db.schema import initialize_database
from sukudo.db.types import (
    EventLevel,
    Job,
    JobEvent,
    JobStatus,
    JobType,
)

__all__ = [
    "DaemonConnectionPool",
    "EventLevel",
    "Job",
    "JobEvent",
    "JobStatus",
    "JobType",
    "get_connection",
    "get_default_db_path",
    "get_job",
    "get_jobs_by_id_prefix",
    "initialize_database",
    "insert_event",
    "insert_job",
    "list_jobs",
    "open_connection",
    "select_events_after",
    "utc_now",
]
