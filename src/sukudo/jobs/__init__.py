"""Job submission, queue, event log and worker."""

from sukudo.jobs.events import (
    DEFAULT_PAGE_SIZE,
    JobEventLog,
    append_event,
    get_all_events,
    get_events_after,
)
from sukudo.jobs.exceptions import (
    JobTrackingError,
    JobValidationError,
)
from sukudo.jobs.queue import (
    DEFAULT_HEARTBEAT_TIMEOUT,
    claim_next_job,
    complete_job,
    default_worker_id,
    fail_job,
    get_queue_stats,
    reap_stale_jobs,
    try_claim_job,
    update_heartbeat,
)
from sukudo.jobs.tracking import (
    EnhanceJobRequest,
    create_enhance_job,
    input_object_path,
    validate_submission,
)

__all__ = [
    "DEFAULT_HEARTBEAT_TIMEOUT",
    "DEFAULT_PAGE_SIZE",
    "EnhanceJobRequest",
    "JobEventLog",
    "JobTrackingError",
    "JobValidationError",
    "append_event",
    "claim_next_job",
    "complete_job",
    "create_enhance_job",
    "default_worker_id",
    "fail_job",
    "get_all_events",
    "get_events_after",
    "get_queue_stats",
    "input_object_path",
    "reap_stale_jobs",
    "try_claim_job",
    "update_heartbeat",
    "validate_submission",
]
