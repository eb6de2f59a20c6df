"""Record types for the job and event stores."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class JobType(Enum):
    """Type of job in the queue."""

    ENHANCE = "enhance"


class JobStatus(Enum):
    """Status of a job in the queue.

    Transitions are one-way: queued -> running -> completed | failed.
    """

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class EventLevel(Enum):
    """Severity of a job event."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


# Event messages with special meaning to feed consumers
EVENT_STARTED = "Started"
EVENT_PROGRESS = "progress"
EVENT_FALLBACK = "Separation fallback"
EVENT_COMPLETED = "Completed"
EVENT_FAILED = "Failed"
TERMINAL_EVENTS = frozenset({EVENT_COMPLETED, EVENT_FAILED})


@dataclass
class Job:
    """Database record for an enhancement job.

    Attributes:
        id: UUID v4 string.
        job_type: Always JobType.ENHANCE.
        status: Current lifecycle status.
        input_urls: Ordered storage object paths to process.
        params: Normalized controls in camelCase wire form.
        created_at: ISO-8601 UTC timestamp.
        updated_at: ISO-8601 UTC timestamp of the last state change.
    """

    id: str
    job_type: JobType
    status: JobStatus
    input_urls: list[str]
    params: dict[str, Any]
    created_at: str
    updated_at: str
    started_at: str | None = None
    completed_at: str | None = None
    worker_id: str | None = None
    worker_heartbeat: str | None = None
    result_url: str | None = None
    output_urls: list[str] = field(default_factory=list)
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "type": self.job_type.value,
            "status": self.status.value,
            "input_urls": list(self.input_urls),
            "params": dict(self.params),
            "result_url": self.result_url,
            "output_urls": list(self.output_urls),
            "error": self.error_message,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True)
class JobEvent:
    """Append-only log entry for a job."""

    id: int
    job_id: str
    ts: str
    level: EventLevel
    message: str
    data: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.message in TERMINAL_EVENTS

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "ts": self.ts,
            "level": self.level.value,
            "message": self.message,
            "data": self.data,
        }
