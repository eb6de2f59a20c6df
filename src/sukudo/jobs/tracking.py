"""Job submission.

A job enters the system only through create_enhance_job(), which rejects
malformed submissions before anything is queued and stores the controls
in their normalized form.
"""

import logging
import sqlite3
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sukudo.db.operations import insert_job, utc_now
from sukudo.db.types import Job, JobStatus, JobType
from sukudo.enhance.controls import normalize
from sukudo.jobs.exceptions import JobValidationError

logger = logging.getLogger(__name__)

# Storage prefix for uploaded inputs
INPUTS_PREFIX = "inputs"


class EnhanceJobRequest(BaseModel):
    """Pydantic model for an enhancement job submission."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    input_urls: list[str] = Field(min_length=1)
    params: dict[str, Any] | None = None

    @field_validator("input_urls")
    @classmethod
    def validate_input_urls(cls, v: list[str]) -> list[str]:
        """Reject blank paths and paths escaping the storage root."""
        cleaned = []
        for path in v:
            path = path.strip()
            if not path:
                raise ValueError("input path must not be empty")
            if path.startswith("/") or ".." in path.split("/"):
                raise ValueError(f"input path must be relative: {path}")
            cleaned.append(path)
        return cleaned


def _format_validation_error(error: ValidationError) -> tuple[str, str | None]:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    message = first.get("msg", "invalid job submission")
    if field:
        return f"{field}: {message}", field
    return message, None


def validate_submission(payload: Any) -> EnhanceJobRequest:
    """Validate a raw submission payload.

    Raises:
        JobValidationError: If the payload is malformed.
    """
    if not isinstance(payload, dict):
        raise JobValidationError("job submission must be a JSON object")
    try:
        return EnhanceJobRequest.model_validate(payload)
    except ValidationError as e:
        message, field = _format_validation_error(e)
        raise JobValidationError(message, field=field) from e


def create_enhance_job(
    conn: sqlite3.Connection,
    input_urls: list[str],
    params: dict[str, Any] | None = None,
) -> Job:
    """Validate a submission and insert it as a queued enhance job.

    Args:
        conn: Database connection. The insert is committed.
        input_urls: Ordered storage paths of the inputs.
        params: Raw control payload; normalized before storing.

    Returns:
        The queued Job.

    Raises:
        JobValidationError: If the submission is malformed.
    """
    request = validate_submission({"input_urls": input_urls, "params": params})
    now = utc_now()
    job = Job(
        id=str(uuid.uuid4()),
        job_type=JobType.ENHANCE,
        status=JobStatus.QUEUED,
        input_urls=list(request.input_urls),
        params=normalize(request.params).to_dict(),
        created_at=now,
        updated_at=now,
    )
    insert_job(conn, job)
    conn.commit()
    logger.info("Queued job %s with %d input(s)", job.id, len(job.input_urls))
    return job


def input_object_path(upload_id: str, filename: str) -> str:
    """Storage path for a file uploaded ahead of a submission."""
    return f"{INPUTS_PREFIX}/{upload_id}/{filename}"
