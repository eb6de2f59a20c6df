"""Job context for structured logging.

Worker code wraps each job in job_context(); every record logged inside it
carries the job id, and optionally the input being processed, without
passing them to each logger call.
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Generator

# Characters of the job id shown in text logs
_SHORT_ID_LENGTH = 8

_job_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "job_id", default=None
)
_input_index: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "input_index", default=None
)


def get_job_context() -> tuple[str | None, int | None]:
    """Return (job_id, input_index) for the current context."""
    return _job_id.get(), _input_index.get()


@contextmanager
def job_context(
    job_id: str, input_index: int | None = None
) -> Generator[None, None, None]:
    """Scope log records to a job, restoring the previous context on exit.

    Example:
        with job_context(job.id):
            logger.info("Processing")  # "[job 1a2b3c4d] ... Processing"
    """
    job_token = _job_id.set(job_id)
    input_token = _input_index.set(input_index)
    try:
        yield
    finally:
        _input_index.reset(input_token)
        _job_id.reset(job_token)


class JobContextFilter(logging.Filter):
    """Inject the current job context into log records.

    Adds ``job_id`` and ``input_index`` for JSON output and a compact
    ``job_tag`` such as ``[job 1a2b3c4d] `` or ``[job 1a2b3c4d#2] `` for text
    output. Never drops records.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        job_id, input_index = get_job_context()
        record.job_id = job_id
        record.input_index = input_index

        if job_id:
            short = job_id[:_SHORT_ID_LENGTH]
            if input_index is not None:
                record.job_tag = f"[job {short}#{input_index + 1}] "
            else:
                record.job_tag = f"[job {short}] "
        else:
            record.job_tag = ""
        return True
