"""Custom exceptions for job tracking.

This module provides specific exception types for job tracking operations,
enabling callers to handle different error conditions appropriately.
"""


class JobTrackingError(Exception):
    """Base exception for job tracking errors.

    All job-related exceptions inherit from this class, allowing callers
    to catch all job errors with a single except clause if desired.
    """


class JobValidationError(JobTrackingError):
    """Raised when a job submission is malformed.

    Validation happens before a job is queued, so a worker never sees
    a job that fails these checks.

    Attributes:
        field: Name of the offending field, if known.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.message = message
        self.field = field
        super().__init__(message)

