"""Structured logging with JSON output, file rotation and job context."""

from sukudo.logging.config import configure_logging
from sukudo.logging.context import JobContextFilter, get_job_context, job_context
from sukudo.logging.handlers import JSONFormatter

__all__ = [
    "JSONFormatter",
    "JobContextFilter",
    "configure_logging",
    "get_job_context",
    "job_context",
]
