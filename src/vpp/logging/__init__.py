"""Structured logging for the media processor.

Provides text and JSON output, optional file rotation, and job context
injection so that log lines from worker threads stay attributable to a job.
"""

from vpp.logging.config import configure_logging
from vpp.logging.context import (
    JobContextFilter,
    get_job_context,
    job_context,
    run_in_context,
    stage_context,
)
from vpp.logging.handlers import JSONFormatter

__all__ = [
    "JSONFormatter",
    "JobContextFilter",
    "configure_logging",
    "get_job_context",
    "job_context",
    "run_in_context",
    "stage_context",
]
