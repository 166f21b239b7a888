"""Job context for structured logging.

A job fans work out to thread pools (ladder steps, sprite sheets, translation
cues). The job id and current stage live in contextvars so every log record
can carry them; run_in_context() carries them across into pool threads.
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

T = TypeVar("T")

_job_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "job_id", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)


@contextmanager
def job_context(job_id: str, stage: str | None = None) -> Generator[None, None, None]:
    """Context manager that tags log records with a job id.

    The previous context is restored on exit, so nesting is safe.

    Args:
        job_id: Identifier of the job being processed.
        stage: Optional pipeline stage name.

    Yields:
        None
    """
    job_token = _job_id.set(job_id)
    stage_token = _stage.set(stage)
    try:
        yield
    finally:
        _stage.reset(stage_token)
        _job_id.reset(job_token)


@contextmanager
def stage_context(stage: str) -> Generator[None, None, None]:
    """Tag log records with the current pipeline stage."""
    token = _stage.set(stage)
    try:
        yield
    finally:
        _stage.reset(token)


def get_job_context() -> tuple[str | None, str | None]:
    """Get current job context.

    Returns:
        Tuple of (job_id, stage), either may be None.
    """
    return _job_id.get(), _stage.get()


def run_in_context(fn: Callable[..., T]) -> Callable[..., T]:
    """Bind fn to a copy of the caller's context.

    Used when submitting work to a ThreadPoolExecutor, whose threads would
    otherwise start with an empty context.

    Example:
        pool.submit(run_in_context(render_sheet), sheet)
    """
    ctx = contextvars.copy_context()

    def wrapper(*args: Any, **kwargs: Any) -> T:
        return ctx.copy().run(fn, *args, **kwargs)

    return wrapper


class JobContextFilter(logging.Filter):
    """Logging filter that injects job context into log records.

    Adds job_id and stage attributes for the JSON format and a compact
    job_tag such as "[J42:sprites] " for the text format.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        job_id, stage = get_job_context()

        record.job_id = job_id
        record.stage = stage

        if job_id:
            if stage:
                record.job_tag = f"[J{job_id}:{stage}] "
            else:
                record.job_tag = f"[J{job_id}] "
        else:
            record.job_tag = ""

        return True
