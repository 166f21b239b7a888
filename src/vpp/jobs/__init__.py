"""Job store, per-job pipeline and worker loop."""

from vpp.jobs.models import JobContext, JobState, MediaJob, workspace_for
from vpp.jobs.pipeline import (
    JobPlan,
    MediaPipeline,
    PipelineResult,
    StepOutcome,
    StepStatus,
)
from vpp.jobs.store import JobStore, SQLiteJobStore
from vpp.jobs.worker import JobWorker

__all__ = [
    "JobContext",
    "JobPlan",
    "JobState",
    "JobStore",
    "JobWorker",
    "MediaJob",
    "MediaPipeline",
    "PipelineResult",
    "SQLiteJobStore",
    "StepOutcome",
    "StepStatus",
    "workspace_for",
]
