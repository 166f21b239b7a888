"""Job records and per-job processing state."""

from __future__ import annotations

import shutil
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from vpp.classifier import MediaCategory
from vpp.core.subprocess_utils import CommandRunner, SubprocessRunner
from vpp.encoder.hdr import SDR, HdrState
from vpp.errors import JobCancelledError
from vpp.introspector.models import ProbeResult
from vpp.subtitles.tracks import TrackRegistry

WORKSPACE_SUFFIX = "_processing"
VIDEO_DIR = "video"
SUBTITLES_DIR = "subtitles"
SPRITES_DIR = "sprites"
TMP_DIR = ".tmp"


class JobState(Enum):
    """Lifecycle state of a media job."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def workspace_for(upload_dir: Path, job_id: str) -> Path:
    """``upload/<id>`` is processed into ``upload/<id>_processing``."""
    return upload_dir / f"{job_id}{WORKSPACE_SUFFIX}"


@dataclass
class MediaJob:
    """One uploaded file and its processing record.

    Attributes:
        id: Job identifier; also the upload's file name.
        media_type: Type hint recorded at upload time (may be empty).
        source: Path of the uploaded file.
        workspace: Output directory for all artifacts.
        state: Current lifecycle state.
        category: Classification, once known.
        error: Failure reason for FAILED jobs.
    """

    id: str
    source: Path
    workspace: Path
    media_type: str | None = None
    state: JobState = JobState.QUEUED
    category: MediaCategory | None = None
    error: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def for_upload(
        cls, upload_dir: Path, job_id: str, media_type: str | None = None
    ) -> MediaJob:
        return cls(
            id=job_id,
            source=upload_dir / job_id,
            workspace=workspace_for(upload_dir, job_id),
            media_type=media_type,
        )


@dataclass
class JobContext:
    """Mutable state shared by the stages of one job.

    The HDR state is computed once per job and read by every ladder step.
    Stages only ever add tracks to the registry.
    """

    job: MediaJob
    cancel_event: threading.Event = field(default_factory=threading.Event)
    runner: CommandRunner | None = None
    hdr: HdrState = SDR
    registry: TrackRegistry = field(default_factory=TrackRegistry)
    probe: ProbeResult | None = None

    def __post_init__(self) -> None:
        if self.runner is None:
            self.runner = SubprocessRunner(self.cancel_event)

    @property
    def workspace(self) -> Path:
        return self.job.workspace

    @property
    def video_dir(self) -> Path:
        return self.job.workspace / VIDEO_DIR

    @property
    def subtitles_dir(self) -> Path:
        return self.job.workspace / SUBTITLES_DIR

    @property
    def sprites_dir(self) -> Path:
        return self.job.workspace / SPRITES_DIR

    @property
    def tmp_dir(self) -> Path:
        return self.job.workspace / TMP_DIR

    def prepare(self) -> None:
        """Create the workspace and its temporary directory."""
        self.tmp_dir.mkdir(parents=True, exist_ok=True)

    def cleanup_tmp(self) -> None:
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        """Raise JobCancelledError if cancellation was requested."""
        if self.cancel_event.is_set():
            raise JobCancelledError(f"Job {self.job.id} cancelled")
