"""SQLite-backed job store.

The store is the boundary between the processor and whatever accepts
uploads: the uploader inserts a queued row, the worker claims it, and the
final state (processed, failed with a reason, cancelled) is written back.

Claims use BEGIN IMMEDIATE so two workers sharing a database can never
take the same job.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from vpp.classifier import MediaCategory
from vpp.jobs.models import JobState, MediaJob, workspace_for

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS media_jobs (
    id TEXT PRIMARY KEY,
    media_type TEXT,
    state TEXT NOT NULL DEFAULT 'queued',
    category TEXT,
    error TEXT,
    worker_pid INTEGER,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_media_jobs_state
    ON media_jobs (state, created_at);
"""


class JobStore(Protocol):
    """Operations the worker needs from a job store."""

    def claim_next(self, upload_dir: Path) -> MediaJob | None: ...

    def mark_processed(
        self, job_id: str, category: MediaCategory | None = None
    ) -> bool: ...

    def mark_failed(self, job_id: str, reason: str) -> bool: ...

    def requeue(self, job_id: str) -> bool: ...

    def get_state(self, job_id: str) -> JobState | None: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def get_connection(db_path: Path, timeout: float = 30.0) -> Iterator[sqlite3.Connection]:
    """Open a connection with the settings every store operation uses.

    Args:
        db_path: Database file; its directory is created if needed.
        timeout: How long to wait for locks (seconds).

    Yields:
        An sqlite3 Connection with Row results.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=timeout)
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 10000")
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def _pid_alive(pid: int | None) -> bool:
    if pid is None:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _row_to_job(row: sqlite3.Row, upload_dir: Path) -> MediaJob:
    job = MediaJob.for_upload(upload_dir, row["id"], row["media_type"])
    job.state = JobState(row["state"])
    job.category = MediaCategory(row["category"]) if row["category"] else None
    job.error = row["error"]
    job.created_at = row["created_at"]
    job.started_at = row["started_at"]
    job.completed_at = row["completed_at"]
    return job


class SQLiteJobStore:
    """Job store on a single SQLite file.

    Every operation opens its own short-lived connection, so the store can
    be shared between the worker thread and the cancellation watcher.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def initialize(self) -> None:
        """Create the schema if it does not exist."""
        with get_connection(self.db_path) as conn:
            conn.executescript(SCHEMA)
            conn.commit()
        logger.debug("Job store ready at %s", self.db_path)

    def enqueue(self, job_id: str, media_type: str | None = None) -> bool:
        """Queue an uploaded file.

        Returns:
            True if a new job was queued, False if the id already exists.
        """
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO media_jobs (id, media_type, state, created_at)
                VALUES (?, ?, 'queued', ?)
                ON CONFLICT(id) DO NOTHING
                """,
                (job_id, media_type, _now()),
            )
            conn.commit()
            return cursor.rowcount > 0

    def claim_next(self, upload_dir: Path) -> MediaJob | None:
        """Atomically claim the oldest queued job.

        Args:
            upload_dir: Directory holding uploads and workspaces.

        Returns:
            The claimed job, or None if the queue is empty or the database
            is busy (the caller simply polls again).
        """
        now = _now()
        with get_connection(self.db_path) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    """
                    SELECT * FROM media_jobs
                    WHERE state = 'queued'
                    ORDER BY created_at ASC, rowid ASC
                    LIMIT 1
                    """
                ).fetchone()
                if row is None:
                    conn.execute("ROLLBACK")
                    return None

                conn.execute(
                    """
                    UPDATE media_jobs
                    SET state = 'running', started_at = ?, worker_pid = ?,
                        error = NULL
                    WHERE id = ? AND state = 'queued'
                    """,
                    (now, os.getpid(), row["id"]),
                )
                conn.execute("COMMIT")
            except sqlite3.OperationalError as e:
                try:
                    conn.execute("ROLLBACK")
                except sqlite3.Error:
                    pass
                message = str(e).casefold()
                if "locked" in message or "busy" in message:
                    logger.warning("Lock contention while claiming job: %s", e)
                    return None
                logger.error("Database error while claiming job: %s", e)
                raise

        job = _row_to_job(row, upload_dir)
        job.state = JobState.RUNNING
        job.started_at = now
        return job

    def _finish(
        self,
        job_id: str,
        state: JobState,
        error: str | None = None,
        category: MediaCategory | None = None,
    ) -> bool:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE media_jobs
                SET state = ?, error = ?, completed_at = ?, worker_pid = NULL,
                    category = COALESCE(?, category)
                WHERE id = ?
                """,
                (
                    state.value,
                    error,
                    _now(),
                    category.value if category else None,
                    job_id,
                ),
            )
            conn.commit()
            return cursor.rowcount > 0

    def mark_processed(
        self, job_id: str, category: MediaCategory | None = None
    ) -> bool:
        """Record successful processing."""
        return self._finish(job_id, JobState.COMPLETED, category=category)

    def mark_failed(self, job_id: str, reason: str) -> bool:
        """Record a failure with a human-readable reason."""
        return self._finish(job_id, JobState.FAILED, error=reason)

    def cancel(self, job_id: str) -> bool:
        """Request cancellation of a queued or running job.

        A running worker notices the state change and stops the job.

        Returns:
            True if the job was queued or running.
        """
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE media_jobs
                SET state = 'cancelled', completed_at = ?
                WHERE id = ? AND state IN ('queued', 'running')
                """,
                (_now(), job_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def requeue(self, job_id: str) -> bool:
        """Put a running job back in the queue (used on shutdown)."""
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE media_jobs
                SET state = 'queued', started_at = NULL, worker_pid = NULL
                WHERE id = ? AND state = 'running'
                """,
                (job_id,),
            )
            conn.commit()
            return cursor.rowcount > 0

    def get_state(self, job_id: str) -> JobState | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT state FROM media_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return JobState(row["state"]) if row else None

    def get_job(self, job_id: str, upload_dir: Path) -> MediaJob | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM media_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return _row_to_job(row, upload_dir) if row else None

    def list_jobs(
        self, upload_dir: Path, state: JobState | None = None, limit: int = 50
    ) -> list[MediaJob]:
        """Most recent jobs first, optionally filtered by state."""
        query = "SELECT * FROM media_jobs"
        params: list[object] = []
        if state is not None:
            query += " WHERE state = ?"
            params.append(state.value)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        with get_connection(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_job(row, upload_dir) for row in rows]

    def recover_orphaned(self) -> int:
        """Requeue running jobs whose worker process is gone.

        Returns:
            Number of jobs put back in the queue.
        """
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT id, worker_pid FROM media_jobs WHERE state = 'running'"
            ).fetchall()
            orphaned = [row["id"] for row in rows if not _pid_alive(row["worker_pid"])]
            for job_id in orphaned:
                logger.warning("Requeuing orphaned job %s", job_id)
                conn.execute(
                    """
                    UPDATE media_jobs
                    SET state = 'queued', started_at = NULL, worker_pid = NULL
                    WHERE id = ? AND state = 'running'
                    """,
                    (job_id,),
                )
            conn.commit()
        return len(orphaned)
