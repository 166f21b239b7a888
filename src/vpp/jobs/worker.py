"""Job worker: polls the store and runs the pipeline.

- Polls every ``worker.poll_interval_secs`` while the queue is empty
- Graceful shutdown on SIGTERM/SIGINT; the running job is cancelled and
  put back in the queue so the next start picks it up again
- External cancellation is noticed by a watcher thread that reads the
  job's state on its own connection
"""

from __future__ import annotations

import logging
import os
import signal
import threading
import time
from pathlib import Path

from vpp.errors import JobCancelledError, ProcessorError
from vpp.jobs.models import JobContext, JobState, MediaJob
from vpp.jobs.pipeline import MediaPipeline
from vpp.jobs.store import SQLiteJobStore

logger = logging.getLogger(__name__)

# How often the watcher checks the store for an external cancellation
CANCEL_POLL_INTERVAL = 5.0


class JobWorker:
    """Worker for processing media jobs from the store."""

    def __init__(
        self,
        store: SQLiteJobStore,
        pipeline: MediaPipeline,
        upload_dir: Path,
        poll_interval: float = 60.0,
        max_jobs: int | None = None,
        remove_source: bool = False,
        install_signal_handlers: bool = True,
    ) -> None:
        """Initialize the job worker.

        Args:
            store: Job store to claim jobs from.
            pipeline: Pipeline that processes claimed jobs.
            upload_dir: Directory holding uploads and workspaces.
            poll_interval: Seconds to wait when the queue is empty.
            max_jobs: Stop after this many jobs (None = run until stopped).
            remove_source: Delete the upload after successful processing.
            install_signal_handlers: Install SIGTERM/SIGINT handlers. Only
                possible from the main thread.
        """
        self.store = store
        self.pipeline = pipeline
        self.upload_dir = upload_dir
        self.poll_interval = poll_interval
        self.max_jobs = max_jobs
        self.remove_source = remove_source

        self._shutdown_requested = False
        self._wake = threading.Event()
        self._current: JobContext | None = None
        self._jobs_processed = 0

        self._watch_thread: threading.Thread | None = None
        self._watch_stop = threading.Event()

        if install_signal_handlers:
            self._setup_signal_handlers()

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers."""
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

    def _signal_handler(self, signum: int, frame) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, requesting shutdown...", sig_name)
        self.request_shutdown()

    def request_shutdown(self) -> None:
        """Stop polling and cancel the running job, if any."""
        self._shutdown_requested = True
        self._wake.set()
        current = self._current
        if current is not None:
            current.cancel_event.set()

    def _should_continue(self) -> bool:
        if self._shutdown_requested:
            return False
        if self.max_jobs is not None and self._jobs_processed >= self.max_jobs:
            logger.info("Reached max jobs limit (%d)", self.max_jobs)
            return False
        return True

    # -- cancellation watcher ----------------------------------------------

    def _start_cancel_watch(self, ctx: JobContext) -> None:
        """Watch the store for an external cancellation of the job."""
        self._watch_stop.clear()
        job_id = ctx.job.id

        def watch_loop() -> None:
            while not self._watch_stop.wait(CANCEL_POLL_INTERVAL):
                try:
                    state = self.store.get_state(job_id)
                except Exception as e:
                    logger.warning("Cancellation check failed for %s: %s", job_id, e)
                    continue
                if state is JobState.CANCELLED:
                    logger.info("Job %s cancelled externally", job_id)
                    ctx.cancel_event.set()
                    return

        self._watch_thread = threading.Thread(
            target=watch_loop, daemon=True, name=f"cancel-watch-{job_id[:8]}"
        )
        self._watch_thread.start()

    def _stop_cancel_watch(self) -> None:
        self._watch_stop.set()
        if self._watch_thread is not None:
            self._watch_thread.join(timeout=1.0)
            if self._watch_thread.is_alive():
                logger.warning(
                    "Thread %s did not stop within timeout", self._watch_thread.name
                )
            self._watch_thread = None

    # -- processing ----------------------------------------------------------

    def process_job(self, job: MediaJob) -> bool:
        """Process a single claimed job and record the outcome.

        Returns:
            True if the job ended as processed.
        """
        if not job.source.exists():
            logger.warning("Upload for job %s is missing; marking processed", job.id)
            self.store.mark_processed(job.id)
            self._jobs_processed += 1
            return True

        ctx = JobContext(job)
        self._current = ctx
        if self._shutdown_requested:
            ctx.cancel_event.set()
        self._start_cancel_watch(ctx)
        start = time.monotonic()

        try:
            logger.info("Processing job %s: %s", job.id, job.source)
            result = self.pipeline.process(ctx)
        except JobCancelledError:
            if self._shutdown_requested:
                self.store.requeue(job.id)
                logger.info("Job %s interrupted by shutdown; requeued", job.id)
            else:
                logger.info("Job %s cancelled", job.id)
            return False
        except ProcessorError as e:
            logger.error("Job %s failed: %s", job.id, e)
            self.store.mark_failed(job.id, str(e))
            return False
        except Exception as e:
            logger.exception("Job %s failed with exception", job.id)
            self.store.mark_failed(job.id, f"Unexpected error: {e}")
            return False
        finally:
            self._stop_cancel_watch()
            self._current = None
            self._jobs_processed += 1

        self.store.mark_processed(job.id, result.category)
        if result.failed_steps:
            logger.warning(
                "Job %s completed without steps: %s",
                job.id,
                ", ".join(result.failed_steps),
            )
        logger.info(
            "Job %s completed in %.1f seconds", job.id, time.monotonic() - start
        )

        if self.remove_source:
            try:
                job.source.unlink()
                logger.info("Removed upload %s", job.source)
            except OSError as e:
                logger.warning("Could not remove upload %s: %s", job.source, e)
        return True

    def run(self, once: bool = False) -> int:
        """Run the worker until shutdown or the job limit is reached.

        Args:
            once: Stop as soon as the queue is empty instead of polling.

        Returns:
            Number of jobs processed.
        """
        start = time.monotonic()
        self._jobs_processed = 0
        logger.info(
            "Starting job worker: PID=%d, uploads=%s, poll=%ss%s",
            os.getpid(),
            self.upload_dir,
            self.poll_interval,
            f", max_jobs={self.max_jobs}" if self.max_jobs is not None else "",
        )

        recovered = self.store.recover_orphaned()
        if recovered:
            logger.info("Requeued %d orphaned job(s)", recovered)

        while self._should_continue():
            job = self.store.claim_next(self.upload_dir)
            if job is None:
                if once:
                    logger.info("Queue is empty")
                    break
                self._wake.wait(self.poll_interval)
                continue
            self.process_job(job)

        logger.info(
            "Worker finished: %d job(s) in %.1f seconds",
            self._jobs_processed,
            time.monotonic() - start,
        )
        return self._jobs_processed
