"""Tests for the job worker loop."""

import threading
from unittest.mock import MagicMock, patch

import pytest

from vpp.classifier import MediaCategory
from vpp.errors import ClassificationError, EncodeError, JobCancelledError
from vpp.jobs import worker as worker_module
from vpp.jobs.models import JobState, MediaJob
from vpp.jobs.pipeline import PipelineResult
from vpp.jobs.worker import JobWorker


@pytest.fixture
def upload_dir(temp_dir):
    path = temp_dir / "upload"
    path.mkdir()
    return path


def _job(upload_dir, job_id="job-1", exists=True):
    job = MediaJob.for_upload(upload_dir, job_id)
    if exists:
        job.source.write_bytes(b"media")
    return job


def _worker(upload_dir, store=None, pipeline=None, **kwargs):
    return JobWorker(
        store or MagicMock(),
        pipeline or MagicMock(),
        upload_dir,
        poll_interval=0.01,
        install_signal_handlers=False,
        **kwargs,
    )


class TestProcessJob:
    """Tests for JobWorker.process_job."""

    def test_success_marks_processed(self, upload_dir):
        store = MagicMock()
        pipeline = MagicMock()
        pipeline.process.return_value = PipelineResult("job-1", MediaCategory.VIDEO)
        job = _job(upload_dir)

        assert _worker(upload_dir, store, pipeline).process_job(job)

        store.mark_processed.assert_called_once_with("job-1", MediaCategory.VIDEO)
        store.mark_failed.assert_not_called()
        assert job.source.exists()

    def test_remove_source(self, upload_dir):
        pipeline = MagicMock()
        pipeline.process.return_value = PipelineResult("job-1", MediaCategory.AUDIO)
        job = _job(upload_dir)

        _worker(upload_dir, pipeline=pipeline, remove_source=True).process_job(job)

        assert not job.source.exists()

    def test_missing_upload_marked_processed(self, upload_dir):
        store = MagicMock()
        pipeline = MagicMock()

        assert _worker(upload_dir, store, pipeline).process_job(
            _job(upload_dir, exists=False)
        )

        store.mark_processed.assert_called_once_with("job-1")
        pipeline.process.assert_not_called()

    def test_processor_error_marks_failed(self, upload_dir):
        store = MagicMock()
        pipeline = MagicMock()
        pipeline.process.side_effect = ClassificationError("job-1", "no video or audio streams")

        assert not _worker(upload_dir, store, pipeline).process_job(_job(upload_dir))

        store.mark_failed.assert_called_once_with(
            "job-1", "Unrecognized media job-1: no video or audio streams"
        )

    def test_unexpected_error_marks_failed(self, upload_dir):
        store = MagicMock()
        pipeline = MagicMock()
        pipeline.process.side_effect = KeyError("width")

        assert not _worker(upload_dir, store, pipeline).process_job(_job(upload_dir))

        reason = store.mark_failed.call_args[0][1]
        assert reason.startswith("Unexpected error:")

    def test_external_cancel_leaves_state(self, upload_dir):
        store = MagicMock()
        pipeline = MagicMock()
        pipeline.process.side_effect = JobCancelledError("Job job-1 cancelled")

        assert not _worker(upload_dir, store, pipeline).process_job(_job(upload_dir))

        store.requeue.assert_not_called()
        store.mark_failed.assert_not_called()
        store.mark_processed.assert_not_called()

    def test_shutdown_requeues_running_job(self, upload_dir):
        store = MagicMock()
        pipeline = MagicMock()
        worker = _worker(upload_dir, store, pipeline)

        def process(ctx):
            worker.request_shutdown()
            assert ctx.cancel_event.is_set()
            raise JobCancelledError("Job job-1 cancelled")

        pipeline.process.side_effect = process

        worker.process_job(_job(upload_dir))

        store.requeue.assert_called_once_with("job-1")

    def test_watcher_cancels_job(self, upload_dir):
        """A cancellation written to the store reaches the running job."""
        store = MagicMock()
        store.get_state.return_value = JobState.CANCELLED
        pipeline = MagicMock()
        seen = threading.Event()

        def process(ctx):
            if ctx.cancel_event.wait(timeout=5):
                seen.set()
            raise JobCancelledError("Job job-1 cancelled")

        pipeline.process.side_effect = process

        with patch.object(worker_module, "CANCEL_POLL_INTERVAL", 0.01):
            _worker(upload_dir, store, pipeline).process_job(_job(upload_dir))

        assert seen.is_set()
        store.get_state.assert_called_with("job-1")


class TestRun:
    """Tests for the polling loop."""

    def test_once_drains_queue(self, upload_dir):
        store = MagicMock()
        store.recover_orphaned.return_value = 0
        store.claim_next.side_effect = [_job(upload_dir, "a"), _job(upload_dir, "b"), None]
        pipeline = MagicMock()
        pipeline.process.side_effect = lambda ctx: PipelineResult(
            ctx.job.id, MediaCategory.VIDEO
        )

        assert _worker(upload_dir, store, pipeline).run(once=True) == 2

        assert [c.args[0] for c in store.mark_processed.call_args_list] == ["a", "b"]
        store.claim_next.assert_called_with(upload_dir)

    def test_max_jobs(self, upload_dir):
        store = MagicMock()
        store.recover_orphaned.return_value = 0
        store.claim_next.side_effect = lambda _: _job(upload_dir)
        pipeline = MagicMock()
        pipeline.process.return_value = PipelineResult("job-1", MediaCategory.VIDEO)

        assert _worker(upload_dir, store, pipeline, max_jobs=3).run() == 3

    def test_failed_jobs_count(self, upload_dir):
        store = MagicMock()
        store.recover_orphaned.return_value = 0
        store.claim_next.side_effect = [_job(upload_dir), None]
        pipeline = MagicMock()
        pipeline.process.side_effect = EncodeError("audio", "source has no audio stream")

        assert _worker(upload_dir, store, pipeline).run(once=True) == 1
        store.mark_failed.assert_called_once()

    def test_recovers_orphans_first(self, upload_dir):
        store = MagicMock()
        store.recover_orphaned.return_value = 2
        store.claim_next.return_value = None

        _worker(upload_dir, store).run(once=True)

        store.recover_orphaned.assert_called_once_with()

    def test_shutdown_stops_polling(self, upload_dir):
        store = MagicMock()
        store.recover_orphaned.return_value = 0
        store.claim_next.return_value = None
        worker = _worker(upload_dir, store)
        worker.request_shutdown()

        assert worker.run() == 0
        store.claim_next.assert_not_called()
