"""Tests for the SQLite job store."""

import sqlite3
from unittest.mock import patch

import pytest

from vpp.classifier import MediaCategory
from vpp.jobs.models import JobState
from vpp.jobs.store import SQLiteJobStore, get_connection


@pytest.fixture
def store(temp_dir):
    store = SQLiteJobStore(temp_dir / "db" / "jobs.db")
    store.initialize()
    return store


@pytest.fixture
def upload_dir(temp_dir):
    return temp_dir / "upload"


class TestEnqueue:
    def test_enqueue(self, store):
        assert store.enqueue("job-1", "video/mp4")
        assert store.get_state("job-1") is JobState.QUEUED

    def test_duplicate_rejected(self, store):
        store.enqueue("job-1")
        assert not store.enqueue("job-1")

    def test_initialize_is_idempotent(self, store):
        store.enqueue("job-1")
        store.initialize()
        assert store.get_state("job-1") is JobState.QUEUED


class TestClaimNext:
    """Tests for claim_next."""

    def test_empty_queue(self, store, upload_dir):
        assert store.claim_next(upload_dir) is None

    def test_claims_oldest_first(self, store, upload_dir):
        store.enqueue("first")
        store.enqueue("second")

        job = store.claim_next(upload_dir)

        assert job.id == "first"
        assert job.state is JobState.RUNNING
        assert job.source == upload_dir / "first"
        assert job.workspace == upload_dir / "first_processing"
        assert store.get_state("first") is JobState.RUNNING
        assert store.claim_next(upload_dir).id == "second"
        assert store.claim_next(upload_dir) is None

    def test_lock_contention_returns_none(self, store, upload_dir):
        """A busy database is not an error; the worker polls again."""
        store.enqueue("job-1")
        blocker = sqlite3.connect(str(store.db_path), timeout=0)
        blocker.execute("BEGIN IMMEDIATE")
        try:
            with patch("vpp.jobs.store.get_connection") as mock_conn:
                conn = sqlite3.connect(str(store.db_path), timeout=0)
                conn.row_factory = sqlite3.Row
                mock_conn.return_value.__enter__.return_value = conn
                mock_conn.return_value.__exit__.return_value = False
                assert store.claim_next(upload_dir) is None
                conn.close()
        finally:
            blocker.rollback()
            blocker.close()
        assert store.get_state("job-1") is JobState.QUEUED


class TestFinish:
    def test_mark_processed_records_category(self, store, upload_dir):
        store.enqueue("job-1")
        store.claim_next(upload_dir)

        assert store.mark_processed("job-1", MediaCategory.VIDEO)

        job = store.get_job("job-1", upload_dir)
        assert job.state is JobState.COMPLETED
        assert job.category is MediaCategory.VIDEO
        assert job.completed_at is not None

    def test_mark_failed_records_reason(self, store, upload_dir):
        store.enqueue("job-1")
        store.claim_next(upload_dir)

        store.mark_failed("job-1", "Unrecognized media: no video or audio streams")

        job = store.get_job("job-1", upload_dir)
        assert job.state is JobState.FAILED
        assert job.error == "Unrecognized media: no video or audio streams"

    def test_unknown_job(self, store):
        assert not store.mark_processed("missing")


class TestCancelAndRequeue:
    def test_cancel_queued(self, store):
        store.enqueue("job-1")
        assert store.cancel("job-1")
        assert store.get_state("job-1") is JobState.CANCELLED

    def test_cancel_finished_job_refused(self, store, upload_dir):
        store.enqueue("job-1")
        store.claim_next(upload_dir)
        store.mark_processed("job-1")

        assert not store.cancel("job-1")
        assert store.get_state("job-1") is JobState.COMPLETED

    def test_requeue_running(self, store, upload_dir):
        store.enqueue("job-1")
        store.claim_next(upload_dir)

        assert store.requeue("job-1")
        assert store.get_state("job-1") is JobState.QUEUED
        assert store.claim_next(upload_dir).id == "job-1"

    def test_requeue_only_running(self, store):
        store.enqueue("job-1")
        store.cancel("job-1")
        assert not store.requeue("job-1")


class TestQueries:
    def test_list_jobs_newest_first(self, store, upload_dir):
        for job_id in ("a", "b", "c"):
            store.enqueue(job_id)
        store.cancel("b")

        assert [j.id for j in store.list_jobs(upload_dir)] == ["c", "b", "a"]
        assert [j.id for j in store.list_jobs(upload_dir, JobState.QUEUED)] == ["c", "a"]
        assert len(store.list_jobs(upload_dir, limit=1)) == 1

    def test_get_missing(self, store, upload_dir):
        assert store.get_job("missing", upload_dir) is None
        assert store.get_state("missing") is None


class TestRecoverOrphaned:
    def test_dead_worker_job_requeued(self, store, upload_dir):
        store.enqueue("job-1")
        store.claim_next(upload_dir)
        with get_connection(store.db_path) as conn:
            conn.execute("UPDATE media_jobs SET worker_pid = ?", (999_999,))
            conn.commit()

        with patch("vpp.jobs.store._pid_alive", return_value=False):
            assert store.recover_orphaned() == 1
        assert store.get_state("job-1") is JobState.QUEUED

    def test_live_worker_job_kept(self, store, upload_dir):
        store.enqueue("job-1")
        store.claim_next(upload_dir)

        # claim_next records this process, which is alive
        assert store.recover_orphaned() == 0
        assert store.get_state("job-1") is JobState.RUNNING
