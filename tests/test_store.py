# SPDX-License-Identifier: AGPL-3.0-only

import threading
from datetime import timedelta

import pytest

from docextract.models import DocumentType, ExtractionResult, utcnow
from jobqueue.models import ExtractionJob, JobStatus
from jobqueue.sql_store import SQLJobStore
from jobqueue.store import InMemoryJobStore, backoff_delay


def _job(**overrides):
    values = {"document_type": DocumentType.LICENSE, "file_path": "license/a.png"}
    values.update(overrides)
    return ExtractionJob(**values)


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryJobStore()
    return SQLJobStore(f"sqlite:///{tmp_path / 'jobs.db'}")


class TestJobStore:
    """Behaviour shared by the in-memory and SQL stores."""

    def test_add_and_get(self, any_store):
        job = any_store.add(_job(document_ref="carrier-7", metadata={"original_filename": "a.png"}))
        fetched = any_store.get(job.id)

        assert fetched.status == JobStatus.QUEUED
        assert fetched.document_ref == "carrier-7"
        assert fetched.metadata == {"original_filename": "a.png"}
        assert any_store.get("missing") is None

    def test_claim_order(self, any_store):
        now = utcnow()
        low = any_store.add(_job(priority=0, scheduled_at=now - timedelta(minutes=5)))
        high_late = any_store.add(_job(priority=5, scheduled_at=now - timedelta(minutes=1)))
        high_early = any_store.add(_job(priority=5, scheduled_at=now - timedelta(minutes=2)))

        claimed = [any_store.claim_next(now).id for _ in range(3)]
        assert claimed == [high_early.id, high_late.id, low.id]
        assert any_store.claim_next(now) is None

    def test_claim_respects_schedule(self, any_store):
        now = utcnow()
        any_store.add(_job(scheduled_at=now + timedelta(minutes=10)))
        assert any_store.claim_next(now) is None
        assert any_store.claim_next(now + timedelta(minutes=11)) is not None

    def test_claim_sets_owner(self, any_store):
        job = any_store.add(_job())
        claimed = any_store.claim_next()

        assert claimed.id == job.id
        assert claimed.status == JobStatus.PROCESSING
        assert claimed.claim_token
        assert claimed.started_at is not None

    def test_transition_is_compare_and_set(self, any_store):
        job = any_store.add(_job())
        assert any_store.transition(job.id, {"priority": 3}, expected_status=JobStatus.PROCESSING) is None
        updated = any_store.transition(job.id, {"priority": 3}, expected_status=JobStatus.QUEUED)
        assert updated.priority == 3

    def test_finish_requires_current_token(self, any_store):
        any_store.add(_job())
        claimed = any_store.claim_next()
        result = ExtractionResult(success=True, job_id=claimed.id, extracted_data={"licenseNumber": "A1234567"})

        assert any_store.finish(claimed.id, "stale-token", {"status": JobStatus.COMPLETED}, result) is None
        assert any_store.get_result(claimed.id) is None

        done = any_store.finish(claimed.id, claimed.claim_token,
                                {"status": JobStatus.COMPLETED, "completed_at": utcnow()}, result)
        assert done.status == JobStatus.COMPLETED
        assert any_store.get_result(claimed.id).extracted_data == {"licenseNumber": "A1234567"}

    def test_find_and_delete(self, any_store):
        old = any_store.add(_job(status=JobStatus.FAILED))
        any_store.add(_job())
        cutoff = utcnow() + timedelta(seconds=1)

        failed = any_store.find(status=JobStatus.FAILED, updated_before=cutoff)
        assert [j.id for j in failed] == [old.id]
        assert any_store.delete([old.id]) == 1
        assert any_store.get(old.id) is None
        assert any_store.delete([]) == 0

    def test_find_started_before(self, any_store):
        any_store.add(_job())
        claimed = any_store.claim_next()
        assert any_store.find(status=JobStatus.PROCESSING, started_before=claimed.started_at) == []
        later = claimed.started_at + timedelta(minutes=20)
        assert [j.id for j in any_store.find(status=JobStatus.PROCESSING, started_before=later)] == [claimed.id]

    def test_stats(self, any_store):
        any_store.add(_job())
        any_store.add(_job(status=JobStatus.FAILED, retry_count=3, max_retries=3))
        any_store.add(_job(status=JobStatus.FAILED, retry_count=1))
        any_store.add(_job(status=JobStatus.COMPLETED))

        stats = any_store.stats()
        assert (stats.queued, stats.processing, stats.completed, stats.failed) == (1, 0, 1, 2)
        assert stats.retryable_failed == 1
        assert stats.created_today == 4
        assert stats.to_dict()["total"] == 4


class TestConcurrentClaims:
    """Many workers, one queue: every job is claimed exactly once."""

    @pytest.mark.parametrize("workers,jobs", [(8, 40), (4, 3)])
    def test_each_job_claimed_once(self, workers, jobs):
        store = InMemoryJobStore()
        for i in range(jobs):
            store.add(_job(priority=i % 3))

        claimed = []
        lock = threading.Lock()
        start = threading.Barrier(workers)

        def worker():
            start.wait()
            while True:
                job = store.claim_next()
                if job is None:
                    return
                with lock:
                    claimed.append(job.id)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert len(claimed) == jobs
        assert len(set(claimed)) == jobs
        assert store.stats().processing == jobs

    def test_sqlite_claims_are_exclusive(self, tmp_path):
        store = SQLJobStore(f"sqlite:///{tmp_path / 'jobs.db'}")
        for _ in range(40):
            store.add(_job())

        claimed = []
        errors = []
        queued_when_empty = []
        lock = threading.Lock()
        start = threading.Barrier(6)

        def worker():
            start.wait()
            try:
                while True:
                    job = store.claim_next()
                    if job is None:
                        with lock:
                            queued_when_empty.append(store.stats().queued)
                        return
                    with lock:
                        claimed.append(job.id)
            except Exception as e:
                with lock:
                    errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert len(claimed) == 40
        assert len(set(claimed)) == 40
        # No worker saw an empty queue while jobs were still waiting
        assert queued_when_empty == [0] * 6
        assert store.stats().processing == 40


@pytest.mark.unit
class TestBackoff:

    @pytest.mark.parametrize("retry_count,seconds", [(0, 60), (1, 120), (2, 240), (3, 480)])
    def test_doubles(self, retry_count, seconds):
        assert backoff_delay(retry_count, 60) == timedelta(seconds=seconds)
