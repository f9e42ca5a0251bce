# SPDX-License-Identifier: AGPL-3.0-only

"""
Job storage and lifecycle primitives.

A store persists jobs and their results and provides the two atomic
operations the queue relies on: claiming the next eligible job, and a
compare-and-set transition that only applies when the job is still in the
expected state (and, for workers, still owned by the caller's claim token).
"""

import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from docextract.models import ExtractionResult, utcnow

from .models import ExtractionJob, JobStatus, QueueStats

StatusFilter = Union[JobStatus, Sequence[JobStatus], None]


def _statuses(expected: StatusFilter) -> Optional[List[JobStatus]]:
    if expected is None:
        return None
    if isinstance(expected, JobStatus):
        return [expected]
    return list(expected)


def new_claim_token() -> str:
    return uuid.uuid4().hex


class JobStore(ABC):
    """Persistence interface shared by the in-memory and SQL stores."""

    @abstractmethod
    def add(self, job: ExtractionJob) -> ExtractionJob:
        """Insert a new job."""

    @abstractmethod
    def get(self, job_id: str) -> Optional[ExtractionJob]:
        """Fetch one job by id."""

    @abstractmethod
    def claim_next(self, now: Optional[datetime] = None) -> Optional[ExtractionJob]:
        """
        Atomically take the next eligible queued job.

        Eligible means status queued and scheduled_at <= now. Order is highest
        priority first, then earliest scheduled_at, then earliest created_at.
        The claimed job is returned in status processing with a fresh
        claim_token; concurrent callers never receive the same job.
        """

    @abstractmethod
    def transition(self, job_id: str, changes: Dict[str, Any],
                   expected_status: StatusFilter = None,
                   expected_token: Optional[str] = None) -> Optional[ExtractionJob]:
        """Apply changes only if the job is in an expected status and holds the expected token."""

    @abstractmethod
    def finish(self, job_id: str, claim_token: str, changes: Dict[str, Any],
               result: Optional[ExtractionResult] = None) -> Optional[ExtractionJob]:
        """Worker completion: transition a processing job it owns and store its result together."""

    @abstractmethod
    def get_result(self, job_id: str) -> Optional[ExtractionResult]:
        """Fetch the stored result for a job."""

    @abstractmethod
    def find(self, status: StatusFilter = None, started_before: Optional[datetime] = None,
             updated_before: Optional[datetime] = None, limit: Optional[int] = None) -> List[ExtractionJob]:
        """List jobs matching all given filters, oldest first."""

    @abstractmethod
    def delete(self, job_ids: Iterable[str]) -> int:
        """Delete jobs and their results; returns the number of jobs removed."""

    @abstractmethod
    def stats(self, now: Optional[datetime] = None) -> QueueStats:
        """Counts per status, retryable failures and jobs created since midnight UTC."""


class InMemoryJobStore(JobStore):
    """Thread-safe in-memory store (single process)."""

    def __init__(self):
        self._jobs: Dict[str, ExtractionJob] = {}
        self._results: Dict[str, ExtractionResult] = {}
        self._lock = threading.Lock()

    def add(self, job: ExtractionJob) -> ExtractionJob:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            self._jobs[job.id] = job.model_copy(deep=True)
            return job.model_copy(deep=True)

    def get(self, job_id: str) -> Optional[ExtractionJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def claim_next(self, now: Optional[datetime] = None) -> Optional[ExtractionJob]:
        now = now or utcnow()
        with self._lock:
            eligible = [
                j for j in self._jobs.values()
                if j.status == JobStatus.QUEUED and j.scheduled_at <= now
            ]
            if not eligible:
                return None
            job = min(eligible, key=lambda j: (-j.priority, j.scheduled_at, j.created_at))
            job.status = JobStatus.PROCESSING
            job.claim_token = new_claim_token()
            job.started_at = now
            job.updated_at = now
            job.phase = None
            return job.model_copy(deep=True)

    def transition(self, job_id: str, changes: Dict[str, Any],
                   expected_status: StatusFilter = None,
                   expected_token: Optional[str] = None) -> Optional[ExtractionJob]:
        with self._lock:
            job = self._transition_locked(job_id, changes, expected_status, expected_token)
            return job.model_copy(deep=True) if job else None

    def finish(self, job_id: str, claim_token: str, changes: Dict[str, Any],
               result: Optional[ExtractionResult] = None) -> Optional[ExtractionJob]:
        with self._lock:
            job = self._transition_locked(job_id, changes, JobStatus.PROCESSING, claim_token)
            if job is None:
                return None
            if result is not None:
                self._results[job_id] = result.model_copy(deep=True)
            return job.model_copy(deep=True)

    def _transition_locked(self, job_id, changes, expected_status, expected_token) -> Optional[ExtractionJob]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        allowed = _statuses(expected_status)
        if allowed is not None and job.status not in allowed:
            return None
        if expected_token is not None and job.claim_token != expected_token:
            return None
        for key, value in changes.items():
            setattr(job, key, value)
        if "updated_at" not in changes:
            job.updated_at = utcnow()
        return job

    def get_result(self, job_id: str) -> Optional[ExtractionResult]:
        with self._lock:
            result = self._results.get(job_id)
            return result.model_copy(deep=True) if result else None

    def find(self, status: StatusFilter = None, started_before: Optional[datetime] = None,
             updated_before: Optional[datetime] = None, limit: Optional[int] = None) -> List[ExtractionJob]:
        allowed = _statuses(status)
        with self._lock:
            jobs = [
                j for j in self._jobs.values()
                if (allowed is None or j.status in allowed)
                and (started_before is None or (j.started_at is not None and j.started_at < started_before))
                and (updated_before is None or j.updated_at < updated_before)
            ]
            jobs.sort(key=lambda j: j.created_at)
            if limit is not None:
                jobs = jobs[:limit]
            return [j.model_copy(deep=True) for j in jobs]

    def delete(self, job_ids: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            for job_id in job_ids:
                if self._jobs.pop(job_id, None) is not None:
                    removed += 1
                self._results.pop(job_id, None)
        return removed

    def stats(self, now: Optional[datetime] = None) -> QueueStats:
        now = now or utcnow()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        stats = QueueStats()
        with self._lock:
            for job in self._jobs.values():
                setattr(stats, job.status.value, getattr(stats, job.status.value) + 1)
                if job.status == JobStatus.FAILED and job.retry_count < job.max_retries:
                    stats.retryable_failed += 1
                if job.created_at >= midnight:
                    stats.created_today += 1
        return stats


def backoff_delay(retry_count: int, base_seconds: int) -> timedelta:
    """Delay before the next attempt: base * 2^retry_count."""
    return timedelta(seconds=base_seconds * (2 ** retry_count))
