# SPDX-License-Identifier: AGPL-3.0-only

"""
Operator remediation for the extraction queue: retry, cancel, reset stuck
jobs, purge old failures and inspect queue statistics.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from docextract.config import ExtractionConfig, config as default_config
from docextract.exceptions import InfrastructureError
from docextract.models import utcnow

from .models import CANCELED_MESSAGE, ExtractionJob, JobStatus, QueueStats
from .notifications import StatusNotifier
from .store import JobStore

logger = logging.getLogger(__name__)

BULK_RETRY_LIMIT = 50


def _outcome(action: str, results: List[Dict[str, Any]], message: Optional[str] = None) -> Dict[str, Any]:
    affected = sum(1 for r in results if r["success"])
    return {
        "success": True,
        "action": action,
        "affected": affected,
        "results": results,
        "message": message or f"{action}: {affected} of {len(results)} jobs affected",
    }


class QueueAdmin:
    """Explicit operator actions; nothing here runs automatically."""

    def __init__(self, store: JobStore, config: Optional[ExtractionConfig] = None,
                 notifier: Optional[StatusNotifier] = None, storage=None, worker_pool=None):
        self.config = config or default_config
        self.store = store
        self.notifier = notifier
        self.storage = storage
        self.worker_pool = worker_pool

    def retry(self, job_ids: Iterable[str], force: bool = False) -> Dict[str, Any]:
        """
        Return failed jobs to the queue for immediate processing.

        Bounded by max_retries; ``force`` grants exactly one attempt beyond it.
        """
        results = []
        now = utcnow()
        for job_id in job_ids:
            job = self.store.get(job_id)
            if job is None:
                results.append({"job_id": job_id, "success": False, "error": "Job not found"})
                continue
            if job.status != JobStatus.FAILED:
                results.append({"job_id": job_id, "success": False, "error": f"Job is {job.status.value}"})
                continue

            changes: Dict[str, Any] = {
                "status": JobStatus.QUEUED,
                "retry_count": job.retry_count + 1,
                "scheduled_at": now,
                "error_message": None,
                "completed_at": None,
                "started_at": None,
                "claim_token": None,
                "phase": None,
            }
            if job.retry_count >= job.max_retries:
                if not force:
                    results.append({"job_id": job_id, "success": False, "error": "Max retries exceeded"})
                    continue
                changes["max_retries"] = job.retry_count + 1

            updated = self.store.transition(job_id, changes, expected_status=JobStatus.FAILED)
            if updated is None:
                results.append({"job_id": job_id, "success": False, "error": "Job changed concurrently"})
                continue
            self._publish(updated)
            results.append({"job_id": job_id, "success": True})

        outcome = _outcome("retry", results)
        logger.info("Admin retry: %d of %d jobs requeued (force=%s)", outcome["affected"], len(results), force)
        return outcome

    def retry_all(self) -> Dict[str, Any]:
        """Requeue every failed job that still has retries left (canceled jobs excluded)."""
        candidates = [
            j.id for j in self.store.find(status=JobStatus.FAILED)
            if j.can_retry and j.error_message != CANCELED_MESSAGE
        ][:BULK_RETRY_LIMIT]
        if not candidates:
            return _outcome("retry_all", [], "No jobs eligible for retry")
        outcome = self.retry(candidates)
        outcome["action"] = "retry_all"
        return outcome

    def cancel(self, job_ids: Iterable[str]) -> Dict[str, Any]:
        """Fail queued or processing jobs with a canceled reason; terminal jobs are untouched."""
        results = []
        now = utcnow()
        for job_id in job_ids:
            updated = self.store.transition(job_id, {
                "status": JobStatus.FAILED,
                "error_message": CANCELED_MESSAGE,
                "completed_at": now,
                "claim_token": None,
                "phase": None,
            }, expected_status=(JobStatus.QUEUED, JobStatus.PROCESSING))
            if updated is None:
                job = self.store.get(job_id)
                error = "Job not found" if job is None else f"Job is already {job.status.value}"
                results.append({"job_id": job_id, "success": False, "error": error})
                continue
            self._publish(updated)
            results.append({"job_id": job_id, "success": True})

        outcome = _outcome("cancel", results)
        logger.info("Admin cancel: %d of %d jobs canceled", outcome["affected"], len(results))
        return outcome

    def reset_stuck(self, stale_minutes: Optional[int] = None) -> Dict[str, Any]:
        """Return jobs processing for longer than the staleness window to the queue."""
        stale_minutes = stale_minutes if stale_minutes is not None else self.config.stale_after_minutes
        now = utcnow()
        cutoff = now - timedelta(minutes=stale_minutes)
        results = []
        for job in self.store.find(status=JobStatus.PROCESSING, started_before=cutoff):
            updated = self.store.transition(job.id, {
                "status": JobStatus.QUEUED,
                "scheduled_at": now,
                "started_at": None,
                "claim_token": None,
                "phase": None,
            }, expected_status=JobStatus.PROCESSING, expected_token=job.claim_token)
            if updated is None:
                results.append({"job_id": job.id, "success": False, "error": "Job changed concurrently"})
                continue
            self._publish(updated)
            results.append({"job_id": job.id, "success": True})

        outcome = _outcome("reset_stuck", results,
                           None if results else f"No jobs processing for more than {stale_minutes} minutes")
        logger.info("Admin reset_stuck: %d jobs returned to queue", outcome["affected"])
        return outcome

    def purge(self, older_than_days: Optional[int] = None) -> Dict[str, Any]:
        """Delete failed jobs (and results) last updated before the retention window."""
        days = older_than_days if older_than_days is not None else self.config.purge_after_days
        cutoff = utcnow() - timedelta(days=days)
        jobs = self.store.find(status=JobStatus.FAILED, updated_before=cutoff)
        removed = self.store.delete(j.id for j in jobs)

        if self.storage is not None:
            for job in jobs:
                try:
                    self.storage.delete(job.file_path)
                except InfrastructureError as e:
                    logger.warning("Could not delete file for purged job %s: %s", job.id, e)

        logger.info("Admin purge: %d failed jobs older than %d days deleted", removed, days)
        return {
            "success": True,
            "action": "purge",
            "affected": removed,
            "results": [{"job_id": j.id, "success": True} for j in jobs],
            "message": f"Deleted {removed} failed jobs older than {days} days",
        }

    def stats(self) -> QueueStats:
        return self.store.stats()

    def process_next(self) -> Optional[ExtractionJob]:
        """Claim and process one job inline, for operators and debugging."""
        if self.worker_pool is None:
            raise RuntimeError("No worker pool configured for inline processing")
        return self.worker_pool.run_once()

    def _publish(self, job: ExtractionJob) -> None:
        if self.notifier is not None:
            self.notifier.publish(job.id, job.status.value, job.phase)
