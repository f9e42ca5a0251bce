# SPDX-License-Identifier: AGPL-3.0-only

"""
Worker pool for extraction jobs.

Each worker thread polls the store independently; correctness rests entirely
on the store's atomic claim. A worker only ever finishes a job whose claim
token it still holds, so a job canceled or reset while in flight keeps the
state the operator gave it.
"""

import logging
import threading
from datetime import datetime
from typing import List, Optional

from docextract.config import ExtractionConfig, config as default_config
from docextract.exceptions import ExtractionPipelineError
from docextract.models import ExtractionResult, utcnow
from docextract.pipeline import ExtractionOrchestrator

from .models import ExtractionJob, JobStatus
from .notifications import StatusNotifier
from .store import JobStore, backoff_delay

logger = logging.getLogger(__name__)


class WorkerPool:
    """Owns N polling threads; start() and stop() bound their lifetime."""

    def __init__(
        self,
        store: JobStore,
        orchestrator: ExtractionOrchestrator,
        storage,
        notifier: Optional[StatusNotifier] = None,
        config: Optional[ExtractionConfig] = None,
        worker_count: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        self.config = config or default_config
        self.store = store
        self.orchestrator = orchestrator
        self.storage = storage
        self.notifier = notifier
        self.worker_count = worker_count if worker_count is not None else self.config.worker_count
        self.poll_interval = poll_interval if poll_interval is not None else self.config.poll_interval
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            self._stop.clear()
            self._threads = [
                threading.Thread(target=self._loop, name=f"extraction-worker-{i}", daemon=True)
                for i in range(self.worker_count)
            ]
            for thread in self._threads:
                thread.start()
        logger.info("Worker pool started with %d workers", self.worker_count)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        with self._lock:
            threads, self._threads = self._threads, []
        for thread in threads:
            thread.join(timeout)
        logger.info("Worker pool stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                job = self.run_once()
            except Exception:
                logger.exception("Worker iteration failed")
                job = None
            if job is None:
                self._stop.wait(self.poll_interval)

    def run_once(self, now: Optional[datetime] = None) -> Optional[ExtractionJob]:
        """Claim and process one job. Returns its state afterwards, or None if nothing was eligible."""
        job = self.store.claim_next(now)
        if job is None:
            return None
        logger.info("Claimed job %s (%s, attempt %d)", job.id, job.document_type.value, job.retry_count + 1)
        self._publish(job.id, JobStatus.PROCESSING)
        return self.process_job(job)

    def process_job(self, job: ExtractionJob) -> ExtractionJob:
        """Run the pipeline for a claimed job and record the outcome."""
        try:
            data = self.storage.read(job.file_path)
        except ExtractionPipelineError as e:
            return self._record_failure(job, str(e), e.retryable)

        def on_phase(phase: str) -> None:
            if self.store.transition(job.id, {"phase": phase}, JobStatus.PROCESSING, job.claim_token):
                self._publish(job.id, JobStatus.PROCESSING, phase)

        result = self.orchestrator.process(
            data,
            job.document_type,
            declared_type=job.mime_type_claimed,
            job_id=job.id,
            document_ref=job.document_ref,
            file_path=job.file_path,
            on_phase=on_phase,
        )

        if not result.success:
            message = result.errors[0] if result.errors else "Extraction failed"
            return self._record_failure(job, message, result.retryable, result)

        finished = self.store.finish(job.id, job.claim_token, {
            "status": JobStatus.COMPLETED,
            "completed_at": utcnow(),
            "phase": None,
            "error_message": None,
            "template_version": result.template_version,
        }, result)
        if finished is None:
            logger.info("Discarding result for job %s: no longer owned by this worker", job.id)
            return self.store.get(job.id) or job
        logger.info("Job %s completed (confidence %.2f)", job.id, result.confidence_score)
        self._publish(job.id, JobStatus.COMPLETED)
        return finished

    def _record_failure(self, job: ExtractionJob, message: str, retryable: bool,
                        result: Optional[ExtractionResult] = None) -> ExtractionJob:
        now = utcnow()
        metadata = {**job.metadata, "last_error": message}
        if retryable and job.retry_count < job.max_retries:
            delay = backoff_delay(job.retry_count, self.config.backoff_base_seconds)
            changes = {
                "status": JobStatus.QUEUED,
                "retry_count": job.retry_count + 1,
                "scheduled_at": now + delay,
                "error_message": None,
                "phase": None,
                "started_at": None,
                "claim_token": None,
                "metadata": metadata,
            }
            updated = self.store.finish(job.id, job.claim_token, changes)
            if updated is not None:
                logger.info("Job %s requeued (retry %d/%d) in %ds: %s",
                            job.id, updated.retry_count, job.max_retries, delay.total_seconds(), message)
                self._publish(job.id, JobStatus.QUEUED)
        else:
            changes = {
                "status": JobStatus.FAILED,
                "completed_at": now,
                "error_message": message,
                "phase": None,
                "metadata": metadata,
            }
            if result is not None and result.template_version:
                changes["template_version"] = result.template_version
            updated = self.store.finish(job.id, job.claim_token, changes, result)
            if updated is not None:
                logger.warning("Job %s failed permanently: %s", job.id, message)
                self._publish(job.id, JobStatus.FAILED)

        if updated is None:
            logger.info("Discarding failure for job %s: no longer owned by this worker", job.id)
            return self.store.get(job.id) or job
        return updated

    def _publish(self, job_id: str, status: JobStatus, phase: Optional[str] = None) -> None:
        if self.notifier is not None:
            self.notifier.publish(job_id, status.value, phase)
