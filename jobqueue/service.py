# SPDX-License-Identifier: AGPL-3.0-only

"""
Submission and status interface for extraction jobs.

Submitting stores the file and enqueues a job without doing any processing.
Status reads always come from the store, whatever notifications say.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from docextract.config import ExtractionConfig, config as default_config
from docextract.file_classifier import sniff_type
from docextract.models import DocumentType, ExtractionResult, FileKind, utcnow

from .models import ExtractionJob, JobStatus
from .notifications import StatusNotifier
from .store import JobStore

logger = logging.getLogger(__name__)


class SubmissionError(Exception):
    """The upload cannot be accepted."""

    status_code = 400


class FileTooLargeError(SubmissionError):
    status_code = 413


def _iso(value) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


def build_status_view(job: ExtractionJob, result: Optional[ExtractionResult] = None) -> Dict[str, Any]:
    """Status as shown to callers; completed jobs include their extracted data."""
    if job.status in (JobStatus.QUEUED, JobStatus.PROCESSING):
        outcome = "processing"
    elif job.status == JobStatus.FAILED:
        outcome = "failed"
    elif result is not None and result.needs_review:
        outcome = "needs_review"
    else:
        outcome = "completed"

    view: Dict[str, Any] = {
        "job_id": job.id,
        "status": job.status.value,
        "phase": job.phase if job.status == JobStatus.PROCESSING else None,
        "document_type": job.document_type.value,
        "document_ref": job.document_ref,
        "retry_count": job.retry_count,
        "max_retries": job.max_retries,
        "error": job.error_message,
        "created_at": _iso(job.created_at),
        "scheduled_at": _iso(job.scheduled_at),
        "started_at": _iso(job.started_at),
        "completed_at": _iso(job.completed_at),
        "template_version": job.template_version,
        "done": job.is_terminal,
        "outcome": outcome,
    }
    if job.status == JobStatus.COMPLETED and result is not None:
        view.update({
            "extracted_data": result.extracted_data,
            "confidence_score": result.confidence_score,
            "fields_found": result.fields_found,
            "fields_missing": result.fields_missing,
            "warnings": result.warnings,
            "needs_review": result.needs_review,
            "processing_method": result.processing_method.value if result.processing_method else None,
        })
    return view


class ExtractionService:
    """Front door used by the HTTP layer."""

    def __init__(self, store: JobStore, storage, notifier: Optional[StatusNotifier] = None,
                 config: Optional[ExtractionConfig] = None):
        self.config = config or default_config
        self.store = store
        self.storage = storage
        self.notifier = notifier

    def submit(self, data: bytes, filename: Optional[str], document_type: str,
               declared_type: Optional[str] = None, document_ref: Optional[str] = None,
               priority: int = 0) -> Dict[str, Any]:
        """
        Store the upload and enqueue a job.

        Returns:
            {job_id, status, estimated_completion}

        Raises:
            SubmissionError: empty, oversized or unsupported upload, or unknown document type
        """
        try:
            doc_type = DocumentType(document_type)
        except ValueError:
            raise SubmissionError(f"Unsupported document type: {document_type}")
        if not data:
            raise SubmissionError("Uploaded file is empty")
        if len(data) > self.config.max_file_size:
            raise FileTooLargeError(f"File exceeds {self.config.max_file_size} bytes")

        kind, mime, ext = sniff_type(data)
        if kind == FileKind.UNSUPPORTED:
            raise SubmissionError(f"Unsupported file type: {ext or 'unknown'}")

        path = self.storage.save(data, filename, doc_type.value)
        job = ExtractionJob(
            document_ref=document_ref,
            document_type=doc_type,
            file_path=path,
            file_size=len(data),
            mime_type_claimed=declared_type,
            priority=priority,
            max_retries=self.config.max_retries,
            metadata={"original_filename": filename, "detected_type": mime},
        )
        eta = self._estimate_completion()
        self.store.add(job)
        logger.info("Job %s queued (%s, %d bytes, priority %d)", job.id, doc_type.value, len(data), priority)
        if self.notifier is not None:
            self.notifier.publish(job.id, JobStatus.QUEUED.value)

        return {
            "job_id": job.id,
            "status": JobStatus.QUEUED.value,
            "estimated_completion": _iso(eta),
        }

    def get_job(self, job_id: str) -> Optional[ExtractionJob]:
        return self.store.get(job_id)

    def get_result(self, job_id: str) -> Optional[ExtractionResult]:
        return self.store.get_result(job_id)

    def get_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        job = self.store.get(job_id)
        if job is None:
            return None
        result = self.store.get_result(job_id) if job.status == JobStatus.COMPLETED else None
        return build_status_view(job, result)

    def _estimate_completion(self):
        stats = self.store.stats()
        ahead = stats.queued + stats.processing
        workers = max(self.config.worker_count, 1)
        seconds = (ahead // workers + 1) * self.config.estimated_seconds_per_job
        return utcnow() + timedelta(seconds=seconds)
