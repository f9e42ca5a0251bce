# SPDX-License-Identifier: AGPL-3.0-only

"""
Job models for the extraction queue.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from docextract.models import DocumentType, utcnow


class JobStatus(str, Enum):
    """Lifecycle states: queued -> processing -> completed | failed."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)

CANCELED_MESSAGE = "canceled"


def new_job_id() -> str:
    return str(uuid.uuid4())


class ExtractionJob(BaseModel):
    """One submitted document awaiting or undergoing processing."""
    id: str = Field(default_factory=new_job_id)
    document_ref: Optional[str] = None
    document_type: DocumentType
    file_path: str
    file_size: int = 0
    mime_type_claimed: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    priority: int = 0
    retry_count: int = 0
    max_retries: int = 3
    scheduled_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    claim_token: Optional[str] = None
    phase: Optional[str] = None
    template_version: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def can_retry(self) -> bool:
        return self.status == JobStatus.FAILED and self.retry_count < self.max_retries


class QueueStats(BaseModel):
    """Counts per status plus today's submissions."""
    queued: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    retryable_failed: int = 0
    created_today: int = 0

    @property
    def total(self) -> int:
        return self.queued + self.processing + self.completed + self.failed

    def to_dict(self) -> Dict[str, int]:
        return {**self.model_dump(), "total": self.total}
