# SPDX-License-Identifier: AGPL-3.0-only

"""
Durable job queue for document extraction.

Submissions become queued jobs; a pool of workers claims them atomically,
runs the extraction pipeline and records the outcome with retry and backoff.
"""

from .admin import QueueAdmin
from .models import ExtractionJob, JobStatus, QueueStats
from .notifications import StatusNotifier
from .service import ExtractionService, SubmissionError
from .store import InMemoryJobStore, JobStore
from .worker import WorkerPool

__all__ = [
    'ExtractionJob',
    'JobStatus',
    'QueueStats',
    'JobStore',
    'InMemoryJobStore',
    'WorkerPool',
    'QueueAdmin',
    'StatusNotifier',
    'ExtractionService',
    'SubmissionError',
]
