# SPDX-License-Identifier: AGPL-3.0-only

"""
Advisory job status notifications.

Publishers announce that a job changed; subscribers use the event only as a
hint to re-read the job from the store, which stays the source of truth.
Delivery is best effort: a slow subscriber whose buffer is full misses events.
"""

import logging
import queue
import threading
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class StatusNotifier:
    """In-process publish/subscribe keyed by job id."""

    def __init__(self, buffer_size: int = 32):
        self.buffer_size = buffer_size
        self._subscribers: Dict[str, List[queue.Queue]] = {}
        self._lock = threading.Lock()

    def subscribe(self, job_id: str) -> "queue.Queue[Dict[str, Any]]":
        q: "queue.Queue[Dict[str, Any]]" = queue.Queue(maxsize=self.buffer_size)
        with self._lock:
            self._subscribers.setdefault(job_id, []).append(q)
        return q

    def unsubscribe(self, job_id: str, q: queue.Queue) -> None:
        with self._lock:
            subscribers = self._subscribers.get(job_id, [])
            if q in subscribers:
                subscribers.remove(q)
            if not subscribers:
                self._subscribers.pop(job_id, None)

    def publish(self, job_id: str, status: str, phase: Optional[str] = None) -> int:
        """Notify subscribers of a job; returns how many received the event."""
        event = {"job_id": job_id, "status": status, "phase": phase}
        with self._lock:
            subscribers = list(self._subscribers.get(job_id, []))
        delivered = 0
        for q in subscribers:
            try:
                q.put_nowait(event)
                delivered += 1
            except queue.Full:
                logger.debug("Dropping status event for slow subscriber of job %s", job_id)
        return delivered

    def subscriber_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(job_id, []))
