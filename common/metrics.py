"""
Metrics and observability utilities.
"""
import time
from contextlib import contextmanager
from typing import Dict, Any, List, Optional


class JobMetrics:
    """Track per-stage timings, model usage and cost for one processed job."""

    def __init__(self):
        self.start_time = time.time()
        self._started = time.perf_counter()
        self._finished: Optional[float] = None
        self.stage_ms: Dict[str, int] = {}
        self.llm_calls = 0
        self.total_tokens = 0
        self.total_cost = 0.0
        self.errors: List[str] = []

    @contextmanager
    def stage(self, stage_name: str):
        """Time a block of work under the given stage name."""
        began = time.perf_counter()
        try:
            yield
        finally:
            self.stage_ms[stage_name] = int((time.perf_counter() - began) * 1000)

    def finish(self):
        """Mark job as finished."""
        if self._finished is None:
            self._finished = time.perf_counter()

    def add_llm_call(self, tokens: int, cost: float = 0.0):
        """Record an LLM call."""
        self.llm_calls += 1
        self.total_tokens += tokens or 0
        self.total_cost += cost or 0.0

    def add_cost(self, cost: float):
        self.total_cost += cost or 0.0

    def add_error(self, error: str):
        """Record an error."""
        self.errors.append(error)

    def duration_ms(self) -> int:
        end = self._finished if self._finished is not None else time.perf_counter()
        return int((end - self._started) * 1000)

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dict."""
        return {
            "duration_ms": self.duration_ms(),
            "stages_ms": dict(self.stage_ms),
            "llm_calls": self.llm_calls,
            "total_tokens": self.total_tokens,
            "total_cost": round(self.total_cost, 6),
            "errors": list(self.errors),
        }
