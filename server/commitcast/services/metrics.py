# ─────────────────────────────────────────────────────────────────────────────
# Pipeline Metrics — thread-safe request outcome tracking
# ─────────────────────────────────────────────────────────────────────────────
# Counts pipeline outcomes by route and failure kind, and keeps a bounded
# latency history. Exposed via GET /metrics and bridged to Prometheus.
#
# Observability only: nothing in the request path reads these numbers.
# Bounded: latency history uses deque(maxlen=1000), auto-evicts oldest.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any


@dataclass
class PipelineMetrics:
    """Thread-safe pipeline outcome metrics."""

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    requests_total: int = 0
    successes_total: int = 0
    errors_total: int = 0
    drafts_generated: int = 0

    _failures_by_kind: Counter[str] = field(default_factory=Counter, repr=False)
    _requests_by_route: Counter[str] = field(default_factory=Counter, repr=False)

    # Bounded -- only keeps last 1000 latencies, oldest auto-evicted
    _latency_history: deque[float] = field(default_factory=lambda: deque(maxlen=1000), repr=False)

    _start_time: float = field(default_factory=time.time, repr=False)

    def record_request(
        self,
        route: str,
        latency_ms: float,
        *,
        error_kind: str | None = None,
        drafts: int = 0,
    ) -> None:
        """Record one completed pipeline run."""
        with self._lock:
            self.requests_total += 1
            self._requests_by_route[route] += 1
            self._latency_history.append(latency_ms)
            if error_kind is None:
                self.successes_total += 1
                self.drafts_generated += drafts
            else:
                self.errors_total += 1
                self._failures_by_kind[error_kind] += 1

    def failures_by_kind(self) -> dict[str, int]:
        with self._lock:
            return dict(self._failures_by_kind)

    def to_dict(self) -> dict[str, Any]:
        """Serialize metrics for the /metrics endpoint."""
        with self._lock:
            latencies = sorted(self._latency_history)
            n = len(latencies)
            return {
                "requests_total": self.requests_total,
                "successes_total": self.successes_total,
                "errors_total": self.errors_total,
                "drafts_generated": self.drafts_generated,
                "requests_by_route": dict(self._requests_by_route),
                "failures_by_kind": dict(self._failures_by_kind),
                "latency_p50_ms": round(latencies[n // 2], 1) if n else 0,
                "latency_p95_ms": round(latencies[int(n * 0.95)], 1) if n else 0,
                "latency_mean_ms": round(sum(latencies) / n, 1) if n else 0,
                "uptime_seconds": int(time.time() - self._start_time),
            }
