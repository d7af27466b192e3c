"""
Metrics Collector — Prometheus
================================

Centralized metrics for routing, admission, batching and workflow
execution, plus in-process latency percentiles for quick summaries.

Design:
  - One CollectorRegistry per collector, so collectors never clash
  - Pre-defined metrics with fixed label sets
  - Thread-safe and async-compatible

Metric Naming Convention:
  - moonshine_{component}_{metric}_{unit}
  - e.g., moonshine_workflow_step_duration_seconds
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

# ── Percentile Tracker ─────────────────────────────────────────────

class PercentileTracker:
    """Thread-safe rolling window percentile calculator."""

    __slots__ = ("_lock", "_values")

    def __init__(self, window_size: int = 1000):
        self._values: deque[float] = deque(maxlen=window_size)
        self._lock = threading.Lock()

    def record(self, value: float) -> None:
        with self._lock:
            self._values.append(value)

    def percentile(self, p: float) -> float:
        """Percentile value for p in 0-100."""
        with self._lock:
            if not self._values:
                return 0.0
            ordered = sorted(self._values)
        idx = int(len(ordered) * p / 100)
        return ordered[min(idx, len(ordered) - 1)]

    @property
    def count(self) -> int:
        return len(self._values)

# ── Metrics Collector ──────────────────────────────────────────────

class MetricsCollector:
    """Owns every Prometheus metric emitted by the orchestration core."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._lock = threading.Lock()
        self._step_latency: dict[str, PercentileTracker] = {}

        # ── Routing ──
        self.provider_selections = Counter(
            "moonshine_router_selections_total",
            "Provider selections",
            labelnames=["provider", "context_kind", "via"],  # via: preferred/ranked
            registry=self.registry,
        )
        self.provider_unavailable = Counter(
            "moonshine_router_unavailable_total",
            "Requests with no eligible provider",
            labelnames=["context_kind"],
            registry=self.registry,
        )
        self.provider_invocations = Counter(
            "moonshine_provider_invocations_total",
            "Provider invocations",
            labelnames=["provider", "status"],
            registry=self.registry,
        )
        self.provider_latency = Histogram(
            "moonshine_provider_latency_seconds",
            "Provider invocation latency",
            labelnames=["provider"],
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
            registry=self.registry,
        )

        # ── Admission ──
        self.rate_limit_admitted = Counter(
            "moonshine_rate_limit_admitted_total",
            "Requests admitted by the rate limiter",
            registry=self.registry,
        )
        self.rate_limit_rejected = Counter(
            "moonshine_rate_limit_rejected_total",
            "Requests rejected by the rate limiter",
            registry=self.registry,
        )

        # ── Batching ──
        self.batches = Counter(
            "moonshine_batch_batches_total",
            "Batches processed",
            labelnames=["status"],
            registry=self.registry,
        )
        self.batches_in_flight = Gauge(
            "moonshine_batch_in_flight",
            "Batches currently being processed",
            registry=self.registry,
        )

        # ── Workflow ──
        self.step_outcomes = Counter(
            "moonshine_workflow_steps_total",
            "Workflow step outcomes",
            labelnames=["status"],
            registry=self.registry,
        )
        self.step_retries = Counter(
            "moonshine_workflow_step_retries_total",
            "Workflow step retry attempts",
            registry=self.registry,
        )
        self.step_duration = Histogram(
            "moonshine_workflow_step_duration_seconds",
            "Workflow step duration",
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0, 600.0),
            registry=self.registry,
        )
        self.workflow_runs = Counter(
            "moonshine_workflow_runs_total",
            "Workflow runs",
            labelnames=["outcome"],
            registry=self.registry,
        )

    # ── Recording Methods ──────────────────────────────────────────

    def record_selection(self, *, provider: str, context_kind: str, preferred: bool) -> None:
        self.provider_selections.labels(
            provider=provider,
            context_kind=context_kind,
            via="preferred" if preferred else "ranked",
        ).inc()

    def record_invocation(self, *, provider: str, success: bool, latency_s: float) -> None:
        self.provider_invocations.labels(
            provider=provider, status="success" if success else "error"
        ).inc()
        self.provider_latency.labels(provider=provider).observe(latency_s)

    def record_admission(self, admitted: bool) -> None:
        if admitted:
            self.rate_limit_admitted.inc()
        else:
            self.rate_limit_rejected.inc()

    def record_step(self, *, step_id: str, status: str, duration_s: float, retries: int) -> None:
        self.step_outcomes.labels(status=status).inc()
        if retries:
            self.step_retries.inc(retries)
        self.step_duration.observe(duration_s)
        self._tracker(step_id).record(duration_s)

    # ── Summaries ──────────────────────────────────────────────────

    def _tracker(self, step_id: str) -> PercentileTracker:
        if step_id not in self._step_latency:
            with self._lock:
                self._step_latency.setdefault(step_id, PercentileTracker())
        return self._step_latency[step_id]

    def get_step_percentiles(self, step_id: str) -> dict[str, float]:
        tracker = self._step_latency.get(step_id)
        if tracker is None:
            return {"p50": 0.0, "p95": 0.0, "count": 0}
        return {
            "p50": tracker.percentile(50),
            "p95": tracker.percentile(95),
            "count": tracker.count,
        }

    def get_summary(self) -> dict[str, Any]:
        return {
            "steps": {
                step_id: {"p50": t.percentile(50), "count": t.count}
                for step_id, t in self._step_latency.items()
            },
        }

    def export(self) -> bytes:
        """Export metrics in Prometheus text format."""
        return generate_latest(self.registry)

# ── Singleton ──────────────────────────────────────────────────────

_metrics: MetricsCollector | None = None

def get_metrics() -> MetricsCollector:
    # Benign-race singleton; a duplicate collector only owns its own registry.
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
