"""
Prometheus metrics module for ServiTech.

Service timings come from the @measure_operation decorator; the domain
counters cover expert locking, the auto-resolution sweep, escrow movements
and notification delivery.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Isolated from the process-wide default registry
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "servitech_service_operation_duration_seconds",
    "Wall time of measured service operations",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "servitech_service_operations_total",
    "Measured service operations by outcome",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "servitech_errors_total",
    "Failed service operations by exception type",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

expert_lock_total = Counter(
    "servitech_expert_lock_total",
    "Per-expert booking lock operations",
    ["action", "outcome"],  # acquire|release x success|blocked|timeout|error|redis_unavailable
    registry=REGISTRY,
)

advisory_transitions_total = Counter(
    "servitech_advisory_transitions_total",
    "Advisory state transitions",
    ["to_state"],
    registry=REGISTRY,
)

payment_transitions_total = Counter(
    "servitech_payment_transitions_total",
    "Payment escrow state transitions",
    ["to_state"],
    registry=REGISTRY,
)

sweep_advisories_total = Counter(
    "servitech_sweep_advisories_total",
    "Advisories processed by the auto-resolution sweep",
    ["outcome"],  # completed | skipped | failed
    registry=REGISTRY,
)

sweep_duration_seconds = Histogram(
    "servitech_sweep_duration_seconds",
    "Duration of an auto-resolution sweep run",
    registry=REGISTRY,
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0),
)

notifications_total = Counter(
    "servitech_notifications_total",
    "Notification publish outcomes",
    ["event_type", "status"],  # publisher: published | failed | disabled; worker: handed_off
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Recording helpers plus a briefly cached text exposition of REGISTRY."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = 1.0

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """Called by BaseService.measure_operation for every timed call."""
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_expert_lock(action: str, outcome: str) -> None:
        expert_lock_total.labels(action=action, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_advisory_transition(to_state: str) -> None:
        advisory_transitions_total.labels(to_state=to_state).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_payment_transition(to_state: str) -> None:
        payment_transitions_total.labels(to_state=to_state).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_sweep(completed: int, skipped: int, failed: int, duration: float) -> None:
        """Record the outcome counts of one sweep run."""
        sweep_advisories_total.labels(outcome="completed").inc(completed)
        sweep_advisories_total.labels(outcome="skipped").inc(skipped)
        sweep_advisories_total.labels(outcome="failed").inc(failed)
        sweep_duration_seconds.observe(max(duration, 0.0))
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_notification(event_type: str, status: str) -> None:
        notifications_total.labels(event_type=event_type, status=status).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """Exposition text for a scrape; regenerated at most once per cache TTL."""
        now = monotonic()
        payload = PrometheusMetrics._cache_payload
        ts = PrometheusMetrics._cache_ts
        if payload is not None and ts is not None and (now - ts) <= PrometheusMetrics._cache_ttl_seconds:
            return payload

        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
            PrometheusMetrics._cache_ts = monotonic()
            return PrometheusMetrics._cache_payload

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


prometheus_metrics = PrometheusMetrics()
