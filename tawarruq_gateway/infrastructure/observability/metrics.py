"""Prometheus metrics for monitoring Tawarruq processing, compliance verdicts, and venue performance"""

from prometheus_client import Counter, Histogram

# Processing metrics
processing_step_counter = Counter(
    "tawarruq_processing_step_total",
    "Orchestrator steps executed",
    ["step", "outcome"],  # step: t1 | t2 | approve; outcome: success | precondition | blocked
)

compliance_verdict_counter = Counter(
    "tawarruq_compliance_verdict_total",
    "Full Shariah validation verdicts",
    ["verdict"],  # COMPLIANT | WARNING | NON_COMPLIANT
)

blocked_counter = Counter(
    "tawarruq_blocked_total",
    "Applications routed to blocked",
    ["step", "cause"],  # cause: compliance | processing
)

# Venue metrics
venue_latency_histogram = Histogram(
    "venue_latency_seconds",
    "Commodity venue response time",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

venue_failures_counter = Counter(
    "venue_failures_total",
    "Failed commodity venue calls",
    ["operation", "kind"],  # kind: timeout | rejected | http_error | network
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_step(step: str, outcome: str) -> None:
    processing_step_counter.labels(step=step, outcome=outcome).inc()


def record_verdict(verdict: str) -> None:
    compliance_verdict_counter.labels(verdict=verdict).inc()


def record_blocked(step: str, cause: str) -> None:
    """Compliance blocks and processing-error blocks share a status but not a cause label"""
    blocked_counter.labels(step=step, cause=cause).inc()
    record_step(step, "blocked")
