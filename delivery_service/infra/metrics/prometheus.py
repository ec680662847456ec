"""Prometheus metrics for the outbox dispatcher and job runner."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Custom registry so tests and embedding applications control exposition
REGISTRY = CollectorRegistry()

# Publisher calls are network-bound; cover 5ms up to the 30s publish timeout
PUBLISH_LATENCY_BUCKETS = (
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
)

# Consumer jobs range from cache invalidations to report generation
JOB_DURATION_BUCKETS = (
    0.01,
    0.05,
    0.1,
    0.5,
    1.0,
    5.0,
    15.0,
    60.0,
    300.0,
)

# Outbox metrics
outbox_events_written_total = Counter(
    "outbox_events_written_total",
    "Outbox events staged inside business transactions",
    ["event_type"],
    registry=REGISTRY,
)

outbox_events_published_total = Counter(
    "outbox_events_published_total",
    "Outbox events successfully handed to the publisher",
    ["event_type"],
    registry=REGISTRY,
)

outbox_publish_failures_total = Counter(
    "outbox_publish_failures_total",
    "Publisher failures by outcome (retry_scheduled, terminal)",
    ["event_type", "outcome"],
    registry=REGISTRY,
)

outbox_claim_conflicts_total = Counter(
    "outbox_claim_conflicts_total",
    "Claims lost to another worker, at claim time or when recording an outcome",
    ["stage"],
    registry=REGISTRY,
)

outbox_events_reclaimed_total = Counter(
    "outbox_events_reclaimed_total",
    "Stuck 'processing' claims reclaimed after the visibility timeout",
    ["outcome"],
    registry=REGISTRY,
)

outbox_publish_duration_seconds = Histogram(
    "outbox_publish_duration_seconds",
    "Publisher call duration in seconds",
    ["event_type"],
    buckets=PUBLISH_LATENCY_BUCKETS,
    registry=REGISTRY,
)

outbox_sweep_runs_total = Counter(
    "outbox_sweep_runs_total",
    "Scheduled outbox sweeps by result",
    ["result"],
    registry=REGISTRY,
)

outbox_last_sweep_timestamp_seconds = Gauge(
    "outbox_last_sweep_timestamp_seconds",
    "Unix time of the last completed outbox sweep",
    registry=REGISTRY,
)

# Job runner metrics
job_runs_total = Counter(
    "job_runs_total",
    "Job invocations by class and result status",
    ["job_class", "status"],
    registry=REGISTRY,
)

job_duration_seconds = Histogram(
    "job_duration_seconds",
    "Job execute() duration in seconds",
    ["job_class"],
    buckets=JOB_DURATION_BUCKETS,
    registry=REGISTRY,
)

job_throttled_total = Counter(
    "job_throttled_total",
    "Invocations rescheduled by tenant admission control",
    ["queue"],
    registry=REGISTRY,
)

job_dead_lettered_total = Counter(
    "job_dead_lettered_total",
    "Jobs escalated to the dead-letter store",
    ["job_class"],
    registry=REGISTRY,
)

# Counter store metrics
counter_store_errors_total = Counter(
    "counter_store_errors_total",
    "Counter store failures by operation",
    ["operation"],
    registry=REGISTRY,
)

throttle_fail_open_total = Counter(
    "throttle_fail_open_total",
    "Admission decisions allowed because the counter store was unavailable",
    ["queue"],
    registry=REGISTRY,
)
