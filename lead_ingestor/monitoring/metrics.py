"""Prometheus metrics definitions for Lead_Ingestor."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

INGESTION_JOBS_STARTED = Counter(
    "ingestion_jobs_started_total",
    "Total ingestion jobs started by source type.",
    labelnames=("source_type",),
)

INGESTION_JOBS_FINISHED = Counter(
    "ingestion_jobs_finished_total",
    "Total ingestion jobs finished by source type and terminal status.",
    labelnames=("source_type", "status"),
)

INGESTION_ACTIVE_JOBS = Gauge(
    "ingestion_active_jobs",
    "Number of ingestion jobs currently held in the active job table.",
    labelnames=("source_type",),
)

INGESTION_RECORDS = Counter(
    "ingestion_records_total",
    "Records processed grouped by source type and outcome.",
    labelnames=("source_type", "outcome"),
)

JOB_DURATION = Histogram(
    "ingestion_job_duration_seconds",
    "Distribution of ingestion job durations in seconds.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 120),
)

VALIDATION_ERRORS = Counter(
    "validation_errors_total",
    "Total schema validation errors grouped by field.",
    labelnames=("source_type", "field"),
)

ROLLBACK_FAILURES = Counter(
    "pipeline_rollback_failures_total",
    "Rollback actions that raised and were swallowed.",
    labelnames=("step",),
)

IMPORT_ROWS = Counter(
    "bulk_import_rows_total",
    "Bulk import rows grouped by file format and outcome.",
    labelnames=("format", "outcome"),
)


def record_job_started(source_type: str) -> None:
    """Increment the started-jobs counter and the active jobs gauge."""

    INGESTION_JOBS_STARTED.labels(source_type=source_type).inc()
    INGESTION_ACTIVE_JOBS.labels(source_type=source_type).inc()


def record_job_finished(source_type: str, status: str, duration_seconds: float) -> None:
    """Record a job reaching a terminal status."""

    INGESTION_JOBS_FINISHED.labels(source_type=source_type, status=status).inc()
    INGESTION_ACTIVE_JOBS.labels(source_type=source_type).dec()
    JOB_DURATION.observe(max(duration_seconds, 0.0))


def record_record_outcome(source_type: str, outcome: str) -> None:
    INGESTION_RECORDS.labels(source_type=source_type, outcome=outcome).inc()


def record_validation_error(source_type: str, field: str) -> None:
    VALIDATION_ERRORS.labels(source_type=source_type, field=field).inc()


def record_rollback_failure(step: str) -> None:
    ROLLBACK_FAILURES.labels(step=step).inc()


def record_import_rows(format_name: str, outcome: str, count: int) -> None:
    """Add ``count`` rows to the bulk import counter for the given outcome."""

    if count > 0:
        IMPORT_ROWS.labels(format=format_name, outcome=outcome).inc(count)
