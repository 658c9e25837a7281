"""Logging configuration for Lead_Ingestor."""

from __future__ import annotations

import json
import logging
import sys
from threading import Lock
from typing import TYPE_CHECKING, Any, Final

from .config import get_settings

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..schemas.imports import ImportResult
    from ..schemas.ingestion import IngestionJob

# Define log format with structured context placeholders.
LOG_FORMAT: Final[str] = (
    "%(asctime)s | %(levelname)s | %(name)s | "
    "source_id=%(source_id)s | source_type=%(source_type)s | "
    "job_id=%(job_id)s | status=%(status)s | "
    "duration_ms=%(duration_ms)s | records=%(record_summary)s | %(message)s"
)

DEFAULT_CONTEXT: Final[dict[str, str]] = {
    "source_id": "-",
    "source_type": "-",
    "job_id": "-",
    "status": "-",
    "duration_ms": "-",
    "record_summary": "-",
}

_LOG_CONFIGURED = False
_CONFIG_LOCK: Final = Lock()


class ContextualFormatter(logging.Formatter):
    """Formatter that injects default structured context fields when absent."""

    def __init__(self, fmt: str, defaults: dict[str, str] | None = None) -> None:
        super().__init__(fmt)
        self._defaults = defaults or {}

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        for key, value in self._defaults.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return super().format(record)


def _configure_root_logger() -> None:
    """Configure the root logger exactly once based on global settings."""

    global _LOG_CONFIGURED
    with _CONFIG_LOCK:
        if _LOG_CONFIGURED:
            return

        settings = get_settings()
        resolved_level = getattr(logging, settings.log_level.upper(), logging.INFO)

        root_logger = logging.getLogger()
        root_logger.setLevel(resolved_level)

        formatter = ContextualFormatter(LOG_FORMAT, DEFAULT_CONTEXT)

        if not root_logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setLevel(resolved_level)
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)
        else:
            for handler in root_logger.handlers:
                handler.setFormatter(formatter)

        _LOG_CONFIGURED = True


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that lets per-call extras override defaults."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:  # type: ignore[override]
        base_extra = self.extra or {}
        extra = dict(base_extra)
        provided_extra = kwargs.get("extra") or {}
        extra.update(provided_extra)
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logger(
    name: str,
    *,
    level: str | None = None,
    context: dict[str, Any] | None = None,
) -> logging.LoggerAdapter:
    """Return a logger configured with the global logging defaults.

    Args:
        name: Logger name to retrieve.
        level: Optional log level override (primarily for tests).
        context: Optional default structured context to include with every entry.

    Returns:
        LoggerAdapter injecting structured defaults for consistent formatting.
    """

    _configure_root_logger()
    logger = logging.getLogger(name)

    if level is not None:
        resolved_value = getattr(logging, level.upper(), logging.INFO)
        logger.setLevel(resolved_value)
    else:
        logger.setLevel(logging.NOTSET)

    adapter_context: dict[str, Any] = dict(DEFAULT_CONTEXT)
    if context:
        adapter_context.update(context)

    return StructuredLoggerAdapter(logger, adapter_context)


def job_context(job: IngestionJob, **extra: Any) -> dict[str, Any]:
    """Return the structured ``extra`` mapping describing a job."""

    context: dict[str, Any] = {
        "source_id": job.source_id,
        "source_type": job.source_type.value,
        "job_id": job.id,
        "status": job.status.value,
    }
    context.update(extra)
    return context


def log_job_outcome(
    logger: logging.Logger | logging.LoggerAdapter,
    job: IngestionJob,
    duration_ms: int,
) -> None:
    """
    Log the terminal state of an ingestion job with structured context.

    Completed jobs log at INFO, partial jobs at WARNING and failed jobs at ERROR.

    Args:
        logger: Logger instance
        job: Finished ingestion job
        duration_ms: Wall-clock processing time in milliseconds
    """
    summary = {
        "total": job.total_records,
        "processed": job.processed_records,
        "successful": job.successful_records,
        "failed": job.failed_records,
    }
    structured_context = job_context(
        job,
        duration_ms=duration_ms,
        record_summary=json.dumps(summary, sort_keys=True),
    )

    status_value = job.status.value
    if status_value == "completed":
        log_method = logger.info
    elif status_value == "partial":
        log_method = logger.warning
    else:
        log_method = logger.error

    suffix = f" | errors={len(job.errors)}" if job.errors else ""
    log_method(f"Ingestion job {status_value}{suffix}", extra=structured_context)


def log_import_outcome(
    logger: logging.Logger | logging.LoggerAdapter,
    result: ImportResult,
    format_name: str,
) -> None:
    """Log the terminal state of a bulk import with its row counters."""

    summary = {
        "total": result.total_rows,
        "processed": result.processed_rows,
        "successful": result.successful_rows,
        "failed": result.failed_rows,
        "batches": len(result.batch_job_ids),
    }
    structured_context = {
        "source_id": result.source_id or "-",
        "source_type": format_name,
        "job_id": result.job_id,
        "status": result.status.value,
        "duration_ms": result.duration_ms if result.duration_ms is not None else "-",
        "record_summary": json.dumps(summary, sort_keys=True),
    }

    status_value = result.status.value
    if status_value == "completed":
        log_method = logger.info
    elif status_value == "partial":
        log_method = logger.warning
    else:
        log_method = logger.error

    suffix = f" | errors={len(result.errors)}" if result.errors else ""
    log_method(f"Bulk import {status_value}{suffix}", extra=structured_context)
