"""Data ingestion engine: source and pipeline registries plus job orchestration.

The engine is an ordinary object; create one per process (or per test) and
register sources and pipelines on it at startup. Jobs are processed by asyncio
tasks on the running event loop. Job state is only mutated by the task that
owns the job, between ``await`` points.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from enum import Enum
from typing import Any, Literal

from .exceptions import JobTimeoutError, SourceDisabledError, SourceNotFoundError
from .monitoring.metrics import (
    record_job_finished,
    record_job_started,
    record_record_outcome,
    record_rollback_failure,
    record_validation_error,
)
from .pipeline.steps import Payload, PipelineStep
from .schemas.ingestion import (
    IngestionJob,
    IngestionRecord,
    IngestionStatus,
    ValidationIssue,
    utc_now_iso,
)
from .schemas.source import DataSource, DataSourceType
from .transforms import transform_record
from .utils.config import GlobalSettings, get_settings
from .utils.logging import job_context, log_job_outcome, setup_logger
from .validation import has_errors, validate_record

logger = setup_logger(__name__, context={"source_type": "engine"})

RollbackMode = Literal["executed", "all"]
Listener = Callable[..., Any]


class EngineEvent(str, Enum):
    """Lifecycle notifications emitted by the engine."""

    SOURCE_REGISTERED = "source:registered"
    JOB_STARTED = "job:started"
    JOB_PROGRESS = "job:progress"
    JOB_COMPLETED = "job:completed"
    JOB_FAILED = "job:failed"
    RECORD_PROCESSED = "record:processed"


class IngestionEngine:
    """
    Registry of data sources and per-source-type pipelines that runs ingestion jobs.

    Each job runs validation, transformation and the registered pipeline for
    its source type in a background task. Failures are contained per record so
    that a job can finish ``partial``.
    """

    def __init__(
        self,
        settings: GlobalSettings | None = None,
        *,
        rollback_mode: RollbackMode | None = None,
    ) -> None:
        """
        Initialize an empty engine.

        Args:
            settings: Global settings (defaults to the cached environment settings)
            rollback_mode: ``executed`` rolls back only steps that already ran, newest
                first; ``all`` calls every step that defines a rollback
        """
        self._settings = settings or get_settings()
        self.rollback_mode: RollbackMode = rollback_mode or self._settings.rollback_mode
        self._sources: dict[str, DataSource] = {}
        self._pipelines: dict[DataSourceType, list[PipelineStep]] = {}
        self._active_jobs: dict[str, IngestionJob] = {}
        self._tasks: dict[str, asyncio.Task[IngestionJob]] = {}
        self._cancelled: set[str] = set()
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Events

    def on(self, event: EngineEvent | str, handler: Listener) -> None:
        """Subscribe a synchronous handler to an engine event."""

        self._listeners[EngineEvent(event).value].append(handler)

    def off(self, event: EngineEvent | str, handler: Listener) -> None:
        handlers = self._listeners.get(EngineEvent(event).value, [])
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, event: EngineEvent, *args: Any) -> None:
        for handler in list(self._listeners.get(event.value, [])):
            try:
                handler(*args)
            except Exception as exc:
                logger.error(
                    "Listener for %s raised: %s",
                    event.value,
                    exc,
                    exc_info=True,
                    extra={"status": "warning"},
                )

    # ------------------------------------------------------------------
    # Registration

    def register_source(self, source: DataSource) -> None:
        """Register (or replace) a data source."""

        self._sources[source.id] = source
        logger.info(
            "Registered source: %s",
            source.name,
            extra={"source_id": source.id, "source_type": source.type.value},
        )
        self._emit(EngineEvent.SOURCE_REGISTERED, source)

    def register_sources(self, sources: Iterable[DataSource]) -> None:
        for source in sources:
            self.register_source(source)

    def register_pipeline(
        self, source_type: DataSourceType | str, steps: Sequence[PipelineStep]
    ) -> None:
        """Associate an ordered list of steps with a source type; last call wins."""

        resolved = DataSourceType(source_type)
        self._pipelines[resolved] = list(steps)
        logger.info(
            "Registered pipeline for %s with %d steps",
            resolved.value,
            len(steps),
            extra={"source_type": resolved.value},
        )

    # ------------------------------------------------------------------
    # Reads

    def get_source(self, source_id: str) -> DataSource | None:
        return self._sources.get(source_id)

    def get_sources(self) -> list[DataSource]:
        return list(self._sources.values())

    def get_pipeline(self, source_type: DataSourceType | str) -> list[PipelineStep]:
        return list(self._pipelines.get(DataSourceType(source_type), []))

    def get_job_status(self, job_id: str) -> IngestionJob | None:
        """Return an active job; finished jobs are evicted and return None."""

        return self._active_jobs.get(job_id)

    def get_active_jobs(self) -> list[IngestionJob]:
        return list(self._active_jobs.values())

    # ------------------------------------------------------------------
    # Job control

    def start_ingestion(
        self, source_id: str, records: Iterable[Any], submitter: str
    ) -> IngestionJob:
        """
        Create a job for ``records`` and schedule its processing.

        Must be called from a running event loop. Returns the pending job
        immediately; observe progress through ``get_job_status``, events or
        ``wait_for_job``.

        Raises:
            SourceNotFoundError: If the source is not registered
            SourceDisabledError: If the source is disabled
        """
        source = self._sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        if not source.enabled:
            raise SourceDisabledError(source_id)

        loop = asyncio.get_running_loop()
        batch = list(records)
        job = IngestionJob(
            name=f"{source.name} Import",
            source_type=source.type,
            source_id=source.id,
            total_records=len(batch),
            created_by=submitter,
        )

        self._active_jobs[job.id] = job
        record_job_started(source.type.value)
        logger.info(
            "Ingestion job started with %d records",
            len(batch),
            extra=job_context(job),
        )
        self._emit(EngineEvent.JOB_STARTED, job)

        task = loop.create_task(self._run_job(job, source, batch), name=f"ingestion-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _task, job_id=job.id: self._tasks.pop(job_id, None))
        return job

    async def run_ingestion(
        self,
        source_id: str,
        records: Iterable[Any],
        submitter: str,
        *,
        timeout: float | None = None,
    ) -> IngestionJob:
        """Submit a batch and wait until its job reaches a terminal status."""

        job = self.start_ingestion(source_id, records, submitter)
        finished = await self.wait_for_job(job.id, timeout=timeout)
        return finished or job

    async def wait_for_job(
        self, job_id: str, *, timeout: float | None = None
    ) -> IngestionJob | None:
        """
        Wait for a running job's task to finish.

        Returns:
            The finished job, or None when no task is running for ``job_id``

        Raises:
            JobTimeoutError: If ``timeout`` elapses first (the job keeps running)
        """
        task = self._tasks.get(job_id)
        if task is None:
            return None
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            raise JobTimeoutError(job_id, timeout or 0.0) from None

    def cancel_ingestion(self, job_id: str) -> bool:
        """
        Mark an active job failed and stop it before its next record.

        A pipeline step already awaiting completes; its result is discarded.
        """
        job = self._active_jobs.get(job_id)
        if job is None or job.status.is_terminal:
            return False

        self._cancelled.add(job_id)
        job.status = IngestionStatus.FAILED
        job.errors.append(
            ValidationIssue(field="_system", message="Ingestion cancelled by user")
        )
        logger.warning("Ingestion job cancelled", extra=job_context(job))
        self._emit(EngineEvent.JOB_FAILED, job, None)
        return True

    async def shutdown(self, *, wait: bool = True) -> None:
        """Wait for (or cancel) all outstanding job tasks."""

        tasks = list(self._tasks.values())
        if not tasks:
            return
        if not wait:
            for task in tasks:
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Processing

    def _is_cancelled(self, job: IngestionJob) -> bool:
        return job.id in self._cancelled

    def _transition(self, job: IngestionJob, status: IngestionStatus) -> None:
        if self._is_cancelled(job):
            return
        job.status = status
        self._emit(EngineEvent.JOB_PROGRESS, job)

    async def _run_job(
        self, job: IngestionJob, source: DataSource, batch: list[Any]
    ) -> IngestionJob:
        started = time.perf_counter()
        try:
            await self._process_job(job, source, batch)
        except Exception as exc:
            logger.error(
                "Ingestion job failed: %s",
                exc,
                exc_info=True,
                extra=job_context(job, status="error"),
            )
            job.status = IngestionStatus.FAILED
            job.completed_at = job.completed_at or utc_now_iso()
            job.errors.append(ValidationIssue(field="_system", message=str(exc)))
            self._emit(EngineEvent.JOB_FAILED, job, exc)
        finally:
            self._active_jobs.pop(job.id, None)
            self._cancelled.discard(job.id)
            elapsed = time.perf_counter() - started
            record_job_finished(job.source_type.value, job.status.value, elapsed)
            log_job_outcome(logger, job, int(elapsed * 1000))
        return job

    async def _process_job(
        self, job: IngestionJob, source: DataSource, batch: list[Any]
    ) -> None:
        self._transition(job, IngestionStatus.VALIDATING)
        pipeline = list(self._pipelines.get(source.type, []))

        records: list[IngestionRecord] = []
        for row, raw in enumerate(batch, start=1):
            if self._is_cancelled(job):
                break
            record = self._validate(job, source, row, raw)
            records.append(record)
            job.records.append(record)
            job.processed_records += 1
            self._emit(EngineEvent.JOB_PROGRESS, job)

        self._transition(job, IngestionStatus.PROCESSING)

        for record in records:
            if record.status is IngestionStatus.FAILED:
                continue
            if self._is_cancelled(job):
                record.status = IngestionStatus.FAILED
                record.add_error("_system", "Ingestion cancelled before processing")
                job.failed_records += 1
                continue
            await self._run_pipeline(job, record, pipeline)
            self._emit(EngineEvent.JOB_PROGRESS, job)

        self._finalize(job, records)

    def _validate(
        self, job: IngestionJob, source: DataSource, row: int, raw: Any
    ) -> IngestionRecord:
        record = IngestionRecord(
            row=row,
            source_type=source.type,
            source_id=source.id,
            raw_data=raw,
        )
        try:
            issues = validate_record(raw, source.data_schema)
            for issue in issues:
                issue.row = row
            record.validation_errors = issues

            if has_errors(issues):
                record.status = IngestionStatus.FAILED
                job.failed_records += 1
                for issue in issues:
                    if issue.is_error:
                        record_validation_error(source.type.value, issue.field)
                record_record_outcome(source.type.value, "invalid")
            else:
                record.normalized_data = transform_record(raw, source.data_schema)
                record.status = IngestionStatus.VALIDATING
        except Exception as exc:
            record.status = IngestionStatus.FAILED
            record.add_error("_system", str(exc))
            job.failed_records += 1
            record_record_outcome(source.type.value, "invalid")
        return record

    async def _run_pipeline(
        self, job: IngestionJob, record: IngestionRecord, pipeline: list[PipelineStep]
    ) -> None:
        payload: Payload = dict(record.normalized_data or {})
        executed: list[tuple[PipelineStep, Payload]] = []
        current: PipelineStep | None = None

        try:
            for current in pipeline:
                payload = await current.execute(payload)
                executed.append((current, payload))
        except Exception as exc:
            step_name = current.name if current is not None else "-"
            record.status = IngestionStatus.FAILED
            record.add_error("_pipeline", str(exc))
            record.metadata["failed_step"] = step_name
            job.failed_records += 1
            record_record_outcome(job.source_type.value, "failed")
            logger.warning(
                "Record %d failed at step %s: %s",
                record.row,
                step_name,
                exc,
                extra=job_context(job),
            )
            await self._rollback(job, record, pipeline, executed)
            return

        record.normalized_data = payload
        record.status = IngestionStatus.COMPLETED
        record.processed_at = utc_now_iso()
        job.successful_records += 1
        record_record_outcome(job.source_type.value, "completed")
        self._emit(EngineEvent.RECORD_PROCESSED, record)

    async def _rollback(
        self,
        job: IngestionJob,
        record: IngestionRecord,
        pipeline: list[PipelineStep],
        executed: list[tuple[PipelineStep, Payload]],
    ) -> None:
        if self.rollback_mode == "all":
            base = dict(record.normalized_data or {})
            targets = [(step, base) for step in pipeline if step.has_rollback]
        else:
            targets = [(step, output) for step, output in reversed(executed) if step.has_rollback]

        for step, data in targets:
            try:
                await step.rollback(data)
            except Exception as exc:
                record_rollback_failure(step.name)
                logger.error(
                    "Rollback failed for step %s: %s",
                    step.name,
                    exc,
                    exc_info=True,
                    extra=job_context(job),
                )

    def _finalize(self, job: IngestionJob, records: list[IngestionRecord]) -> None:
        job.completed_at = utc_now_iso()
        if self._is_cancelled(job) or job.successful_records == 0 and job.failed_records > 0:
            job.status = IngestionStatus.FAILED
        elif job.failed_records == 0:
            job.status = IngestionStatus.COMPLETED
        else:
            job.status = IngestionStatus.PARTIAL

        for record in records:
            job.errors.extend(record.validation_errors)

        self._active_jobs.pop(job.id, None)
        self._emit(EngineEvent.JOB_COMPLETED, job)
