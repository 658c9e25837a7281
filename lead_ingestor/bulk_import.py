"""Bulk import service: preview, field mapping and batched submission to the engine."""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Iterable, Mapping
from typing import Any

from .engine import IngestionEngine
from .exceptions import (
    ContentTooLargeError,
    JobTimeoutError,
    SourceDisabledError,
    SourceNotFoundError,
    TransformationError,
)
from .monitoring.metrics import record_import_rows
from .parsers import get_parser
from .schemas.imports import (
    BulkImportConfig,
    FieldMapping,
    ImportFormat,
    ImportOptions,
    ImportPreview,
    ImportResult,
    ImportRowError,
    ImportRowWarning,
    ImportStatus,
    ParseOptions,
)
from .schemas.ingestion import IngestionJob, IngestionStatus, utc_now_iso
from .transforms import apply_mapping_transform
from .utils.config import GlobalSettings, get_settings
from .utils.logging import log_import_outcome, setup_logger

logger = setup_logger(__name__, context={"source_type": "bulk_import"})

# Normalized column name -> lead field name
FIELD_SYNONYMS: dict[str, str] = {
    # names
    "name": "name",
    "full_name": "name",
    "fullname": "name",
    "first_name": "firstName",
    "firstname": "firstName",
    "fname": "firstName",
    "last_name": "lastName",
    "lastname": "lastName",
    "lname": "lastName",
    # contact
    "email": "email",
    "email_address": "email",
    "emailaddress": "email",
    "phone": "phone",
    "phone_number": "phone",
    "phonenumber": "phone",
    "telephone": "phone",
    # address and geo
    "address": "address",
    "street": "street",
    "city": "city",
    "state": "state",
    "zip": "zip",
    "zipcode": "zip",
    "zip_code": "zip",
    "postal_code": "zip",
    "country": "country",
    "latitude": "latitude",
    "lat": "latitude",
    "longitude": "longitude",
    "lng": "longitude",
    "lon": "longitude",
    # dates
    "date": "date",
    "created_at": "createdAt",
    "createdat": "createdAt",
    "updated_at": "updatedAt",
    "updatedat": "updatedAt",
    # identifiers
    "id": "id",
    "case_id": "caseId",
    "caseid": "caseId",
    "case_number": "caseNumber",
    "casenumber": "caseNumber",
}

IDENTIFYING_FIELDS = ("description", "name", "title")
MISSING_IDENTIFIERS_MESSAGE = "Row appears to be missing key identifying fields"
CANCELLED_MESSAGE = "Import cancelled by user"

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]")


def normalize_field_name(name: str) -> str:
    """Lowercase a column name and replace every non-alphanumeric character with ``_``."""

    return _NON_ALPHANUMERIC.sub("_", name.lower())


def detect_fields(rows: Iterable[Any]) -> list[str]:
    """Return the union of field names across rows, in first-seen order."""

    fields: dict[str, None] = {}
    for row in rows:
        if isinstance(row, Mapping):
            for key in row:
                fields.setdefault(str(key), None)
    return list(fields)


def suggest_mappings(
    fields: Iterable[str], synonyms: Mapping[str, str] | None = None
) -> list[FieldMapping]:
    """Propose a target field for every source field; unknown fields map to themselves."""

    table = FIELD_SYNONYMS if synonyms is None else synonyms
    return [
        FieldMapping(source_field=field, target_field=table.get(normalize_field_name(field), field))
        for field in fields
    ]


def validate_preview(rows: Iterable[Any]) -> list[ImportRowError]:
    """Flag rows (1-based) that carry none of the identifying fields."""

    errors: list[ImportRowError] = []
    for index, row in enumerate(rows, start=1):
        if _missing_identifiers(row):
            errors.append(ImportRowError(row=index, message=MISSING_IDENTIFIERS_MESSAGE))
    return errors


def _missing_identifiers(row: Any) -> bool:
    values = row if isinstance(row, Mapping) else {}
    return not any(values.get(field) for field in IDENTIFYING_FIELDS)


def apply_mapping(row: Any, mappings: list[FieldMapping]) -> Any:
    """
    Project a parsed row onto target fields.

    With no mappings the row passes through unchanged. Missing values take the
    mapping's default when one is set and are omitted otherwise.

    Raises:
        TransformationError: If the row is not a mapping or a transform fails
    """
    if not mappings:
        return row
    if not isinstance(row, Mapping):
        raise TransformationError("Row is not an object and cannot be mapped")

    result: dict[str, Any] = {}
    for mapping in mappings:
        value = row.get(mapping.source_field)
        if value is None:
            if mapping.default_value is None:
                continue
            value = mapping.default_value
        result[mapping.target_field] = apply_mapping_transform(value, mapping.transform)
    return result


def _content_size(content: str | bytes) -> int:
    if isinstance(content, str):
        return len(content.encode("utf-8"))
    return len(content)


class BulkImportService:
    """
    Parses uploaded files and feeds them to an :class:`IngestionEngine` in batches.

    Each import runs in its own asyncio task. Imports are kept in memory after
    they finish so their results can be queried.
    """

    def __init__(
        self,
        engine: IngestionEngine,
        settings: GlobalSettings | None = None,
        *,
        synonyms: Mapping[str, str] | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            engine: Engine batches are submitted to
            settings: Global settings (batching, polling and size limits)
            synonyms: Extra ``normalized column -> target field`` entries
        """
        self.engine = engine
        self.settings = settings or get_settings()
        self.synonyms: dict[str, str] = {
            **FIELD_SYNONYMS,
            **self.settings.field_synonyms,
            **(synonyms or {}),
        }
        self._imports: dict[str, ImportResult] = {}
        self._tasks: dict[str, asyncio.Task[ImportResult]] = {}
        self._cancelled: set[str] = set()
        self._current_batch: dict[str, str] = {}

    def _check_size(self, content: str | bytes) -> None:
        size = _content_size(content)
        if size > self.settings.max_upload_bytes:
            raise ContentTooLargeError(size, self.settings.max_upload_bytes)

    async def preview_import(
        self,
        content: str | bytes,
        format: ImportFormat | str,
        options: ParseOptions | Mapping[str, Any] | None = None,
    ) -> ImportPreview:
        """
        Parse the first rows of a file and describe what an import would do.

        Raises:
            UnsupportedFormatError: If no parser handles ``format``
            ContentTooLargeError: If the content exceeds the upload limit
            ParseError: If the content cannot be parsed
        """
        self._check_size(content)
        parse_options = self._parse_options(options, max_rows=self.settings.preview_rows)
        rows = await get_parser(format).parse_async(content, parse_options)

        detected = detect_fields(rows)
        return ImportPreview(
            total_rows=len(rows),
            sample_rows=[row if isinstance(row, dict) else {"value": row} for row in rows],
            detected_fields=detected,
            suggested_mappings=suggest_mappings(detected, self.synonyms),
            validation_errors=validate_preview(rows),
        )

    @staticmethod
    def _parse_options(
        options: ParseOptions | Mapping[str, Any] | None, **overrides: Any
    ) -> ParseOptions:
        if options is None:
            return ParseOptions(**overrides)
        if isinstance(options, ParseOptions):
            values = {name: getattr(options, name) for name in ParseOptions.model_fields}
        else:
            values = ParseOptions.model_validate(dict(options)).model_dump()
        values.update(overrides)
        return ParseOptions(**values)

    def start_import(
        self, content: str | bytes, config: BulkImportConfig, submitter: str
    ) -> ImportResult:
        """
        Register an import and schedule its processing; returns the pending result.

        Raises:
            SourceNotFoundError: If ``config.source_id`` is not registered
            SourceDisabledError: If the source is disabled
            ContentTooLargeError: If the content exceeds the upload limit
        """
        source = self.engine.get_source(config.source_id)
        if source is None:
            raise SourceNotFoundError(config.source_id)
        if not source.enabled:
            raise SourceDisabledError(config.source_id)
        self._check_size(content)

        loop = asyncio.get_running_loop()
        result = ImportResult(source_id=config.source_id)
        self._imports[result.job_id] = result
        logger.info(
            "Bulk import started",
            extra={"job_id": result.job_id, "source_id": config.source_id},
        )

        task = loop.create_task(
            self._run_import(content, config, submitter, result),
            name=f"bulk-import-{result.job_id}",
        )
        self._tasks[result.job_id] = task
        task.add_done_callback(lambda _task, job_id=result.job_id: self._tasks.pop(job_id, None))
        return result

    async def run_import(
        self, content: str | bytes, config: BulkImportConfig, submitter: str
    ) -> ImportResult:
        """Start an import and wait until it finishes."""

        result = self.start_import(content, config, submitter)
        return await self.wait_for_import(result.job_id) or result

    async def wait_for_import(
        self, job_id: str, *, timeout: float | None = None
    ) -> ImportResult | None:
        """Wait for a running import; returns the stored result for finished ones."""

        task = self._tasks.get(job_id)
        if task is None:
            return self._imports.get(job_id)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            raise JobTimeoutError(job_id, timeout or 0.0) from None

    def get_import_status(self, job_id: str) -> ImportResult | None:
        return self._imports.get(job_id)

    def list_imports(self) -> list[ImportResult]:
        return list(self._imports.values())

    def cancel_import(self, job_id: str) -> bool:
        """
        Mark a processing import failed; it stops before its next batch.

        Returns:
            False when the import is unknown or not currently processing
        """
        result = self._imports.get(job_id)
        if result is None or result.status is not ImportStatus.PROCESSING:
            return False

        self._cancelled.add(job_id)
        result.status = ImportStatus.FAILED
        result.completed_at = utc_now_iso()
        result.errors.append(ImportRowError(row=-1, message=CANCELLED_MESSAGE))

        batch_job_id = self._current_batch.get(job_id)
        if batch_job_id is not None:
            self.engine.cancel_ingestion(batch_job_id)
        logger.warning("Bulk import cancelled", extra={"job_id": job_id, "status": "failed"})
        return True

    async def _run_import(
        self,
        content: str | bytes,
        config: BulkImportConfig,
        submitter: str,
        result: ImportResult,
    ) -> ImportResult:
        started = time.perf_counter()
        try:
            await self._process_import(content, config, submitter, result)
        except Exception as exc:
            logger.error(
                "Bulk import failed: %s",
                exc,
                exc_info=True,
                extra={"job_id": result.job_id, "source_id": config.source_id},
            )
            result.status = ImportStatus.FAILED
            result.errors.append(ImportRowError(row=-1, message=str(exc)))
        finally:
            self._cancelled.discard(result.job_id)
            self._current_batch.pop(result.job_id, None)
            result.completed_at = result.completed_at or utc_now_iso()
            result.duration_ms = int((time.perf_counter() - started) * 1000)
            record_import_rows(config.format.value, "successful", result.successful_rows)
            record_import_rows(config.format.value, "failed", result.failed_rows)
            log_import_outcome(logger, result, config.format.value)
        return result

    def _aborted(self, result: ImportResult) -> bool:
        return result.job_id in self._cancelled or result.status is ImportStatus.FAILED

    def _max_errors_reached(self, result: ImportResult, options: ImportOptions) -> bool:
        if options.max_errors is None or result.failed_rows < options.max_errors:
            return False
        result.status = ImportStatus.FAILED
        result.errors.append(
            ImportRowError(row=-1, message=f"Max errors ({options.max_errors}) exceeded")
        )
        return True

    async def _process_import(
        self,
        content: str | bytes,
        config: BulkImportConfig,
        submitter: str,
        result: ImportResult,
    ) -> None:
        result.status = ImportStatus.PROCESSING
        options = config.options

        parser = get_parser(config.format.value)
        rows = await parser.parse_async(content, options.parse_options())
        result.total_rows = len(rows)

        mapped: list[tuple[int, Any]] = []
        for row_number, row in enumerate(rows, start=1):
            try:
                mapped.append((row_number, apply_mapping(row, config.mapping)))
            except TransformationError as exc:
                result.errors.append(ImportRowError(row=row_number, message=str(exc), value=row))
                result.failed_rows += 1
                result.processed_rows += 1

        if self._aborted(result):
            return

        result.warnings.extend(
            ImportRowWarning(row=row_number, message=MISSING_IDENTIFIERS_MESSAGE)
            for row_number, record in mapped
            if _missing_identifiers(record)
        )

        if options.validate_only:
            result.processed_rows = len(rows)
            result.successful_rows = len(mapped)
            result.failed_rows = len(rows) - len(mapped)
            self._finish(result)
            return

        if self._max_errors_reached(result, options):
            return

        batch_size = options.batch_size or self.settings.batch_size
        batches = [mapped[start : start + batch_size] for start in range(0, len(mapped), batch_size)]

        for index, batch in enumerate(batches):
            if self._aborted(result):
                return

            failed_batch = False
            try:
                job = self.engine.start_ingestion(
                    config.source_id, [record for _, record in batch], submitter
                )
                result.batch_job_ids.append(job.id)
                self._current_batch[result.job_id] = job.id
                await self._wait_for_batch(job)
                self._collect_batch(result, job, batch)
                failed_batch = job.status is IngestionStatus.FAILED
            except Exception as exc:
                if self._aborted(result):
                    return
                logger.warning(
                    "Batch %d of import failed: %s",
                    index + 1,
                    exc,
                    extra={"job_id": result.job_id, "source_id": config.source_id},
                )
                result.processed_rows += len(batch)
                result.failed_rows += len(batch)
                result.errors.append(ImportRowError(row=batch[0][0], message=str(exc)))
                failed_batch = True
            finally:
                self._current_batch.pop(result.job_id, None)

            if self._aborted(result):
                return
            if failed_batch and options.stop_on_error:
                result.status = ImportStatus.FAILED
                return
            if self._max_errors_reached(result, options):
                return

            if index < len(batches) - 1 and self.settings.batch_delay_seconds > 0:
                await asyncio.sleep(self.settings.batch_delay_seconds)

        self._finish(result)

    async def _wait_for_batch(self, job: IngestionJob) -> None:
        """Poll a batch job until it reaches a terminal status."""

        loop = asyncio.get_running_loop()
        timeout = self.settings.batch_timeout_seconds
        deadline = loop.time() + timeout
        while not job.status.is_terminal:
            if loop.time() >= deadline:
                raise JobTimeoutError(job.id, timeout)
            await asyncio.sleep(self.settings.batch_poll_interval_seconds)

        # A cancelled job turns terminal before its task stops; let it settle.
        await self.engine.wait_for_job(job.id)

    @staticmethod
    def _collect_batch(
        result: ImportResult, job: IngestionJob, batch: list[tuple[int, Any]]
    ) -> None:
        successful = job.successful_records
        result.processed_rows += len(batch)
        result.successful_rows += successful
        result.failed_rows += len(batch) - successful

        for issue in job.errors:
            if issue.row is not None and 1 <= issue.row <= len(batch):
                row_number = batch[issue.row - 1][0]
                value = batch[issue.row - 1][1]
            else:
                row_number, value = -1, None
            result.errors.append(
                ImportRowError(
                    row=row_number,
                    field=issue.field,
                    message=issue.message,
                    value=_field_value(value, issue.field),
                )
            )

    @staticmethod
    def _finish(result: ImportResult) -> None:
        if result.failed_rows == 0:
            result.status = ImportStatus.COMPLETED
        elif result.successful_rows == 0:
            result.status = ImportStatus.FAILED
        else:
            result.status = ImportStatus.PARTIAL


def _field_value(record: Any, field: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(field)
    return None
