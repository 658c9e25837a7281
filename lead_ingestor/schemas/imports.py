"""Pydantic schemas for bulk file imports."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .ingestion import new_id, utc_now_iso


class ImportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"
    XLSX = "xlsx"
    XML = "xml"


class ImportStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class MappingTransform(str, Enum):
    """Value transforms available on a field mapping."""

    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    TRIM = "trim"
    DATE = "date"
    NUMBER = "number"
    BOOLEAN = "boolean"


class _ImportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FieldMapping(_ImportModel):
    """Maps one source column onto a target record field."""

    source_field: str
    target_field: str
    transform: MappingTransform | None = None
    default_value: Any = None


class ParseOptions(_ImportModel):
    """Options understood by the format parsers."""

    delimiter: str = Field(default=",", min_length=1)
    has_header: bool = True
    encoding: str = "utf-8"
    skip_empty_rows: bool = True
    max_rows: int | None = Field(default=None, ge=0)
    start_row: int = Field(default=0, ge=0)
    sheet_name: str | None = None


class ImportOptions(ParseOptions):
    """Parse options plus batching and error-handling controls."""

    validate_only: bool = False
    batch_size: int | None = Field(default=None, ge=1)
    stop_on_error: bool = False
    max_errors: int | None = Field(default=None, ge=1)

    def parse_options(self, **overrides: Any) -> ParseOptions:
        values = {name: getattr(self, name) for name in ParseOptions.model_fields}
        values.update(overrides)
        return ParseOptions(**values)


class BulkImportConfig(_ImportModel):
    """Describes how to import a file into a data source."""

    format: ImportFormat
    source_id: str = Field(..., min_length=1)
    mapping: list[FieldMapping] = Field(default_factory=list)
    options: ImportOptions = Field(default_factory=ImportOptions)

    @field_validator("format", mode="before")
    @classmethod
    def _normalize_format(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ImportRowError(_ImportModel):
    """A row-level (or import-level when ``row`` is -1) error."""

    row: int
    field: str | None = None
    message: str
    value: Any = None


class ImportRowWarning(_ImportModel):
    row: int
    field: str | None = None
    message: str


class ImportResult(_ImportModel):
    """Progress and outcome of a bulk import."""

    job_id: str = Field(default_factory=new_id)
    source_id: str | None = None
    status: ImportStatus = ImportStatus.PENDING
    total_rows: int = 0
    processed_rows: int = 0
    successful_rows: int = 0
    failed_rows: int = 0
    batch_job_ids: list[str] = Field(default_factory=list)
    errors: list[ImportRowError] = Field(default_factory=list)
    warnings: list[ImportRowWarning] = Field(default_factory=list)
    started_at: str = Field(default_factory=utc_now_iso)
    completed_at: str | None = None
    duration_ms: int | None = None

    @property
    def is_finished(self) -> bool:
        return self.status in {ImportStatus.COMPLETED, ImportStatus.PARTIAL, ImportStatus.FAILED}


class ImportPreview(_ImportModel):
    """Read-only sample of a file used before committing an import."""

    total_rows: int
    sample_rows: list[dict[str, Any]]
    detected_fields: list[str]
    suggested_mappings: list[FieldMapping]
    validation_errors: list[ImportRowError] = Field(default_factory=list)
