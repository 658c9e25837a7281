"""Pydantic schemas for ingestion jobs, records and validation findings."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .source import DataSourceType


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""

    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class IngestionStatus(str, Enum):
    """Lifecycle states shared by jobs and records."""

    PENDING = "pending"
    VALIDATING = "validating"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {IngestionStatus.COMPLETED, IngestionStatus.FAILED, IngestionStatus.PARTIAL}
)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class _IngestionModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValidationIssue(_IngestionModel):
    """A single finding raised while validating or processing a record."""

    field: str = Field(..., description="Field name, or _system/_pipeline/_record")
    message: str
    severity: Severity = Severity.ERROR
    row: int | None = Field(default=None, description="1-based row within the batch")

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR


class IngestionRecord(_IngestionModel):
    """One row of a job, tracked through validation and pipeline stages."""

    id: str = Field(default_factory=new_id)
    row: int = Field(..., ge=1)
    source_type: DataSourceType
    source_id: str
    raw_data: Any = None
    normalized_data: dict[str, Any] | None = None
    validation_errors: list[ValidationIssue] = Field(default_factory=list)
    status: IngestionStatus = IngestionStatus.PENDING
    created_at: str = Field(default_factory=utc_now_iso)
    processed_at: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def add_error(self, field: str, message: str) -> ValidationIssue:
        issue = ValidationIssue(field=field, message=message, row=self.row)
        self.validation_errors.append(issue)
        return issue


class IngestionJob(_IngestionModel):
    """One batch submission and its aggregate progress."""

    id: str = Field(default_factory=new_id)
    name: str
    source_type: DataSourceType
    source_id: str
    status: IngestionStatus = IngestionStatus.PENDING
    total_records: int = Field(default=0, ge=0)
    processed_records: int = Field(default=0, ge=0)
    successful_records: int = Field(default=0, ge=0)
    failed_records: int = Field(default=0, ge=0)
    errors: list[ValidationIssue] = Field(default_factory=list)
    started_at: str = Field(default_factory=utc_now_iso)
    completed_at: str | None = None
    created_by: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    records: list[IngestionRecord] = Field(default_factory=list, exclude=True)

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal

    def completed_records(self) -> list[IngestionRecord]:
        """Return records that made it through every pipeline step."""

        return [record for record in self.records if record.status is IngestionStatus.COMPLETED]
