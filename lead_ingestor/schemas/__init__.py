"""Schemas package initialization."""
from .imports import (
    BulkImportConfig,
    FieldMapping,
    ImportFormat,
    ImportOptions,
    ImportPreview,
    ImportResult,
    ImportRowError,
    ImportRowWarning,
    ImportStatus,
    MappingTransform,
    ParseOptions,
)
from .ingestion import (
    IngestionJob,
    IngestionRecord,
    IngestionStatus,
    Severity,
    ValidationIssue,
)
from .source import (
    DataSchema,
    DataSource,
    DataSourceType,
    FieldType,
    FieldValidation,
    SchemaField,
    Transformation,
    TransformationKind,
)

__all__ = [
    "BulkImportConfig",
    "DataSchema",
    "DataSource",
    "DataSourceType",
    "FieldMapping",
    "FieldType",
    "FieldValidation",
    "ImportFormat",
    "ImportOptions",
    "ImportPreview",
    "ImportResult",
    "ImportRowError",
    "ImportRowWarning",
    "ImportStatus",
    "IngestionJob",
    "IngestionRecord",
    "IngestionStatus",
    "MappingTransform",
    "ParseOptions",
    "SchemaField",
    "Severity",
    "Transformation",
    "TransformationKind",
    "ValidationIssue",
]
