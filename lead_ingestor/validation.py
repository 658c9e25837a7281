"""Schema validation for raw ingestion records.

Validation is pure: it never mutates the record and only reports findings.
Error-severity findings exclude the record from pipeline execution.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from .schemas.ingestion import Severity, ValidationIssue
from .schemas.source import DataSchema, FieldType, FieldValidation


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def describe_type(value: Any) -> str:
    """Return the schema type name that best describes a runtime value."""

    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def _matches_type(value: Any, field_type: FieldType) -> bool:
    # Dates arrive as strings (or datetimes) before parsing; any shape is accepted.
    if field_type is FieldType.DATE:
        return True
    return describe_type(value) == field_type.value


def _error(field: str, message: str) -> ValidationIssue:
    return ValidationIssue(field=field, message=message, severity=Severity.ERROR)


def validate_field(field_name: str, value: Any, rules: FieldValidation) -> list[ValidationIssue]:
    """Check a single value against its declared constraints."""

    issues: list[ValidationIssue] = []

    if isinstance(value, str):
        if rules.pattern is not None and not _compile(rules.pattern).search(value):
            issues.append(_error(field_name, f"Value does not match pattern: {rules.pattern}"))
        if rules.min_length is not None and len(value) < rules.min_length:
            issues.append(_error(field_name, f"Minimum length is {rules.min_length}"))
        if rules.max_length is not None and len(value) > rules.max_length:
            issues.append(_error(field_name, f"Maximum length is {rules.max_length}"))

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if rules.min_value is not None and value < rules.min_value:
            issues.append(_error(field_name, f"Minimum value is {rules.min_value:g}"))
        if rules.max_value is not None and value > rules.max_value:
            issues.append(_error(field_name, f"Maximum value is {rules.max_value:g}"))

    if rules.allowed_values is not None and value not in rules.allowed_values:
        allowed = ", ".join(str(item) for item in rules.allowed_values)
        issues.append(_error(field_name, f"Value must be one of: {allowed}"))

    return issues


def validate_record(record: Any, schema: DataSchema) -> list[ValidationIssue]:
    """
    Validate a raw record against a data schema.

    Args:
        record: Raw record as submitted (expected to be a mapping)
        schema: Schema of the source the record was submitted to

    Returns:
        Findings in schema order; an empty list means the record is valid
    """
    if not isinstance(record, Mapping):
        return [_error("_record", f"Expected object, got {describe_type(record)}")]

    issues: list[ValidationIssue] = []

    for field_name in schema.required_fields:
        if record.get(field_name) is None:
            issues.append(_error(field_name, f"Required field '{field_name}' is missing"))

    for field_def in schema.fields:
        value = record.get(field_def.name)
        if value is None:
            # Missing required fields were reported above.
            continue

        if not _matches_type(value, field_def.type):
            issues.append(
                _error(
                    field_def.name,
                    f"Expected {field_def.type.value}, got {describe_type(value)}",
                )
            )
            continue

        if field_def.validation is not None:
            issues.extend(validate_field(field_def.name, value, field_def.validation))

    return issues


def has_errors(issues: list[ValidationIssue]) -> bool:
    return any(issue.is_error for issue in issues)
