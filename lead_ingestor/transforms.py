"""Stateless value transformations applied to normalized records."""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

from dateutil import parser as date_parser

from .exceptions import TransformationError
from .schemas.imports import MappingTransform
from .schemas.source import DataSchema, Transformation, TransformationKind

CustomTransform = Callable[[Any, Mapping[str, Any], Mapping[str, Any]], Any]

_NON_DIGITS = re.compile(r"\D")
_TRUTHY = frozenset({"true", "1", "yes"})

# Named functions for ``custom`` transformations: (value, config, record) -> value
_CUSTOM_TRANSFORMS: dict[str, CustomTransform] = {}


def register_custom_transform(name: str, func: CustomTransform) -> None:
    """
    Register a function usable by ``custom`` transformations.

    Args:
        name: Identifier referenced by ``config["function"]``
        func: Callable receiving the value, the transformation config and the record
    """
    _CUSTOM_TRANSFORMS[name] = func


def unregister_custom_transform(name: str) -> None:
    _CUSTOM_TRANSFORMS.pop(name, None)


def list_custom_transforms() -> list[str]:
    return sorted(_CUSTOM_TRANSFORMS)


def _normalize(value: Any, config: Mapping[str, Any]) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def _format(value: Any, config: Mapping[str, Any]) -> Any:
    if config.get("format") == "phone" and isinstance(value, str):
        return _NON_DIGITS.sub("", value)
    return value


def _split(value: Any, config: Mapping[str, Any]) -> Any:
    if isinstance(value, str):
        delimiter = config.get("delimiter") or ","
        return [part.strip() for part in value.split(delimiter)]
    return value


def _lookup(value: Any, config: Mapping[str, Any]) -> Any:
    mapping = config.get("mapping")
    if isinstance(mapping, Mapping) and value is not None:
        return mapping.get(str(value), value)
    return value


def _merge(value: Any, config: Mapping[str, Any], record: Mapping[str, Any]) -> Any:
    fields = config.get("fields")
    if not fields:
        return value
    separator = config.get("separator", " ")
    parts = [record.get(name) for name in fields]
    joined = [str(part) for part in parts if part is not None and part != ""]
    return separator.join(joined) if joined else value


def _custom(value: Any, config: Mapping[str, Any], record: Mapping[str, Any]) -> Any:
    name = config.get("function")
    if not name:
        return value
    func = _CUSTOM_TRANSFORMS.get(name)
    if func is None:
        available = ", ".join(list_custom_transforms()) or "none"
        raise TransformationError(
            f"Custom transform '{name}' is not registered. Available transforms: {available}."
        )
    try:
        return func(value, config, record)
    except TransformationError:
        raise
    except Exception as exc:
        raise TransformationError(f"Custom transform '{name}' failed: {exc}") from exc


def apply_transformation(
    value: Any,
    transformation: Transformation,
    record: Mapping[str, Any] | None = None,
) -> Any:
    """Apply one declared transformation to a field value."""

    config = transformation.config
    kind = transformation.type
    if kind is TransformationKind.NORMALIZE:
        return _normalize(value, config)
    if kind is TransformationKind.FORMAT:
        return _format(value, config)
    if kind is TransformationKind.SPLIT:
        return _split(value, config)
    if kind is TransformationKind.LOOKUP:
        return _lookup(value, config)
    if kind is TransformationKind.MERGE:
        return _merge(value, config, record or {})
    if kind is TransformationKind.CUSTOM:
        return _custom(value, config, record or {})
    return value


def transform_record(record: Mapping[str, Any], schema: DataSchema) -> dict[str, Any]:
    """
    Remap declared fields and apply the schema's transformations in order.

    Fields absent from the schema are dropped. A transformation targeting a
    field that is not present is skipped, except ``merge`` which may create it.
    """
    result: dict[str, Any] = {}
    for field_def in schema.fields:
        if field_def.name in record:
            result[field_def.target_name] = record[field_def.name]

    for transformation in schema.transformations:
        name = transformation.field
        if name not in result and transformation.type is not TransformationKind.MERGE:
            continue
        transformed = apply_transformation(result.get(name), transformation, result)
        if transformed is not None or name in result:
            result[name] = transformed

    return result


def _to_number(value: Any) -> int | float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError as exc:
        raise TransformationError(f"Cannot convert '{value}' to a number") from exc


def _to_iso_date(value: Any) -> str:
    try:
        return date_parser.parse(str(value)).isoformat()
    except (ValueError, OverflowError) as exc:
        raise TransformationError(f"Cannot parse '{value}' as a date") from exc


def apply_mapping_transform(value: Any, transform: MappingTransform | None) -> Any:
    """Apply a bulk-import field mapping transform to a column value."""

    if value is None or transform is None:
        return value
    if transform is MappingTransform.UPPERCASE:
        return str(value).upper()
    if transform is MappingTransform.LOWERCASE:
        return str(value).lower()
    if transform is MappingTransform.TRIM:
        return str(value).strip()
    if transform is MappingTransform.DATE:
        return _to_iso_date(value)
    if transform is MappingTransform.NUMBER:
        return _to_number(value)
    if transform is MappingTransform.BOOLEAN:
        return str(value).strip().lower() in _TRUTHY
    return value
