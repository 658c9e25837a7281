"""Pydantic schemas describing data sources and their declarative record schemas."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class DataSourceType(str, Enum):
    """Kinds of origin a data source can represent."""

    API = "api"
    WEBHOOK = "webhook"
    FILE_UPLOAD = "file_upload"
    MANUAL_ENTRY = "manual_entry"
    AGENT = "agent"
    INTEGRATION = "integration"


class FieldType(str, Enum):
    """Semantic types a schema field may declare."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"
    OBJECT = "object"


class TransformationKind(str, Enum):
    """Transformations the engine knows how to apply to a field."""

    NORMALIZE = "normalize"
    FORMAT = "format"
    SPLIT = "split"
    MERGE = "merge"
    LOOKUP = "lookup"
    CUSTOM = "custom"


class _SchemaModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


class FieldValidation(_SchemaModel):
    """Per-field constraints checked after the type check passes."""

    pattern: str | None = None
    min_length: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=0)
    min_value: float | None = None
    max_value: float | None = None
    allowed_values: tuple[Any, ...] | None = None

    @field_validator("allowed_values", mode="before")
    @classmethod
    def _coerce_allowed_values(cls, value: Any) -> Any:
        if isinstance(value, (list, set)):
            return tuple(value)
        return value


class SchemaField(_SchemaModel):
    """A single declared field of a data schema."""

    name: str = Field(..., min_length=1)
    type: FieldType
    nullable: bool = True
    mapping: str | None = Field(default=None, description="Internal field name to map to")
    validation: FieldValidation | None = None

    @property
    def target_name(self) -> str:
        return self.mapping or self.name


class Transformation(_SchemaModel):
    """A transformation applied to a normalized field."""

    field: str = Field(..., min_length=1)
    type: TransformationKind
    config: dict[str, Any] = Field(default_factory=dict)


class DataSchema(_SchemaModel):
    """Declarative description of the records a data source produces."""

    fields: tuple[SchemaField, ...] = ()
    required_fields: tuple[str, ...] = ()
    transformations: tuple[Transformation, ...] = ()

    @field_validator("fields", "required_fields", "transformations", mode="before")
    @classmethod
    def _coerce_sequences(cls, value: Any) -> Any:
        if isinstance(value, list):
            return tuple(value)
        return value

    def get_field(self, name: str) -> SchemaField | None:
        for field_def in self.fields:
            if field_def.name == name:
                return field_def
        return None


class DataSource(_SchemaModel):
    """A registered, typed origin of ingestible data."""

    id: str = Field(..., min_length=1)
    type: DataSourceType
    name: str = Field(..., min_length=1)
    config: dict[str, Any] = Field(default_factory=dict)
    data_schema: DataSchema = Field(default_factory=DataSchema, alias="schema")
    enabled: bool = True

    @model_validator(mode="after")
    def _check_required_fields_declared(self) -> DataSource:
        declared = {field_def.name for field_def in self.data_schema.fields}
        undeclared = [name for name in self.data_schema.required_fields if name not in declared]
        if undeclared and self.data_schema.fields:
            raise ValueError(
                "required fields must be declared in the schema: " + ", ".join(undeclared)
            )
        return self
