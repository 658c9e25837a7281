"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

import pytest

from lead_ingestor.engine import IngestionEngine
from lead_ingestor.leads.collaborators import (
    InMemoryLeadRepository,
    LeadCollaborators,
    PlaceholderAttachmentStore,
)
from lead_ingestor.leads.registration import register_lead_sources
from lead_ingestor.schemas.source import (
    DataSchema,
    DataSource,
    DataSourceType,
    FieldType,
    FieldValidation,
    SchemaField,
    Transformation,
    TransformationKind,
)
from lead_ingestor.utils.config import GlobalSettings, get_settings


@pytest.fixture(autouse=True)
def _reset_settings(monkeypatch: pytest.MonkeyPatch):
    """Keep cached settings isolated between tests."""

    monkeypatch.delenv("LEAD_INGESTOR_SOURCES_FILE", raising=False)
    get_settings(reload=True)
    yield
    get_settings(reload=True)


@pytest.fixture
def settings() -> GlobalSettings:
    """Settings with short polling intervals so batched imports finish quickly."""
    return GlobalSettings(
        batch_poll_interval_seconds=0.01,
        batch_delay_seconds=0,
        batch_timeout_seconds=5,
        preview_rows=10,
    )


@pytest.fixture
def people_source() -> DataSource:
    """A small API source with typed, validated and transformed fields."""
    return DataSource(
        id="people",
        type=DataSourceType.API,
        name="People Feed",
        schema=DataSchema(
            fields=[
                SchemaField(name="name", type=FieldType.STRING, nullable=False),
                SchemaField(
                    name="age",
                    type=FieldType.NUMBER,
                    validation=FieldValidation(min_value=0, max_value=150),
                ),
                SchemaField(name="email", type=FieldType.STRING, mapping="contactEmail"),
                SchemaField(name="tags", type=FieldType.STRING),
            ],
            required_fields=["name"],
            transformations=[
                Transformation(field="contactEmail", type=TransformationKind.NORMALIZE),
                Transformation(
                    field="tags",
                    type=TransformationKind.SPLIT,
                    config={"delimiter": ";"},
                ),
            ],
        ),
    )


@pytest.fixture
def engine(settings: GlobalSettings, people_source: DataSource) -> IngestionEngine:
    """Engine with the ``people`` source registered and no pipeline."""
    instance = IngestionEngine(settings)
    instance.register_source(people_source)
    return instance


@pytest.fixture
def lead_repository() -> InMemoryLeadRepository:
    return InMemoryLeadRepository()


@pytest.fixture
def collaborators(lead_repository: InMemoryLeadRepository) -> LeadCollaborators:
    return LeadCollaborators(
        repository=lead_repository,
        attachment_store=PlaceholderAttachmentStore(),
    )


@pytest.fixture
def lead_engine(settings: GlobalSettings, collaborators: LeadCollaborators) -> IngestionEngine:
    """Engine with the built-in lead sources and the lead pipeline registered."""
    instance = IngestionEngine(settings)
    register_lead_sources(instance, collaborators)
    return instance
