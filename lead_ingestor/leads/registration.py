"""Lead data sources, the lead schema and pipeline wiring for an engine."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ..engine import IngestionEngine
from ..pipeline.steps import PipelineStep
from ..schemas.ingestion import IngestionJob
from ..schemas.source import (
    DataSchema,
    DataSource,
    DataSourceType,
    FieldType,
    FieldValidation,
    SchemaField,
    Transformation,
    TransformationKind,
)
from ..utils.logging import setup_logger
from .collaborators import LeadCollaborators
from .models import IncomingLead, LeadPriority, LeadSourceType
from .steps import (
    DeduplicationStep,
    EnrichLocationStep,
    NormalizeAndStoreStep,
    ProcessAttachmentsStep,
    ResolveCaseStep,
    ScoreLeadStep,
    ValidateLeadStep,
)

logger = setup_logger(__name__, context={"source_type": "lead_pipeline"})

TIP_SUBMISSION_SOURCE_ID = "tip_submission"
AGENT_GENERATED_SOURCE_ID = "agent_generated"
PARTNER_FEED_SOURCE_ID = "partner_feed"
BULK_UPLOAD_SOURCE_ID = "bulk_upload"

LEAD_PIPELINE_SOURCE_TYPES = (
    DataSourceType.WEBHOOK,
    DataSourceType.AGENT,
    DataSourceType.FILE_UPLOAD,
)


def _field(name: str, field_type: FieldType, **kwargs: Any) -> SchemaField:
    return SchemaField(name=name, type=field_type, **kwargs)


LEAD_SCHEMA = DataSchema(
    fields=(
        _field("sourceType", FieldType.STRING, nullable=False),
        _field(
            "description",
            FieldType.STRING,
            nullable=False,
            validation=FieldValidation(min_length=10),
        ),
        _field("caseId", FieldType.STRING),
        _field("caseNumber", FieldType.STRING),
        _field("title", FieldType.STRING),
        _field(
            "priority",
            FieldType.STRING,
            validation=FieldValidation(allowed_values=[priority.value for priority in LeadPriority]),
        ),
        _field("submitterName", FieldType.STRING),
        _field("submitterEmail", FieldType.STRING),
        _field("submitterPhone", FieldType.STRING),
        _field("isAnonymous", FieldType.BOOLEAN),
        _field("locationDescription", FieldType.STRING),
        _field("latitude", FieldType.NUMBER),
        _field("longitude", FieldType.NUMBER),
        _field("address", FieldType.OBJECT),
        _field("sightingDate", FieldType.STRING),
        _field("sightingTime", FieldType.STRING),
        _field("personDescription", FieldType.STRING),
        _field("vehicleDescription", FieldType.STRING),
        _field("companionDescription", FieldType.STRING),
        _field("attachments", FieldType.ARRAY),
        _field("metadata", FieldType.OBJECT),
    ),
    required_fields=("sourceType", "description"),
    transformations=(
        Transformation(field="submitterEmail", type=TransformationKind.NORMALIZE),
        Transformation(
            field="submitterPhone",
            type=TransformationKind.FORMAT,
            config={"format": "phone"},
        ),
    ),
)


def build_lead_sources() -> list[DataSource]:
    """Return the built-in lead data sources."""

    return [
        DataSource(
            id=TIP_SUBMISSION_SOURCE_ID,
            type=DataSourceType.WEBHOOK,
            name="Public Tip Submission",
            config={"endpoint": "/api/tips", "authRequired": False},
            schema=LEAD_SCHEMA,
        ),
        DataSource(
            id=AGENT_GENERATED_SOURCE_ID,
            type=DataSourceType.AGENT,
            name="Agent-Generated Leads",
            schema=LEAD_SCHEMA,
        ),
        DataSource(
            id=PARTNER_FEED_SOURCE_ID,
            type=DataSourceType.API,
            name="Partner Data Feed",
            config={"apiUrl": "", "authType": "api_key"},
            schema=LEAD_SCHEMA,
            enabled=False,
        ),
        DataSource(
            id=BULK_UPLOAD_SOURCE_ID,
            type=DataSourceType.FILE_UPLOAD,
            name="Bulk Lead Upload",
            config={"formats": ["csv", "json", "xlsx"], "maxSize": 10 * 1024 * 1024},
            schema=LEAD_SCHEMA,
        ),
    ]


def build_lead_pipeline(collaborators: LeadCollaborators | None = None) -> list[PipelineStep]:
    """Return the seven lead steps in execution order."""

    collaborators = collaborators or LeadCollaborators()
    return [
        ValidateLeadStep(),
        ResolveCaseStep(collaborators.case_resolver),
        EnrichLocationStep(collaborators.geocoder, collaborators.default_country),
        DeduplicationStep(collaborators.deduplicator),
        ScoreLeadStep(),
        ProcessAttachmentsStep(collaborators.attachment_store),
        NormalizeAndStoreStep(collaborators.repository),
    ]


def register_lead_sources(
    engine: IngestionEngine, collaborators: LeadCollaborators | None = None
) -> LeadCollaborators:
    """
    Register the lead sources and the lead pipeline on ``engine``.

    Args:
        engine: Engine to register on
        collaborators: Services used by the pipeline (in-process defaults when omitted)

    Returns:
        The collaborators wired into the pipeline
    """
    collaborators = collaborators or LeadCollaborators()
    engine.register_sources(build_lead_sources())
    steps = build_lead_pipeline(collaborators)
    for source_type in LEAD_PIPELINE_SOURCE_TYPES:
        engine.register_pipeline(source_type, steps)
    logger.info("Lead ingestion sources and pipeline registered")
    return collaborators


def source_id_for(source_type: LeadSourceType | str) -> str:
    """Pick the data source a lead is submitted to from its lead source type."""

    resolved = LeadSourceType(source_type)
    if resolved is LeadSourceType.TIP_SUBMISSION:
        return TIP_SUBMISSION_SOURCE_ID
    if resolved is LeadSourceType.AGENT_GENERATED:
        return AGENT_GENERATED_SOURCE_ID
    return BULK_UPLOAD_SOURCE_ID


def _as_record(lead: IncomingLead | Mapping[str, Any]) -> Any:
    if isinstance(lead, IncomingLead):
        return lead.to_record()
    return dict(lead)


def ingest_lead(
    engine: IngestionEngine, lead: IncomingLead | Mapping[str, Any], submitter: str
) -> IngestionJob:
    """Submit a single lead to the source matching its source type."""

    record = _as_record(lead)
    source_type = record.get("sourceType") or LeadSourceType.TIP_SUBMISSION
    return engine.start_ingestion(source_id_for(source_type), [record], submitter)


def ingest_leads(
    engine: IngestionEngine,
    leads: Iterable[IncomingLead | Mapping[str, Any]],
    source_id: str,
    submitter: str,
) -> IngestionJob:
    """Submit several leads to one data source as a single job."""

    return engine.start_ingestion(source_id, [_as_record(lead) for lead in leads], submitter)
