"""Lead ingestion: models, collaborators, pipeline steps and source registration."""

from .collaborators import (
    AttachmentStore,
    CaseResolver,
    Deduplicator,
    Geocoder,
    InMemoryCaseResolver,
    InMemoryLeadRepository,
    LeadCollaborators,
    LeadRepository,
    NullDeduplicator,
    NullGeocoder,
    PlaceholderAttachmentStore,
    PlaceholderCaseResolver,
    SimilarityDeduplicator,
)
from .geocoding import NominatimGeocoder
from .models import (
    IncomingLead,
    LeadAddress,
    LeadAttachment,
    LeadPriority,
    LeadSourceType,
    LeadStatus,
    NormalizedLead,
)
from .registration import (
    LEAD_SCHEMA,
    build_lead_pipeline,
    build_lead_sources,
    ingest_lead,
    ingest_leads,
    register_lead_sources,
    source_id_for,
)
from .steps import calculate_confidence_score

__all__ = [
    "AttachmentStore",
    "CaseResolver",
    "Deduplicator",
    "Geocoder",
    "InMemoryCaseResolver",
    "InMemoryLeadRepository",
    "IncomingLead",
    "LEAD_SCHEMA",
    "LeadAddress",
    "LeadAttachment",
    "LeadCollaborators",
    "LeadPriority",
    "LeadRepository",
    "LeadSourceType",
    "LeadStatus",
    "NominatimGeocoder",
    "NormalizedLead",
    "NullDeduplicator",
    "NullGeocoder",
    "PlaceholderAttachmentStore",
    "PlaceholderCaseResolver",
    "SimilarityDeduplicator",
    "build_lead_pipeline",
    "build_lead_sources",
    "calculate_confidence_score",
    "ingest_lead",
    "ingest_leads",
    "register_lead_sources",
    "source_id_for",
]
