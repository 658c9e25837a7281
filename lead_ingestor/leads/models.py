"""Pydantic models for incoming and normalized leads."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..schemas.ingestion import new_id, utc_now_iso


class LeadSourceType(str, Enum):
    TIP_SUBMISSION = "tip_submission"
    AGENT_GENERATED = "agent_generated"
    API_IMPORT = "api_import"
    BULK_UPLOAD = "bulk_upload"
    PARTNER_FEED = "partner_feed"
    PUBLIC_SUBMISSION = "public_submission"


class LeadPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class LeadStatus(str, Enum):
    NEW = "new"
    PENDING_REVIEW = "pending_review"
    VERIFIED = "verified"
    REJECTED = "rejected"


class AttachmentType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"


class _LeadModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LeadAddress(_LeadModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    country: str | None = None

    @field_validator("street", "city", "state", "zip", "country", mode="before")
    @classmethod
    def _stringify_scalars(cls, value: Any) -> Any:
        # Parsed files type-infer postal codes and house numbers.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    def is_empty(self) -> bool:
        return not any((self.street, self.city, self.state, self.zip, self.country))


class LeadAttachment(_LeadModel):
    """An attachment declared by the submitter: a URL or inline base64 data."""

    type: AttachmentType
    url: str | None = None
    data: str | None = None
    filename: str | None = None


class IncomingLead(_LeadModel):
    """
    A lead as submitted by a tip form, an agent or a bulk upload.

    Only shapes are enforced here; business rules (description length, case
    reference, coordinate ranges) are checked by the pipeline so that failures
    are reported per record.
    """

    source_type: LeadSourceType = LeadSourceType.TIP_SUBMISSION
    source_id: str | None = None
    source_name: str | None = None

    case_id: str | None = None
    case_number: str | None = None
    title: str | None = None
    description: str
    priority: LeadPriority | None = None

    submitter_name: str | None = None
    submitter_email: str | None = None
    submitter_phone: str | None = None
    is_anonymous: bool | None = None

    location_description: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    address: LeadAddress | None = None

    sighting_date: str | None = None
    sighting_time: str | None = None
    person_description: str | None = None
    vehicle_description: str | None = None
    companion_description: str | None = None

    attachments: list[LeadAttachment] | None = None
    metadata: dict[str, Any] | None = None

    def to_record(self) -> dict[str, Any]:
        """Return the raw record submitted to the ingestion engine."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Coordinates(_LeadModel):
    lat: float
    lng: float


class LeadSubmitter(_LeadModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    is_anonymous: bool = False


class LeadLocation(_LeadModel):
    description: str | None = None
    coordinates: Coordinates | None = None
    address: LeadAddress | None = None


class LeadSighting(_LeadModel):
    date: str | None = None
    time: str | None = None
    person_description: str | None = None
    vehicle_description: str | None = None
    companion_description: str | None = None


class NormalizedLead(_LeadModel):
    """Canonical lead written to downstream storage."""

    id: str = Field(default_factory=new_id)
    case_id: str
    source_type: LeadSourceType
    source_id: str = Field(default_factory=new_id)

    title: str
    description: str
    priority: LeadPriority = LeadPriority.MEDIUM
    status: LeadStatus = LeadStatus.NEW

    submitter: LeadSubmitter = Field(default_factory=LeadSubmitter)
    location: LeadLocation = Field(default_factory=LeadLocation)
    sighting: LeadSighting = Field(default_factory=LeadSighting)

    attachment_count: int = Field(default=0, ge=0)
    attachment_ids: list[str] = Field(default_factory=list)

    confidence_score: int = Field(default=0, ge=0, le=100)
    duplicate_of: str | None = None

    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    processed_at: str = Field(default_factory=utc_now_iso)
