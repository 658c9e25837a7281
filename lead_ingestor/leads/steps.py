"""The seven lead pipeline steps.

Payloads are lead records keyed by their camelCase field names. Steps add
private ``_``-prefixed keys for values computed along the way; the final step
replaces the payload with the serialized :class:`NormalizedLead`.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from ..exceptions import GeocodingError, PipelineStepError
from ..pipeline.steps import Payload, PipelineStep
from ..schemas.ingestion import utc_now_iso
from ..utils.logging import setup_logger
from .collaborators import AttachmentStore, CaseResolver, Deduplicator, Geocoder, LeadRepository
from .models import (
    Coordinates,
    LeadAddress,
    LeadLocation,
    LeadPriority,
    LeadSighting,
    LeadSubmitter,
    NormalizedLead,
)

logger = setup_logger(__name__, context={"source_type": "lead_pipeline"})

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_DESCRIPTION_LENGTH = 10

CONFIDENCE_SCORE_KEY = "_confidence_score"
DUPLICATE_OF_KEY = "_duplicate_of"
ATTACHMENT_IDS_KEY = "_attachment_ids"


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _address(data: Mapping[str, Any]) -> Mapping[str, Any] | None:
    address = data.get("address")
    if isinstance(address, Mapping) and any(_present(value) for value in address.values()):
        return address
    return None


def _has_coordinates(data: Mapping[str, Any]) -> bool:
    return data.get("latitude") is not None and data.get("longitude") is not None


class ValidateLeadStep(PipelineStep):
    """Rejects leads that break the business rules the schema cannot express."""

    name = "validate_lead"

    def _fail(self, message: str) -> PipelineStepError:
        return PipelineStepError(self.name, message)

    async def execute(self, data: Payload) -> Payload:
        description = data.get("description")
        if not isinstance(description, str) or len(description.strip()) < MIN_DESCRIPTION_LENGTH:
            raise self._fail(
                f"Lead description must be at least {MIN_DESCRIPTION_LENGTH} characters"
            )

        if not data.get("caseId") and not data.get("caseNumber"):
            raise self._fail("Lead must be associated with a case")

        email = data.get("submitterEmail")
        if email and not EMAIL_PATTERN.match(str(email)):
            raise self._fail("Invalid submitter email format")

        latitude, longitude = data.get("latitude"), data.get("longitude")
        if latitude is not None or longitude is not None:
            if latitude is None or longitude is None:
                raise self._fail("Both latitude and longitude must be provided")
            if not -90 <= latitude <= 90:
                raise self._fail("Invalid latitude")
            if not -180 <= longitude <= 180:
                raise self._fail("Invalid longitude")

        return data


class ResolveCaseStep(PipelineStep):
    name = "resolve_case"

    def __init__(self, resolver: CaseResolver) -> None:
        self.resolver = resolver

    async def execute(self, data: Payload) -> Payload:
        if data.get("caseId") or not data.get("caseNumber"):
            return data

        case_number = str(data["caseNumber"])
        case_id = await self.resolver.resolve_case_number(case_number)
        logger.info("Resolved case %s to %s", case_number, case_id)
        return {**data, "caseId": case_id}


class EnrichLocationStep(PipelineStep):
    """
    Fills in coordinates from an address, or an address from coordinates.

    Geocoding failures are logged and the lead continues unenriched.
    """

    name = "enrich_location"

    def __init__(self, geocoder: Geocoder, default_country: str | None = None) -> None:
        self.geocoder = geocoder
        self.default_country = default_country

    async def execute(self, data: Payload) -> Payload:
        result = dict(data)
        address = _address(result)

        if address is not None and result.get("latitude") is None:
            query = ", ".join(
                str(part)
                for part in (
                    address.get("street"),
                    address.get("city"),
                    address.get("state"),
                    address.get("zip"),
                    address.get("country") or self.default_country,
                )
                if _present(part)
            )
            coordinates = await self._geocode(query)
            if coordinates is not None:
                result["latitude"] = coordinates.lat
                result["longitude"] = coordinates.lng

        if _has_coordinates(result) and address is None:
            found = await self._reverse(result["latitude"], result["longitude"])
            if found is not None and not found.is_empty():
                result["address"] = found.model_dump(exclude_none=True)

        return result

    async def _geocode(self, query: str) -> Coordinates | None:
        if not query:
            return None
        try:
            return await self.geocoder.geocode(query)
        except GeocodingError as exc:
            logger.warning("Geocoding failed: %s", exc, extra={"status": "warning"})
            return None

    async def _reverse(self, lat: float, lng: float) -> LeadAddress | None:
        try:
            return await self.geocoder.reverse_geocode(lat, lng)
        except GeocodingError as exc:
            logger.warning("Reverse geocoding failed: %s", exc, extra={"status": "warning"})
            return None


class DeduplicationStep(PipelineStep):
    name = "deduplication"

    def __init__(self, deduplicator: Deduplicator) -> None:
        self.deduplicator = deduplicator

    async def execute(self, data: Payload) -> Payload:
        if not data.get("caseId"):
            return data
        duplicate_of = await self.deduplicator.find_duplicate(data)
        if duplicate_of is None:
            return data
        return {**data, DUPLICATE_OF_KEY: duplicate_of}


def calculate_confidence_score(lead: Mapping[str, Any]) -> int:
    """
    Score how complete and actionable a lead is, from 0 to 100.

    Points are additive: 10 for the description, contact details when the
    submitter is not anonymous, location and sighting details, 5 per
    attachment (at most 20) and bonuses for long descriptions.
    """
    score = 10

    if not lead.get("isAnonymous"):
        if _present(lead.get("submitterName")):
            score += 10
        if _present(lead.get("submitterEmail")):
            score += 10
        if _present(lead.get("submitterPhone")):
            score += 15

    if _has_coordinates(lead):
        score += 15
    if _present(lead.get("locationDescription")):
        score += 5
    address = lead.get("address")
    if isinstance(address, Mapping) and _present(address.get("city")):
        score += 5

    if _present(lead.get("sightingDate")):
        score += 10
    if _present(lead.get("personDescription")):
        score += 10
    if _present(lead.get("vehicleDescription")):
        score += 5

    attachments = lead.get("attachments") or []
    score += min(len(attachments) * 5, 20)

    description = lead.get("description") or ""
    if len(description) > 100:
        score += 5
    if len(description) > 250:
        score += 5

    return max(0, min(score, 100))


class ScoreLeadStep(PipelineStep):
    name = "score_lead"

    async def execute(self, data: Payload) -> Payload:
        return {**data, CONFIDENCE_SCORE_KEY: calculate_confidence_score(data)}


def _as_attachment(item: Any) -> Mapping[str, Any]:
    """Accept a bare URL string as shorthand for a URL attachment."""

    if isinstance(item, str):
        return {"url": item}
    if isinstance(item, Mapping):
        return item
    raise PipelineStepError(
        ProcessAttachmentsStep.name,
        f"Attachment must be an object or a URL, got {type(item).__name__}",
    )


class ProcessAttachmentsStep(PipelineStep):
    name = "process_attachments"

    def __init__(self, store: AttachmentStore) -> None:
        self.store = store

    async def execute(self, data: Payload) -> Payload:
        attachment_ids: list[str] = []
        for item in data.get("attachments") or []:
            attachment = _as_attachment(item)
            logger.info(
                "Processing %s attachment: %s",
                attachment.get("type", "unknown"),
                attachment.get("filename") or "unnamed",
            )
            metadata = {"caseId": data.get("caseId"), "filename": attachment.get("filename")}
            attachment_ids.append(await self.store.store(attachment, metadata))
        return {**data, ATTACHMENT_IDS_KEY: attachment_ids}


def build_normalized_lead(data: Mapping[str, Any]) -> NormalizedLead:
    """Assemble the canonical lead from a fully processed payload."""

    anonymous = bool(data.get("isAnonymous"))
    source_type = data.get("sourceType")
    now = utc_now_iso()

    coordinates = None
    if _has_coordinates(data):
        coordinates = Coordinates(lat=data["latitude"], lng=data["longitude"])

    address = _address(data)
    attachment_ids = list(data.get(ATTACHMENT_IDS_KEY) or [])

    lead_fields: dict[str, Any] = {
        "case_id": data.get("caseId"),
        "source_type": source_type,
        "title": data.get("title") or f"Lead from {source_type}",
        "description": data.get("description"),
        "priority": data.get("priority") or LeadPriority.MEDIUM,
        "submitter": LeadSubmitter(
            name=None if anonymous else data.get("submitterName") or None,
            email=None if anonymous else data.get("submitterEmail") or None,
            phone=None if anonymous else data.get("submitterPhone") or None,
            is_anonymous=anonymous,
        ),
        "location": LeadLocation(
            description=data.get("locationDescription") or None,
            coordinates=coordinates,
            address=LeadAddress.model_validate(dict(address)) if address is not None else None,
        ),
        "sighting": LeadSighting(
            date=data.get("sightingDate") or None,
            time=data.get("sightingTime") or None,
            person_description=data.get("personDescription") or None,
            vehicle_description=data.get("vehicleDescription") or None,
            companion_description=data.get("companionDescription") or None,
        ),
        "attachment_count": len(attachment_ids),
        "attachment_ids": attachment_ids,
        "confidence_score": data.get(CONFIDENCE_SCORE_KEY, 0),
        "duplicate_of": data.get(DUPLICATE_OF_KEY),
        "created_at": now,
        "updated_at": now,
        "processed_at": now,
    }
    if data.get("sourceId"):
        lead_fields["source_id"] = data["sourceId"]
    return NormalizedLead(**lead_fields)


class NormalizeAndStoreStep(PipelineStep):
    """Persists the normalized lead; rollback deletes it again."""

    name = "normalize_and_store"

    def __init__(self, repository: LeadRepository) -> None:
        self.repository = repository

    async def execute(self, data: Payload) -> Payload:
        lead = build_normalized_lead(data)
        await self.repository.save_normalized_lead(lead)
        logger.info("Stored lead %s for case %s", lead.id, lead.case_id)
        return lead.model_dump(mode="json", by_alias=True)

    async def rollback(self, data: Payload) -> None:
        lead_id = data.get("id")
        if not lead_id:
            return
        logger.info("Rolling back stored lead %s", lead_id)
        await self.repository.delete_lead(lead_id)
