"""Interfaces for the services the lead pipeline calls, with default implementations.

The pipeline only talks to these abstractions. Defaults are in-process and
deterministic so the pipeline runs without any external integration wired in.
"""

from __future__ import annotations

import math
import re
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from ..exceptions import AmbiguousCaseError, CaseNotFoundError
from ..utils.config import GlobalSettings, get_settings
from ..utils.logging import setup_logger
from .models import Coordinates, LeadAddress, NormalizedLead

logger = setup_logger(__name__, context={"source_type": "lead_pipeline"})

# Namespace for placeholder case ids so the same case number maps to the same id.
CASE_ID_NAMESPACE = uuid.UUID("5b0b8a1e-2f4c-4f63-9d55-6f1e4c2a7b10")

EARTH_RADIUS_KM = 6371.0
_WHITESPACE = re.compile(r"\s+")


class CaseResolver(ABC):
    """Resolves human-facing case numbers to case identifiers."""

    @abstractmethod
    async def resolve_case_number(self, case_number: str) -> str:
        """
        Return the case id for ``case_number``.

        Raises:
            CaseNotFoundError: If no case has this number
            AmbiguousCaseError: If several cases share this number
        """
        pass


class PlaceholderCaseResolver(CaseResolver):
    """Synthesizes a stable case id from the case number."""

    async def resolve_case_number(self, case_number: str) -> str:
        return str(uuid.uuid5(CASE_ID_NAMESPACE, case_number.strip().upper()))


class InMemoryCaseResolver(CaseResolver):
    """Resolves case numbers against an in-memory ``case number -> ids`` table."""

    def __init__(self, cases: Mapping[str, str | Iterable[str]] | None = None) -> None:
        self._cases: dict[str, list[str]] = {}
        for case_number, case_ids in (cases or {}).items():
            if isinstance(case_ids, str):
                self.add_case(case_number, case_ids)
            else:
                for case_id in case_ids:
                    self.add_case(case_number, case_id)

    def add_case(self, case_number: str, case_id: str) -> None:
        self._cases.setdefault(case_number, []).append(case_id)

    async def resolve_case_number(self, case_number: str) -> str:
        candidates = self._cases.get(case_number, [])
        if not candidates:
            raise CaseNotFoundError(case_number)
        if len(candidates) > 1:
            raise AmbiguousCaseError(case_number, list(candidates))
        return candidates[0]


class Geocoder(ABC):
    @abstractmethod
    async def geocode(self, address: str) -> Coordinates | None:
        """Return coordinates for a free-text address, or None when unknown."""
        pass

    @abstractmethod
    async def reverse_geocode(self, lat: float, lng: float) -> LeadAddress | None:
        """Return the address at a coordinate pair, or None when unknown."""
        pass


class NullGeocoder(Geocoder):
    """Geocoder that never resolves anything."""

    async def geocode(self, address: str) -> Coordinates | None:
        return None

    async def reverse_geocode(self, lat: float, lng: float) -> LeadAddress | None:
        return None


class AttachmentStore(ABC):
    @abstractmethod
    async def store(self, attachment: Mapping[str, Any], metadata: Mapping[str, Any]) -> str:
        """Persist an attachment (URL or inline data) and return its id."""
        pass


class PlaceholderAttachmentStore(AttachmentStore):
    """Assigns random ids without storing anything."""

    def __init__(self) -> None:
        self.stored: dict[str, dict[str, Any]] = {}

    async def store(self, attachment: Mapping[str, Any], metadata: Mapping[str, Any]) -> str:
        attachment_id = str(uuid.uuid4())
        self.stored[attachment_id] = {"attachment": dict(attachment), "metadata": dict(metadata)}
        return attachment_id


class LeadRepository(ABC):
    """Durable storage for normalized leads."""

    @abstractmethod
    async def save_normalized_lead(self, lead: NormalizedLead) -> None:
        pass

    @abstractmethod
    async def delete_lead(self, lead_id: str) -> None:
        pass

    @abstractmethod
    async def find_similar_leads(
        self,
        lead: Mapping[str, Any],
        *,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[NormalizedLead]:
        """Return candidate leads on the same case, newest first."""
        pass


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class InMemoryLeadRepository(LeadRepository):
    def __init__(self) -> None:
        self.leads: dict[str, NormalizedLead] = {}

    async def save_normalized_lead(self, lead: NormalizedLead) -> None:
        self.leads[lead.id] = lead

    async def delete_lead(self, lead_id: str) -> None:
        self.leads.pop(lead_id, None)

    async def find_similar_leads(
        self,
        lead: Mapping[str, Any],
        *,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[NormalizedLead]:
        case_id = lead.get("caseId")
        if not case_id:
            return []
        candidates = [
            stored
            for stored in self.leads.values()
            if stored.case_id == case_id
            and (since is None or _parse_timestamp(stored.created_at) >= since)
        ]
        candidates.sort(key=lambda stored: stored.created_at, reverse=True)
        return candidates[:limit]


class Deduplicator(ABC):
    @abstractmethod
    async def find_duplicate(self, lead: Mapping[str, Any]) -> str | None:
        """Return the id of an existing lead this one duplicates, if any."""
        pass


class NullDeduplicator(Deduplicator):
    """Never flags duplicates."""

    async def find_duplicate(self, lead: Mapping[str, Any]) -> str | None:
        return None


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""

    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def significant_words(text: str | None) -> set[str]:
    return {word for word in _WHITESPACE.split((text or "").lower()) if len(word) > 3}


def jaccard_similarity(left: set[str], right: set[str]) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


class SimilarityDeduplicator(Deduplicator):
    """
    Flags a lead as a duplicate of a recent lead on the same case.

    A candidate matches when it came from the same (non-anonymous) submitter
    email, when the description word overlap exceeds ``similarity_threshold``,
    or when it lies within ``proximity_km`` and the overlap exceeds
    ``proximity_similarity``.
    """

    def __init__(
        self,
        repository: LeadRepository,
        *,
        window: timedelta = timedelta(days=7),
        similarity_threshold: float = 0.7,
        proximity_km: float = 0.1,
        proximity_similarity: float = 0.3,
        limit: int = 50,
    ) -> None:
        self.repository = repository
        self.window = window
        self.similarity_threshold = similarity_threshold
        self.proximity_km = proximity_km
        self.proximity_similarity = proximity_similarity
        self.limit = limit

    async def find_duplicate(self, lead: Mapping[str, Any]) -> str | None:
        if not lead.get("caseId"):
            return None

        since = datetime.now(timezone.utc) - self.window
        candidates = await self.repository.find_similar_leads(lead, since=since, limit=self.limit)
        if not candidates:
            return None

        email = lead.get("submitterEmail")
        if email and not lead.get("isAnonymous"):
            for candidate in candidates:
                if candidate.submitter.email and candidate.submitter.email.lower() == email.lower():
                    logger.info("Found duplicate lead %s by submitter email", candidate.id)
                    return candidate.id

        words = significant_words(lead.get("description"))
        lat, lng = lead.get("latitude"), lead.get("longitude")
        for candidate in candidates:
            similarity = jaccard_similarity(words, significant_words(candidate.description))
            if similarity > self.similarity_threshold:
                logger.info(
                    "Found similar lead %s (%.0f%% match)", candidate.id, similarity * 100
                )
                return candidate.id

            coordinates = candidate.location.coordinates
            if lat is not None and lng is not None and coordinates is not None:
                distance = haversine_km(lat, lng, coordinates.lat, coordinates.lng)
                if distance < self.proximity_km and similarity > self.proximity_similarity:
                    logger.info(
                        "Found nearby lead %s (%.2fkm, %.0f%% match)",
                        candidate.id,
                        distance,
                        similarity * 100,
                    )
                    return candidate.id
        return None


@dataclass
class LeadCollaborators:
    """The external services one lead pipeline instance talks to."""

    case_resolver: CaseResolver = field(default_factory=PlaceholderCaseResolver)
    geocoder: Geocoder = field(default_factory=NullGeocoder)
    attachment_store: AttachmentStore = field(default_factory=PlaceholderAttachmentStore)
    repository: LeadRepository = field(default_factory=InMemoryLeadRepository)
    deduplicator: Deduplicator = field(default_factory=NullDeduplicator)
    default_country: str | None = "Canada"

    @classmethod
    def from_settings(cls, settings: GlobalSettings | None = None) -> LeadCollaborators:
        """Build defaults, switching to Nominatim when geocoding is enabled."""

        settings = settings or get_settings()
        geocoder: Geocoder = NullGeocoder()
        if settings.geocoding.enabled:
            from .geocoding import NominatimGeocoder

            geocoder = NominatimGeocoder(settings.geocoding)
        return cls(geocoder=geocoder, default_country=settings.geocoding.default_country)
