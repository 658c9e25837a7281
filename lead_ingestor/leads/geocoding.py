"""Nominatim (OpenStreetMap) geocoder."""

from __future__ import annotations

from typing import Any

import httpx

from ..exceptions import GeocodingError
from ..utils.config import GeocodingSettings
from ..utils.logging import setup_logger
from ..utils.retry import execute_with_retry
from .collaborators import Geocoder
from .models import Coordinates, LeadAddress

logger = setup_logger(__name__, context={"source_type": "geocoding"})


class NominatimGeocoder(Geocoder):
    """Geocoder backed by the Nominatim search and reverse endpoints."""

    def __init__(
        self,
        settings: GeocodingSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the geocoder.

        Args:
            settings: Endpoint, user agent, timeout and retry configuration
            transport: Optional httpx transport (used by tests to stub responses)
        """
        self.settings = settings or GeocodingSettings()
        self._transport = transport

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        client_kwargs: dict[str, Any] = {
            "base_url": self.settings.base_url,
            "timeout": self.settings.timeout_seconds,
            "headers": {"User-Agent": self.settings.user_agent},
        }
        if self._transport is not None:
            client_kwargs["transport"] = self._transport

        try:
            async with httpx.AsyncClient(**client_kwargs) as client:
                response = await execute_with_retry(
                    lambda: client.get(path, params=params),
                    retry=self.settings.retry,
                    log=logger,
                )
        except httpx.HTTPError as exc:
            raise GeocodingError(f"Geocoding request to {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise GeocodingError(
                f"Geocoding request to {path} returned HTTP {response.status_code}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GeocodingError(f"Geocoding response from {path} is not JSON") from exc

    async def geocode(self, address: str) -> Coordinates | None:
        results = await self._get("/search", {"format": "json", "q": address, "limit": 1})
        if not isinstance(results, list) or not results:
            return None
        first = results[0]
        try:
            return Coordinates(lat=float(first["lat"]), lng=float(first["lon"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise GeocodingError(f"Unexpected geocoding result: {first!r}") from exc

    async def reverse_geocode(self, lat: float, lng: float) -> LeadAddress | None:
        result = await self._get("/reverse", {"format": "json", "lat": lat, "lon": lng})
        if not isinstance(result, dict):
            return None
        details = result.get("address")
        if not isinstance(details, dict):
            return None

        street = " ".join(
            str(part) for part in (details.get("house_number"), details.get("road")) if part
        )
        return LeadAddress(
            street=street or None,
            city=details.get("city") or details.get("town") or details.get("village"),
            state=details.get("state") or details.get("province"),
            zip=details.get("postcode"),
            country=details.get("country"),
        )
