import os
from typing import Any

import httpx

from expense_capture.errors import GeocodingError
from expense_capture.integration.base import Geocoder
from expense_capture.integration.http import RetryingHTTPAdapter
from expense_capture.logger import get_logger

logger = get_logger(__name__)

# Kuala Lumpur
_VALIDATION_POINT = (3.139, 101.6869)


def format_address(data: dict[str, Any]) -> str:
    display_name = data.get("display_name")
    if display_name:
        parts = [part.strip() for part in display_name.split(",")]
        return ", ".join(parts[:4])

    address = data.get("address") or {}
    parts = [address.get(key) for key in ("road", "suburb", "city", "state")]
    return ", ".join(part for part in parts if part)


class LocationIQClient(RetryingHTTPAdapter, Geocoder):
    log_tag = "GEO"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        retry_limit: int = 3,
        backoff: float = 1.0,
    ):
        super().__init__(client=client, retry_limit=retry_limit, backoff=backoff)
        self.base_url = (base_url or os.getenv("LOCATIONIQ_URL") or "").rstrip("/")
        self.api_key = api_key or os.getenv("LOCATIONIQ_API_KEY")

    def _redact(self, url: str) -> str:
        return url.split("?", 1)[0]

    async def _lookup(self, latitude: float, longitude: float) -> str:
        response = await self._request(
            "GET",
            f"{self.base_url}/reverse",
            params={
                "key": self.api_key,
                "lat": str(latitude),
                "lon": str(longitude),
                "format": "json",
                "addressdetails": "1",
                "normalizecity": "1",
            },
        )
        if response.is_error:
            raise GeocodingError(f"LocationIQ returned HTTP {response.status_code}", latitude, longitude)
        data = response.json()
        if data.get("error"):
            raise GeocodingError(str(data["error"]), latitude, longitude)
        return format_address(data)

    async def reverse_geocode(self, latitude: float, longitude: float) -> str:
        fallback = f"{latitude}, {longitude}"
        if not self.base_url or not self.api_key:
            return fallback
        try:
            location = await self._lookup(latitude, longitude)
        except Exception as exc:
            logger.warning("[GEO] Reverse geocoding failed for %s: %s", fallback, exc)
            return fallback
        logger.debug("[GEO] %s resolved to '%s'.", fallback, location)
        return location or fallback

    async def validate(self) -> bool:
        if not self.base_url or not self.api_key:
            return False
        try:
            await self._lookup(*_VALIDATION_POINT)
            return True
        except Exception as exc:
            logger.warning("[GEO] Credential validation failed: %s", exc)
            return False
