"""
Single-shot position acquisition for the reporting client.

A fix is requested once per emergency. Any failure surfaces as
LocationUnavailable and no incident may be created without a coordinate.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ..core.errors import LocationUnavailable
from ..models.incidents import Coordinate

logger = logging.getLogger(__name__)


class GeolocationAcquirer(ABC):
    @abstractmethod
    async def acquire(self) -> Coordinate:
        """Return one position fix or raise LocationUnavailable."""


class StaticGeolocationProvider(GeolocationAcquirer):
    """Fix supplied by the operator, e.g. from command-line flags."""

    def __init__(self, lat: Optional[float] = None, lng: Optional[float] = None):
        self.lat = lat
        self.lng = lng

    async def acquire(self) -> Coordinate:
        if self.lat is None or self.lng is None:
            raise LocationUnavailable("No position source is configured")
        try:
            return Coordinate(lat=self.lat, lng=self.lng)
        except ValidationError as e:
            raise LocationUnavailable(f"Configured position is invalid: {e}") from e


class IPGeolocationProvider(GeolocationAcquirer):
    """Fix from a JSON geolocation endpoint (ip-api.com style)."""

    def __init__(self, url: str, timeout: float = 10.0):
        """
        Args:
            url: Endpoint returning `lat`/`lon` (or `latitude`/`longitude`)
            timeout: Bound on the single request, in seconds
        """
        self.url = url
        self.timeout = timeout

    async def acquire(self) -> Coordinate:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.url)
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException:
            raise LocationUnavailable(
                f"Position request timed out after {self.timeout} seconds"
            )
        except httpx.HTTPStatusError as e:
            raise LocationUnavailable(
                f"Position service answered HTTP {e.response.status_code}"
            )
        except httpx.HTTPError as e:
            raise LocationUnavailable(f"Position service unreachable: {e}")
        except ValueError:
            raise LocationUnavailable("Position service returned invalid JSON")

        return self._parse(payload)

    @staticmethod
    def _parse(payload: Any) -> Coordinate:
        if not isinstance(payload, dict):
            raise LocationUnavailable("Position service returned no coordinates")
        if payload.get("status") == "fail":
            raise LocationUnavailable(
                f"Position service failed: {payload.get('message', 'unknown reason')}"
            )

        lat = _first(payload, "lat", "latitude")
        lng = _first(payload, "lon", "lng", "longitude")
        if lat is None or lng is None:
            raise LocationUnavailable("Position service returned no coordinates")

        try:
            coordinate = Coordinate(lat=lat, lng=lng)
        except ValidationError as e:
            raise LocationUnavailable(f"Position service returned bad coordinates: {e}")

        logger.info(f"Acquired position fix {coordinate.lat:.4f}, {coordinate.lng:.4f}")
        return coordinate


def _first(payload: Dict[str, Any], *names: str) -> Optional[Any]:
    for name in names:
        if payload.get(name) is not None:
            return payload[name]
    return None


def get_geolocation_acquirer(
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    url: Optional[str] = None,
    timeout: float = 10.0,
) -> GeolocationAcquirer:
    """
    Pick a position source.

    An explicit coordinate wins, then a geolocation endpoint. With neither,
    the returned provider reports the platform as unsupported.
    """
    if lat is not None or lng is not None:
        return StaticGeolocationProvider(lat, lng)
    if url:
        return IPGeolocationProvider(url, timeout=timeout)
    return StaticGeolocationProvider()
