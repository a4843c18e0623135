"""
Geographic IP lookup via ip-api.com.
"""

import logging
from typing import Optional

import httpx

from ..config import settings
from ..exceptions import EnrichmentUnavailable
from ..models import Location

logger = logging.getLogger(__name__)


class GeoLocator:
    """
    Best-effort geolocation of hop addresses.

    Free tier of ip-api.com allows 45 requests/minute, no API key required.
    ``lookup`` never raises: every failure resolves to None and a later call
    for the same IP makes an independent attempt.
    """

    FIELDS = "status,message,country,city,lat,lon"

    def __init__(
        self,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the locator.

        Args:
            api_url: URL template with an ``{ip}`` placeholder
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_url = api_url or settings.geo_api_url
        self.timeout = timeout if timeout is not None else settings.geo_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def fetch(self, ip: str) -> Location:
        """
        Query the lookup service for one IP.

        Raises:
            EnrichmentUnavailable: On transport errors, timeouts, non-200
                responses, failed lookups or malformed payloads
        """
        url = self.api_url.format(ip=ip)
        try:
            response = await self._get_client().get(url, params={"fields": self.FIELDS})
        except httpx.HTTPError as e:
            raise EnrichmentUnavailable(f"lookup request for {ip} failed: {e!r}") from e

        if response.status_code != 200:
            raise EnrichmentUnavailable(f"lookup for {ip} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise EnrichmentUnavailable(f"lookup for {ip} returned invalid JSON") from e

        if not isinstance(data, dict) or data.get("status") != "success":
            message = data.get("message") if isinstance(data, dict) else None
            raise EnrichmentUnavailable(f"lookup for {ip} unsuccessful: {message or 'no status'}")

        try:
            return Location(
                lat=float(data["lat"]),
                lng=float(data["lon"]),
                city=data.get("city") or "",
                country=data.get("country") or "",
            )
        except (KeyError, TypeError, ValueError) as e:
            raise EnrichmentUnavailable(f"lookup for {ip} missing coordinates") from e

    async def lookup(self, ip: str) -> Optional[Location]:
        """
        Lookup geo info for single IP.

        Args:
            ip: IP address

        Returns:
            Location or None
        """
        if not ip:
            return None

        try:
            return await self.fetch(ip)
        except EnrichmentUnavailable as e:
            logger.debug(f"Geolocation unavailable: {e}")
            return None

    async def close(self):
        """Close HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
