"""IP geolocation lookup service."""

import httpx
import structlog
from pydantic import ValidationError

from ..config import get_settings
from ..models import IpInfo

log = structlog.get_logger()


class GeolocationService:
    """Looks up the client's public IP, ISP and location.

    The last successful lookup is cached; failures leave it untouched.
    """

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.url = url or settings.geolocation.url
        self.timeout = timeout or settings.geolocation.timeout_seconds
        self._transport = transport
        self._current: IpInfo | None = None
        self._lookup_count = 0
        self._error_count = 0

    @property
    def current(self) -> IpInfo | None:
        """Most recent successful lookup, if any."""
        return self._current

    async def lookup(self) -> IpInfo | None:
        """Query the geolocation endpoint once.

        Returns the parsed IpInfo, or None if the request or payload failed.
        """
        self._lookup_count += 1
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(self.url)
        except httpx.HTTPError as e:
            self._error_count += 1
            log.error("ip_info_fetch_failed", url=self.url, error=str(e))
            return None

        if not response.is_success:
            self._error_count += 1
            log.warning(
                "ip_info_fetch_rejected", url=self.url, status_code=response.status_code
            )
            return None

        try:
            info = IpInfo.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            self._error_count += 1
            log.error("ip_info_parse_failed", url=self.url, error=str(e))
            return None

        self._current = info
        log.info("ip_info_fetched", ip=info.ip, org=info.org, city=info.city)
        return info

    def get_stats(self) -> dict:
        """Get lookup statistics."""
        return {
            "lookups": self._lookup_count,
            "errors": self._error_count,
            "available": self._current is not None,
        }
