"""Alert endpoint client adapter."""

import logging
from dataclasses import dataclass

import httpx

from night_support.services.monitoring import AlertClient

_logger = logging.getLogger(__name__)


@dataclass
class HttpxAlertClient(AlertClient):
    """Alert client implemented with httpx."""

    url: str
    http_client: httpx.AsyncClient
    timeout_seconds: float = 10.0

    @classmethod
    def create(cls, url: str, timeout_seconds: float = 10.0) -> "HttpxAlertClient":
        """Create an alert client with a managed httpx session."""
        return cls(
            url=url, http_client=httpx.AsyncClient(), timeout_seconds=timeout_seconds
        )

    async def send_alert(self) -> bool:
        """Trigger the alert; failures are logged, never raised."""
        try:
            response = await self.http_client.post(
                self.url, timeout=self.timeout_seconds
            )
        except httpx.HTTPError as exc:
            _logger.error("Error sending alert: %s", exc)
            return False
        if response.is_error:
            _logger.error(
                "Alert endpoint returned %s: %s", response.status_code, response.text
            )
            return False
        _logger.info("Alert sent: %s", response.text)
        return True

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()
