"""Geolocation bridge client adapter."""

from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from night_support.domain.errors import DeviceUnavailable, PermissionDenied
from night_support.domain.models import PositionSample
from night_support.services.monitoring import PositionSource

_DENIED_STATUSES = {401, 403}


@dataclass
class HttpxPositionSource(PositionSource):
    """Reads fixes from a device geolocation endpoint.

    The endpoint returns ``{"latitude": .., "longitude": ..}`` or the
    platform shape ``{"coords": {...}, "timestamp": <epoch ms>}``.
    """

    url: str
    http_client: httpx.AsyncClient
    timeout_seconds: float = 10.0

    @classmethod
    def create(cls, url: str, timeout_seconds: float = 10.0) -> "HttpxPositionSource":
        """Create a position source with a managed httpx session."""
        return cls(
            url=url, http_client=httpx.AsyncClient(), timeout_seconds=timeout_seconds
        )

    async def get_fix(self) -> PositionSample:
        """Request a single high-accuracy fix."""
        try:
            response = await self.http_client.get(
                self.url,
                params={"accuracy": "high"},
                timeout=self.timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise DeviceUnavailable(f"Position source unreachable: {exc}") from exc
        if response.status_code in _DENIED_STATUSES:
            raise PermissionDenied(
                "Foreground location permission is required to use this feature."
            )
        if response.is_error:
            raise DeviceUnavailable(
                f"Position source returned {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise DeviceUnavailable("Position source returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise DeviceUnavailable("Position source returned an unexpected payload")
        coords = payload.get("coords", payload)
        if not isinstance(coords, dict):
            raise DeviceUnavailable("Position source returned an unexpected payload")
        try:
            return PositionSample.from_payload(
                coords, observed_at=_parse_timestamp(payload.get("timestamp"))
            )
        except ValueError as exc:
            raise DeviceUnavailable(str(exc)) from exc

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()


def _parse_timestamp(raw: object) -> datetime | None:
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        return None
    return datetime.fromtimestamp(raw / 1000, tz=UTC)
