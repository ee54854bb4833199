"""Audio analysis upload adapter."""

import logging
from dataclasses import dataclass

import httpx

from night_support.domain.models import AudioClip
from night_support.services.capture import Uploader

_logger = logging.getLogger(__name__)


@dataclass
class HttpxAudioUploader(Uploader):
    """Multipart clip uploader implemented with httpx."""

    url: str
    http_client: httpx.AsyncClient
    timeout_seconds: float = 10.0

    @classmethod
    def create(cls, url: str, timeout_seconds: float = 10.0) -> "HttpxAudioUploader":
        """Create an uploader with a managed httpx session."""
        return cls(
            url=url, http_client=httpx.AsyncClient(), timeout_seconds=timeout_seconds
        )

    async def send(self, clip: AudioClip) -> bool:
        """Post the clip as the ``file`` form field."""
        files = {"file": (clip.filename, clip.data, clip.mime_type)}
        try:
            response = await self.http_client.post(
                self.url, files=files, timeout=self.timeout_seconds
            )
        except httpx.HTTPError as exc:
            _logger.warning("Failed to upload audio: %s", exc)
            return False
        if response.is_error:
            _logger.warning("Upload endpoint returned %s", response.status_code)
            return False
        return True

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()
