"""Application configuration."""

import os

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from night_support.services.monitoring import DEFAULT_LOCATION_KEY, SessionTimings

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    alert_url: str
    upload_url: str
    position_url: str
    location_key: str = DEFAULT_LOCATION_KEY
    location_table: str = "locations"
    location_interval_seconds: float = 10.0
    record_seconds: float = 15.0
    cooldown_seconds: float = 5.0
    sink_poll_seconds: float = 5.0
    http_timeout_seconds: float = 10.0
    audio_sample_rate: int = 44100
    audio_device: str | None = None
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @field_validator(
        "location_interval_seconds",
        "record_seconds",
        "cooldown_seconds",
        "sink_poll_seconds",
        "http_timeout_seconds",
    )
    @classmethod
    def _positive_duration(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("durations must be positive")
        return value

    def session_timings(self) -> SessionTimings:
        """Return the session cadences configured for this environment."""
        return SessionTimings(
            location_interval_seconds=self.location_interval_seconds,
            record_seconds=self.record_seconds,
            cooldown_seconds=self.cooldown_seconds,
        )


def parse_audio_device(raw: str | None) -> int | str | None:
    """Parse the configured input device as an index or a name."""
    if raw is None:
        return None
    cleaned = raw.strip()
    if not cleaned:
        return None
    if cleaned.isdigit():
        return int(cleaned)
    return cleaned
