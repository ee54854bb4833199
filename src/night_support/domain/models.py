"""Domain models for the night support session."""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum


class SessionState(str, Enum):
    """Activation state of a monitoring session."""

    INACTIVE = "inactive"
    ACTIVE = "active"


class MicState(str, Enum):
    """Whether audio capture is requested while the session is active."""

    DISABLED = "disabled"
    ENABLED = "enabled"


class CapturePhase(str, Enum):
    """Phase of the audio capture cycle."""

    IDLE = "idle"
    RECORDING = "recording"
    COOLDOWN = "cooldown"


@dataclass(frozen=True)
class PositionSample:
    """A single position fix."""

    latitude: float
    longitude: float
    observed_at: datetime

    def to_payload(self) -> dict[str, float]:
        """Return the value mirrored into the remote store."""
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_payload(
        cls, payload: dict[str, object], observed_at: datetime | None = None
    ) -> "PositionSample":
        """Parse a remote store value into a sample."""
        latitude = payload.get("latitude")
        longitude = payload.get("longitude")
        if isinstance(latitude, bool) or isinstance(longitude, bool):
            raise ValueError("Position coordinates must be numeric")
        if not isinstance(latitude, int | float) or not isinstance(
            longitude, int | float
        ):
            raise ValueError(f"Invalid position payload: {payload!r}")
        return cls(
            latitude=float(latitude),
            longitude=float(longitude),
            observed_at=observed_at or datetime.now(tz=UTC),
        )


@dataclass(frozen=True)
class AudioClip:
    """Opaque recorded audio handed to the uploader."""

    data: bytes
    mime_type: str
    filename: str = "clip.wav"


@dataclass(frozen=True)
class SessionSnapshot:
    """Observable view of a monitoring session."""

    state: SessionState
    mic_state: MicState
    position: PositionSample | None
    capture_phase: CapturePhase
    cycle_id: int
    loading: bool
    last_error: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly representation."""
        position: dict[str, object] | None = None
        if self.position is not None:
            position = {
                **self.position.to_payload(),
                "observed_at": self.position.observed_at.isoformat(),
            }
        return {
            "state": self.state.value,
            "mic_state": self.mic_state.value,
            "position": position,
            "capture_phase": self.capture_phase.value,
            "cycle_id": self.cycle_id,
            "loading": self.loading,
            "last_error": self.last_error,
        }
