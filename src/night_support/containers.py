"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from night_support.adapters.alert_client import HttpxAlertClient
from night_support.adapters.audio_uploader import HttpxAudioUploader
from night_support.adapters.microphone import SoundDeviceCapturer
from night_support.adapters.position_client import HttpxPositionSource
from night_support.adapters.supabase_location_sink import SupabaseLocationSink
from night_support.config import Settings, parse_audio_device
from night_support.services.capture import AudioCapturer, Uploader
from night_support.services.monitoring import (
    AlertClient,
    MonitoringSession,
    PositionSource,
)
from night_support.services.remote_sink import RemoteSink


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    position_source: PositionSource
    sink: RemoteSink
    capturer: AudioCapturer
    uploader: Uploader
    alert_client: AlertClient
    session: MonitoringSession
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    timeout = resolved_settings.http_timeout_seconds
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    sink = SupabaseLocationSink(
        client=supabase_client,
        table=resolved_settings.location_table,
        poll_interval_seconds=resolved_settings.sink_poll_seconds,
    )
    position_source = HttpxPositionSource.create(
        resolved_settings.position_url, timeout_seconds=timeout
    )
    alert_client = HttpxAlertClient.create(
        resolved_settings.alert_url, timeout_seconds=timeout
    )
    uploader = HttpxAudioUploader.create(
        resolved_settings.upload_url, timeout_seconds=timeout
    )
    capturer = SoundDeviceCapturer(
        sample_rate=resolved_settings.audio_sample_rate,
        device=parse_audio_device(resolved_settings.audio_device),
    )
    session = MonitoringSession(
        position_source=position_source,
        sink=sink,
        capturer=capturer,
        uploader=uploader,
        alert_client=alert_client,
        location_key=resolved_settings.location_key,
        timings=resolved_settings.session_timings(),
    )

    async def close_resources() -> None:
        await session.dispose()
        await sink.close()
        await position_source.close()
        await alert_client.close()
        await uploader.close()

    return AppContainer(
        settings=resolved_settings,
        position_source=position_source,
        sink=sink,
        capturer=capturer,
        uploader=uploader,
        alert_client=alert_client,
        session=session,
        close_resources=close_resources,
    )
