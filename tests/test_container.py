"""Tests for container wiring."""

import asyncio

from night_support.adapters.microphone import SoundDeviceCapturer
from night_support.adapters.supabase_location_sink import SupabaseLocationSink
from night_support.containers import build_container


def test_build_container_creates_services(settings) -> None:
    container = build_container(settings)

    assert container.session is not None
    assert isinstance(container.sink, SupabaseLocationSink)
    assert isinstance(container.capturer, SoundDeviceCapturer)
    assert container.session.location_key == settings.location_key
    asyncio.run(container.close_resources())
