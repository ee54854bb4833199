"""Microphone capture backed by sounddevice."""

import asyncio
import io
import logging
import threading
import time
import wave
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any

import numpy as np

from night_support.domain.errors import (
    DeviceUnavailable,
    MonitoringError,
    PermissionDenied,
    ResourceBusy,
)
from night_support.domain.models import AudioClip
from night_support.services.capture import AudioCapturer, RecordingHandle

AUDIO_BIT_DEPTH = 16
AUDIO_CHANNELS_MONO = 1
WAV_MIME_TYPE = "audio/wav"

_logger = logging.getLogger(__name__)

# One open input stream per process, whichever capturer holds it.
_DEVICE_LOCK = threading.Lock()


def _load_sounddevice() -> ModuleType:
    """Import sounddevice, which needs the PortAudio shared library."""
    try:
        import sounddevice  # noqa: PLC0415
    except OSError as exc:
        raise DeviceUnavailable("PortAudio library is not available") from exc
    return sounddevice


def _translate_error(exc: Exception) -> MonitoringError:
    if "permission" in str(exc).lower():
        return PermissionDenied(f"Microphone permission denied: {exc}")
    return DeviceUnavailable(f"Microphone unavailable: {exc}")


class _PcmBuffer:
    """Collects 16-bit PCM blocks written from the audio callback thread."""

    def __init__(self) -> None:
        self._blocks: list[bytes] = []
        self._lock = threading.Lock()
        self._last_status: str | None = None

    def write_block(
        self, indata: Any, frames: int, time_info: Any, status: Any
    ) -> None:
        if status:
            status_str = str(status)
            if status_str != self._last_status:
                _logger.warning("Audio callback status: %s", status_str)
                self._last_status = status_str
        mono = indata[:, 0] if indata.ndim > 1 else indata
        pcm = (np.clip(mono, -1.0, 1.0) * 32767).astype("<i2").tobytes()
        with self._lock:
            self._blocks.append(pcm)

    def take(self) -> bytes:
        with self._lock:
            data = b"".join(self._blocks)
            self._blocks = []
        return data


@dataclass
class SoundDeviceRecording(RecordingHandle):
    """An open input stream holding the process-wide device lock."""

    stream: Any
    buffer: _PcmBuffer
    sample_rate: int
    _stopped: bool = field(default=False, repr=False)
    _released: bool = field(default=False, repr=False)

    async def stop(self) -> AudioClip:
        """Close the stream and encode what was captured as WAV."""
        if not self._stopped:
            self._stopped = True
            await asyncio.to_thread(self._close_stream)
        pcm = self.buffer.take()
        return AudioClip(
            data=_encode_wav(pcm, self.sample_rate),
            mime_type=WAV_MIME_TYPE,
            filename=f"clip-{time.strftime('%Y%m%d_%H%M%S')}.wav",
        )

    async def release(self) -> None:
        """Close the stream if needed and free the device lock."""
        if self._released:
            return
        self._released = True
        if not self._stopped:
            self._stopped = True
            await asyncio.to_thread(self._close_stream)
        _DEVICE_LOCK.release()

    def _close_stream(self) -> None:
        try:
            self.stream.stop()
            self.stream.close()
        except Exception as exc:
            _logger.debug("Stream close error: %s", exc)


@dataclass
class SoundDeviceCapturer(AudioCapturer):
    """Opens the default (or configured) input device per recording."""

    sample_rate: int = 44100
    device: int | str | None = None

    async def probe(self) -> None:
        """Validate the input settings without opening a stream."""
        sd = _load_sounddevice()
        try:
            await asyncio.to_thread(
                sd.check_input_settings,
                device=self.device,
                channels=AUDIO_CHANNELS_MONO,
                samplerate=self.sample_rate,
            )
        except Exception as exc:
            raise _translate_error(exc) from exc

    async def start(self) -> RecordingHandle:
        """Acquire the device lock and start an input stream."""
        if not _DEVICE_LOCK.acquire(blocking=False):
            raise ResourceBusy("Microphone is already recording")
        opened = False
        try:
            sd = _load_sounddevice()
            buffer = _PcmBuffer()
            try:
                stream = await asyncio.to_thread(self._open_stream, sd, buffer)
            except Exception as exc:
                raise _translate_error(exc) from exc
            opened = True
        finally:
            if not opened:
                _DEVICE_LOCK.release()
        _logger.info("Input stream started (%d Hz)", self.sample_rate)
        return SoundDeviceRecording(
            stream=stream, buffer=buffer, sample_rate=self.sample_rate
        )

    def _open_stream(self, sd: ModuleType, buffer: _PcmBuffer) -> Any:
        stream = sd.InputStream(
            device=self.device,
            channels=AUDIO_CHANNELS_MONO,
            samplerate=self.sample_rate,
            dtype="float32",
            callback=buffer.write_block,
            blocksize=0,
        )
        stream.start()
        return stream


def _encode_wav(pcm: bytes, sample_rate: int) -> bytes:
    output = io.BytesIO()
    with wave.open(output, "wb") as wave_handle:
        wave_handle.setnchannels(AUDIO_CHANNELS_MONO)
        wave_handle.setsampwidth(AUDIO_BIT_DEPTH // 8)
        wave_handle.setframerate(sample_rate)
        wave_handle.writeframes(pcm)
    return output.getvalue()
