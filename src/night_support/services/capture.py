"""Audio capture cycle: record, upload, cool down, repeat."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from night_support.domain.errors import ResourceBusy
from night_support.domain.models import AudioClip, CapturePhase
from night_support.services.timers import Clock, TimerHandle

_logger = logging.getLogger(__name__)


class RecordingHandle(Protocol):
    """An acquired microphone with a recording in progress."""

    async def stop(self) -> AudioClip:
        """Stop recording and return the captured clip."""

    async def release(self) -> None:
        """Release the microphone. Safe to call more than once."""


class AudioCapturer(Protocol):
    """Interface for microphone access."""

    async def probe(self) -> None:
        """Check the microphone can be opened, raising on denial or absence."""

    async def start(self) -> RecordingHandle:
        """Acquire the microphone and begin recording.

        Raises ``ResourceBusy`` when another capture holds the microphone.
        """


class Uploader(Protocol):
    """Interface for best-effort clip transport."""

    async def send(self, clip: AudioClip) -> bool:
        """Send a clip and report whether the remote accepted it."""


class CaptureCycle:
    """Phase-tagged record/upload loop owned by one session.

    Each phase transition is driven by a single timer whose callback carries
    the ``(cycle_id, phase)`` it was scheduled for; a callback whose tag no
    longer matches is ignored. ``_handle`` is written only by the phase
    callbacks and ``abort``.
    """

    def __init__(  # noqa: PLR0913
        self,
        capturer: AudioCapturer,
        uploader: Uploader,
        clock: Clock,
        record_seconds: float,
        cooldown_seconds: float,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self.capturer = capturer
        self.uploader = uploader
        self.clock = clock
        self.record_seconds = record_seconds
        self.cooldown_seconds = cooldown_seconds
        self.on_change = on_change
        self.cycle_id = 0
        self.phase = CapturePhase.IDLE
        self._running = False
        self._timer: TimerHandle | None = None
        self._handle: RecordingHandle | None = None
        self._cooldown_until: float | None = None
        self._recording_done = asyncio.Event()
        self._recording_done.set()
        self._uploads: set[asyncio.Task[None]] = set()

    async def start(self) -> bool:
        """Start the cycle; returns False when it was already running."""
        if self._running:
            return False
        self._running = True
        if self.phase is not CapturePhase.IDLE:
            # A stopped cycle is still finishing its recording; resume it.
            _logger.debug("Resuming capture cycle %s", self.cycle_id)
            return True
        remaining = self._cooldown_remaining()
        if remaining > 0:
            self._set_phase(CapturePhase.COOLDOWN)
            self._schedule(
                remaining, self.cycle_id, CapturePhase.COOLDOWN, self._after_cooldown
            )
            return True
        await self._begin_recording()
        return True

    def stop(self) -> None:
        """Stop repeating; a recording in progress is allowed to finish."""
        self._running = False
        if self.phase is CapturePhase.COOLDOWN:
            self._cancel_timer()
            self._set_phase(CapturePhase.IDLE)

    async def abort(self) -> None:
        """Stop immediately, discarding any recording in progress."""
        self._running = False
        self._cancel_timer()
        handle = self._handle
        self._handle = None
        self._set_phase(CapturePhase.IDLE)
        self._recording_done.set()
        if handle is not None:
            _logger.info("Aborting recording for cycle %s", self.cycle_id)
            await self._close_handle(handle, self.cycle_id)
        await self.drain()

    async def drain(self) -> None:
        """Wait for a finishing recording and for pending uploads."""
        await self._recording_done.wait()
        if self._uploads:
            await asyncio.gather(*list(self._uploads), return_exceptions=True)

    async def _begin_recording(self) -> None:
        self.cycle_id += 1
        cycle_id = self.cycle_id
        self._recording_done.clear()
        self._set_phase(CapturePhase.RECORDING)
        try:
            handle = await self.capturer.start()
        except ResourceBusy:
            _logger.debug("Microphone busy, skipping cycle %s", cycle_id)
            self._enter_cooldown(cycle_id)
            return
        except Exception:
            _logger.exception("Failed to start recording for cycle %s", cycle_id)
            self._enter_cooldown(cycle_id)
            return
        if cycle_id != self.cycle_id or self.phase is not CapturePhase.RECORDING:
            await self._close_handle(handle, cycle_id)
            return
        if not self._running:
            # Stopped while the microphone was being acquired.
            _logger.info("Capture stopped before cycle %s recorded", cycle_id)
            await self._close_handle(handle, cycle_id)
            self._recording_done.set()
            self._set_phase(CapturePhase.IDLE)
            return
        self._handle = handle
        _logger.info("Recording started for cycle %s", cycle_id)
        self._schedule(
            self.record_seconds,
            cycle_id,
            CapturePhase.RECORDING,
            self._finish_recording,
        )

    async def _finish_recording(self, cycle_id: int) -> None:
        handle = self._handle
        self._handle = None
        clip = None
        if handle is not None:
            clip = await self._close_handle(handle, cycle_id)
        if clip is not None and clip.data:
            self._dispatch_upload(clip, cycle_id)
        self._enter_cooldown(cycle_id)

    async def _close_handle(
        self, handle: RecordingHandle, cycle_id: int
    ) -> AudioClip | None:
        clip = None
        try:
            clip = await handle.stop()
        except Exception:
            _logger.exception("Failed to stop recording for cycle %s", cycle_id)
        finally:
            try:
                await handle.release()
            except Exception:
                _logger.exception("Failed to release microphone for cycle %s", cycle_id)
        return clip

    def _enter_cooldown(self, cycle_id: int) -> None:
        self._cooldown_until = self.clock.now() + self.cooldown_seconds
        self._recording_done.set()
        if not self._running:
            _logger.info("Capture cycle halted after cycle %s", cycle_id)
            self._set_phase(CapturePhase.IDLE)
            return
        self._set_phase(CapturePhase.COOLDOWN)
        self._schedule(
            self.cooldown_seconds, cycle_id, CapturePhase.COOLDOWN, self._after_cooldown
        )

    async def _after_cooldown(self, cycle_id: int) -> None:
        self._set_phase(CapturePhase.IDLE)
        if self._running:
            await self._begin_recording()

    def _dispatch_upload(self, clip: AudioClip, cycle_id: int) -> None:
        task = asyncio.get_running_loop().create_task(self._upload(clip, cycle_id))
        self._uploads.add(task)
        task.add_done_callback(self._uploads.discard)

    async def _upload(self, clip: AudioClip, cycle_id: int) -> None:
        try:
            delivered = await self.uploader.send(clip)
        except Exception:
            _logger.exception("Upload for cycle %s failed", cycle_id)
            return
        if delivered:
            _logger.info(
                "Uploaded clip for cycle %s (%s bytes)", cycle_id, len(clip.data)
            )
        else:
            _logger.warning("Upload for cycle %s was not accepted", cycle_id)

    def _schedule(
        self,
        delay: float,
        cycle_id: int,
        phase: CapturePhase,
        step: Callable[[int], Awaitable[None]],
    ) -> None:
        async def fire() -> None:
            if cycle_id != self.cycle_id or self.phase is not phase:
                _logger.debug(
                    "Ignoring stale %s timer for cycle %s", phase.value, cycle_id
                )
                return
            self._timer = None
            await step(cycle_id)

        self._cancel_timer()
        self._timer = self.clock.call_later(delay, fire)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cooldown_remaining(self) -> float:
        if self._cooldown_until is None:
            return 0.0
        return self._cooldown_until - self.clock.now()

    def _set_phase(self, phase: CapturePhase) -> None:
        if self.phase is phase:
            return
        self.phase = phase
        if self.on_change is not None:
            self.on_change()
