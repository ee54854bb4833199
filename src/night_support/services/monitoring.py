"""Monitoring session state machine."""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from types import TracebackType
from typing import Protocol

from night_support.domain.errors import MonitoringError
from night_support.domain.models import (
    MicState,
    PositionSample,
    SessionSnapshot,
    SessionState,
)
from night_support.services.capture import AudioCapturer, CaptureCycle, Uploader
from night_support.services.remote_sink import RemoteSink, SinkValue, Subscription
from night_support.services.timers import Clock, LoopClock, PeriodicTimer

DEFAULT_LOCATION_KEY = "locations/current"

_logger = logging.getLogger(__name__)


class PositionSource(Protocol):
    """Interface for device geolocation."""

    async def get_fix(self) -> PositionSample:
        """Return a fresh fix or raise PermissionDenied/DeviceUnavailable."""


class AlertClient(Protocol):
    """Interface for the one-shot activation alert."""

    async def send_alert(self) -> bool:
        """Trigger the alert and report whether it was accepted."""


@dataclass(frozen=True)
class SessionTimings:
    """Fixed cadences for the session's periodic work."""

    location_interval_seconds: float = 10.0
    record_seconds: float = 15.0
    cooldown_seconds: float = 5.0


class MonitoringSession:
    """Owns activation state, the location-push timer and the capture cycle.

    Transitions (activate, deactivate, enable_mic, disable_mic, dispose) are
    serialized by ``_transition_lock``, which makes it the single writer of
    ``_state``, ``_mic_state`` and ``_location_timer``. ``_position`` is
    written by the location tick and the sink subscription, last write wins.
    """

    def __init__(  # noqa: PLR0913
        self,
        position_source: PositionSource,
        sink: RemoteSink,
        capturer: AudioCapturer,
        uploader: Uploader,
        alert_client: AlertClient,
        *,
        location_key: str = DEFAULT_LOCATION_KEY,
        timings: SessionTimings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.position_source = position_source
        self.sink = sink
        self.capturer = capturer
        self.alert_client = alert_client
        self.location_key = location_key
        self.timings = timings or SessionTimings()
        self.clock = clock or LoopClock()
        self.capture = CaptureCycle(
            capturer=capturer,
            uploader=uploader,
            clock=self.clock,
            record_seconds=self.timings.record_seconds,
            cooldown_seconds=self.timings.cooldown_seconds,
            on_change=self._notify,
        )
        self._state = SessionState.INACTIVE
        self._mic_state = MicState.DISABLED
        self._position: PositionSample | None = None
        self._loading = False
        self._last_error: str | None = None
        self._location_timer: PeriodicTimer | None = None
        self._subscription: Subscription | None = None
        self._transition_lock = asyncio.Lock()
        self._background: set[asyncio.Task[None]] = set()
        self._observers: list[Callable[[SessionSnapshot], None]] = []
        self._disposed = False
        self._stop_requests = 0

    @property
    def state(self) -> SessionState:
        """Return the activation state."""
        return self._state

    @property
    def mic_state(self) -> MicState:
        """Return the microphone state."""
        return self._mic_state

    @property
    def position(self) -> PositionSample | None:
        """Return the locally cached position."""
        return self._position

    @property
    def loading(self) -> bool:
        """Return True while activation waits for the first fix."""
        return self._loading

    async def __aenter__(self) -> "MonitoringSession":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.dispose()

    # ------------------------------------------------------------------
    # Entry points

    async def open(self) -> None:
        """Mirror positions pushed by any session into the local cache."""
        if self._subscription is not None or self._disposed:
            return
        self._subscription = await self.sink.subscribe(
            self.location_key, self._on_remote_position
        )

    async def activate(self) -> None:
        """Start location push and, if enabled, audio capture.

        Raises PermissionDenied or DeviceUnavailable when the first fix
        cannot be taken; the session then stays inactive.
        """
        async with self._transition_lock:
            self._ensure_open()
            if self._state is SessionState.ACTIVE:
                _logger.debug("Session already active")
                return
            self._loading = True
            self._last_error = None
            self._notify()
            self._spawn(self._send_alert())
            stop_requests = self._stop_requests
            try:
                sample = await self.position_source.get_fix()
            except Exception as exc:
                self._loading = False
                self._last_error = getattr(exc, "kind", "unexpected_error")
                self._notify()
                _logger.warning("Activation aborted: %s", exc)
                raise
            if stop_requests != self._stop_requests:
                self._loading = False
                self._notify()
                _logger.info("Activation cancelled before the first fix arrived")
                return
            await self._publish(sample)
            self._start_location_timer()
            self._state = SessionState.ACTIVE
            self._loading = False
            _logger.info("Session activated")
            if self._mic_state is MicState.ENABLED:
                await self.capture.start()
            self._notify()

    async def deactivate(self) -> None:
        """Stop all periodic work. Safe to call from any state.

        An activation still waiting for its first fix is cancelled and
        publishes nothing.
        """
        self._stop_requests += 1
        async with self._transition_lock:
            self._stop_activities()

    async def enable_mic(self) -> None:
        """Enable audio capture, starting the cycle when the session is active.

        Raises PermissionDenied or DeviceUnavailable when the microphone
        cannot be opened; the microphone then stays disabled.
        """
        async with self._transition_lock:
            self._ensure_open()
            if self._mic_state is MicState.ENABLED:
                return
            try:
                await self.capturer.probe()
            except MonitoringError as exc:
                self._last_error = exc.kind
                self._notify()
                _logger.warning("Microphone unavailable: %s", exc)
                raise
            self._mic_state = MicState.ENABLED
            _logger.info("Microphone enabled")
            if self._state is SessionState.ACTIVE:
                await self.capture.start()
            self._notify()

    async def disable_mic(self) -> None:
        """Disable audio capture without touching the session state."""
        async with self._transition_lock:
            if self._mic_state is MicState.DISABLED:
                return
            self._mic_state = MicState.DISABLED
            self.capture.stop()
            _logger.info("Microphone disabled")
            self._notify()

    async def dispose(self) -> None:
        """Tear down timers, the recording and the sink subscription."""
        if self._disposed:
            return
        self._disposed = True
        self._stop_requests += 1
        async with self._transition_lock:
            self._stop_activities()
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        await self.capture.abort()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.clock.drain()
        _logger.info("Session disposed")

    # ------------------------------------------------------------------
    # Observers

    def snapshot(self) -> SessionSnapshot:
        """Return the current observable fields."""
        return SessionSnapshot(
            state=self._state,
            mic_state=self._mic_state,
            position=self._position,
            capture_phase=self.capture.phase,
            cycle_id=self.capture.cycle_id,
            loading=self._loading,
            last_error=self._last_error,
        )

    def subscribe(
        self, observer: Callable[[SessionSnapshot], None]
    ) -> Callable[[], None]:
        """Register ``observer`` and send it the current snapshot."""
        self._observers.append(observer)
        observer(self.snapshot())

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                _logger.debug("Observer notification failed", exc_info=True)

    # ------------------------------------------------------------------
    # Location push

    def _start_location_timer(self) -> None:
        self._cancel_location_timer()
        self._location_timer = PeriodicTimer(
            clock=self.clock,
            interval=self.timings.location_interval_seconds,
            callback=self._location_tick,
            name="location-push",
        )
        self._location_timer.start()

    def _cancel_location_timer(self) -> None:
        if self._location_timer is not None:
            self._location_timer.cancel()
            self._location_timer = None

    async def _location_tick(self) -> None:
        timer = self._location_timer
        try:
            sample = await self.position_source.get_fix()
        except MonitoringError as exc:
            _logger.warning("Skipping location tick: %s", exc)
            return
        if timer is None or timer is not self._location_timer:
            _logger.debug("Dropping fix from a cancelled location timer")
            return
        await self._publish(sample)

    async def _publish(self, sample: PositionSample) -> None:
        self._set_position(sample)
        try:
            await self.sink.publish(self.location_key, sample.to_payload())
        except Exception:
            _logger.exception("Failed to publish position")
            return
        _logger.info("Location updated: %s, %s", sample.latitude, sample.longitude)

    def _on_remote_position(self, value: SinkValue) -> None:
        try:
            sample = PositionSample.from_payload(value)
        except ValueError:
            _logger.warning("Ignoring malformed remote position: %r", value)
            return
        self._set_position(sample)

    def _set_position(self, sample: PositionSample | None) -> None:
        self._position = sample
        self._notify()

    # ------------------------------------------------------------------
    # Helpers

    def _stop_activities(self) -> None:
        was_active = self._state is SessionState.ACTIVE
        self._cancel_location_timer()
        self.capture.stop()
        self._state = SessionState.INACTIVE
        self._loading = False
        self._position = None
        self._notify()
        if was_active:
            _logger.info("Session deactivated")

    async def _send_alert(self) -> None:
        try:
            delivered = await self.alert_client.send_alert()
        except Exception:
            _logger.exception("Alert dispatch failed")
            return
        if not delivered:
            _logger.warning("Alert was not delivered")

    def _spawn(self, coro: Coroutine[object, object, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _ensure_open(self) -> None:
        if self._disposed:
            raise RuntimeError("Session has been disposed")
