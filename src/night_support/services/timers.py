"""Clock and timer primitives for periodic session work."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

Callback = Callable[[], Awaitable[None]]

_logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled before it fires."""

    def cancel(self) -> None:
        """Prevent the callback from firing. Safe to call repeatedly."""

    def cancelled(self) -> bool:
        """Return True once the timer has been cancelled."""


class Clock(Protocol):
    """Source of time and delayed callbacks."""

    def now(self) -> float:
        """Return a monotonic timestamp in seconds."""

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""

    async def drain(self) -> None:
        """Wait for callbacks that have already fired to finish."""


async def _run_logged(callback: Callback) -> None:
    try:
        await callback()
    except Exception:
        _logger.exception("Timer callback failed")


class _LoopTimer:
    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay: float,
        callback: Callback,
        tasks: set[asyncio.Task[None]],
    ) -> None:
        self._loop = loop
        self._callback = callback
        self._tasks = tasks
        self._cancelled = False
        self._handle = loop.call_later(max(0.0, delay), self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        task = self._loop.create_task(_run_logged(self._callback))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self) -> None:
        self._cancelled = True
        self._handle.cancel()

    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class LoopClock(Clock):
    """Clock backed by the running asyncio event loop."""

    _tasks: set[asyncio.Task[None]] = field(default_factory=set, repr=False)

    def now(self) -> float:
        """Return the event loop's monotonic time."""
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Schedule ``callback`` on the running loop."""
        return _LoopTimer(asyncio.get_running_loop(), delay, callback, self._tasks)

    async def drain(self) -> None:
        """Wait for callbacks that have already fired to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


@dataclass
class PeriodicTimer:
    """Run ``callback`` every ``interval`` seconds.

    The next tick is scheduled only after the current callback returns, so a
    tick never overlaps itself. Its delay is measured from the start of the
    previous tick, so a slow callback does not stretch the period unless it
    runs longer than ``interval``. A failing tick is logged and the schedule
    continues. ``cancel`` bumps the generation so a callback already in
    flight cannot reschedule.
    """

    clock: Clock
    interval: float
    callback: Callback
    name: str = "periodic"
    _handle: TimerHandle | None = field(default=None, init=False, repr=False)
    _generation: int = field(default=0, init=False, repr=False)
    _running: bool = field(default=False, init=False, repr=False)

    def start(self) -> None:
        """Schedule the first tick one interval from now."""
        if self._running:
            return
        self._running = True
        self._generation += 1
        self._schedule(self._generation, self.interval)

    def cancel(self) -> None:
        """Stop ticking. Cancelling a stopped timer is a no-op."""
        self._running = False
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self, generation: int, delay: float) -> None:
        async def tick() -> None:
            if generation != self._generation:
                return
            self._handle = None
            started = self.clock.now()
            try:
                await self.callback()
            except Exception:
                _logger.exception("%s tick failed", self.name)
            if generation == self._generation and self._running:
                elapsed = self.clock.now() - started
                self._schedule(generation, max(0.0, self.interval - elapsed))

        self._handle = self.clock.call_later(delay, tick)
