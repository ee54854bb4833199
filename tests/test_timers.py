"""Tests for clock and timer primitives."""

import asyncio

from night_support.services.timers import LoopClock, PeriodicTimer
from tests.conftest import ManualClock


def test_periodic_timer_ticks_once_per_interval() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        ticks: list[float] = []

        async def tick() -> None:
            ticks.append(clock.now())

        timer = PeriodicTimer(clock=clock, interval=10, callback=tick)
        timer.start()
        timer.start()

        await clock.advance(35)

        assert ticks == [10, 20, 30]
        assert len(clock.pending) == 1
        timer.cancel()

    asyncio.run(scenario())


def test_periodic_timer_survives_failing_tick() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        calls: list[int] = []

        async def tick() -> None:
            calls.append(len(calls))
            if len(calls) == 2:
                raise RuntimeError("boom")

        timer = PeriodicTimer(clock=clock, interval=1, callback=tick)
        timer.start()
        await clock.advance(4)

        assert len(calls) == 4
        timer.cancel()

    asyncio.run(scenario())


def test_cancel_is_idempotent_and_stops_rescheduling() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        ticks: list[int] = []
        timer: PeriodicTimer | None = None

        async def tick() -> None:
            ticks.append(1)
            assert timer is not None
            timer.cancel()

        timer = PeriodicTimer(clock=clock, interval=1, callback=tick)
        timer.start()
        await clock.advance(5)
        timer.cancel()
        timer.cancel()

        assert ticks == [1]
        assert clock.pending == []

    asyncio.run(scenario())


def test_loop_clock_runs_and_cancels_callbacks() -> None:
    async def scenario() -> None:
        clock = LoopClock()
        fired: list[str] = []

        async def record(label: str) -> None:
            fired.append(label)

        clock.call_later(0.01, lambda: record("kept"))
        cancelled = clock.call_later(0.01, lambda: record("cancelled"))
        cancelled.cancel()

        await asyncio.sleep(0.05)
        await clock.drain()

        assert fired == ["kept"]
        assert cancelled.cancelled() is True

    asyncio.run(scenario())


def test_loop_clock_logs_failing_callbacks() -> None:
    async def scenario() -> None:
        clock = LoopClock()

        async def explode() -> None:
            raise RuntimeError("boom")

        clock.call_later(0, explode)
        await asyncio.sleep(0.01)
        await clock.drain()

    asyncio.run(scenario())


def test_slow_tick_does_not_stretch_the_period() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        ticks: list[float] = []

        async def slow_tick() -> None:
            ticks.append(clock.now())
            clock.current += 3

        timer = PeriodicTimer(clock=clock, interval=10, callback=slow_tick)
        timer.start()
        await clock.advance(35)

        assert ticks == [10, 20, 30]
        timer.cancel()

    asyncio.run(scenario())
