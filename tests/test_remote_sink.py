"""Tests for the in-memory remote sink."""

import asyncio

from night_support.services.remote_sink import InMemoryRemoteSink, SinkValue


def test_subscribe_replays_last_value_then_follows_updates() -> None:
    async def scenario() -> None:
        sink = InMemoryRemoteSink()
        await sink.publish("locations/current", {"latitude": 1.0, "longitude": 2.0})
        seen: list[SinkValue] = []

        subscription = await sink.subscribe("locations/current", seen.append)
        await sink.publish("locations/current", {"latitude": 3.0, "longitude": 4.0})

        assert seen == [
            {"latitude": 1.0, "longitude": 2.0},
            {"latitude": 3.0, "longitude": 4.0},
        ]
        assert subscription.active is True

    asyncio.run(scenario())


def test_subscribe_without_value_waits_for_first_publish() -> None:
    async def scenario() -> None:
        sink = InMemoryRemoteSink()
        seen: list[SinkValue] = []

        await sink.subscribe("locations/current", seen.append)
        assert seen == []

        await sink.publish("locations/current", {"latitude": 5.0, "longitude": 6.0})
        assert seen == [{"latitude": 5.0, "longitude": 6.0}]

    asyncio.run(scenario())


def test_every_subscriber_receives_updates_until_cancelled() -> None:
    async def scenario() -> None:
        sink = InMemoryRemoteSink()
        first: list[SinkValue] = []
        second: list[SinkValue] = []
        first_subscription = await sink.subscribe("locations/current", first.append)
        await sink.subscribe("locations/current", second.append)

        await sink.publish("locations/current", {"latitude": 1.0, "longitude": 1.0})
        first_subscription.cancel()
        first_subscription.cancel()
        await sink.publish("locations/current", {"latitude": 2.0, "longitude": 2.0})

        assert len(first) == 1
        assert len(second) == 2
        assert sink.subscriber_count("locations/current") == 1

    asyncio.run(scenario())


def test_failing_subscriber_does_not_block_others() -> None:
    async def scenario() -> None:
        sink = InMemoryRemoteSink()
        seen: list[SinkValue] = []

        def explode(_value: SinkValue) -> None:
            raise RuntimeError("observer bug")

        await sink.subscribe("locations/current", explode)
        await sink.subscribe("locations/current", seen.append)
        await sink.publish("locations/current", {"latitude": 1.0, "longitude": 1.0})

        assert seen == [{"latitude": 1.0, "longitude": 1.0}]

    asyncio.run(scenario())


def test_publish_overwrites_and_isolates_stored_value() -> None:
    async def scenario() -> None:
        sink = InMemoryRemoteSink()
        value: SinkValue = {"latitude": 1.0, "longitude": 1.0}
        await sink.publish("locations/current", value)
        value["latitude"] = 9.0
        await sink.publish("other", {"latitude": 0.0, "longitude": 0.0})

        assert sink.get("locations/current") == {"latitude": 1.0, "longitude": 1.0}
        assert sink.get("missing") is None

    asyncio.run(scenario())
