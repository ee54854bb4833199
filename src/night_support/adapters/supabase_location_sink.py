"""Supabase-backed location sink."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from supabase import Client

from night_support.domain.errors import NetworkFailure
from night_support.services.remote_sink import (
    RemoteSink,
    SinkCallback,
    SinkValue,
    SubscriberRegistry,
    Subscription,
)

_logger = logging.getLogger(__name__)


@dataclass
class SupabaseLocationSink(RemoteSink):
    """Stores one row per key in the locations table.

    Remote writes from other sessions are picked up by polling the row while
    at least one subscription for the key is live.
    """

    client: Client
    table: str = "locations"
    poll_interval_seconds: float = 5.0
    _last_seen: dict[str, SinkValue] = field(default_factory=dict, repr=False)
    _pollers: dict[str, asyncio.Task[None]] = field(default_factory=dict, repr=False)
    _registry: SubscriberRegistry = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._registry = SubscriberRegistry(on_idle=self._stop_polling)

    async def publish(self, key: str, value: SinkValue) -> None:
        """Upsert the row for ``key`` and notify local subscribers."""
        row = {
            "key": key,
            "latitude": value.get("latitude"),
            "longitude": value.get("longitude"),
            "updated_at": datetime.now(tz=UTC).isoformat(),
        }
        try:
            await asyncio.to_thread(self._upsert, row)
        except Exception as exc:
            raise NetworkFailure(f"Failed to publish {key}") from exc
        self._last_seen[key] = dict(value)
        self._registry.deliver(key, value)

    async def subscribe(self, key: str, callback: SinkCallback) -> Subscription:
        """Register ``callback``, replay the stored row and start polling."""
        subscription = self._registry.add(key, callback)
        current = self._last_seen.get(key)
        if current is None:
            try:
                current = await asyncio.to_thread(self._fetch, key)
            except Exception:
                _logger.warning("Could not read %s", key, exc_info=True)
            if current is not None:
                self._last_seen[key] = current
        if current is not None:
            self._registry.call(callback, key, current)
        if subscription.active and key not in self._pollers:
            self._pollers[key] = asyncio.get_running_loop().create_task(
                self._poll(key)
            )
        return subscription

    async def close(self) -> None:
        """Stop every poller."""
        tasks = list(self._pollers.values())
        self._pollers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def refresh(self, key: str) -> None:
        """Read the row once and deliver it if it changed."""
        try:
            value = await asyncio.to_thread(self._fetch, key)
        except Exception:
            _logger.warning("Polling %s failed", key, exc_info=True)
            return
        if value is None or value == self._last_seen.get(key):
            return
        self._last_seen[key] = value
        self._registry.deliver(key, value)

    async def _poll(self, key: str) -> None:
        while True:
            await asyncio.sleep(self.poll_interval_seconds)
            await self.refresh(key)

    def _stop_polling(self, key: str) -> None:
        task = self._pollers.pop(key, None)
        if task is not None:
            task.cancel()

    def _upsert(self, row: dict[str, object]) -> None:
        self.client.table(self.table).upsert(row, on_conflict="key").execute()

    def _fetch(self, key: str) -> SinkValue | None:
        response = (
            self.client.table(self.table)
            .select("latitude, longitude")
            .eq("key", key)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        return {"latitude": row["latitude"], "longitude": row["longitude"]}
