"""Remote key-value sink abstractions."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

SinkValue = dict[str, object]
SinkCallback = Callable[[SinkValue], None]

_logger = logging.getLogger(__name__)


@dataclass
class Subscription:
    """Registration returned by ``RemoteSink.subscribe``."""

    key: str
    _release: Callable[[], None] = field(repr=False)
    _active: bool = field(default=True, repr=False)

    @property
    def active(self) -> bool:
        """Return True until the subscription is cancelled."""
        return self._active

    def cancel(self) -> None:
        """Release the registration. Cancelling twice is a no-op."""
        if not self._active:
            return
        self._active = False
        self._release()


class RemoteSink(Protocol):
    """Overwrite-only key-value store with change subscriptions."""

    async def publish(self, key: str, value: SinkValue) -> None:
        """Overwrite the value stored at ``key``."""

    async def subscribe(self, key: str, callback: SinkCallback) -> Subscription:
        """Deliver the last known value, then every later value at ``key``."""


class SubscriberRegistry:
    """Per-key callback lists shared by sink implementations."""

    def __init__(self, on_idle: Callable[[str], None] | None = None) -> None:
        self._subscribers: dict[str, list[SinkCallback]] = {}
        self._on_idle = on_idle

    def add(self, key: str, callback: SinkCallback) -> Subscription:
        """Register ``callback`` for ``key``."""
        self._subscribers.setdefault(key, []).append(callback)

        def release() -> None:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(key, None)
                if self._on_idle is not None:
                    self._on_idle(key)

        return Subscription(key=key, _release=release)

    def count(self, key: str) -> int:
        """Return the number of live subscribers for ``key``."""
        return len(self._subscribers.get(key, []))

    def deliver(self, key: str, value: SinkValue) -> None:
        """Send ``value`` to every current subscriber of ``key``."""
        for callback in list(self._subscribers.get(key, [])):
            self.call(callback, key, value)

    @staticmethod
    def call(callback: SinkCallback, key: str, value: SinkValue) -> None:
        """Invoke one subscriber, logging instead of propagating failures."""
        try:
            callback(dict(value))
        except Exception:
            _logger.exception("Subscriber for %s failed", key)


class InMemoryRemoteSink(RemoteSink):
    """Process-local sink, used when sessions share one interpreter."""

    def __init__(self) -> None:
        self._values: dict[str, SinkValue] = {}
        self._registry = SubscriberRegistry()

    def get(self, key: str) -> SinkValue | None:
        """Return a copy of the value at ``key``, if any."""
        value = self._values.get(key)
        return dict(value) if value is not None else None

    def subscriber_count(self, key: str) -> int:
        """Return the number of live subscriptions for ``key``."""
        return self._registry.count(key)

    async def publish(self, key: str, value: SinkValue) -> None:
        """Store ``value`` and fan it out to subscribers."""
        self._values[key] = dict(value)
        self._registry.deliver(key, value)

    async def subscribe(self, key: str, callback: SinkCallback) -> Subscription:
        """Register ``callback`` and replay the current value."""
        subscription = self._registry.add(key, callback)
        current = self._values.get(key)
        if current is not None:
            self._registry.call(callback, key, current)
        return subscription
