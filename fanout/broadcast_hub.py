"""
Per-layer broadcast hubs.

A hub owns the set of subscribers connected to one layer and fans every
published event out to them. Events reach the hub through its inbox, a queue
fed by the notification router and drained by the hub's own pump task, so
the order in which the router submits events is the order every subscriber
sees them in.

Design decisions:
- The event is serialized once per publish, not once per subscriber
- Delivery never blocks: each subscriber has its own bounded queue
- A subscriber that can't take an event is closed and unregistered; the
  others still get it and the publisher never sees the error
- Publishing iterates over a copy of the subscriber set, so joining during a
  publish is safe (the newcomer may or may not get that event)
- One hub per layer for the process lifetime, held in an immutable table
"""

import asyncio
import logging
from types import MappingProxyType
from typing import Mapping, Optional, Union

from shared.channels import Subscriber, encode_event
from shared.errors import DeliveryFailure
from shared.layers import LayerRegistry
from shared.models import DomainEvent, Layer

logger = logging.getLogger("broadcast_hub")


class Registration:
    """Handle returned by BroadcastHub.register(); unregistering is idempotent."""

    def __init__(self, hub: "BroadcastHub", subscriber: Subscriber):
        self.hub = hub
        self.subscriber = subscriber

    @property
    def active(self) -> bool:
        return self.hub.is_registered(self.subscriber)

    def unregister(self) -> bool:
        return self.hub.unregister(self)


class BroadcastHub:
    """
    Fan-out point for one layer.

    Example usage:
        hub = BroadcastHub(layer)
        hub.start()

        registration = hub.register(Subscriber(layer.name))
        hub.submit(event)          # from the router, delivered by the pump
        ...
        registration.unregister()
        await hub.stop()
    """

    def __init__(self, layer: Layer):
        self.layer = layer
        self._subscribers: set[Subscriber] = set()
        self._inbox: asyncio.Queue[DomainEvent] = asyncio.Queue()
        self._pump: Optional[asyncio.Task] = None

        # counters for the health endpoint
        self.published = 0
        self.delivery_failures = 0

    def __repr__(self) -> str:
        return f"BroadcastHub({self.layer.name}, subscribers={len(self._subscribers)})"

    # =========================================================================
    # Registration
    # =========================================================================

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def is_registered(self, subscriber: Subscriber) -> bool:
        return subscriber in self._subscribers

    def register(self, subscriber: Subscriber) -> Registration:
        """Add a subscriber; it gets every event published from now on."""
        self._subscribers.add(subscriber)
        logger.info(f"{subscriber!r} registered ({len(self._subscribers)} on '{self.layer.name}')")
        return Registration(self, subscriber)

    def unregister(self, handle: Union[Registration, Subscriber]) -> bool:
        """
        Remove a subscriber. Safe to call repeatedly.

        Returns:
            True if the subscriber was registered, False otherwise
        """
        subscriber = handle.subscriber if isinstance(handle, Registration) else handle
        if subscriber not in self._subscribers:
            return False
        self._subscribers.discard(subscriber)
        logger.info(f"{subscriber!r} unregistered ({len(self._subscribers)} on '{self.layer.name}')")
        return True

    # =========================================================================
    # Publishing
    # =========================================================================

    def publish(self, event: DomainEvent) -> int:
        """
        Deliver an event to every currently registered subscriber.

        Returns:
            Number of subscribers the event was handed to
        """
        frame = encode_event(event)
        self.published += 1

        delivered = 0
        for subscriber in list(self._subscribers):
            try:
                subscriber.offer(frame)
                delivered += 1
            except DeliveryFailure as e:
                self.delivery_failures += 1
                logger.warning(f"Dropping subscriber on '{self.layer.name}': {e}")
                subscriber.close()
                self.unregister(subscriber)

        logger.debug(f"Published {event.kind.value} {event.feature_id!r} to {delivered} subscribers")
        return delivered

    def submit(self, event: DomainEvent) -> None:
        """Queue an event for the pump task. Never blocks."""
        self._inbox.put_nowait(event)

    @property
    def backlog(self) -> int:
        """Events submitted but not yet published."""
        return self._inbox.qsize()

    async def run(self) -> None:
        """Pump loop: publish inbox events in arrival order until cancelled."""
        while True:
            event = await self._inbox.get()
            try:
                self.publish(event)
            except Exception:
                logger.exception(f"Failed to publish {event.kind.value} on '{self.layer.name}'")
            finally:
                self._inbox.task_done()

    async def drain(self) -> None:
        """Wait until every submitted event has been published."""
        await self._inbox.join()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._pump is not None and not self._pump.done()

    def start(self) -> None:
        if self.running:
            logger.warning(f"Hub for '{self.layer.name}' already started")
            return
        self._pump = asyncio.create_task(self.run(), name=f"hub-{self.layer.name}")

    async def stop(self) -> None:
        """Stop the pump and close every subscriber so their streams end."""
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None
        for subscriber in list(self._subscribers):
            subscriber.close()
        self._subscribers.clear()


HubTable = Mapping[str, BroadcastHub]


def build_hub_table(registry: LayerRegistry) -> HubTable:
    """Create one hub per layer, keyed by layer name. The table is read-only."""
    return MappingProxyType({layer.name: BroadcastHub(layer) for layer in registry})
