"""
Subscription sessions: the life of one client connection.

    VALIDATING -> REGISTERED -> REPLAYING -> LIVE -> CLOSED

The subscriber is registered with the layer's hub *before* the snapshot is
read. Live events arriving while the snapshot is replayed wait in the
subscriber's own queue and are sent right after the last snapshot row, in
the order they were published. A client may therefore see a feature twice
(once from the snapshot, once live), which is harmless: updates are keyed by
id and deletes are idempotent. Registering after the snapshot instead would
silently lose events.

Snapshot frames go straight to this client's stream, never through the hub,
so other subscribers of the layer don't see them.
"""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Optional

from fanout.broadcast_hub import HubTable, Registration
from fanout.snapshot_loader import SnapshotLoader
from shared.channels import Subscriber, encode_event, format_comment, format_sse
from shared.errors import UnknownLayer
from shared.layers import LayerRegistry
from shared.models import Layer
from shared.store import CONNECTION_ERRORS

logger = logging.getLogger("subscription")


class SessionState(str, Enum):
    VALIDATING = "validating"
    REGISTERED = "registered"
    REPLAYING = "replaying"
    LIVE = "live"
    CLOSED = "closed"


class SubscriptionSession:
    """
    Drives one client from layer lookup to disconnect.

    Example:
        session = SubscriptionSession(registry, hubs, loader)
        session.open("roads")           # raises UnknownLayer
        async for frame in session.stream():
            await send(frame)
    """

    def __init__(
        self,
        registry: LayerRegistry,
        hubs: HubTable,
        loader: SnapshotLoader,
        queue_size: int = 1000,
        keepalive_interval: Optional[float] = 15.0,
    ):
        self.registry = registry
        self.hubs = hubs
        self.loader = loader
        self.queue_size = queue_size
        self.keepalive_interval = keepalive_interval

        self.state = SessionState.VALIDATING
        self.layer: Optional[Layer] = None
        self.subscriber: Optional[Subscriber] = None
        self.snapshot_count = 0
        self._registration: Optional[Registration] = None

    def open(self, layer_name: Optional[str]) -> Layer:
        """
        Resolve the requested layer.

        Raises:
            UnknownLayer: if the name is missing or not registered; nothing is
                registered with any hub in that case
        """
        try:
            self.layer = self.registry.resolve(layer_name or "")
        except UnknownLayer:
            self.state = SessionState.CLOSED
            logger.info(f"Rejected subscription to unknown layer {layer_name!r}")
            raise
        return self.layer

    async def stream(self) -> AsyncIterator[str]:
        """
        Yield SSE frames for this client until it goes away.

        Registers with the hub, replays the snapshot, then relays live frames.
        Whatever ends the stream (disconnect, cancellation, a dropped
        subscriber, a failed snapshot), the subscriber is unregistered.
        """
        if self.layer is None:
            raise RuntimeError("open() must succeed before stream()")
        layer = self.layer

        self.subscriber = Subscriber(layer.name, maxsize=self.queue_size)
        self._registration = self.hubs[layer.name].register(self.subscriber)
        self.state = SessionState.REGISTERED

        try:
            self.state = SessionState.REPLAYING
            try:
                async for event in self.loader.load(layer):
                    self.snapshot_count += 1
                    yield encode_event(event)
            except CONNECTION_ERRORS as e:
                logger.error(f"Snapshot of '{layer.name}' failed for {self.subscriber!r}: {e}")
                yield format_sse("error", {"error_type": "snapshot_failed", "error_message": str(e)})
                return

            self.state = SessionState.LIVE
            logger.info(f"{self.subscriber!r} live after {self.snapshot_count} snapshot features")

            if not layer.table:
                # nothing to replay; make the connection look open to the client
                yield format_comment("open")

            while True:
                try:
                    frame = await self.subscriber.next_frame(timeout=self.keepalive_interval)
                except asyncio.TimeoutError:
                    yield format_comment("keep-alive")
                    continue
                if frame is None:
                    break
                yield frame
        finally:
            self.close()

    def close(self) -> None:
        """Unregister and close. Safe to call more than once."""
        if self._registration is not None:
            self._registration.unregister()
        if self.subscriber is not None:
            self.subscriber.close()
        if self.state is not SessionState.CLOSED:
            self.state = SessionState.CLOSED
            logger.info(f"Session for {self.subscriber!r} closed")
