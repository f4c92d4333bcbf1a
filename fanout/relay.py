"""
Relay runtime: builds and owns every component of the fan-out engine.

Construction order follows the data flow: layer registry, one hub per layer
(immutable table), the store, the snapshot loader, and the notification
router. The same registry and hub table are passed by reference to the
router and to every subscription session; there is no global lookup.
"""

import logging
from typing import Any, Optional

from fanout.broadcast_hub import HubTable, build_hub_table
from fanout.notification_router import ConnectFactory, NotificationRouter
from fanout.snapshot_loader import SnapshotLoader
from fanout.subscription import SubscriptionSession
from shared.config import RelaySettings
from shared.layers import LayerRegistry
from shared.store import PgStore

logger = logging.getLogger("relay")


class Relay:
    """
    The running relay: registry, hubs, store, loader and router.

    Example:
        relay = Relay.from_settings(load_settings())
        await relay.start()      # ConfigError if the store is unreachable
        session = relay.new_session()
        ...
        await relay.stop()
    """

    def __init__(
        self,
        settings: RelaySettings,
        registry: LayerRegistry,
        store: Optional[Any] = None,
        connect: Optional[ConnectFactory] = None,
    ):
        """
        Args:
            settings: Process settings
            registry: The layers to serve
            store: Store used for snapshots (defaults to a PgStore for settings)
            connect: Factory for listen connections (defaults to store.connect_listener)
        """
        self.settings = settings
        self.registry = registry
        self.store = store if store is not None else PgStore(settings)
        self.hubs: HubTable = build_hub_table(registry)
        self.loader = SnapshotLoader(self.store)
        self.router = NotificationRouter(
            registry,
            self.hubs,
            connect or self.store.connect_listener,
            initial_delay=settings.reconnect_initial_delay,
            max_delay=settings.reconnect_max_delay,
            probe_interval=settings.probe_interval,
        )
        self._started = False

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> "Relay":
        """Build a relay with the layers from settings.layers_file."""
        return cls(settings, LayerRegistry.from_file(settings.layers_file))

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        await self.store.open()
        for hub in self.hubs.values():
            hub.start()
        self.router.start()
        self._started = True
        logger.info(f"Relay started for layers: {', '.join(self.registry.names)}")

    async def stop(self) -> None:
        if not self._started:
            return
        await self.router.stop()
        for hub in self.hubs.values():
            await hub.stop()
        await self.store.close()
        self._started = False
        logger.info("Relay stopped")

    def new_session(self) -> SubscriptionSession:
        return SubscriptionSession(
            self.registry,
            self.hubs,
            self.loader,
            queue_size=self.settings.subscriber_queue_size,
            keepalive_interval=self.settings.keepalive_interval,
        )

    def health(self) -> dict[str, dict[str, Any]]:
        """Per-layer health: whether live updates flow, and hub counters."""
        report = {}
        for name, status in self.router.status().items():
            hub = self.hubs[name]
            report[name] = {
                **status.to_dict(),
                "live": status.connected,
                "subscribers": hub.subscriber_count,
                "published": hub.published,
                "delivery_failures": hub.delivery_failures,
            }
        return report
