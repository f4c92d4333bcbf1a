"""
Notification router: from store NOTIFY messages to layer broadcast hubs.

Every layer gets one supervised listener task holding its own dedicated
store connection, LISTENing on the layer's update and delete channels.
Incoming notifications are decoded into domain events and submitted to the
layer's hub inbox; the hub's pump does the actual fan-out.

Design decisions:
- Dispatch is a single dict lookup from channel name to (layer, kind)
- A malformed payload is logged and dropped; it never stops the router
- A lost connection marks the layer as degraded and is retried with
  exponential backoff; after reconnect both channels are LISTENed again,
  subscribers stay connected and simply start receiving events again
- Listen connections never come from the shared pool

Failure modes handled:
- Connection refused / auth failure at (re)connect: retried with backoff
- Connection terminated by the server or network: detected through the
  driver's termination callback
- Half-open TCP connections: detected by a periodic `SELECT 1` probe
- Anything else going wrong in a listener: logged with its traceback and
  retried like a lost connection, so a layer never stops silently
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from fanout.broadcast_hub import HubTable
from fanout.events import decode_notification
from shared.errors import MalformedPayload, UpstreamDisconnected
from shared.layers import LayerRegistry
from shared.models import Layer, RawNotification
from shared.store import CONNECTION_ERRORS

logger = logging.getLogger("notification_router")

ConnectFactory = Callable[[], Awaitable[Any]]


@dataclass
class ListenerStatus:
    """Health of one layer's live-update feed."""
    layer: str
    connected: bool = False
    attempts: int = 0
    last_error: Optional[str] = None
    connected_since: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "layer": self.layer,
            "connected": self.connected,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "connected_since": self.connected_since.isoformat() if self.connected_since else None,
        }


class LayerListener:
    """
    Supervised LISTEN connection for one layer.

    run() loops forever: connect, LISTEN on both channels, wait for the
    connection to die, back off, repeat. Cancel the task to stop it.
    """

    def __init__(
        self,
        layer: Layer,
        router: "NotificationRouter",
        connect: ConnectFactory,
        initial_delay: float = 0.5,
        max_delay: float = 30.0,
        probe_interval: float = 30.0,
    ):
        self.layer = layer
        self.router = router
        self.connect = connect
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.probe_interval = probe_interval
        self.status = ListenerStatus(layer=layer.name)
        self._connected = asyncio.Event()

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        """Block until the listener holds a live connection."""
        await asyncio.wait_for(self._connected.wait(), timeout)

    async def run(self) -> None:
        delay = self.initial_delay
        while True:
            established = False
            try:
                established = await self._listen_once()
            except UpstreamDisconnected as e:
                established = True
                self._record_failure(str(e))
            except CONNECTION_ERRORS as e:
                self._record_failure(f"{type(e).__name__}: {e}")
            except Exception as e:
                logger.exception(f"Listener for '{self.layer.name}' failed unexpectedly")
                self._record_failure(f"{type(e).__name__}: {e}")

            if established:
                # the connection worked before it broke; start backing off afresh
                delay = self.initial_delay
            logger.warning(
                f"Live updates for '{self.layer.name}' unavailable, "
                f"reconnecting in {delay:.1f}s (attempt {self.status.attempts})"
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_delay)

    async def _listen_once(self) -> bool:
        conn = await self.connect()
        terminated = asyncio.Event()
        conn.add_termination_listener(lambda _conn: terminated.set())
        try:
            for event_name in self.layer.event_names:
                await conn.add_listener(event_name, self.router.on_notification)
            self._record_connected()

            while True:
                try:
                    await asyncio.wait_for(terminated.wait(), self.probe_interval)
                except asyncio.TimeoutError:
                    try:
                        await conn.execute("SELECT 1")
                    except CONNECTION_ERRORS as e:
                        raise UpstreamDisconnected(self.layer.name, f"probe failed: {e}") from e
                else:
                    raise UpstreamDisconnected(self.layer.name)
        finally:
            self._connected.clear()
            self.status.connected = False
            await self._close(conn)

    async def _close(self, conn: Any) -> None:
        if conn.is_closed():
            return
        try:
            await conn.close(timeout=5)
        except CONNECTION_ERRORS:
            conn.terminate()

    def _record_connected(self) -> None:
        self.status.connected = True
        self.status.last_error = None
        self.status.connected_since = datetime.now(timezone.utc)
        self._connected.set()
        logger.info(f"Listening on {', '.join(self.layer.event_names)} for '{self.layer.name}'")

    def _record_failure(self, reason: str) -> None:
        self.status.connected = False
        self.status.attempts += 1
        self.status.last_error = reason
        self.status.connected_since = None


class NotificationRouter:
    """
    Routes store notifications to the hubs of the layers that own them.

    Example:
        router = NotificationRouter(registry, hubs, connect=store.connect_listener)
        router.start()
        ...
        router.is_live("roads")  # False while that layer is reconnecting
        await router.stop()
    """

    def __init__(
        self,
        registry: LayerRegistry,
        hubs: HubTable,
        connect: ConnectFactory,
        initial_delay: float = 0.5,
        max_delay: float = 30.0,
        probe_interval: float = 30.0,
    ):
        self.registry = registry
        self.hubs = hubs
        self.listeners: dict[str, LayerListener] = {
            layer.name: LayerListener(
                layer,
                self,
                connect,
                initial_delay=initial_delay,
                max_delay=max_delay,
                probe_interval=probe_interval,
            )
            for layer in registry
        }
        self._tasks: list[asyncio.Task] = []

        self.dispatched = 0
        self.malformed = 0

    # =========================================================================
    # Dispatch
    # =========================================================================

    def on_notification(self, connection: Any, pid: int, channel: str, payload: str) -> None:
        """Driver callback, invoked for every NOTIFY on a listened channel."""
        self.dispatch(RawNotification(channel=channel, payload=payload, pid=pid))

    def dispatch(self, raw: RawNotification) -> bool:
        """
        Decode a notification and submit it to its layer's hub.

        Returns:
            True if an event was submitted, False if the notification was dropped
        """
        try:
            layer, event = decode_notification(self.registry, raw)
        except KeyError:
            logger.warning(f"Notification on unknown channel '{raw.channel}' dropped")
            return False
        except MalformedPayload as e:
            self.malformed += 1
            logger.error(f"Dropping notification on '{raw.channel}': {e}")
            return False

        logger.debug(f"Notification on '{raw.channel}' -> {event.kind.value} {event.feature_id!r}")
        self.hubs[layer.name].submit(event)
        self.dispatched += 1
        return True

    # =========================================================================
    # Lifecycle and health
    # =========================================================================

    def start(self) -> None:
        if self._tasks:
            logger.warning("NotificationRouter already started")
            return
        for name, listener in self.listeners.items():
            self._tasks.append(asyncio.create_task(listener.run(), name=f"listener-{name}"))
        logger.info(f"NotificationRouter started for {len(self.listeners)} layers")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("NotificationRouter stopped")

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        """Block until every layer listener is connected."""
        await asyncio.gather(*(listener.wait_connected(timeout) for listener in self.listeners.values()))

    def is_live(self, layer_name: str) -> bool:
        """Whether live updates are currently flowing for a layer."""
        return self.listeners[layer_name].status.connected

    def status(self) -> dict[str, ListenerStatus]:
        return {name: listener.status for name, listener in self.listeners.items()}
