"""
Push channels: the per-client side of the SSE stream.

A Subscriber is a bounded, ordered queue of ready-to-send SSE frames owned by
one subscription session. Broadcast hubs offer frames to it without blocking;
the session drains it and hands the frames to the HTTP response.

Design decisions:
- Frames are serialized once by the publisher and shared by all subscribers
- offer() never blocks: a full queue means the client is too slow, which is a
  DeliveryFailure for that client only
- close() is idempotent and wakes a reader blocked on the queue
"""

import asyncio
import json
import logging
from typing import Any, Optional
from uuid import uuid4

from shared.errors import DeliveryFailure
from shared.models import DomainEvent

logger = logging.getLogger("channels")


# =============================================================================
# SSE framing
# =============================================================================

def format_sse(event: Optional[str], data: Any) -> str:
    """
    Render one SSE frame.

    Non-string data is encoded as compact JSON. Multi-line data is split into
    several `data:` lines as the SSE format requires.
    """
    text = data if isinstance(data, str) else json.dumps(data, separators=(",", ":"))
    lines = []
    if event:
        lines.append(f"event: {event}")
    for line in text.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


def format_comment(text: str) -> str:
    """Render an SSE comment frame. Clients ignore these; proxies see traffic."""
    return f": {text}\n\n"


def encode_event(event: DomainEvent) -> str:
    """Render a domain event as an SSE frame named after its kind."""
    return format_sse(event.kind.value, event.payload())


# =============================================================================
# Subscriber
# =============================================================================

class Subscriber:
    """
    One connected client's push channel.

    Example:
        subscriber = Subscriber("roads", maxsize=100)
        subscriber.offer(encode_event(event))
        frame = await subscriber.next_frame()
    """

    def __init__(self, layer_name: str, maxsize: int = 1000, client_id: Optional[str] = None):
        """
        Args:
            layer_name: Layer the client subscribed to (for logging)
            maxsize: Frames that may be pending before the client counts as dead
            client_id: Identifier for logs, generated when not given
        """
        self.layer_name = layer_name
        self.client_id = client_id or uuid4().hex[:8]
        self.maxsize = maxsize
        self.delivered = 0
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def __repr__(self) -> str:
        return f"Subscriber({self.layer_name}, client={self.client_id})"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Frames queued but not yet taken by the session."""
        return self._queue.qsize()

    def offer(self, frame: str) -> None:
        """
        Queue a frame without blocking.

        Raises:
            DeliveryFailure: if the subscriber is closed or its queue is full
        """
        if self._closed:
            raise DeliveryFailure(f"{self!r} is closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull as e:
            raise DeliveryFailure(f"{self!r} has {self.maxsize} frames pending") from e
        self.delivered += 1

    async def next_frame(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Wait for the next frame.

        Returns None once the subscriber is closed; frames still queued at
        that point are discarded, the client is expected to reconnect.

        Raises:
            asyncio.TimeoutError: if nothing arrives within `timeout` seconds
        """
        if self._closed:
            return None
        if timeout is None:
            frame = await self._queue.get()
        else:
            frame = await asyncio.wait_for(self._queue.get(), timeout)
        if self._closed:
            return None
        return frame

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            # wake a reader blocked in next_frame()
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # queue full means nobody is blocked on get()
            pass
        logger.debug(f"Closed {self!r} after {self.delivered} frames")
