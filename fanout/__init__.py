"""
Change-event fan-out engine.

This package turns store notifications into per-layer SSE streams:
- Notification router listens on each layer's channels and decodes payloads
- Broadcast hubs fan each event out to the layer's subscribers
- Snapshot loader seeds new subscribers with the layer's current state
- Subscription sessions drive one client from layer lookup to disconnect
"""

from fanout.broadcast_hub import BroadcastHub, Registration, build_hub_table
from fanout.notification_router import NotificationRouter
from fanout.relay import Relay
from fanout.snapshot_loader import SnapshotLoader
from fanout.subscription import SessionState, SubscriptionSession

__all__ = [
    "BroadcastHub",
    "Registration",
    "build_hub_table",
    "NotificationRouter",
    "Relay",
    "SnapshotLoader",
    "SessionState",
    "SubscriptionSession",
]
