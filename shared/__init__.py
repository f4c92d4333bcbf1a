"""
Shared infrastructure for the layer relay.

This package contains code used by the fan-out engine and the HTTP surface:
- Domain models (Layer, Feature, UpdateEvent, DeleteEvent)
- Settings and the layer registry
- The PostgreSQL store (pool and listen connections)
- Push channels and SSE framing
- The error hierarchy
"""

from shared.models import (
    DeleteEvent,
    DomainEvent,
    EventKind,
    Feature,
    Layer,
    RawNotification,
    UpdateEvent,
)
from shared.layers import LayerRegistry
from shared.channels import Subscriber

__all__ = [
    "DeleteEvent",
    "DomainEvent",
    "EventKind",
    "Feature",
    "Layer",
    "RawNotification",
    "UpdateEvent",
    "LayerRegistry",
    "Subscriber",
]
