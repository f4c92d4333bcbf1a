"""
Conversion of store payloads into domain events.

Both the live notification path and the snapshot path go through the same
functions here, so a feature gets the same id whichever way it reaches a
client.

Id resolution:
- If the layer declares an id_field, the feature id is properties[id_field],
  overriding any id already in the GeoJSON (older PostGIS emits none)
- Otherwise the id found in the GeoJSON is used as-is, possibly absent
"""

import json
from typing import Any, Union

from pydantic import ValidationError

from shared.errors import MalformedPayload
from shared.layers import LayerRegistry
from shared.models import (
    DeleteEvent,
    DomainEvent,
    EventKind,
    Feature,
    Layer,
    RawNotification,
    UpdateEvent,
)


def resolve_feature(layer: Layer, data: Any) -> Feature:
    """
    Build a Feature from decoded JSON and give it its resolved id.

    Raises:
        MalformedPayload: if data is not a feature object, or the layer's
            id_field is missing (or null) in its properties
    """
    if not isinstance(data, dict):
        raise MalformedPayload(layer.name, f"expected a JSON object, got {type(data).__name__}")
    try:
        feature = Feature(**data)
    except (TypeError, ValidationError) as e:
        raise MalformedPayload(layer.name, f"invalid feature: {e}") from e

    if layer.id_field:
        feature_id = feature.properties.get(layer.id_field)
        if feature_id is None:
            raise MalformedPayload(layer.name, f"property {layer.id_field!r} missing")
        feature.id = feature_id
    return feature


def update_event(layer: Layer, feature_json: Union[str, bytes, dict]) -> UpdateEvent:
    """
    Create an UpdateEvent from a feature as JSON text (or already decoded).

    Raises:
        MalformedPayload: if the text is not JSON or the feature can't be resolved
    """
    if isinstance(feature_json, (str, bytes)):
        try:
            data = json.loads(feature_json)
        except ValueError as e:
            raise MalformedPayload(layer.name, f"not JSON: {e}") from e
    else:
        data = feature_json
    return UpdateEvent(layer=layer.name, feature=resolve_feature(layer, data))


def delete_event(layer: Layer, payload: str) -> DeleteEvent:
    """Create a DeleteEvent. The payload is the id, taken literally."""
    return DeleteEvent(layer=layer.name, id=payload)


def decode_notification(registry: LayerRegistry, raw: RawNotification) -> tuple[Layer, DomainEvent]:
    """
    Turn a store notification into the owning layer and its domain event.

    Raises:
        KeyError: if no layer listens on the notification's channel
        MalformedPayload: if an update payload can't be decoded
    """
    layer, kind = registry.for_event(raw.channel)
    if kind is EventKind.UPDATE:
        return layer, update_event(layer, raw.payload)
    return layer, delete_event(layer, raw.payload)
