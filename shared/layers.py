"""
Layer registry: the static table of layers the relay serves.

Loaded once at startup from a JSON file and never mutated afterwards, so it
can be shared by every component without locking.

Design decisions:
- Layer names are unique
- A notify channel name belongs to exactly one layer and one event kind,
  which lets the router dispatch a notification with a single dict lookup
"""

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping

from pydantic import ValidationError

from shared.errors import ConfigError, UnknownLayer
from shared.models import EventKind, Layer

logger = logging.getLogger("layers")


class LayerRegistry:
    """
    Read-only lookup of layers by name and by notify channel.

    Example:
        registry = LayerRegistry([Layer(name="roads", ...)])
        layer = registry.resolve("roads")
        layer, kind = registry.for_event("update_roads")
    """

    def __init__(self, layers: Iterable[Layer]):
        by_name: dict[str, Layer] = {}
        by_event: dict[str, tuple[Layer, EventKind]] = {}

        for layer in layers:
            if layer.name in by_name:
                raise ConfigError(f"Duplicate layer name: {layer.name!r}")
            by_name[layer.name] = layer

            for event_name, kind in (
                (layer.update_event_name, EventKind.UPDATE),
                (layer.delete_event_name, EventKind.DELETE),
            ):
                if event_name in by_event:
                    other = by_event[event_name][0].name
                    raise ConfigError(
                        f"Event name {event_name!r} used by both {other!r} and {layer.name!r}"
                    )
                by_event[event_name] = (layer, kind)

        self._by_name: Mapping[str, Layer] = MappingProxyType(by_name)
        self._by_event: Mapping[str, tuple[Layer, EventKind]] = MappingProxyType(by_event)

    def resolve(self, layer_name: str) -> Layer:
        """
        Look up a layer by name.

        Raises:
            UnknownLayer: if no layer has that name
        """
        layer = self._by_name.get(layer_name)
        if layer is None:
            raise UnknownLayer(layer_name)
        return layer

    def for_event(self, event_name: str) -> tuple[Layer, EventKind]:
        """
        Find the layer and event kind owning a notify channel.

        Raises:
            KeyError: if no layer listens on that channel
        """
        return self._by_event[event_name]

    def __contains__(self, layer_name: object) -> bool:
        return layer_name in self._by_name

    def __iter__(self) -> Iterator[Layer]:
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    @property
    def names(self) -> list[str]:
        return list(self._by_name)

    @property
    def event_names(self) -> list[str]:
        return list(self._by_event)

    @classmethod
    def from_file(cls, path: Path) -> "LayerRegistry":
        """
        Load the registry from a JSON file holding a list of layer objects.

        Raises:
            ConfigError: if the file is missing, unparsable or invalid
        """
        path = Path(path)
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigError(f"Layers file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Layers file {path} is not valid JSON: {e}") from e

        if not isinstance(data, list):
            raise ConfigError(f"Layers file {path} must contain a JSON list")

        try:
            layers = [Layer(**entry) for entry in data]
        except (TypeError, ValidationError) as e:
            raise ConfigError(f"Invalid layer definition in {path}: {e}") from e

        registry = cls(layers)
        logger.info(f"Loaded {len(registry)} layers from {path}: {', '.join(registry.names)}")
        return registry
