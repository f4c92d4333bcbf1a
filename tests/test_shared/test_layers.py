"""
Tests for the layer registry.

These tests verify lookups by name and by notify channel, and loading the
registry from a JSON layers file.
"""

import json
from pathlib import Path

import pytest

from shared.config import DEFAULT_LAYERS_FILE
from shared.errors import ConfigError, UnknownLayer
from shared.layers import LayerRegistry
from shared.models import EventKind, Layer


class TestLayerRegistryLookups:
    """Tests for resolve() and for_event()."""

    def test_resolve(self, registry: LayerRegistry, roads_layer: Layer):
        assert registry.resolve("roads") == roads_layer

    def test_resolve_unknown_layer(self, registry: LayerRegistry):
        with pytest.raises(UnknownLayer) as exc_info:
            registry.resolve("nonexistent")
        assert exc_info.value.layer_name == "nonexistent"

    def test_for_event_update(self, registry: LayerRegistry):
        layer, kind = registry.for_event("update_roads")
        assert layer.name == "roads"
        assert kind is EventKind.UPDATE

    def test_for_event_delete(self, registry: LayerRegistry):
        layer, kind = registry.for_event("delete_points")
        assert layer.name == "points"
        assert kind is EventKind.DELETE

    def test_for_unknown_event(self, registry: LayerRegistry):
        with pytest.raises(KeyError):
            registry.for_event("update_nothing")

    def test_iteration_and_names(self, registry: LayerRegistry):
        assert len(registry) == 3
        assert registry.names == ["roads", "points", "sketch"]
        assert [layer.name for layer in registry] == registry.names
        assert "roads" in registry
        assert "nonexistent" not in registry
        assert len(registry.event_names) == 6


class TestLayerRegistryValidation:
    """Tests for rejected layer tables."""

    def test_duplicate_layer_name(self, roads_layer: Layer):
        other = roads_layer.model_copy(
            update={"update_event_name": "u2", "delete_event_name": "d2"}
        )
        with pytest.raises(ConfigError, match="Duplicate layer name"):
            LayerRegistry([roads_layer, other])

    def test_event_name_shared_between_layers(self, roads_layer: Layer):
        other = Layer(
            name="streets",
            update_event_name="update_roads",
            delete_event_name="delete_streets",
        )
        with pytest.raises(ConfigError, match="update_roads"):
            LayerRegistry([roads_layer, other])

    def test_update_and_delete_may_not_share_a_channel(self):
        layer = Layer(name="x", update_event_name="changes", delete_event_name="changes")
        with pytest.raises(ConfigError):
            LayerRegistry([layer])


class TestLayerRegistryFromFile:
    """Tests for loading the registry from JSON."""

    def test_load(self, layers_file: Path):
        registry = LayerRegistry.from_file(layers_file)
        assert registry.names == ["roads", "points", "sketch"]
        assert registry.resolve("roads").id_field == "fid"

    def test_shipped_layers_file(self):
        registry = LayerRegistry.from_file(DEFAULT_LAYERS_FILE)

        assert registry.names == ["linjelager", "punktlager"]
        linjelager = registry.resolve("linjelager")
        assert linjelager.table == "sf.linjelager"
        assert linjelager.id_field == "fid"
        assert registry.for_event("delete_punktlager")[0].name == "punktlager"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            LayerRegistry.from_file(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path: Path):
        path = tmp_path / "layers.json"
        path.write_text("[{")
        with pytest.raises(ConfigError, match="not valid JSON"):
            LayerRegistry.from_file(path)

    def test_not_a_list(self, tmp_path: Path):
        path = tmp_path / "layers.json"
        path.write_text(json.dumps({"name": "roads"}))
        with pytest.raises(ConfigError, match="JSON list"):
            LayerRegistry.from_file(path)

    def test_invalid_entry(self, tmp_path: Path):
        path = tmp_path / "layers.json"
        path.write_text(json.dumps([{"name": "roads"}]))
        with pytest.raises(ConfigError, match="Invalid layer definition"):
            LayerRegistry.from_file(path)
