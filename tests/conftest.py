"""
Shared pytest fixtures for the layer relay tests.

These fixtures provide layers, settings and in-memory stand-ins for
PostgreSQL: a store answering snapshot queries from canned rows, and listen
connections that tests can push notifications through or cut off.
"""

import json
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from fanout.broadcast_hub import build_hub_table
from shared.config import RelaySettings, load_settings
from shared.layers import LayerRegistry
from shared.models import Layer


# =============================================================================
# Store fakes
# =============================================================================

class FakeListenConnection:
    """Mimics the parts of asyncpg.Connection the notification router uses."""

    def __init__(self):
        self.listeners: dict[str, Callable] = {}
        self.termination_listeners: list[Callable] = []
        self.executed: list[str] = []
        self.fail_probe = False
        self._closed = False

    async def add_listener(self, channel: str, callback: Callable) -> None:
        self.listeners[channel] = callback

    def add_termination_listener(self, callback: Callable) -> None:
        self.termination_listeners.append(callback)

    async def execute(self, sql: str) -> str:
        if self.fail_probe or self._closed:
            raise ConnectionResetError("connection lost")
        self.executed.append(sql)
        return "SELECT 1"

    def is_closed(self) -> bool:
        return self._closed

    async def close(self, timeout: Optional[float] = None) -> None:
        self._closed = True

    def terminate(self) -> None:
        self._closed = True

    # test helpers

    def notify(self, channel: str, payload: str) -> None:
        """Deliver a NOTIFY the way the driver would."""
        self.listeners[channel](self, 4242, channel, payload)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._closed = True
        for callback in self.termination_listeners:
            callback(self)


class FakeConnector:
    """Connection factory that can refuse the first few attempts."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.connections: list[FakeListenConnection] = []

    async def __call__(self) -> FakeListenConnection:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionRefusedError("connection refused")
        conn = FakeListenConnection()
        self.connections.append(conn)
        return conn

    def for_channel(self, channel: str) -> FakeListenConnection:
        """The most recent open connection listening on a channel."""
        for conn in reversed(self.connections):
            if channel in conn.listeners and not conn.is_closed():
                return conn
        raise LookupError(f"nobody listens on {channel}")


class FakeStore:
    """Answers snapshot queries from canned rows keyed by table name."""

    def __init__(self, rows: Optional[dict[str, list[Any]]] = None, error: Optional[Exception] = None):
        self.rows = rows or {}
        self.error = error
        self.queries: list[str] = []
        self.opened = False
        self.closed = False

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    async def execute_sql(self, sql: str, *params: Any) -> list[dict[str, Any]]:
        self.queries.append(sql)
        if self.error is not None:
            raise self.error
        for table, rows in self.rows.items():
            if table in sql:
                return [{"feature": row if isinstance(row, str) else json.dumps(row)} for row in rows]
        return []

    async def connect_listener(self):
        raise AssertionError("tests pass their own connector")


def geojson(fid: Any, **properties: Any) -> dict[str, Any]:
    """A point feature the way ST_AsGeoJSON renders a row."""
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [18.06, 59.33]},
        "properties": {"fid": fid, **properties},
    }


# =============================================================================
# Layer fixtures
# =============================================================================

@pytest.fixture
def roads_layer() -> Layer:
    """Layer with a table and an id field (like the production layers)."""
    return Layer(
        name="roads",
        table="gis.roads",
        id_field="fid",
        update_event_name="update_roads",
        delete_event_name="delete_roads",
    )


@pytest.fixture
def points_layer() -> Layer:
    """Layer without id field: the GeoJSON id is used as-is."""
    return Layer(
        name="points",
        table="points",
        update_event_name="update_points",
        delete_event_name="delete_points",
    )


@pytest.fixture
def sketch_layer() -> Layer:
    """Layer without a table: no snapshot, live events only."""
    return Layer(
        name="sketch",
        update_event_name="update_sketch",
        delete_event_name="delete_sketch",
    )


@pytest.fixture
def registry(roads_layer, points_layer, sketch_layer) -> LayerRegistry:
    return LayerRegistry([roads_layer, points_layer, sketch_layer])


@pytest.fixture
def hubs(registry):
    """One hub per layer, pumps not started."""
    return build_hub_table(registry)


@pytest.fixture
def layers_file(tmp_path: Path, registry: LayerRegistry) -> Path:
    path = tmp_path / "layers.json"
    path.write_text(json.dumps([layer.model_dump() for layer in registry]))
    return path


@pytest.fixture
def settings(layers_file: Path) -> RelaySettings:
    """Settings with fast reconnects, pointing at the test layers file."""
    return load_settings(
        layers_file=layers_file,
        reconnect_initial_delay=0.01,
        reconnect_max_delay=0.05,
        probe_interval=0.05,
        keepalive_interval=5.0,
        subscriber_queue_size=50,
        allowed_origins=["http://localhost:9966"],
    )


# =============================================================================
# Store fixtures
# =============================================================================

@pytest.fixture
def snapshot_rows() -> dict[str, list[Any]]:
    return {
        '"gis"."roads"': [geojson(1, name="Main St"), geojson(2, name="High St")],
        '"points"': [{**geojson(10), "id": "p-10"}],
    }


@pytest.fixture
def store(snapshot_rows) -> FakeStore:
    return FakeStore(snapshot_rows)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()
