"""
Tests for the relay HTTP API.

These tests drive the FastAPI app through TestClient with a relay wired to
the in-memory store and connector. Live streams never end on their own, so
only requests that finish (rejections, failed snapshots) are streamed here;
live delivery is covered in tests/test_fanout.
"""

import json

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from conftest import FakeConnector, FakeStore
from fanout.relay import Relay
from shared.config import load_settings


@pytest.fixture
def relay(settings, registry, store, connector) -> Relay:
    return Relay(settings, registry, store=store, connect=connector)


@pytest.fixture
def api_client(settings, relay):
    """Client with the app's lifespan running."""
    with TestClient(create_app(settings, relay)) as client:
        yield client


class TestAliveEndpoint:
    """Tests for the liveness probe."""

    def test_alive(self, api_client):
        response = api_client.get("/")

        assert response.status_code == 200
        assert response.text == "sse-relay is alive!"

    def test_lifespan_starts_relay(self, settings, relay, store):
        with TestClient(create_app(settings, relay)):
            assert relay.started
            assert store.opened
        assert not relay.started
        assert store.closed

    def test_virtual_path(self, layers_file, registry, store, connector):
        settings = load_settings(layers_file=layers_file, virtual_path="relay/")
        relay = Relay(settings, registry, store=store, connect=connector)

        with TestClient(create_app(settings, relay)) as client:
            assert client.get("/relay/").text == "sse-relay is alive!"
            assert client.get("/").status_code == 404
            assert client.get("/relay/subscribe?layer=nope").status_code == 400


class TestSubscribeEndpoint:
    """Tests for /subscribe."""

    def test_unknown_layer(self, api_client, relay):
        response = api_client.get("/subscribe", params={"layer": "nonexistent"})

        assert response.status_code == 400
        assert response.text == "Invalid layer name"
        assert all(hub.subscriber_count == 0 for hub in relay.hubs.values())

    def test_missing_layer(self, api_client, relay):
        response = api_client.get("/subscribe")

        assert response.status_code == 400
        assert response.text == "Invalid layer name"
        assert all(hub.subscriber_count == 0 for hub in relay.hubs.values())

    def test_failed_snapshot_is_reported_in_stream(self, settings, registry, connector):
        relay = Relay(settings, registry, store=FakeStore(error=OSError("db down")), connect=connector)

        with TestClient(create_app(settings, relay)) as client:
            response = client.get("/subscribe", params={"layer": "roads"})

            assert response.status_code == 200
            assert response.headers["content-type"].startswith("text/event-stream")
            assert response.headers["cache-control"] == "no-cache"
            lines = response.text.strip().split("\n")
            assert lines[0] == "event: error"
            assert json.loads(lines[1].removeprefix("data: ")) == {
                "error_type": "snapshot_failed",
                "error_message": "db down",
            }
            assert relay.hubs["roads"].subscriber_count == 0


class TestOriginCheck:
    """Tests for the origin allow-list."""

    def test_disallowed_origin(self, api_client, relay):
        response = api_client.get(
            "/subscribe",
            params={"layer": "roads"},
            headers={"Origin": "http://evil.example"},
        )

        assert response.status_code == 403
        assert response.text == "Not allowed by CORS"
        assert relay.hubs["roads"].subscriber_count == 0

    def test_allowed_origin(self, api_client):
        response = api_client.get("/", headers={"Origin": "http://localhost:9966"})

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:9966"

    def test_no_origin(self, api_client):
        response = api_client.get("/")

        assert response.status_code == 200
        assert "access-control-allow-origin" not in response.headers


class TestLayerHealthEndpoint:
    """Tests for /health/layers."""

    def test_reports_every_layer(self, api_client):
        response = api_client.get("/health/layers")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] in ("healthy", "degraded")
        assert set(data["layers"]) == {"roads", "points", "sketch"}
        assert data["layers"]["roads"]["subscribers"] == 0

    def test_degraded_when_store_unreachable(self, settings, registry, store):
        relay = Relay(settings, registry, store=store, connect=FakeConnector(failures=10**6))

        with TestClient(create_app(settings, relay)) as client:
            data = client.get("/health/layers").json()

        assert data["status"] == "degraded"
        assert sorted(data["degraded_layers"]) == ["points", "roads", "sketch"]
        assert data["layers"]["roads"]["live"] is False


class TestErrorHandling:
    """Tests for unexpected errors."""

    def test_internal_error(self, settings, relay, monkeypatch):
        def broken_health():
            raise RuntimeError("boom")

        monkeypatch.setattr(relay, "health", broken_health)

        with TestClient(create_app(settings, relay), raise_server_exceptions=False) as client:
            response = client.get("/health/layers")

        assert response.status_code == 500
        assert response.json() == {"error_type": "internal_error", "error_message": "boom"}
