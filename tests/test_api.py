"""
Tests for the HTTP API.
"""

import pytest
from fastapi.testclient import TestClient

from meshroute.api.server import create_app
from meshroute.config import Config
from meshroute.cost.collector import StubCostCollector
from meshroute.cost.model import CostSnapshot, ThermalState
from meshroute.cost.publisher import CostPublisher, build_cost_message
from meshroute.directory import InMemoryDirectory
from meshroute.router.capability import ModelTier
from meshroute.router.semantic import SemanticRouter
from meshroute.router.simhash import to_hex


@pytest.fixture
def populated(make_record):
    directory = InMemoryDirectory(node_id="local", node_name="Local")
    directory.add(make_record(
        "summarizer",
        node_id="laptop",
        keywords={"summarize", "document"},
        model_tier=ModelTier.LARGE,
        has_rag=True,
    ))
    directory.add(make_record("coder", node_id="desktop", keywords={"python", "code"}, hops=2).with_fingerprint())
    return directory


@pytest.fixture
def client(populated, tmp_path):
    app = create_app(SemanticRouter(populated), config=Config(data_dir=tmp_path))
    with TestClient(app) as c:
        yield c


class TestBasics:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_root(self, client):
        assert client.get("/").json()["name"] == "meshroute"


class TestRouteEndpoint:
    """Tests for POST /api/route."""

    def test_route(self, client):
        response = client.post("/api/route", json={"query": "summarize this document"})
        assert response.status_code == 200
        data = response.json()
        assert data["capability_id"] == "summarizer"
        assert data["match_method"] == "keyword_exact"
        assert data["fallback"] is False
        assert 0.0 <= data["composite_score"] <= 1.0

    def test_route_with_constraints(self, client):
        response = client.post("/api/route", json={
            "query": "summarize this document",
            "constraints": {"max_hops": 3, "exclude_node_ids": ["laptop"]},
        })
        assert response.status_code == 200
        assert response.json()["capability_id"] == "coder"

    def test_route_with_fingerprint(self, client, populated):
        fp = populated.get_capability("coder").fingerprint
        response = client.post("/api/route", json={"query": "unrelated", "fingerprint": to_hex(fp)})
        assert response.status_code == 200
        assert response.json()["capability_id"] == "coder"
        assert response.json()["match_method"] == "hash_exact"

    def test_no_eligible(self, client):
        response = client.post("/api/route", json={
            "query": "summarize",
            "constraints": {"require_vision": True},
        })
        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "no_eligible_after_constraints"

    def test_no_candidates(self, tmp_path):
        app = create_app(SemanticRouter(InMemoryDirectory()), config=Config(data_dir=tmp_path))
        with TestClient(app) as c:
            response = c.post("/api/route", json={"query": "anything"})
        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "no_candidates"

    def test_invalid_constraints(self, client):
        response = client.post("/api/route", json={"query": "q", "constraints": {"max_hops": -1}})
        assert response.status_code == 422

    def test_invalid_fingerprint(self, client):
        response = client.post("/api/route", json={"query": "q", "fingerprint": "xyz"})
        assert response.status_code == 422


class TestDirectoryEndpoints:
    """Tests for candidates, registration, cost updates and stats."""

    def test_candidates(self, client):
        response = client.post("/api/candidates", json={"constraints": {"max_hops": 0}})
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["candidates"][0]["capability_id"] == "summarizer"

    def test_register(self, client):
        response = client.post("/api/capabilities", json={"capabilities": [
            {"capability_id": "vision", "node_id": "phone", "has_vision": True},
            {"capability_id": "broken"},
        ]})
        assert response.json() == {"received": 2, "added": 1}

        response = client.post("/api/route", json={"query": "x", "constraints": {"require_vision": True}})
        assert response.json()["capability_id"] == "vision"

    def test_cost_update(self, client):
        snapshot = CostSnapshot(node_id="laptop", thermal_state=ThermalState.SHUTDOWN)
        response = client.post("/api/cost", json=build_cost_message(snapshot))
        assert response.status_code == 200
        assert response.json()["node_id"] == "laptop"
        assert response.json()["cost"] is None

        response = client.post("/api/route", json={"query": "summarize this document"})
        assert response.json()["capability_id"] == "coder"

    def test_invalid_cost_message(self, client):
        response = client.post("/api/cost", json={"type": "cost"})
        assert response.status_code == 400

    def test_stats(self, client):
        data = client.get("/api/stats").json()
        assert data["total_capabilities"] == 2
        assert "publisher" not in data


class TestPublisherLifespan:
    def test_publisher_runs_with_app(self, populated, tmp_path):
        collector = StubCostCollector("local")
        publisher = CostPublisher(collector, populated, publish_interval=60)
        app = create_app(SemanticRouter(populated), publisher=publisher, config=Config(data_dir=tmp_path))

        with TestClient(app) as c:
            assert publisher.is_running
            stats = c.get("/api/stats").json()
            assert stats["publisher"]["is_running"] is True

        assert not publisher.is_running
        assert collector.closed

    def test_sink_closed_on_shutdown(self, populated, tmp_path):
        class ClosingSink:
            def __init__(self):
                self.updates = []
                self.closed = False

            async def send_cost_update(self, node_id, snapshot):
                self.updates.append(node_id)

            async def close(self):
                self.closed = True

        sink = ClosingSink()
        publisher = CostPublisher(StubCostCollector("local"), sink, publish_interval=60)
        app = create_app(SemanticRouter(populated), publisher=publisher, config=Config(data_dir=tmp_path), sink=sink)

        with TestClient(app):
            assert not sink.closed

        assert sink.closed
        assert sink.updates == ["local"]
