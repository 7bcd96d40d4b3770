"""
Tests for capability records and model tiers.
"""

import time

import pytest

from meshroute.cost.model import CostSnapshot, ThermalState
from meshroute.router.capability import CAPABILITY_TTL_SEC, CapabilityRecord, ModelTier
from meshroute.router.simhash import simhash, to_hex


class TestModelTier:
    """Tests for ModelTier ordering and inference."""

    def test_ordering(self):
        assert ModelTier.TINY < ModelTier.SMALL < ModelTier.MEDIUM < ModelTier.LARGE < ModelTier.XL
        assert max(ModelTier) is ModelTier.XL

    def test_score(self):
        assert ModelTier.TINY.score == pytest.approx(0.2)
        assert ModelTier.MEDIUM.score == pytest.approx(0.6)
        assert ModelTier.XL.score == 1.0

    @pytest.mark.parametrize("params,expected", [
        (0.5, ModelTier.TINY),
        (3, ModelTier.SMALL),
        (8, ModelTier.MEDIUM),
        (32, ModelTier.LARGE),
        (70, ModelTier.XL),
    ])
    def test_from_params(self, params, expected):
        assert ModelTier.from_params(params) is expected

    @pytest.mark.parametrize("name,expected", [
        ("qwen3-1.7b", ModelTier.TINY),
        ("llama-3-70b", ModelTier.XL),
        ("smollm-360m", ModelTier.TINY),
        ("mistral-7b", ModelTier.MEDIUM),
        ("gpt-4o-mini", ModelTier.TINY),
        ("phi-small", ModelTier.SMALL),
        ("mystery-model", ModelTier.MEDIUM),
    ])
    def test_from_model_name(self, name, expected):
        assert ModelTier.from_model_name(name) is expected

    def test_from_value(self):
        assert ModelTier.from_value("LARGE") is ModelTier.LARGE
        assert ModelTier.from_value(ModelTier.XL) is ModelTier.XL
        assert ModelTier.from_value("gigantic") is ModelTier.MEDIUM
        assert ModelTier.from_value(None) is ModelTier.MEDIUM


class TestCapabilityRecord:
    """Tests for CapabilityRecord construction and derived state."""

    def test_validation(self):
        with pytest.raises(ValueError):
            CapabilityRecord(id="", node_id="n")
        with pytest.raises(ValueError):
            CapabilityRecord(id="c", node_id="n", hops=-1)
        with pytest.raises(ValueError):
            CapabilityRecord(id="c", node_id="n", api_cost_per_1k_tokens=-0.1)

    def test_normalizes_keywords(self):
        record = CapabilityRecord(id="c", node_id="n", keywords={"Code", "PYTHON"})
        assert record.keywords == frozenset({"code", "python"})

    def test_defaults(self):
        record = CapabilityRecord(id="c", node_id="n")
        assert record.is_local
        assert record.is_free
        assert record.node_cost == 1.0
        assert not record.unavailable
        assert record.expires_at - record.timestamp == pytest.approx(CAPABILITY_TTL_SEC, abs=1)

    def test_expiry(self):
        record = CapabilityRecord(id="c", node_id="n", expires_at=100.0)
        assert record.is_expired(now=100.5)
        assert not record.is_expired(now=99.0)

    def test_cost_snapshot(self, shutdown_snapshot):
        record = CapabilityRecord(id="c", node_id="n")
        costly = record.with_cost(CostSnapshot(battery_level=10, is_charging=False))
        assert costly.node_cost == pytest.approx(5.0)
        assert record.cost_snapshot is None

        hot = record.with_cost(shutdown_snapshot)
        assert hot.unavailable

    def test_fingerprint(self):
        record = CapabilityRecord(id="c", node_id="n", label="Translator", description="translate text")
        assert record.fingerprint == 0
        filled = record.with_fingerprint()
        assert filled.fingerprint == simhash("Translator translate text")
        assert filled.similarity_hash(filled.fingerprint) == 1.0

    def test_fingerprint_from_keywords(self):
        record = CapabilityRecord(id="c", node_id="n", keywords={"sql", "database"})
        assert record.compute_fingerprint() != 0

    def test_to_dict(self):
        record = CapabilityRecord(
            id="c1",
            node_id="n1",
            label="Coder",
            keywords={"code"},
            fingerprint=0xABC,
            model_tier=ModelTier.LARGE,
            hops=2,
            has_tools=True,
        )
        data = record.to_dict()
        assert data["capability_id"] == "c1"
        assert data["embedding_hash"] == "0000000000000abc"
        assert data["model_tier"] == "large"
        assert data["keywords"] == ["code"]
        assert data["has_tools"] is True
        assert "cost_factors" not in data


class TestCapabilityFromDict:
    """Tests for parsing announcements."""

    def test_minimal(self):
        record = CapabilityRecord.from_dict({"capability_id": "c1", "node_id": "n1", "label": "chat"})
        assert record.id == "c1"
        assert record.model_tier is ModelTier.MEDIUM
        assert record.fingerprint == simhash("chat ")

    def test_id_alias(self):
        assert CapabilityRecord.from_dict({"id": "c2", "node_id": "n1"}).id == "c2"

    def test_missing_ids(self):
        with pytest.raises(KeyError):
            CapabilityRecord.from_dict({"node_id": "n1"})
        with pytest.raises(KeyError):
            CapabilityRecord.from_dict({"id": "c1"})

    def test_tier_precedence(self):
        explicit = CapabilityRecord.from_dict({
            "id": "c", "node_id": "n", "model_tier": "xl", "model_params_b": 1.0,
        })
        from_params = CapabilityRecord.from_dict({
            "id": "c", "node_id": "n", "model_params_b": 30, "model_actual": "qwen3-1.7b",
        })
        from_name = CapabilityRecord.from_dict({"id": "c", "node_id": "n", "model_actual": "qwen3-1.7b"})
        assert explicit.model_tier is ModelTier.XL
        assert from_params.model_tier is ModelTier.LARGE
        assert from_name.model_tier is ModelTier.TINY
        assert from_name.model_name == "qwen3-1.7b"

    def test_millisecond_timestamps(self):
        record = CapabilityRecord.from_dict({
            "id": "c",
            "node_id": "n",
            "timestamp": 1_700_000_000_000,
            "expires_at": 1_700_000_300_000,
        })
        assert record.timestamp == pytest.approx(1_700_000_000.0)
        assert record.expires_at == pytest.approx(1_700_000_300.0)

    def test_fingerprint_and_cost(self):
        record = CapabilityRecord.from_dict({
            "id": "c",
            "node_id": "n",
            "embedding_hash": to_hex(0x1234),
            "cost_factors": {"thermal_state": "shutdown"},
        })
        assert record.fingerprint == 0x1234
        assert record.cost_snapshot.thermal_state is ThermalState.SHUTDOWN
        assert record.cost_snapshot.node_id == "n"
        assert record.unavailable

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            CapabilityRecord.from_dict({"id": "c", "node_id": "n", "hops": -2})
        with pytest.raises(ValueError):
            CapabilityRecord.from_dict({"id": "c", "node_id": "n", "estimated_latency_ms": "fast"})

    def test_round_trip(self):
        original = CapabilityRecord(
            id="c",
            node_id="n",
            node_name="Node",
            label="Summarizer",
            description="Summarize documents",
            keywords={"summary"},
            model_tier=ModelTier.SMALL,
            model_name="qwen3-4b",
            hops=1,
            via_node="relay",
            has_rag=True,
            specializations=("legal",),
            api_cost_per_1k_tokens=0.002,
            timestamp=time.time(),
        ).with_fingerprint()
        assert CapabilityRecord.from_dict(original.to_dict()) == original
