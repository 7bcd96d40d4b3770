"""
Tests for composite scoring.
"""

import pytest

from meshroute.cost.model import CostSnapshot, ThermalState
from meshroute.router.capability import ModelTier
from meshroute.router.constraints import RouteConstraints
from meshroute.router.scoring import (
    WEIGHTS,
    ScoreBreakdown,
    feature_score,
    hop_score,
    latency_score,
    price_score,
    quality_score,
    score_candidate,
)


class TestWeights:
    def test_sum_to_one(self):
        assert sum(WEIGHTS.values()) == pytest.approx(1.0)

    def test_semantic_dominates(self):
        assert WEIGHTS["semantic"] == max(WEIGHTS.values())


class TestSubScores:
    """Tests for the individual sub-scores."""

    def test_latency(self):
        assert latency_score(0) == 1.0
        assert latency_score(500) == pytest.approx(0.75)
        assert latency_score(2000) == 0.0
        assert latency_score(5000) == 0.0
        assert latency_score(250, ceiling_ms=500) == pytest.approx(0.5)

    def test_feature(self, make_record):
        assert feature_score(make_record("a")) == 0.5
        assert feature_score(make_record("a", has_rag=True)) == pytest.approx(0.65)
        assert feature_score(make_record("a", has_rag=True, has_tools=True)) == pytest.approx(0.8)
        full = make_record("a", has_rag=True, has_tools=True, has_vision=True, specializations=("code",))
        assert feature_score(full) == 1.0

    def test_hop(self):
        assert hop_score(0) == 1.0
        assert hop_score(3) == pytest.approx(0.7)
        assert hop_score(10) == 0.0
        assert hop_score(15) == 0.0

    def test_price(self):
        assert price_score(0) == 1.0
        assert price_score(0.005) == pytest.approx(0.5)
        assert price_score(0.05) == 0.0


class TestScoreBreakdown:
    """Tests for ScoreBreakdown."""

    def test_combine_clamps(self):
        breakdown = ScoreBreakdown.combine(semantic=1.7, latency=-1, feature=0.5, hop=1, cost=float("nan"))
        assert breakdown.semantic == 1.0
        assert breakdown.latency == 0.0
        assert breakdown.cost == 0.0
        assert breakdown.composite == pytest.approx(0.40 + 0.20 * 0.5 + 0.10)

    def test_composite_is_convex(self):
        grid = [0.0, 0.3, 1.0]
        for s in grid:
            for l in grid:
                for f in grid:
                    breakdown = ScoreBreakdown.combine(s, l, f, 1.0, 0.0)
                    parts = [breakdown.semantic, breakdown.latency, breakdown.feature, breakdown.hop, breakdown.cost]
                    assert min(parts) - 1e-9 <= breakdown.composite <= max(parts) + 1e-9

    def test_to_dict_and_explanation(self):
        breakdown = ScoreBreakdown.combine(1.0, 1.0, 1.0, 1.0, 1.0)
        assert breakdown.to_dict()["composite"] == pytest.approx(1.0)
        text = breakdown.to_explanation()
        assert text.startswith("Score Breakdown:")
        assert "Composite:" in text
        assert "weight 40%" in text


class TestScoreCandidate:
    """Tests for score_candidate."""

    def test_local_candidate(self, make_record):
        record = make_record("local", estimated_latency_ms=200, has_rag=True, has_tools=True)
        breakdown = score_candidate(record, semantic=1.0)
        assert breakdown.latency == pytest.approx(0.9)
        assert breakdown.composite == pytest.approx(0.40 + 0.25 * 0.9 + 0.20 * 0.8 + 0.10 + 0.05)

    def test_constraint_sets_latency_ceiling(self, make_record):
        record = make_record("r", estimated_latency_ms=250)
        breakdown = score_candidate(record, 0.5, RouteConstraints(max_latency_ms=500))
        assert breakdown.latency == pytest.approx(0.5)

    def test_default_ceiling(self, make_record):
        record = make_record("r", estimated_latency_ms=250)
        assert score_candidate(record, 0.5, default_latency_ceiling_ms=1000).latency == pytest.approx(0.75)

    def test_range(self, make_record):
        worst = make_record("w", estimated_latency_ms=1e6, hops=50, api_cost_per_1k_tokens=1.0)
        assert score_candidate(worst, 0.0).composite == pytest.approx(0.20 * 0.5)


class TestQualityScore:
    """Tests for the fallback quality score."""

    def test_xl_local(self, make_record):
        assert quality_score(make_record("x", model_tier=ModelTier.XL)) == pytest.approx(0.8)

    def test_tiny_remote(self, make_record):
        assert quality_score(make_record("t", model_tier=ModelTier.TINY, hops=2)) == pytest.approx(0.3)

    def test_node_cost_lowers_quality(self, make_record):
        record = make_record("m")
        drained = record.with_cost(CostSnapshot(battery_level=10, is_charging=False))
        assert quality_score(drained) < quality_score(record)

    def test_shutdown_gets_no_cost_credit(self, make_record):
        record = make_record("m", model_tier=ModelTier.MEDIUM)
        hot = record.with_cost(CostSnapshot(thermal_state=ThermalState.SHUTDOWN))
        assert quality_score(hot) == pytest.approx(0.5 * 0.6)
