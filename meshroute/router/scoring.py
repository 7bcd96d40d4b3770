"""
Composite scoring for routing candidates.

Five sub-scores in [0, 1] are combined with fixed weights:

    semantic 0.40 + latency 0.25 + feature 0.20 + hop 0.10 + cost 0.05

The weights sum to 1.0, so the composite is a convex combination and stays
in [0, 1]. All five components are kept for explanation rendering.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from .capability import CapabilityRecord
from .constraints import RouteConstraints

# Scoring weights
SEMANTIC_WEIGHT = 0.40
LATENCY_WEIGHT = 0.25
FEATURE_WEIGHT = 0.20
HOP_WEIGHT = 0.10
COST_WEIGHT = 0.05

WEIGHTS: Dict[str, float] = {
    "semantic": SEMANTIC_WEIGHT,
    "latency": LATENCY_WEIGHT,
    "feature": FEATURE_WEIGHT,
    "hop": HOP_WEIGHT,
    "cost": COST_WEIGHT,
}

DEFAULT_LATENCY_CEILING_MS = 2000.0
MAX_HOPS_SCORED = 10
REFERENCE_PRICE_PER_1K = 0.01  # $0.01 per 1k tokens scores 0

# Fallback quality weights
QUALITY_TIER_WEIGHT = 0.5
QUALITY_COST_WEIGHT = 0.3
QUALITY_HOP_PENALTY = 0.05


def _unit(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value))


@dataclass(frozen=True)
class ScoreBreakdown:
    """Sub-scores and the weighted composite for one candidate."""
    semantic: float = 0.0
    latency: float = 0.0
    feature: float = 0.0
    hop: float = 0.0
    cost: float = 0.0
    composite: float = 0.0

    @classmethod
    def combine(
        cls,
        semantic: float,
        latency: float,
        feature: float,
        hop: float,
        cost: float,
    ) -> "ScoreBreakdown":
        """Build a breakdown, clamping sub-scores into [0, 1]."""
        parts = {
            "semantic": _unit(semantic),
            "latency": _unit(latency),
            "feature": _unit(feature),
            "hop": _unit(hop),
            "cost": _unit(cost),
        }
        composite = sum(WEIGHTS[name] * value for name, value in parts.items())
        return cls(composite=_unit(composite), **parts)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    def to_explanation(self) -> str:
        """Render the breakdown as an aligned table."""
        rows = [
            ("Semantic", self.semantic, SEMANTIC_WEIGHT),
            ("Latency", self.latency, LATENCY_WEIGHT),
            ("Feature", self.feature, FEATURE_WEIGHT),
            ("Hop", self.hop, HOP_WEIGHT),
            ("Cost", self.cost, COST_WEIGHT),
        ]
        lines = ["Score Breakdown:"]
        for name, value, weight in rows:
            lines.append(f"  {name + ':':<12} {value:>4.0%} (weight {weight:.0%})")
        lines.append(f"  {'Composite:':<12} {self.composite:>4.0%}")
        return "\n".join(lines)


# =============================================================================
# Sub-scores
# =============================================================================

def latency_score(estimated_latency_ms: float, ceiling_ms: float = DEFAULT_LATENCY_CEILING_MS) -> float:
    """``1 - min(1, latency / ceiling)``; faster is better."""
    if ceiling_ms <= 0:
        ceiling_ms = DEFAULT_LATENCY_CEILING_MS
    return 1.0 - min(1.0, max(0.0, estimated_latency_ms) / ceiling_ms)


def feature_score(record: CapabilityRecord) -> float:
    """Base 0.5, +0.15 RAG, +0.15 tools, +0.10 vision, +0.10 any specialization."""
    score = 0.5
    if record.has_rag:
        score += 0.15
    if record.has_tools:
        score += 0.15
    if record.has_vision:
        score += 0.10
    if record.specializations:
        score += 0.10
    return min(1.0, score)


def hop_score(hops: int) -> float:
    """``max(0, 1 - hops/10)``; local is best."""
    return max(0.0, 1.0 - hops / MAX_HOPS_SCORED)


def price_score(api_cost_per_1k_tokens: float) -> float:
    """1.0 if free, falling linearly to 0 at the reference price."""
    if api_cost_per_1k_tokens <= 0:
        return 1.0
    return max(0.0, 1.0 - api_cost_per_1k_tokens / REFERENCE_PRICE_PER_1K)


def score_candidate(
    record: CapabilityRecord,
    semantic: float,
    constraints: Optional[RouteConstraints] = None,
    default_latency_ceiling_ms: float = DEFAULT_LATENCY_CEILING_MS,
) -> ScoreBreakdown:
    """
    Score a candidate for ranking.

    Args:
        record: Candidate capability
        semantic: Matcher similarity for this candidate (0-1)
        constraints: Route constraints; ``max_latency_ms`` sets the latency ceiling
        default_latency_ceiling_ms: Ceiling when no latency constraint is given

    Returns:
        ScoreBreakdown with all five components and the composite
    """
    ceiling = default_latency_ceiling_ms
    if constraints is not None and constraints.max_latency_ms is not None:
        ceiling = constraints.max_latency_ms

    return ScoreBreakdown.combine(
        semantic=semantic,
        latency=latency_score(record.estimated_latency_ms, ceiling),
        feature=feature_score(record),
        hop=hop_score(record.hops),
        cost=price_score(record.api_cost_per_1k_tokens),
    )


def quality_score(record: CapabilityRecord) -> float:
    """
    Query-independent quality used for best-effort fallback.

    ``0.5*tier + 0.3*(1/node cost) - 0.05*hops``. Tier runs 0.2 (TINY) to
    1.0 (XL); a node with no cost snapshot counts as cost 1.0 and an
    unavailable node contributes no cost credit.
    """
    node_cost = record.node_cost
    cost_credit = 0.0 if math.isinf(node_cost) else 1.0 / node_cost
    return (
        QUALITY_TIER_WEIGHT * record.model_tier.score
        + QUALITY_COST_WEIGHT * cost_credit
        - QUALITY_HOP_PENALTY * record.hops
    )
