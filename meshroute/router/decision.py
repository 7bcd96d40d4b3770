"""
Routing decisions and their human-readable explanations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .capability import CapabilityRecord
from .constraints import RouteConstraints, describe_constraints
from .matcher import MatchMethod
from .scoring import ScoreBreakdown

MAX_ALTERNATIVES_SHOWN = 3


@dataclass
class RoutingDecision:
    """Winning capability, how it was found, and the runners-up."""
    capability: CapabilityRecord
    score: ScoreBreakdown
    match_method: MatchMethod
    explanation: str
    alternatives: List[Tuple[CapabilityRecord, float]] = field(default_factory=list)
    unavailable: bool = False  # winner's node is in thermal shutdown

    @property
    def composite(self) -> float:
        return self.score.composite

    @property
    def is_fallback(self) -> bool:
        return self.match_method is MatchMethod.FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses."""
        cap = self.capability
        return {
            "capability_id": cap.id,
            "node_id": cap.node_id,
            "node_name": cap.node_name,
            "label": cap.label,
            "model_tier": cap.model_tier.value,
            "model_name": cap.model_name,
            "hops": cap.hops,
            "estimated_latency_ms": cap.estimated_latency_ms,
            "composite_score": self.score.composite,
            "match_method": self.match_method.value,
            "fallback": self.is_fallback,
            "unavailable": self.unavailable,
            "explanation": self.explanation,
            "score_breakdown": self.score.to_dict(),
            "alternatives": [
                {
                    "capability_id": alt.id,
                    "label": alt.label,
                    "node_id": alt.node_id,
                    "score": score,
                }
                for alt, score in self.alternatives[:MAX_ALTERNATIVES_SHOWN]
            ],
        }

    def to_detailed_string(self) -> str:
        cap = self.capability
        lines = [
            "=== Routing Decision ===",
            f"Selected: {cap.label or cap.id} ({cap.id})",
            f"Node: {cap.node_name or cap.node_id} ({cap.node_id})",
            f"Model: {cap.model_name or '-'} ({cap.model_tier.value})",
            f"Hops: {cap.hops}",
            f"Latency: {cap.estimated_latency_ms:.0f}ms",
            f"Match Method: {self.match_method.name}",
            "",
            self.score.to_explanation(),
            "",
            f"Explanation: {self.explanation}",
        ]
        if self.alternatives:
            lines.append("")
            lines.append("Alternatives:")
            for alt, score in self.alternatives[:MAX_ALTERNATIVES_SHOWN]:
                lines.append(f"  - {alt.label or alt.id} ({alt.node_id}): {score:.0%}")
        return "\n".join(lines)


def build_explanation(
    record: CapabilityRecord,
    method: MatchMethod,
    semantic: float,
    constraints: Optional[RouteConstraints] = None,
    unavailable: bool = False,
) -> str:
    """
    Render why ``record`` was chosen.

    Covers label and node, match method and strength, model tier and size,
    locality, latency, features, top specializations, price and any
    applied constraints.
    """
    parts = [f"Routed to '{record.label or record.id}' on {record.node_name or record.node_id}"]

    if unavailable:
        parts.append("node is unavailable (thermal shutdown); no available node remained")
    if method is MatchMethod.FALLBACK:
        parts.append("best-effort fallback: no confident semantic match, chosen by model quality")
    else:
        parts.append(f"{method.value.replace('_', ' ')} match ({semantic:.0%})")

    size = f"{record.model_tier.value} model"
    if record.model_params_b is not None:
        size += f", {record.model_params_b:g}B params"
    if record.model_name:
        size += f" ({record.model_name})"
    parts.append(size)

    if record.hops == 0:
        parts.append("local")
    else:
        parts.append(f"{record.hops} hop{'s' if record.hops != 1 else ''} away")

    parts.append(f"~{record.estimated_latency_ms:.0f}ms")

    features = [
        name
        for name, present in (("RAG", record.has_rag), ("tools", record.has_tools), ("vision", record.has_vision))
        if present
    ]
    if features:
        parts.append(f"features: {', '.join(features)}")

    if record.specializations:
        parts.append(f"specializes in {', '.join(record.specializations[:3])}")

    if record.is_free:
        parts.append("free")
    else:
        parts.append(f"${record.api_cost_per_1k_tokens:.4f}/1k tokens")

    applied = describe_constraints(constraints)
    if applied:
        parts.append(f"constraints: {', '.join(applied)}")

    return "; ".join(parts)
