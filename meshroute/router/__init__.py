"""
Semantic routing for meshroute.

Matches queries to capabilities with a fingerprint/keyword/fuzzy cascade,
filters by caller constraints and ranks by a composite of relevance,
latency, features, locality and price.
"""

from .capability import CapabilityRecord, ModelTier
from .constraints import RouteConstraints, describe_constraints, filter_candidates
from .decision import RoutingDecision
from .matcher import MatchMethod, MatchResult, explain_match, find_all_matches, find_best_match
from .scoring import ScoreBreakdown, quality_score, score_candidate
from .semantic import RouteFailure, RouteOutcome, SemanticRouter

__all__ = [
    # Data model
    "CapabilityRecord",
    "ModelTier",
    "RoutingDecision",
    # Constraints
    "RouteConstraints",
    "describe_constraints",
    "filter_candidates",
    # Matching
    "MatchMethod",
    "MatchResult",
    "explain_match",
    "find_all_matches",
    "find_best_match",
    # Scoring
    "ScoreBreakdown",
    "quality_score",
    "score_candidate",
    # Router
    "RouteFailure",
    "RouteOutcome",
    "SemanticRouter",
]
