"""
Cost-aware semantic router.

Routes a query to the best capability in the directory:

    snapshot -> constraint filter -> cascading matcher
             -> (best-effort fallback) -> composite scoring -> decision

Routing is synchronous and side-effect free; the router holds no mutable
state of its own.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from ..config import RouterConfig
from . import simhash
from .capability import CapabilityRecord
from .constraints import RouteConstraints, filter_candidates
from .decision import RoutingDecision, build_explanation
from .matcher import MatchMethod, find_all_matches, find_best_match
from .scoring import quality_score, score_candidate

if TYPE_CHECKING:
    from ..directory import CapabilityDirectory

logger = logging.getLogger(__name__)


class RouteFailure(Enum):
    """Why no decision was produced."""
    NO_CANDIDATES = "no_candidates"  # empty or all expired
    NO_ELIGIBLE_AFTER_CONSTRAINTS = "no_eligible_after_constraints"


@dataclass(frozen=True)
class RouteOutcome:
    """A decision, or the reason there is none."""
    decision: Optional[RoutingDecision] = None
    reason: Optional[RouteFailure] = None

    @property
    def routed(self) -> bool:
        return self.decision is not None


def _fallback_key(record: CapabilityRecord):
    return (
        -quality_score(record),
        -record.model_tier.rank,
        record.hops,
        record.node_cost,
        record.api_cost_per_1k_tokens,
        record.id,
    )


class SemanticRouter:
    """
    Routes queries to capabilities, weighing relevance against cost.

    Usage:
        directory = InMemoryDirectory.from_file("capabilities.json")
        router = SemanticRouter(directory)

        decision = router.route("summarize this document")
        if decision:
            print(decision.explanation)

    When no tier of the matcher is confident the router still answers:
    the eligible candidate with the best query-independent quality is
    returned tagged FALLBACK. Availability is preferred over precision,
    and the tag keeps such answers distinguishable.
    """

    def __init__(
        self,
        directory: "CapabilityDirectory",
        config: Optional[RouterConfig] = None,
    ):
        self.directory = directory
        self.config = config or RouterConfig()

    def route(
        self,
        query: str,
        query_fingerprint: int = 0,
        constraints: Optional[RouteConstraints] = None,
        now: Optional[float] = None,
    ) -> Optional[RoutingDecision]:
        """
        Route a query.

        Args:
            query: Natural-language or structured query text
            query_fingerprint: Pre-computed 64-bit SimHash (0 = compute from query)
            constraints: Restrictions on eligible capabilities
            now: Evaluation time in epoch seconds (defaults to now)

        Returns:
            RoutingDecision, or None when nothing is eligible
        """
        return self.route_with_reason(query, query_fingerprint, constraints, now).decision

    def route_with_reason(
        self,
        query: str,
        query_fingerprint: int = 0,
        constraints: Optional[RouteConstraints] = None,
        now: Optional[float] = None,
    ) -> RouteOutcome:
        """Like ``route`` but reports why no decision was made."""
        if now is None:
            now = time.time()

        live = [r for r in self.directory.get_all_capabilities() if not r.is_expired(now)]
        if not live:
            logger.debug("No live capabilities in directory")
            return RouteOutcome(reason=RouteFailure.NO_CANDIDATES)

        eligible = filter_candidates(live, constraints, now)
        if not eligible:
            logger.debug(f"Constraints removed all {len(live)} candidates")
            return RouteOutcome(reason=RouteFailure.NO_ELIGIBLE_AFTER_CONSTRAINTS)

        # Shutdown nodes are never ranked ahead of an available one
        available = [r for r in eligible if not r.unavailable]
        fingerprint = query_fingerprint or simhash.simhash(query)

        match = None
        if available:
            match = find_best_match(query, available, fingerprint, min_score=self.config.min_score)

        if match is not None:
            winner = match.capability
            method = match.method
            semantic = match.score
        else:
            winner = min(available or eligible, key=_fallback_key)
            method = MatchMethod.FALLBACK
            semantic = 0.0
            logger.debug(f"No confident match for {query[:50]!r}, falling back to {winner.id}")

        unavailable = winner.unavailable
        if unavailable:
            logger.warning(f"Only unavailable nodes remain; returning {winner.id} flagged unavailable")

        breakdown = score_candidate(
            winner,
            semantic,
            constraints,
            default_latency_ceiling_ms=self.config.default_latency_ceiling_ms,
        )
        alternatives = self._alternatives(query, fingerprint, available, winner, constraints)

        decision = RoutingDecision(
            capability=winner,
            score=breakdown,
            match_method=method,
            explanation=build_explanation(winner, method, semantic, constraints, unavailable=unavailable),
            alternatives=alternatives,
            unavailable=unavailable,
        )
        logger.debug(
            f"Routed {query[:50]!r} -> {winner.id} via {method.value} "
            f"(composite {breakdown.composite:.3f}, {len(alternatives)} alternatives)"
        )
        return RouteOutcome(decision=decision)

    def _alternatives(
        self,
        query: str,
        fingerprint: int,
        candidates: Sequence[CapabilityRecord],
        winner: CapabilityRecord,
        constraints: Optional[RouteConstraints],
    ) -> List[Tuple[CapabilityRecord, float]]:
        """Other matches above the alternative threshold, by descending composite."""
        limit = self.config.max_alternatives
        matches = find_all_matches(
            query,
            candidates,
            fingerprint,
            min_score=self.config.alternative_threshold,
            max_results=limit + 1,
        )

        scored = []
        for m in matches:
            if m.capability.id == winner.id:
                continue
            breakdown = score_candidate(
                m.capability,
                m.score,
                constraints,
                default_latency_ceiling_ms=self.config.default_latency_ceiling_ms,
            )
            scored.append((m.capability, breakdown.composite))

        scored.sort(key=lambda pair: (-pair[1], pair[0].id))
        return scored[:limit]

    def filter_candidates(
        self,
        constraints: Optional[RouteConstraints] = None,
        now: Optional[float] = None,
    ) -> List[CapabilityRecord]:
        """Eligible records for diagnostics."""
        return filter_candidates(self.directory.get_all_capabilities(), constraints, now)

    def get_stats(self) -> Dict[str, Any]:
        """Directory statistics."""
        return self.directory.get_stats()
