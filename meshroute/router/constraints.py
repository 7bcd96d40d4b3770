"""
Route constraints and the constraint filter.

Constraints are validated once, when they are parsed; the filter itself is
a pure predicate over capability records.
"""

from __future__ import annotations

import logging
import time
from typing import Any, FrozenSet, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .capability import CapabilityRecord, ModelTier

logger = logging.getLogger(__name__)


class RouteConstraints(BaseModel):
    """
    Caller-supplied restrictions on which capabilities may be routed to.

    Every field is optional; an absent field imposes no restriction. All
    present fields must hold at once.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", protected_namespaces=())

    max_latency_ms: Optional[float] = Field(default=None, gt=0, description="Latency ceiling")
    max_hops: Optional[int] = Field(default=None, ge=0, description="Relay distance ceiling")
    max_cost_per_1k_tokens: Optional[float] = Field(default=None, ge=0, description="API price ceiling")
    min_tokens_per_second: Optional[float] = Field(default=None, ge=0, description="Throughput floor")
    require_rag: bool = False
    require_tools: bool = False
    require_vision: bool = False
    model_tier_min: Optional[ModelTier] = None
    model_tier_max: Optional[ModelTier] = None
    prefer_local: bool = Field(default=False, description="Only route to this node (hops == 0)")
    exclude_node_ids: FrozenSet[str] = frozenset()

    @field_validator("model_tier_min", "model_tier_max", mode="before")
    @classmethod
    def _lower_tier(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @model_validator(mode="after")
    def _check_tier_range(self) -> "RouteConstraints":
        if (
            self.model_tier_min is not None
            and self.model_tier_max is not None
            and self.model_tier_min > self.model_tier_max
        ):
            raise ValueError(
                f"model_tier_min ({self.model_tier_min.value}) is above "
                f"model_tier_max ({self.model_tier_max.value})"
            )
        return self

    @property
    def is_unconstrained(self) -> bool:
        return not describe_constraints(self)


def check_record(
    record: CapabilityRecord,
    constraints: Optional[RouteConstraints] = None,
    now: Optional[float] = None,
) -> Optional[str]:
    """
    Check one record against the constraints.

    Returns:
        The first violated condition, or None if the record is eligible
    """
    if record.is_expired(now):
        return "expired"
    if constraints is None:
        return None

    c = constraints
    if c.max_latency_ms is not None and record.estimated_latency_ms > c.max_latency_ms:
        return f"latency {record.estimated_latency_ms:.0f}ms > {c.max_latency_ms:.0f}ms"
    if c.prefer_local and record.hops > 0:
        return "not local"
    if c.max_hops is not None and record.hops > c.max_hops:
        return f"hops {record.hops} > {c.max_hops}"
    if c.require_rag and not record.has_rag:
        return "no RAG"
    if c.require_tools and not record.has_tools:
        return "no tools"
    if c.require_vision and not record.has_vision:
        return "no vision"
    if c.model_tier_min is not None and record.model_tier < c.model_tier_min:
        return f"tier {record.model_tier.value} < {c.model_tier_min.value}"
    if c.model_tier_max is not None and record.model_tier > c.model_tier_max:
        return f"tier {record.model_tier.value} > {c.model_tier_max.value}"
    if record.node_id in c.exclude_node_ids:
        return f"node {record.node_id} excluded"
    if c.max_cost_per_1k_tokens is not None and record.api_cost_per_1k_tokens > c.max_cost_per_1k_tokens:
        return f"price ${record.api_cost_per_1k_tokens}/1k > ${c.max_cost_per_1k_tokens}/1k"
    if c.min_tokens_per_second is not None and record.tokens_per_second < c.min_tokens_per_second:
        return f"{record.tokens_per_second:.0f} tok/s < {c.min_tokens_per_second:.0f} tok/s"
    return None


def filter_candidates(
    records: Iterable[CapabilityRecord],
    constraints: Optional[RouteConstraints] = None,
    now: Optional[float] = None,
) -> List[CapabilityRecord]:
    """
    Drop expired records and any record violating a present constraint.

    Args:
        records: Capability snapshot
        constraints: Restrictions to apply (None = expiry only)
        now: Evaluation time in epoch seconds (defaults to now)

    Returns:
        Eligible records in their original relative order
    """
    if now is None:
        now = time.time()

    eligible = []
    for record in records:
        reason = check_record(record, constraints, now)
        if reason is None:
            eligible.append(record)
        else:
            logger.debug(f"Filtered {record.id}: {reason}")
    return eligible


def describe_constraints(constraints: Optional[RouteConstraints]) -> List[str]:
    """Short human-readable descriptions of the active constraints."""
    if constraints is None:
        return []

    c = constraints
    parts = []
    if c.max_latency_ms is not None:
        parts.append(f"latency <= {c.max_latency_ms:.0f}ms")
    if c.max_hops is not None:
        parts.append(f"hops <= {c.max_hops}")
    if c.max_cost_per_1k_tokens is not None:
        parts.append(f"price <= ${c.max_cost_per_1k_tokens:.4f}/1k tokens")
    if c.min_tokens_per_second is not None:
        parts.append(f">= {c.min_tokens_per_second:.0f} tok/s")
    if c.require_rag:
        parts.append("requires RAG")
    if c.require_tools:
        parts.append("requires tools")
    if c.require_vision:
        parts.append("requires vision")
    if c.model_tier_min is not None:
        parts.append(f"tier >= {c.model_tier_min.value}")
    if c.model_tier_max is not None:
        parts.append(f"tier <= {c.model_tier_max.value}")
    if c.prefer_local:
        parts.append("local only")
    if c.exclude_node_ids:
        parts.append(f"excluding {', '.join(sorted(c.exclude_node_ids))}")
    return parts
