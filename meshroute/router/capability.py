"""
Capability records as advertised by mesh nodes.

A CapabilityRecord is an immutable snapshot of one routable unit of work
(usually a model endpoint) together with what the router needs to rank it:
semantic descriptors, model size, locality, features, price and the owning
node's last known cost snapshot.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import total_ordering
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

from ..cost.model import CostSnapshot
from . import simhash

logger = logging.getLogger(__name__)

# Configuration constants
CAPABILITY_TTL_SEC = 300  # 5 minutes
DEFAULT_LATENCY_MS = 100.0
DEFAULT_TOKENS_PER_SECOND = 50.0

# Anything larger is a millisecond epoch
_MS_EPOCH_THRESHOLD = 10_000_000_000


@total_ordering
class ModelTier(Enum):
    """Model size tiers, ordered TINY < SMALL < MEDIUM < LARGE < XL."""
    TINY = "tiny"      # < 2B params
    SMALL = "small"    # 2-5B params
    MEDIUM = "medium"  # 5-20B params
    LARGE = "large"    # 20-50B params
    XL = "xl"          # 50B+ params

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    @property
    def score(self) -> float:
        """Tier as a quality score in (0, 1]: TINY 0.2 ... XL 1.0."""
        return (self.rank + 1) / len(_TIER_ORDER)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ModelTier):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def from_params(cls, params_b: float) -> "ModelTier":
        """Tier from parameter count in billions."""
        if params_b < 2:
            return cls.TINY
        elif params_b < 5:
            return cls.SMALL
        elif params_b < 20:
            return cls.MEDIUM
        elif params_b < 50:
            return cls.LARGE
        return cls.XL

    @classmethod
    def from_model_name(cls, model_name: str) -> "ModelTier":
        """
        Guess the tier from a model name like ``qwen3-1.7b`` or ``smollm-360m``.

        Falls back to name hints (tiny/mini, small, large/xl) and then MEDIUM.
        """
        lower = model_name.lower()

        b_match = re.search(r"(\d+\.?\d*)b", lower)
        if b_match:
            return cls.from_params(float(b_match.group(1)))

        m_match = re.search(r"(\d+)m", lower)
        if m_match:
            return cls.from_params(int(m_match.group(1)) / 1000)

        if "tiny" in lower or "mini" in lower:
            return cls.TINY
        if "small" in lower:
            return cls.SMALL
        if "large" in lower or "xl" in lower:
            return cls.LARGE
        return cls.MEDIUM

    @classmethod
    def from_value(cls, value: Any) -> "ModelTier":
        """Parse a tier value or name; unknown values map to MEDIUM."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for tier in cls:
                if tier.value == key:
                    return tier
        return cls.MEDIUM


_TIER_ORDER = list(ModelTier)


def _normalize_epoch(value: Any, default: float) -> float:
    try:
        ts = float(value)
    except (TypeError, ValueError):
        return default
    if ts > _MS_EPOCH_THRESHOLD:
        ts /= 1000.0
    return ts


@dataclass(frozen=True)
class CapabilityRecord:
    """
    Immutable capability snapshot.

    ``fingerprint`` is a 64-bit SimHash of label and description (0 when
    absent). ``hops`` is the relay distance from this node; 0 is local.
    """

    id: str
    node_id: str
    node_name: str = ""
    label: str = ""
    description: str = ""
    keywords: FrozenSet[str] = frozenset()
    fingerprint: int = 0

    model_tier: ModelTier = ModelTier.MEDIUM
    model_name: str = ""
    model_params_b: Optional[float] = None
    estimated_latency_ms: float = DEFAULT_LATENCY_MS
    tokens_per_second: float = DEFAULT_TOKENS_PER_SECOND

    hops: int = 0
    via_node: Optional[str] = None

    has_rag: bool = False
    has_tools: bool = False
    has_vision: bool = False
    specializations: Tuple[str, ...] = ()

    api_cost_per_1k_tokens: float = 0.0

    timestamp: float = field(default_factory=time.time)
    expires_at: float = field(default_factory=lambda: time.time() + CAPABILITY_TTL_SEC)

    cost_snapshot: Optional[CostSnapshot] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("capability id is required")
        if self.hops < 0:
            raise ValueError(f"hops must be >= 0, got {self.hops}")
        if self.api_cost_per_1k_tokens < 0:
            raise ValueError(f"api_cost_per_1k_tokens must be >= 0, got {self.api_cost_per_1k_tokens}")
        # Frozen: normalize collections through object.__setattr__
        object.__setattr__(self, "keywords", frozenset(k.lower() for k in self.keywords))
        object.__setattr__(self, "specializations", tuple(self.specializations))
        object.__setattr__(self, "fingerprint", self.fingerprint & simhash.MASK64)

    # --- derived state ---

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if this record has expired."""
        return (now if now is not None else time.time()) > self.expires_at

    @property
    def is_local(self) -> bool:
        return self.hops == 0

    @property
    def is_free(self) -> bool:
        return self.api_cost_per_1k_tokens == 0

    @property
    def node_cost(self) -> float:
        """Owning node's cost multiplier; 1.0 when no snapshot is known."""
        if self.cost_snapshot is None:
            return 1.0
        return self.cost_snapshot.cost

    @property
    def unavailable(self) -> bool:
        """True when the owning node reported thermal SHUTDOWN."""
        return self.cost_snapshot is not None and self.cost_snapshot.unavailable

    def similarity_hash(self, other: int) -> float:
        """Fingerprint similarity against another fingerprint."""
        return simhash.similarity(self.fingerprint, other)

    def compute_fingerprint(self) -> int:
        """SimHash of label and description, or of keywords when both are empty."""
        if self.label or self.description:
            return simhash.simhash(f"{self.label} {self.description}")
        if self.keywords:
            return simhash.simhash_tokens(sorted(self.keywords))
        return 0

    def with_fingerprint(self) -> "CapabilityRecord":
        """Copy with the fingerprint filled in if it was absent."""
        if self.fingerprint:
            return self
        return replace(self, fingerprint=self.compute_fingerprint())

    def with_cost(self, snapshot: Optional[CostSnapshot]) -> "CapabilityRecord":
        return replace(self, cost_snapshot=snapshot)

    # --- serialization ---

    def to_dict(self) -> Dict[str, Any]:
        """Serialize in the announcement shape."""
        data: Dict[str, Any] = {
            "capability_id": self.id,
            "node_id": self.node_id,
            "node_name": self.node_name,
            "label": self.label,
            "description": self.description,
            "keywords": sorted(self.keywords),
            "embedding_hash": simhash.to_hex(self.fingerprint) if self.fingerprint else None,
            "model_tier": self.model_tier.value,
            "model_actual": self.model_name,
            "model_params_b": self.model_params_b,
            "estimated_latency_ms": self.estimated_latency_ms,
            "tokens_per_second": self.tokens_per_second,
            "hops": self.hops,
            "via_node": self.via_node,
            "has_rag": self.has_rag,
            "has_tools": self.has_tools,
            "has_vision": self.has_vision,
            "specializations": list(self.specializations),
            "api_cost_per_1k_tokens": self.api_cost_per_1k_tokens,
            "timestamp": self.timestamp,
            "expires_at": self.expires_at,
        }
        if self.cost_snapshot is not None:
            data["cost_factors"] = self.cost_snapshot.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CapabilityRecord":
        """
        Deserialize an announcement.

        Accepts ``capability_id`` or ``id``. Millisecond timestamps are
        converted to seconds. A missing fingerprint is computed from the
        text fields.

        Raises:
            KeyError: If the capability or node id is missing
            ValueError: If a field is out of range
        """
        cap_id = data["capability_id"] if "capability_id" in data else data["id"]
        node_id = data["node_id"]
        now = time.time()

        model_name = data.get("model_actual") or data.get("model_name") or ""
        params = data.get("model_params_b")
        params_b = float(params) if params is not None else None

        if "model_tier" in data:
            tier = ModelTier.from_value(data["model_tier"])
        elif params_b is not None:
            tier = ModelTier.from_params(params_b)
        elif model_name:
            tier = ModelTier.from_model_name(model_name)
        else:
            tier = ModelTier.MEDIUM

        cost_factors = data.get("cost_factors")
        snapshot = None
        if isinstance(cost_factors, dict):
            snapshot = CostSnapshot.from_dict(cost_factors, node_id=node_id)

        record = cls(
            id=str(cap_id),
            node_id=str(node_id),
            node_name=data.get("node_name", ""),
            label=data.get("label", ""),
            description=data.get("description", ""),
            keywords=frozenset(_as_strings(data.get("keywords"))),
            fingerprint=simhash.from_hex(data.get("embedding_hash")),
            model_tier=tier,
            model_name=model_name,
            model_params_b=params_b,
            estimated_latency_ms=float(data.get("estimated_latency_ms", DEFAULT_LATENCY_MS)),
            tokens_per_second=float(data.get("tokens_per_second", DEFAULT_TOKENS_PER_SECOND)),
            hops=int(data.get("hops", 0)),
            via_node=data.get("via_node"),
            has_rag=bool(data.get("has_rag", False)),
            has_tools=bool(data.get("has_tools", False)),
            has_vision=bool(data.get("has_vision", False)),
            specializations=tuple(_as_strings(data.get("specializations"))),
            api_cost_per_1k_tokens=float(data.get("api_cost_per_1k_tokens", 0.0)),
            timestamp=_normalize_epoch(data.get("timestamp"), now),
            expires_at=_normalize_epoch(data.get("expires_at"), now + CAPABILITY_TTL_SEC),
            cost_snapshot=snapshot,
        )
        return record.with_fingerprint()

    def __repr__(self) -> str:
        return (
            f"CapabilityRecord(id={self.id!r}, label={self.label!r}, node={self.node_id!r}, "
            f"tier={self.model_tier.value}, hops={self.hops})"
        )


def _as_strings(value: Optional[Iterable[Any]]) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]
