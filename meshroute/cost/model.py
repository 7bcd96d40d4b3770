"""
Cost Model - Device cost snapshot and multiplier curves.

Converts raw device telemetry into a single deterministic cost multiplier
expressing how expensive it is to route work to a node.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


# =============================================================================
# Enumerated Domains
# =============================================================================

class ThermalState(Enum):
    """Thermal throttling states, least to most severe."""
    NONE = "none"
    LIGHT = "light"
    MODERATE = "moderate"
    SEVERE = "severe"
    CRITICAL = "critical"
    EMERGENCY = "emergency"
    SHUTDOWN = "shutdown"

    @classmethod
    def coerce(cls, value: Union["ThermalState", str, int, None]) -> "ThermalState":
        """Coerce a name, value or ordinal into a ThermalState (unknown -> NONE)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            members = list(cls)
            return members[min(max(value, 0), len(members) - 1)]
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if member.value == key or member.name.lower() == key:
                    return member
        return cls.NONE


class NetworkType(Enum):
    """Active network connection types."""
    NONE = "none"
    WIFI = "wifi"
    ETHERNET = "ethernet"
    CELLULAR_2G = "cellular_2g"
    CELLULAR_3G = "cellular_3g"
    CELLULAR_4G = "cellular_4g"
    CELLULAR_5G = "cellular_5g"
    UNKNOWN = "unknown"

    @property
    def is_cellular(self) -> bool:
        return self in _CELLULAR

    @classmethod
    def coerce(cls, value: Union["NetworkType", str, None]) -> "NetworkType":
        """Coerce a name or value into a NetworkType (unrecognized -> UNKNOWN)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if member.value == key or member.name.lower() == key:
                    return member
        return cls.UNKNOWN


_CELLULAR = frozenset({
    NetworkType.CELLULAR_2G,
    NetworkType.CELLULAR_3G,
    NetworkType.CELLULAR_4G,
    NetworkType.CELLULAR_5G,
})


# =============================================================================
# Multiplier Tables
# =============================================================================

NETWORK_TYPE_MULTIPLIERS: dict[NetworkType, float] = {
    NetworkType.ETHERNET: 0.8,  # Wired is best
    NetworkType.WIFI: 1.0,
    NetworkType.CELLULAR_5G: 1.3,
    NetworkType.CELLULAR_4G: 1.5,
    NetworkType.CELLULAR_3G: 2.5,
    NetworkType.CELLULAR_2G: 5.0,
    NetworkType.UNKNOWN: 2.0,
    NetworkType.NONE: 10.0,
}

# Cellular only: bars -> modifier
SIGNAL_MODIFIERS: dict[int, float] = {
    4: 1.0,
    3: 1.1,
    2: 1.3,
    1: 1.6,
    0: 2.0,
}

THERMAL_MULTIPLIERS: dict[ThermalState, float] = {
    ThermalState.NONE: 1.0,
    ThermalState.LIGHT: 1.2,
    ThermalState.MODERATE: 1.8,
    ThermalState.SEVERE: 3.0,
    ThermalState.CRITICAL: 10.0,
    ThermalState.EMERGENCY: 100.0,
    ThermalState.SHUTDOWN: math.inf,  # Do not use
}


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return min(max(number, low), high)


# =============================================================================
# Cost Snapshot
# =============================================================================

@dataclass(frozen=True)
class CostSnapshot:
    """
    Point-in-time measurement of a node's ability to take on work.

    Immutable once constructed. The derived ``cost`` is recomputed on
    every access and never stored.
    """

    battery_level: int = 100
    is_charging: bool = True
    cpu_usage: float = 0.0
    memory_pressure: float = 0.0
    thermal_state: ThermalState = ThermalState.NONE
    network_type: NetworkType = NetworkType.WIFI
    signal_strength: int = 4
    node_id: str = ""
    timestamp: float = field(default_factory=time.time)

    @property
    def cost(self) -> float:
        return compute_cost(self)

    @property
    def unavailable(self) -> bool:
        return is_unavailable(self)

    def to_dict(self) -> dict:
        """Serialize for gossip/JSON."""
        cost = self.cost
        return {
            "node_id": self.node_id,
            "battery_level": self.battery_level,
            "is_charging": self.is_charging,
            "cpu_usage": self.cpu_usage,
            "memory_pressure": self.memory_pressure,
            "thermal_state": self.thermal_state.value,
            "network_type": self.network_type.value,
            "signal_strength": self.signal_strength,
            "timestamp": self.timestamp,
            # JSON has no infinity
            "cost": cost if math.isfinite(cost) else None,
        }

    @classmethod
    def from_dict(cls, data: dict, node_id: Optional[str] = None) -> CostSnapshot:
        """Deserialize, coercing every field into its domain."""
        timestamp = _clamp(data.get("timestamp", time.time()), 0.0, math.inf, time.time())
        # Millisecond timestamps from mobile peers
        if timestamp > 10_000_000_000:
            timestamp /= 1000.0

        return cls(
            battery_level=int(_clamp(data.get("battery_level", 100), 0, 100, 100)),
            is_charging=bool(data.get("is_charging", True)),
            cpu_usage=_clamp(data.get("cpu_usage", 0.0), 0.0, 1.0, 0.0),
            memory_pressure=_clamp(data.get("memory_pressure", 0.0), 0.0, 1.0, 0.0),
            thermal_state=ThermalState.coerce(data.get("thermal_state")),
            network_type=NetworkType.coerce(data.get("network_type")),
            signal_strength=int(_clamp(data.get("signal_strength", 4), 0, 4, 2)),
            node_id=node_id if node_id is not None else str(data.get("node_id", "")),
            timestamp=timestamp,
        )

    def __repr__(self) -> str:
        parts = [f"CostSnapshot(node_id={self.node_id!r}"]
        if self.is_charging:
            parts.append("charging=True")
        else:
            parts.append(f"battery={self.battery_level}%")
        parts.append(f"cpu={self.cpu_usage:.0%}")
        parts.append(f"mem={self.memory_pressure:.0%}")
        parts.append(f"thermal={self.thermal_state.value}")
        parts.append(f"net={self.network_type.value}/{self.signal_strength}")
        return ", ".join(parts) + ")"


# =============================================================================
# Cost Multipliers
# =============================================================================

def battery_multiplier(battery_level: float, is_charging: bool) -> float:
    """
    Calculate cost multiplier from power state.

    Multipliers:
        - Charging: 1.0x
        - >= 80%: 1.0x
        - >= 50%: 1.2x
        - >= 30%: 1.5x
        - >= 15%: 2.5x
        - below: 5.0x (critical battery - strongly discourage use)
    """
    if is_charging:
        return 1.0

    level = _clamp(battery_level, 0, 100, 100)
    if level >= 80:
        return 1.0
    elif level >= 50:
        return 1.2
    elif level >= 30:
        return 1.5
    elif level >= 15:
        return 2.5
    else:
        return 5.0


def load_multiplier(cpu_usage: float, memory_pressure: float) -> float:
    """
    Calculate cost multiplier from combined CPU and memory load.

    The mean of ``cpu_usage`` and ``memory_pressure`` (both 0-1) is mapped:
    <0.3 1.0x, <0.5 1.2x, <0.7 1.5x, <0.9 2.0x, otherwise 3.0x.
    """
    combined = (_clamp(cpu_usage, 0.0, 1.0, 0.0) + _clamp(memory_pressure, 0.0, 1.0, 0.0)) / 2
    if combined < 0.3:
        return 1.0
    elif combined < 0.5:
        return 1.2
    elif combined < 0.7:
        return 1.5
    elif combined < 0.9:
        return 2.0
    else:
        return 3.0


def network_multiplier(network_type: NetworkType, signal_strength: int = 4) -> float:
    """
    Calculate cost multiplier from network conditions.

    The connection type sets the base; signal strength only modifies
    cellular connections.
    """
    network_type = NetworkType.coerce(network_type)
    multiplier = NETWORK_TYPE_MULTIPLIERS[network_type]

    if network_type.is_cellular:
        bars = int(_clamp(signal_strength, 0, 4, 0))
        multiplier *= SIGNAL_MODIFIERS[bars]

    return multiplier


def thermal_multiplier(thermal_state: ThermalState) -> float:
    """Calculate cost multiplier from thermal state (SHUTDOWN is infinite)."""
    return THERMAL_MULTIPLIERS[ThermalState.coerce(thermal_state)]


# =============================================================================
# Main Cost Calculation
# =============================================================================

def compute_cost(snapshot: CostSnapshot, base_cost: float = 1.0) -> float:
    """
    Compute the combined cost multiplier for a node.

    Lower cost = better routing target.

    Args:
        snapshot: Cost snapshot for the node
        base_cost: Baseline scaled by the multipliers (non-positive -> 1.0)

    Returns:
        Product of battery, load, network and thermal multipliers. Always
        > 0; ``inf`` for a node in thermal SHUTDOWN.
    """
    if not base_cost or base_cost <= 0 or math.isnan(base_cost):
        base_cost = 1.0

    cost = base_cost
    cost *= battery_multiplier(snapshot.battery_level, snapshot.is_charging)
    cost *= load_multiplier(snapshot.cpu_usage, snapshot.memory_pressure)
    cost *= network_multiplier(snapshot.network_type, snapshot.signal_strength)
    cost *= thermal_multiplier(snapshot.thermal_state)
    return cost


def is_unavailable(snapshot: Optional[CostSnapshot]) -> bool:
    """A node in thermal SHUTDOWN is unavailable, not merely expensive."""
    if snapshot is None:
        return False
    return ThermalState.coerce(snapshot.thermal_state) is ThermalState.SHUTDOWN


def cost_breakdown(snapshot: CostSnapshot) -> dict[str, float]:
    """Individual multipliers for observability."""
    return {
        "battery": battery_multiplier(snapshot.battery_level, snapshot.is_charging),
        "load": load_multiplier(snapshot.cpu_usage, snapshot.memory_pressure),
        "network": network_multiplier(snapshot.network_type, snapshot.signal_strength),
        "thermal": thermal_multiplier(snapshot.thermal_state),
        "total": compute_cost(snapshot),
    }
