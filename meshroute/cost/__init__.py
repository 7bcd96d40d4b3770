"""
Cost Model - Device cost for cost-aware routing.

Samples device telemetry (power, load, thermal, network), turns it into a
single cost multiplier and publishes it to the mesh.
"""

from .collector import (
    CostCollector,
    get_cost_collector,
)
from .model import (
    CostSnapshot,
    NetworkType,
    ThermalState,
    battery_multiplier,
    compute_cost,
    is_unavailable,
    load_multiplier,
    network_multiplier,
    thermal_multiplier,
)
from .publisher import (
    CostPublisher,
    CostSink,
    HttpCostSink,
    PublisherState,
    build_cost_message,
    parse_cost_message,
)

__all__ = [
    # Collector
    "CostCollector",
    "get_cost_collector",
    # Model
    "CostSnapshot",
    "NetworkType",
    "ThermalState",
    "battery_multiplier",
    "compute_cost",
    "is_unavailable",
    "load_multiplier",
    "network_multiplier",
    "thermal_multiplier",
    # Publisher
    "CostPublisher",
    "CostSink",
    "HttpCostSink",
    "PublisherState",
    "build_cost_message",
    "parse_cost_message",
]
