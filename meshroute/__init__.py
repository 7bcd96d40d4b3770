"""
meshroute - Cost-aware semantic routing for device meshes.

Routes a query to the best capability among the nodes of a mesh, weighing
semantic relevance against live device cost (battery, thermal, network,
load) and capability richness.

Example:
    >>> from meshroute import InMemoryDirectory, SemanticRouter
    >>> router = SemanticRouter(InMemoryDirectory.from_file("capabilities.json"))
    >>> decision = router.route("summarize this document")
"""

__version__ = "1.0.0"

from .config import Config, get_config
from .directory import CapabilityDirectory, InMemoryDirectory
from .router import RouteConstraints, RoutingDecision, SemanticRouter

__all__ = [
    "__version__",
    "Config",
    "get_config",
    "CapabilityDirectory",
    "InMemoryDirectory",
    "RouteConstraints",
    "RoutingDecision",
    "SemanticRouter",
]
