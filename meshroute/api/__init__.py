"""
HTTP API for meshroute.

Provides REST endpoints for:
- Query routing
- Candidate diagnostics
- Directory statistics
- Capability and cost updates
"""

from .routes import router
from .server import create_app, run_server

__all__ = [
    "create_app",
    "run_server",
    "router",
]
