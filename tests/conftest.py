"""
Shared fixtures for meshroute tests.
"""

import time

import pytest

from meshroute.config import reset_config
from meshroute.cost.model import CostSnapshot, ThermalState
from meshroute.directory import InMemoryDirectory
from meshroute.router.capability import CapabilityRecord


@pytest.fixture(autouse=True)
def _fresh_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def make_record():
    """Factory for capability records with sensible defaults."""

    def _make(id="cap", node_id=None, **kwargs) -> CapabilityRecord:
        kwargs.setdefault("label", id)
        kwargs.setdefault("expires_at", time.time() + 3600)
        return CapabilityRecord(id=id, node_id=node_id or f"node-{id}", **kwargs)

    return _make


@pytest.fixture
def shutdown_snapshot():
    return CostSnapshot(thermal_state=ThermalState.SHUTDOWN, node_id="hot-node")


@pytest.fixture
def directory():
    return InMemoryDirectory(node_id="local", node_name="Local Node")
