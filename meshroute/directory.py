"""
Capability directory interface and an in-memory implementation.

The router only reads from a directory. Replication between nodes is the
directory's concern; InMemoryDirectory is the local table that a gossip
layer (or a JSON file, or the HTTP API) fills in.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union, runtime_checkable

from .cost.model import CostSnapshot
from .router.capability import CapabilityRecord

logger = logging.getLogger(__name__)

MAX_DIRECTORY_SIZE = 1000


@runtime_checkable
class CapabilityDirectory(Protocol):
    """Read side of a capability directory."""

    def get_all_capabilities(self) -> List[CapabilityRecord]:
        """Internally consistent snapshot of every known record."""
        ...

    def get_capability(self, capability_id: str) -> Optional[CapabilityRecord]:
        ...

    def get_stats(self) -> Dict[str, Any]:
        ...


class InMemoryDirectory:
    """
    Capability table keyed by capability id.

    Thread-safe via RLock. Readers get list copies, and records are
    immutable, so a snapshot never changes under the router.
    """

    def __init__(
        self,
        node_id: str = "",
        node_name: str = "",
        max_size: int = MAX_DIRECTORY_SIZE,
    ):
        self.node_id = node_id
        self.node_name = node_name
        self.max_size = max_size
        self._records: Dict[str, CapabilityRecord] = {}
        self._costs: Dict[str, CostSnapshot] = {}
        self._lock = threading.RLock()

    # --- CapabilityDirectory ---

    def get_all_capabilities(self) -> List[CapabilityRecord]:
        with self._lock:
            return list(self._records.values())

    def get_capability(self, capability_id: str) -> Optional[CapabilityRecord]:
        with self._lock:
            return self._records.get(capability_id)

    def get_stats(self) -> Dict[str, Any]:
        """Get directory statistics."""
        with self._lock:
            records = list(self._records.values())
            cost_nodes = len(self._costs)

        now = time.time()
        local = [r for r in records if r.hops == 0]
        remote = [r for r in records if r.hops > 0]
        return {
            "node_id": self.node_id,
            "node_name": self.node_name,
            "total_capabilities": len(records),
            "local_capabilities": len(local),
            "remote_capabilities": len(remote),
            "expired_capabilities": sum(1 for r in records if r.is_expired(now)),
            "nodes": len({r.node_id for r in records}),
            "nodes_with_cost": cost_nodes,
            "average_hops": (sum(r.hops for r in remote) / len(remote)) if remote else 0.0,
        }

    # --- updates ---

    def add(self, record: CapabilityRecord) -> bool:
        """
        Insert or refresh a record.

        An existing record for the same id is kept when the incoming one is
        older and no shorter. Returns True if the table changed.
        """
        with self._lock:
            snapshot = self._costs.get(record.node_id)
            if snapshot is not None and record.cost_snapshot is None:
                record = record.with_cost(snapshot)

            existing = self._records.get(record.id)
            if existing is not None:
                if record.timestamp < existing.timestamp and record.hops >= existing.hops:
                    return False
            elif len(self._records) >= self.max_size:
                self._evict_oldest()

            self._records[record.id] = record
            logger.debug(f"Directory updated: {record.id} ({record.hops} hops)")
            return True

    def add_all(self, records: Iterable[CapabilityRecord]) -> int:
        return sum(1 for r in records if self.add(r))

    def remove(self, capability_id: str) -> bool:
        with self._lock:
            return self._records.pop(capability_id, None) is not None

    def remove_node(self, node_id: str) -> int:
        """Remove every record owned by a node."""
        with self._lock:
            ids = [cid for cid, r in self._records.items() if r.node_id == node_id]
            for cid in ids:
                del self._records[cid]
            self._costs.pop(node_id, None)
            return len(ids)

    def prune_expired(self, now: Optional[float] = None) -> int:
        """Drop expired records. Returns the number removed."""
        now = now if now is not None else time.time()
        with self._lock:
            expired = [cid for cid, r in self._records.items() if r.is_expired(now)]
            for cid in expired:
                del self._records[cid]
        if expired:
            logger.debug(f"Pruned {len(expired)} expired capabilities")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._costs.clear()

    def _evict_oldest(self) -> None:
        oldest = min(self._records.values(), key=lambda r: r.timestamp)
        del self._records[oldest.id]
        logger.debug(f"Directory full, evicted {oldest.id}")

    # --- cost sink ---

    def send_cost_update(self, node_id: str, snapshot: CostSnapshot) -> None:
        """Attach a node's latest cost snapshot to all of its records."""
        with self._lock:
            self._costs[node_id] = snapshot
            for cid, record in list(self._records.items()):
                if record.node_id == node_id:
                    self._records[cid] = record.with_cost(snapshot)

    def get_cost(self, node_id: str) -> Optional[CostSnapshot]:
        with self._lock:
            return self._costs.get(node_id)

    # --- loading ---

    def load_dicts(self, items: Iterable[Dict[str, Any]]) -> int:
        """
        Add records from announcement dicts.

        Malformed entries are logged and skipped. Returns the number added.
        """
        added = 0
        for item in items:
            if not isinstance(item, dict):
                logger.warning(f"Skipping capability entry of type {type(item).__name__}")
                continue
            try:
                record = CapabilityRecord.from_dict(item)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed capability {item.get('capability_id', item.get('id', '?'))}: {e}")
                continue
            if self.add(record):
                added += 1
        return added

    @classmethod
    def from_file(cls, path: Union[str, Path], node_id: str = "", node_name: str = "") -> "InMemoryDirectory":
        """
        Build a directory from a JSON file.

        The file holds a list of announcements, or an object with a
        ``capabilities`` list.
        """
        with open(path, "r") as f:
            data = json.load(f)

        if isinstance(data, dict):
            node_id = node_id or data.get("node_id", "")
            node_name = node_name or data.get("node_name", "")
            data = data.get("capabilities", [])

        directory = cls(node_id=node_id, node_name=node_name)
        count = directory.load_dicts(data)
        logger.debug(f"Loaded {count} capabilities from {path}")
        return directory
