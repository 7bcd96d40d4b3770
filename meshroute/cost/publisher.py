"""
Cost Publisher - Periodic sampling and propagation of the local cost snapshot.

Two independent asyncio loops:
- collection: samples device telemetry every ``collect_interval`` seconds
- publish: hands the most recent snapshot to a CostSink every
  ``publish_interval`` seconds

A failed publish is logged and counted; the next tick proceeds regardless.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Awaitable, Optional, Protocol, Union

import aiohttp

from .collector import CostCollector
from .model import CostSnapshot

logger = logging.getLogger(__name__)

COST_MESSAGE_TYPE = "cost"

DEFAULT_COLLECT_INTERVAL = 10.0
DEFAULT_PUBLISH_INTERVAL = 30.0


class CostSink(Protocol):
    """Destination for cost updates (usually the capability directory)."""

    def send_cost_update(self, node_id: str, snapshot: CostSnapshot) -> Union[None, Awaitable[None]]:
        """Propagate a snapshot. May be sync or async; raising counts as a failure."""
        ...


@dataclass
class PublisherState:
    """Observable publisher state."""
    is_running: bool = False
    last_publish: Optional[float] = None
    publish_count: int = 0
    last_cost: Optional[float] = None
    errors: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        if data["last_cost"] is not None and not math.isfinite(data["last_cost"]):
            data["last_cost"] = None
        return data


# =============================================================================
# Wire format
# =============================================================================

def build_cost_message(snapshot: CostSnapshot, node_id: Optional[str] = None) -> dict:
    """
    Build a cost update message.

    Args:
        snapshot: The node's cost snapshot
        node_id: Override the snapshot's node id

    Returns:
        Message dict ready to send
    """
    factors = snapshot.to_dict()
    factors.pop("node_id", None)
    return {
        "type": COST_MESSAGE_TYPE,
        "node_id": node_id or snapshot.node_id,
        "timestamp": snapshot.timestamp,
        "factors": factors,
    }


def parse_cost_message(message: Any) -> Optional[CostSnapshot]:
    """
    Parse a cost update message.

    Returns:
        The CostSnapshot, or None if the message is not a valid cost update
    """
    if not isinstance(message, dict) or message.get("type") != COST_MESSAGE_TYPE:
        return None

    node_id = message.get("node_id")
    factors = message.get("factors")
    if not node_id or not isinstance(factors, dict):
        return None

    if "timestamp" not in factors and "timestamp" in message:
        factors = {**factors, "timestamp": message["timestamp"]}

    try:
        return CostSnapshot.from_dict(factors, node_id=str(node_id))
    except (TypeError, ValueError) as e:
        logger.debug(f"Rejected cost message from {node_id}: {e}")
        return None


class HttpCostSink:
    """POSTs cost messages as JSON to a directory endpoint."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def send_cost_update(self, node_id: str, snapshot: CostSnapshot) -> None:
        session = await self._get_session()
        async with session.post(self.url, json=build_cost_message(snapshot, node_id)) as resp:
            resp.raise_for_status()

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()


# =============================================================================
# Publisher
# =============================================================================

class CostPublisher:
    """
    Background cost sampling and publishing for one node.

    Usage:
        publisher = CostPublisher(get_cost_collector(), directory)
        await publisher.start()
        ...
        await publisher.close()
    """

    def __init__(
        self,
        collector: CostCollector,
        sink: CostSink,
        collect_interval: float = DEFAULT_COLLECT_INTERVAL,
        publish_interval: float = DEFAULT_PUBLISH_INTERVAL,
    ):
        if collect_interval <= 0 or publish_interval <= 0:
            raise ValueError("intervals must be positive")
        self.collector = collector
        self.sink = sink
        self.collect_interval = collect_interval
        self.publish_interval = publish_interval

        self._state = PublisherState()
        self._latest: Optional[CostSnapshot] = None
        self._collect_task: Optional[asyncio.Task] = None
        self._publish_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def node_id(self) -> str:
        return self.collector.node_id

    @property
    def state(self) -> PublisherState:
        """Copy of the current state."""
        return replace(self._state)

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def latest(self) -> Optional[CostSnapshot]:
        """Most recent snapshot (None before the first sample)."""
        return self._latest

    # --- single steps ---

    def collect(self) -> CostSnapshot:
        """Sample now and remember the snapshot."""
        snapshot = self.collector.sample()
        self._latest = snapshot
        logger.debug(f"Cost sampled: {snapshot!r} -> {snapshot.cost:.2f}")
        return snapshot

    async def _sample(self) -> CostSnapshot:
        """Like collect(), but runs the blocking readers in the default executor."""
        loop = asyncio.get_event_loop()
        snapshot = await loop.run_in_executor(None, self.collector.sample)
        self._latest = snapshot
        logger.debug(f"Cost sampled: {snapshot!r} -> {snapshot.cost:.2f}")
        return snapshot

    async def publish_now(self) -> bool:
        """
        Publish the most recent snapshot immediately.

        Samples first if nothing has been collected yet.

        Returns:
            True if the sink accepted the update
        """
        snapshot = self._latest or await self._sample()
        try:
            result = self.sink.send_cost_update(self.node_id, snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._state.errors += 1
            logger.warning(f"Cost publish failed ({self._state.errors} errors): {e}")
            return False

        self._state.publish_count += 1
        self._state.last_publish = time.time()
        self._state.last_cost = snapshot.cost
        logger.debug(f"Published cost {snapshot.cost:.2f} for {self.node_id}")
        return True

    # --- loops ---

    async def _collect_loop(self, delay_first: bool = False) -> None:
        """Periodic sampling loop."""
        if delay_first:
            await asyncio.sleep(self.collect_interval)
        while True:
            try:
                await self._sample()
            except Exception as e:
                logger.error(f"Cost collection failed: {e}")
            await asyncio.sleep(self.collect_interval)

    async def _publish_loop(self, delay_first: bool = False) -> None:
        """Periodic publish loop."""
        if delay_first:
            await asyncio.sleep(self.publish_interval)
        while True:
            await self.publish_now()
            await asyncio.sleep(self.publish_interval)

    async def start(self) -> None:
        """Start both loops. No-op if already running."""
        async with self._lock:
            if self._state.is_running:
                return
            self._state.is_running = True
            await self._sample()
            self._collect_task = asyncio.create_task(self._collect_loop(delay_first=True))
            self._publish_task = asyncio.create_task(self._publish_loop())
        logger.info(
            f"Cost publisher started (collect {self.collect_interval}s, publish {self.publish_interval}s)"
        )

    async def stop(self) -> None:
        """Cancel both loops."""
        async with self._lock:
            self._state.is_running = False
            collect_task, publish_task = self._collect_task, self._publish_task
            for task in (collect_task, publish_task):
                await _cancel(task)
            # only clear what this call cancelled
            if self._collect_task is collect_task:
                self._collect_task = None
            if self._publish_task is publish_task:
                self._publish_task = None
        logger.info("Cost publisher stopped")

    async def close(self) -> None:
        """Stop and release the telemetry sampler."""
        await self.stop()
        self.collector.close()

    async def set_publish_interval(self, seconds: float) -> None:
        """
        Change the publish cadence.

        While running, the publish loop is replaced: the new task exists
        before the old one is cancelled and ``is_running`` stays True.
        """
        if seconds <= 0:
            raise ValueError("publish interval must be positive")
        async with self._lock:
            self.publish_interval = seconds
            if not self._state.is_running:
                return
            old = self._publish_task
            self._publish_task = asyncio.create_task(self._publish_loop(delay_first=True))
            await _cancel(old)
        logger.info(f"Publish interval set to {seconds}s")

    async def set_collect_interval(self, seconds: float) -> None:
        """Change the sampling cadence (same replacement rules as publishing)."""
        if seconds <= 0:
            raise ValueError("collect interval must be positive")
        async with self._lock:
            self.collect_interval = seconds
            if not self._state.is_running:
                return
            old = self._collect_task
            self._collect_task = asyncio.create_task(self._collect_loop(delay_first=True))
            await _cancel(old)
        logger.info(f"Collect interval set to {seconds}s")


async def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
