"""
Tests for cost publishing.
"""

import asyncio
import time

import pytest

from meshroute.cost.collector import StubCostCollector
from meshroute.cost.model import CostSnapshot, NetworkType, ThermalState
from meshroute.cost.publisher import (
    COST_MESSAGE_TYPE,
    CostPublisher,
    HttpCostSink,
    PublisherState,
    build_cost_message,
    parse_cost_message,
)


class RecordingSink:
    """Synchronous sink that remembers what it was sent."""

    def __init__(self):
        self.updates = []

    def send_cost_update(self, node_id, snapshot):
        self.updates.append((node_id, snapshot))


class AsyncSink(RecordingSink):
    async def send_cost_update(self, node_id, snapshot):
        await asyncio.sleep(0)
        self.updates.append((node_id, snapshot))


class FailingSink:
    def __init__(self):
        self.calls = 0

    def send_cost_update(self, node_id, snapshot):
        self.calls += 1
        raise ConnectionError("directory unreachable")


class SlowCollector(StubCostCollector):
    """Collector whose readers block the calling thread."""

    def sample(self):
        time.sleep(0.3)
        return super().sample()


class TestCostMessages:
    """Tests for the cost message wire format."""

    def test_build(self):
        snapshot = CostSnapshot(node_id="n1", battery_level=55, is_charging=False, timestamp=10.0)
        msg = build_cost_message(snapshot)
        assert msg["type"] == COST_MESSAGE_TYPE
        assert msg["node_id"] == "n1"
        assert msg["timestamp"] == 10.0
        assert msg["factors"]["battery_level"] == 55
        assert "node_id" not in msg["factors"]

    def test_build_node_override(self):
        msg = build_cost_message(CostSnapshot(node_id="n1"), node_id="other")
        assert msg["node_id"] == "other"

    def test_parse(self):
        snapshot = CostSnapshot(
            node_id="n1",
            battery_level=20,
            is_charging=False,
            thermal_state=ThermalState.SEVERE,
            network_type=NetworkType.ETHERNET,
            timestamp=99.0,
        )
        parsed = parse_cost_message(build_cost_message(snapshot))
        assert parsed == snapshot

    def test_parse_uses_message_timestamp(self):
        parsed = parse_cost_message({
            "type": "cost",
            "node_id": "n1",
            "timestamp": 1_700_000_000_000,
            "factors": {"battery_level": 90},
        })
        assert parsed.timestamp == pytest.approx(1_700_000_000.0)

    @pytest.mark.parametrize("message", [
        None,
        "cost",
        {},
        {"type": "capability", "node_id": "n1", "factors": {}},
        {"type": "cost", "factors": {}},
        {"type": "cost", "node_id": "n1"},
        {"type": "cost", "node_id": "n1", "factors": [1, 2]},
    ])
    def test_parse_invalid(self, message):
        assert parse_cost_message(message) is None


class TestPublisherState:
    """Tests for PublisherState."""

    def test_defaults(self):
        state = PublisherState()
        assert state.is_running is False
        assert state.publish_count == 0
        assert state.last_publish is None

    def test_to_dict_infinite_cost(self):
        assert PublisherState(last_cost=float("inf")).to_dict()["last_cost"] is None


class TestPublishNow:
    """Tests for single publishes."""

    @pytest.mark.asyncio
    async def test_publish_success(self):
        sink = RecordingSink()
        publisher = CostPublisher(StubCostCollector("n1"), sink)

        assert await publisher.publish_now() is True

        state = publisher.state
        assert state.publish_count == 1
        assert state.errors == 0
        assert state.last_publish is not None
        assert state.last_cost == pytest.approx(2.0)
        assert sink.updates[0][0] == "n1"

    @pytest.mark.asyncio
    async def test_async_sink(self):
        sink = AsyncSink()
        publisher = CostPublisher(StubCostCollector("n1"), sink)
        assert await publisher.publish_now() is True
        assert len(sink.updates) == 1

    @pytest.mark.asyncio
    async def test_failing_sink_counts_errors(self):
        publisher = CostPublisher(StubCostCollector("n1"), FailingSink())

        assert await publisher.publish_now() is False
        assert await publisher.publish_now() is False

        state = publisher.state
        assert state.errors == 2
        assert state.publish_count == 0
        assert state.last_publish is None

    @pytest.mark.asyncio
    async def test_publishes_latest_snapshot(self):
        sink = RecordingSink()
        publisher = CostPublisher(StubCostCollector("n1"), sink)
        snapshot = publisher.collect()
        await publisher.publish_now()
        assert sink.updates[0][1] is snapshot
        assert publisher.latest is snapshot

    def test_state_is_a_copy(self):
        publisher = CostPublisher(StubCostCollector("n1"), RecordingSink())
        publisher.state.publish_count = 99
        assert publisher.state.publish_count == 0

    def test_invalid_intervals(self):
        with pytest.raises(ValueError):
            CostPublisher(StubCostCollector("n1"), RecordingSink(), collect_interval=0)
        with pytest.raises(ValueError):
            CostPublisher(StubCostCollector("n1"), RecordingSink(), publish_interval=-1)


class TestPublisherLoops:
    """Tests for the background loops."""

    @pytest.mark.asyncio
    async def test_start_publishes_immediately(self):
        sink = RecordingSink()
        publisher = CostPublisher(StubCostCollector("n1"), sink, publish_interval=60)
        await publisher.start()
        try:
            await asyncio.sleep(0.05)
            assert publisher.is_running
            assert publisher.latest is not None
            assert len(sink.updates) == 1
        finally:
            await publisher.stop()
        assert not publisher.is_running

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        publisher = CostPublisher(StubCostCollector("n1"), RecordingSink(), publish_interval=60)
        await publisher.start()
        task = publisher._publish_task
        await publisher.start()
        try:
            assert publisher._publish_task is task
        finally:
            await publisher.stop()

    @pytest.mark.asyncio
    async def test_loop_survives_failures(self):
        sink = FailingSink()
        publisher = CostPublisher(StubCostCollector("n1"), sink, collect_interval=0.01, publish_interval=0.01)
        await publisher.start()
        try:
            await asyncio.sleep(0.1)
        finally:
            await publisher.stop()
        assert sink.calls >= 3
        assert publisher.state.errors == sink.calls

    @pytest.mark.asyncio
    async def test_set_publish_interval_keeps_running(self):
        publisher = CostPublisher(StubCostCollector("n1"), RecordingSink(), publish_interval=60)
        await publisher.start()
        old_task = publisher._publish_task
        observed = []

        async def observe():
            for _ in range(10):
                observed.append(publisher.is_running)
                await asyncio.sleep(0)

        try:
            watcher = asyncio.create_task(observe())
            await publisher.set_publish_interval(5)
            await watcher
            assert all(observed)
            assert publisher.publish_interval == 5
            assert publisher._publish_task is not old_task
            assert old_task.cancelled()
            assert not publisher._publish_task.done()
        finally:
            await publisher.stop()

    @pytest.mark.asyncio
    async def test_set_interval_while_stopped(self):
        publisher = CostPublisher(StubCostCollector("n1"), RecordingSink())
        await publisher.set_publish_interval(3)
        await publisher.set_collect_interval(2)
        assert publisher.publish_interval == 3
        assert publisher.collect_interval == 2
        assert not publisher.is_running

    @pytest.mark.asyncio
    async def test_set_interval_rejects_non_positive(self):
        publisher = CostPublisher(StubCostCollector("n1"), RecordingSink())
        with pytest.raises(ValueError):
            await publisher.set_publish_interval(0)
        with pytest.raises(ValueError):
            await publisher.set_collect_interval(-5)

    @pytest.mark.asyncio
    async def test_close_releases_collector(self):
        collector = StubCostCollector("n1")
        publisher = CostPublisher(collector, RecordingSink(), publish_interval=60)
        await publisher.start()
        await publisher.close()
        assert collector.closed
        assert not publisher.is_running

    @pytest.mark.asyncio
    async def test_start_during_stop_keeps_new_loops(self):
        sink = RecordingSink()
        publisher = CostPublisher(StubCostCollector("n1"), sink, collect_interval=0.01, publish_interval=0.01)
        await publisher.start()

        stopping = asyncio.create_task(publisher.stop())
        await asyncio.sleep(0)
        await publisher.start()
        await stopping

        assert publisher.is_running
        collect_task, publish_task = publisher._collect_task, publisher._publish_task
        assert collect_task is not None and not collect_task.done()
        assert publish_task is not None and not publish_task.done()

        await publisher.stop()
        assert collect_task.done()
        assert publish_task.done()
        published = len(sink.updates)
        await asyncio.sleep(0.05)
        assert len(sink.updates) == published

    @pytest.mark.asyncio
    async def test_sampling_does_not_block_event_loop(self):
        publisher = CostPublisher(SlowCollector("n1"), RecordingSink(), collect_interval=0.01, publish_interval=60)
        await publisher.start()
        try:
            started = time.monotonic()
            await asyncio.sleep(0.05)
            assert time.monotonic() - started < 0.25
        finally:
            await publisher.stop()

    @pytest.mark.asyncio
    async def test_publish_now_samples_off_loop(self):
        sink = RecordingSink()
        publisher = CostPublisher(SlowCollector("n1"), sink)
        publishing = asyncio.create_task(publisher.publish_now())

        ticks = 0
        while not publishing.done():
            ticks += 1
            await asyncio.sleep(0.01)

        assert await publishing is True
        assert ticks > 5
        assert publisher.latest is sink.updates[0][1]


class TestHttpCostSink:
    @pytest.mark.asyncio
    async def test_close_releases_session(self):
        sink = HttpCostSink("http://127.0.0.1:9/api/cost")
        session = await sink._get_session()
        assert not session.closed
        await sink.close()
        assert session.closed

    @pytest.mark.asyncio
    async def test_close_without_session(self):
        sink = HttpCostSink("http://127.0.0.1:9/api/cost")
        await sink.close()
