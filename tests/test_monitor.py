"""Tests for the serialized monitor pipeline and its periodic loop."""

import asyncio
import time

import pytest

from ecosystem_monitor.health import (
    Aggregator,
    CycleInProgress,
    HealthMonitor,
    HealthStatus,
    get_health_monitor,
    set_health_monitor,
)
from ecosystem_monitor.probes import ProbeOutcome, ProbeRegistry

from conftest import Step, make_definition


@pytest.fixture
def registry():
    return ProbeRegistry()


@pytest.fixture
def monitor(registry, scripted_factory):
    return HealthMonitor(
        registry,
        history_capacity=10,
        aggregator=Aggregator(registry, probe_factory=scripted_factory),
    )


class TestRunCycle:

    @pytest.mark.asyncio
    async def test_cycle_records_history_and_alerts(self, registry, monitor):
        registry.register(make_definition("api"))

        snapshot = await monitor.run_cycle()

        assert monitor.latest() is snapshot
        assert len(monitor.history) == 1
        assert [e.probe_id for e in monitor.recent_alerts()] == [None, "api"]

    @pytest.mark.asyncio
    async def test_timeout_flip_raises_one_overall_alert(self, registry, monitor, script):
        for probe_id in ("a", "b", "c", "d"):
            registry.register(make_definition(probe_id, timeout_ms=50))

        first = await monitor.run_cycle()
        assert (first.overall_score, first.overall_status) == (100, HealthStatus.HEALTHY)

        received = []
        monitor.add_alert_listener(received.append)
        script["d"] = Step(delay=1.0)

        second = await monitor.run_cycle()
        assert await monitor.drain(timeout=1.0)

        assert second.per_probe["d"].outcome == ProbeOutcome.TIMEOUT
        assert (second.overall_score, second.overall_status) == (75, HealthStatus.WARNING)

        overall = [e for e in received if e.is_overall]
        assert len(overall) == 1
        assert overall[0].previous_status == HealthStatus.HEALTHY
        assert overall[0].new_status == HealthStatus.WARNING
        assert [e.probe_id for e in received if not e.is_overall] == ["d"]

        received.clear()
        await monitor.run_cycle()
        assert await monitor.drain(timeout=1.0)
        assert received == []

    @pytest.mark.asyncio
    async def test_overlapping_cycle_is_rejected(self, registry, monitor, script):
        registry.register(make_definition("slow", timeout_ms=2000))
        script["slow"] = Step(delay=0.3)

        in_flight = asyncio.create_task(monitor.run_cycle())
        await asyncio.sleep(0.05)

        assert monitor.cycle_in_progress
        with pytest.raises(CycleInProgress):
            await monitor.check_now()

        snapshot = await in_flight
        assert snapshot.healthy_count == 1
        assert not monitor.cycle_in_progress
        assert len(monitor.history) == 1

    @pytest.mark.asyncio
    async def test_snapshot_listeners(self, registry, monitor):
        registry.register(make_definition("api"))
        sync_received, async_received = [], []

        async def async_listener(snapshot):
            async_received.append(snapshot)

        def broken(snapshot):
            raise ValueError("dashboard offline")

        monitor.add_snapshot_listener(broken)
        monitor.add_snapshot_listener(sync_received.append)
        monitor.add_snapshot_listener(async_listener)

        snapshot = await monitor.run_cycle()
        assert await monitor.drain(timeout=1.0)

        assert sync_received == [snapshot]
        assert async_received == [snapshot]

    @pytest.mark.asyncio
    async def test_alerts_delivered_before_their_snapshot(self, registry, monitor, script):
        registry.register(make_definition("api"))
        delivered = []
        monitor.add_alert_listener(lambda event: delivered.append(("alert", event.probe_id)))
        monitor.add_snapshot_listener(lambda snapshot: delivered.append(("snapshot", snapshot.cycle_id)))

        first = await monitor.run_cycle()
        script["api"] = Step(outcome=ProbeOutcome.ERROR)
        second = await monitor.run_cycle()
        assert await monitor.drain(timeout=1.0)

        assert delivered == [
            ("alert", "api"), ("alert", None), ("snapshot", first.cycle_id),
            ("alert", "api"), ("alert", None), ("snapshot", second.cycle_id),
        ]

    @pytest.mark.asyncio
    async def test_empty_registry_cycle(self, monitor):
        snapshot = await monitor.run_cycle()

        assert snapshot.overall_score == 100
        assert snapshot.total_count == 0
        assert [e.is_overall for e in monitor.recent_alerts()] == [True]


class TestDelivery:

    @pytest.mark.asyncio
    async def test_hung_listener_does_not_block_cycles(self, registry, scripted_factory):
        for probe_id in ("a", "b", "c", "d"):
            registry.register(make_definition(probe_id))
        monitor = HealthMonitor(
            registry,
            aggregator=Aggregator(registry, probe_factory=scripted_factory),
            drain_timeout_seconds=0.2,
        )
        never = asyncio.Event()

        async def hung_webhook(event):
            await never.wait()

        monitor.add_alert_listener(hung_webhook)

        start = time.perf_counter()
        first = await monitor.run_cycle()
        second = await monitor.check_now()
        elapsed = time.perf_counter() - start

        assert elapsed < 0.5
        assert first.cycle_id != second.cycle_id
        assert len(monitor.history) == 2
        assert len(monitor.recent_alerts()) == 5
        assert not await monitor.drain(timeout=0.1)
        assert monitor.get_stats()["pending_deliveries"] == 1

        start = time.perf_counter()
        await monitor.stop()
        assert time.perf_counter() - start < 1.0
        assert monitor.pending_deliveries == 0

    @pytest.mark.asyncio
    async def test_stop_flushes_queued_deliveries(self, registry, monitor):
        registry.register(make_definition("api"))
        received = []

        async def slow_listener(event):
            await asyncio.sleep(0.05)
            received.append(event)

        monitor.add_alert_listener(slow_listener)

        await monitor.run_cycle()
        await monitor.stop()

        assert [e.probe_id for e in received] == ["api", None]


class TestPeriodicLoop:

    def test_interval_selection(self, registry, monitor):
        assert monitor.interval_seconds == 30.0

        registry.register(make_definition("a", interval_ms=15000))
        registry.register(make_definition("b", interval_ms=5000))
        assert monitor.interval_seconds == 5.0

        override = HealthMonitor(registry, check_interval_seconds=2.5)
        assert override.interval_seconds == 2.5

    @pytest.mark.asyncio
    async def test_start_and_stop(self, registry, scripted_factory):
        registry.register(make_definition("api", interval_ms=50))
        monitor = HealthMonitor(registry, aggregator=Aggregator(registry, probe_factory=scripted_factory))

        await monitor.start()
        assert monitor.running
        await asyncio.sleep(0.2)
        await monitor.stop()

        stats = monitor.get_stats()
        assert not monitor.running
        assert stats["cycles_completed"] >= 2
        assert stats["history"]["snapshots"] == stats["cycles_completed"]

    @pytest.mark.asyncio
    async def test_loop_survives_cycle_errors(self, registry, monitor):
        registry.register(make_definition("api", interval_ms=20))
        calls = 0
        real_collect = monitor.aggregator.collect

        async def flaky_collect():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("scorer exploded")
            return await real_collect()

        monitor.aggregator.collect = flaky_collect

        await monitor.start()
        await asyncio.sleep(0.15)
        await monitor.stop()

        assert calls >= 2
        assert len(monitor.history) >= 1


class TestGlobalMonitor:

    def test_get_and_set(self, registry):
        default = get_health_monitor()
        assert get_health_monitor() is default

        custom = HealthMonitor(registry)
        set_health_monitor(custom)
        assert get_health_monitor() is custom
