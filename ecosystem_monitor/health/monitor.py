"""
Health Monitor.

Owns the pipeline Aggregator -> Health Scorer -> Alert Emitter -> Metrics
History Ring -> snapshot listeners, and the periodic loop that drives it.

Cycles are serialized: a new cycle is rejected with CycleInProgress while the
previous one (including its alert diffing) is still running, so the emitter
always sees snapshots in the order they were produced. Delivery to listeners
happens outside the cycle: each cycle queues its alerts and snapshot for a
single dispatcher task, which keeps the order without a slow listener holding
up the next cycle.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ecosystem_monitor.health.aggregator import Aggregator
from ecosystem_monitor.health.alerts import AlertEmitter, AlertListener
from ecosystem_monitor.health.history import MetricsHistoryRing
from ecosystem_monitor.health.models import AggregateSnapshot, AlertEvent
from ecosystem_monitor.health.scorer import HealthScorer
from ecosystem_monitor.probes.registry import ProbeRegistry, get_probe_registry
from ecosystem_monitor.utils.logging_config import set_cycle_id

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[AggregateSnapshot], Union[None, Awaitable[None]]]

DEFAULT_INTERVAL_SECONDS = 30.0
DEFAULT_DRAIN_SECONDS = 5.0


class CycleInProgress(Exception):
    """Raised when a cycle is requested while another one is running."""

    def __init__(self, message: str = "An aggregation cycle is already running"):
        super().__init__(message)


class HealthMonitor:
    """
    Central health monitoring pipeline.

    Usage:
        monitor = HealthMonitor(registry)
        monitor.add_alert_listener(broadcaster.publish_alert)
        await monitor.start()
        ...
        await monitor.stop()
    """

    def __init__(
        self,
        registry: Optional[ProbeRegistry] = None,
        scorer: Optional[HealthScorer] = None,
        history_capacity: int = 100,
        alert_history_size: int = 50,
        check_interval_seconds: Optional[float] = None,
        aggregator: Optional[Aggregator] = None,
        drain_timeout_seconds: float = DEFAULT_DRAIN_SECONDS,
    ):
        self.registry = registry if registry is not None else get_probe_registry()
        self.aggregator = aggregator or Aggregator(self.registry, scorer=scorer)
        self.alerts = AlertEmitter(history_size=alert_history_size)
        self.history = MetricsHistoryRing(capacity=history_capacity)
        self._check_interval = check_interval_seconds

        self._snapshot_listeners: List[SnapshotListener] = []
        self._cycle_lock = asyncio.Lock()
        self._drain_timeout = drain_timeout_seconds

        # Delivery
        self._outbox: Optional[asyncio.Queue] = None
        self._dispatch_task: Optional[asyncio.Task] = None

        # State
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._start_time = time.time()
        self._cycles_completed = 0
        self._last_cycle_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_alert_listener(self, listener: AlertListener) -> None:
        self.alerts.add_listener(listener)

    def add_snapshot_listener(self, listener: SnapshotListener) -> None:
        self._snapshot_listeners.append(listener)

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def interval_seconds(self) -> float:
        """Loop period: configured override, else the shortest probe interval."""
        if self._check_interval is not None:
            return self._check_interval
        min_interval_ms = self.registry.min_interval_ms()
        if min_interval_ms is None:
            return DEFAULT_INTERVAL_SECONDS
        return min_interval_ms / 1000.0

    async def run_cycle(self) -> AggregateSnapshot:
        """
        Run one full cycle: aggregate, diff alerts, record history, and queue
        the alerts and snapshot for delivery.

        Raises:
            CycleInProgress: if another cycle has not finished yet.
        """
        if self._cycle_lock.locked():
            raise CycleInProgress()

        async with self._cycle_lock:
            snapshot = await self.aggregator.collect()
            set_cycle_id(snapshot.cycle_id)
            try:
                events = self.alerts.diff(snapshot)
                self.history.append(snapshot)
                self._cycles_completed += 1
                self._last_cycle_at = snapshot.timestamp

                logger.info(
                    f"[Monitor] Cycle complete: {snapshot.overall_status.value} "
                    f"(score={snapshot.overall_score}, "
                    f"{snapshot.healthy_count}/{snapshot.total_count} ok, "
                    f"{snapshot.duration_ms}ms)"
                )

                self._enqueue(events, snapshot)
            finally:
                set_cycle_id(None)

        return snapshot

    async def check_now(self) -> AggregateSnapshot:
        """Trigger an immediate cycle (same serialization rules)."""
        return await self.run_cycle()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _enqueue(self, events: List[AlertEvent], snapshot: AggregateSnapshot) -> None:
        loop = asyncio.get_running_loop()
        task = self._dispatch_task
        if task is None or task.done() or task.get_loop() is not loop:
            self._outbox = asyncio.Queue()
            self._dispatch_task = loop.create_task(self._dispatch_loop(self._outbox))
        self._outbox.put_nowait((events, snapshot))

    async def _dispatch_loop(self, outbox: asyncio.Queue) -> None:
        while True:
            events, snapshot = await outbox.get()
            set_cycle_id(snapshot.cycle_id)
            try:
                for event in events:
                    await self.alerts.deliver(event)
                await self._publish(snapshot)
            finally:
                set_cycle_id(None)
                outbox.task_done()

    @property
    def pending_deliveries(self) -> int:
        return self._outbox.qsize() if self._outbox is not None else 0

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every queued alert and snapshot has been delivered.

        Returns False if deliveries were still pending after `timeout`.
        """
        task = self._dispatch_task
        if task is None or task.done() or task.get_loop() is not asyncio.get_running_loop():
            return True
        try:
            await asyncio.wait_for(self._outbox.join(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _close_dispatcher(self) -> None:
        if not await self.drain(self._drain_timeout):
            logger.warning(
                f"[Monitor] Abandoning deliveries after {self._drain_timeout:.1f}s "
                f"({self.pending_deliveries} more cycle(s) queued)"
            )

        task, self._dispatch_task = self._dispatch_task, None
        self._outbox = None
        if task is not None and not task.done() and task.get_loop() is asyncio.get_running_loop():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _publish(self, snapshot: AggregateSnapshot) -> None:
        for listener in list(self._snapshot_listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[Monitor] Snapshot listener error: {e}")

    # ------------------------------------------------------------------
    # Periodic loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start periodic monitoring."""
        if self._running:
            return

        self._running = True
        self._start_time = time.time()
        self._loop_task = asyncio.create_task(self._check_loop())

        logger.info(
            f"[Monitor] Started ({len(self.registry)} probes, "
            f"interval={self.interval_seconds:.1f}s)"
        )

    async def stop(self) -> None:
        """Stop periodic monitoring."""
        self._running = False

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        await self._close_dispatcher()

        logger.info("[Monitor] Stopped")

    async def _check_loop(self) -> None:
        while self._running:
            try:
                await self.run_cycle()
            except CycleInProgress:
                logger.debug("[Monitor] Skipping tick, a manual cycle is running")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[Monitor] Check loop error: {e}")

            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def latest(self) -> Optional[AggregateSnapshot]:
        return self.history.latest()

    def recent_alerts(self, limit: Optional[int] = None) -> List[AlertEvent]:
        return self.alerts.recent(limit)

    @property
    def running(self) -> bool:
        return self._running

    def get_stats(self) -> Dict[str, Any]:
        """Get monitor statistics."""
        return {
            "running": self._running,
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "probes_registered": len(self.registry),
            "interval_seconds": self.interval_seconds,
            "cycles_completed": self._cycles_completed,
            "cycle_in_progress": self.cycle_in_progress,
            "pending_deliveries": self.pending_deliveries,
            "last_cycle_at": self._last_cycle_at,
            "history": self.history.summary(),
            "alerts": self.alerts.get_stats(),
        }


# ============================================================================
# Global Health Monitor Instance
# ============================================================================

_monitor: Optional[HealthMonitor] = None


def get_health_monitor() -> HealthMonitor:
    """Get global health monitor instance."""
    global _monitor
    if _monitor is None:
        _monitor = HealthMonitor()
    return _monitor


def set_health_monitor(monitor: Optional[HealthMonitor]) -> None:
    """Replace the global instance (startup wiring and tests)."""
    global _monitor
    _monitor = monitor
