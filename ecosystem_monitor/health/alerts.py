"""
Alert Emitter.

Tracks one status per entity (each probe id, plus the overall verdict under
the key None) and emits an AlertEvent only when an entity's status changes.
A sustained status never alerts twice.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from ecosystem_monitor.health.models import (
    AggregateSnapshot,
    AlertEvent,
    AlertSeverity,
    HealthStatus,
)

logger = logging.getLogger(__name__)

AlertListener = Callable[[AlertEvent], Union[None, Awaitable[None]]]

OVERALL = None

_SEVERITY = {
    HealthStatus.CRITICAL: AlertSeverity.CRITICAL,
    HealthStatus.WARNING: AlertSeverity.WARNING,
    HealthStatus.HEALTHY: AlertSeverity.INFO,
    HealthStatus.UNKNOWN: AlertSeverity.INFO,
}


def severity_for(status: HealthStatus) -> AlertSeverity:
    return _SEVERITY[status]


class AlertEmitter:
    """
    Per-entity transition detector with listener fan-out.

    Delivery is best-effort and at most once per transition: a failing
    listener is logged and does not block the others.
    """

    def __init__(self, history_size: int = 50):
        self._states: Dict[Optional[str], HealthStatus] = {}
        self._listeners: List[AlertListener] = []
        self._recent: Deque[AlertEvent] = deque(maxlen=history_size)

    def add_listener(self, listener: AlertListener) -> None:
        """Register an alert listener (sync or async callable)."""
        self._listeners.append(listener)

    def remove_listener(self, listener: AlertListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def current_status(self, entity: Optional[str] = OVERALL) -> HealthStatus:
        return self._states.get(entity, HealthStatus.UNKNOWN)

    def observe(
        self,
        entity: Optional[str],
        new_status: HealthStatus,
        detail: Optional[str] = None,
    ) -> Optional[AlertEvent]:
        """
        Record a status for one entity.

        Returns the AlertEvent if the status changed, otherwise None.
        """
        previous = self.current_status(entity)
        if new_status == previous:
            return None

        self._states[entity] = new_status

        name = "overall" if entity is OVERALL else entity
        message = f"{name} is now {new_status.value} (was {previous.value})"
        if detail:
            message = f"{message}: {detail}"

        event = AlertEvent(
            probe_id=entity,
            previous_status=previous,
            new_status=new_status,
            severity=severity_for(new_status),
            message=message,
        )
        self._recent.append(event)
        return event

    def diff(self, snapshot: AggregateSnapshot) -> List[AlertEvent]:
        """
        Compare a snapshot with the last recorded states, without delivery.

        Probe entities come first (in snapshot order), the overall entity
        last. Entities that are not in the snapshot are forgotten.
        """
        events: List[AlertEvent] = []

        for stale in [e for e in self._states if e is not OVERALL and e not in snapshot.per_probe]:
            del self._states[stale]

        for probe_id, result in snapshot.per_probe.items():
            status = snapshot.probe_statuses.get(probe_id, HealthStatus.UNKNOWN)
            event = self.observe(probe_id, status, result.error_message)
            if event:
                events.append(event)

        overall = self.observe(
            OVERALL,
            snapshot.overall_status,
            f"score {snapshot.overall_score}, {snapshot.healthy_count}/{snapshot.total_count} probes ok",
        )
        if overall:
            events.append(overall)
        return events

    async def process(self, snapshot: AggregateSnapshot) -> List[AlertEvent]:
        """Diff a snapshot and deliver the resulting events to every listener."""
        events = self.diff(snapshot)
        for event in events:
            await self.deliver(event)
        return events

    async def deliver(self, event: AlertEvent) -> None:
        log = logger.warning if event.severity != AlertSeverity.INFO else logger.info
        log(f"[Alert] {event.severity.value.upper()}: {event.message}")

        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[Alert] Listener error: {e}")

    def recent(self, limit: Optional[int] = None) -> List[AlertEvent]:
        """Recently emitted events, newest first."""
        events = list(reversed(self._recent))
        return events if limit is None else events[:max(0, limit)]

    def reset(self) -> None:
        """Forget all tracked states (every entity back to unknown)."""
        self._states.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "tracked_entities": len(self._states),
            "listeners": len(self._listeners),
            "recent_alerts": len(self._recent),
            "states": {
                ("overall" if k is OVERALL else k): v.value
                for k, v in self._states.items()
            },
        }
