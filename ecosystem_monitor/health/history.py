"""
Metrics History Ring.

Bounded in-memory store of the most recent aggregation snapshots, used for
trend display. Single writer (the monitor pipeline), so no locking.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, List, Optional

from ecosystem_monitor.health.models import AggregateSnapshot, HealthStatus


class MetricsHistoryRing:
    """
    FIFO ring of AggregateSnapshots.

    Usage:
        ring = MetricsHistoryRing(capacity=100)
        ring.append(snapshot)
        latest_five = ring.recent(5)  # newest first
    """

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError(f"History capacity must be >= 1 (got {capacity})")
        self._capacity = capacity
        # deque(maxlen) evicts the oldest entry in O(1)
        self._snapshots: Deque[AggregateSnapshot] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, snapshot: AggregateSnapshot) -> None:
        self._snapshots.append(snapshot)

    def recent(self, limit: Optional[int] = None) -> List[AggregateSnapshot]:
        """Up to `limit` most recent snapshots, newest first."""
        if limit is not None and limit <= 0:
            return []
        result: List[AggregateSnapshot] = []
        for snapshot in reversed(self._snapshots):
            if limit is not None and len(result) >= limit:
                break
            result.append(snapshot)
        return result

    def latest(self) -> Optional[AggregateSnapshot]:
        return self._snapshots[-1] if self._snapshots else None

    def clear(self) -> None:
        self._snapshots.clear()

    def availability(self) -> float:
        """Average healthy/total percentage across retained snapshots."""
        if not self._snapshots:
            return 100.0
        return sum(s.availability for s in self._snapshots) / len(self._snapshots)

    def score_trend(self, points: Optional[int] = None) -> List[int]:
        """Overall scores, oldest first."""
        scores = [s.overall_score for s in self._snapshots]
        return scores[-points:] if points else scores

    def summary(self) -> Dict[str, Any]:
        latest = self.latest()
        return {
            "snapshots": len(self._snapshots),
            "capacity": self._capacity,
            "availability": round(self.availability(), 2),
            "latest_status": latest.overall_status.value if latest else HealthStatus.UNKNOWN.value,
            "latest_score": latest.overall_score if latest else None,
        }

    def __len__(self) -> int:
        return len(self._snapshots)
