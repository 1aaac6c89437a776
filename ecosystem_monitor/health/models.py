"""
Health data models: statuses, aggregation snapshots and alert events.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ecosystem_monitor.probes.models import ProbeResult, iso_timestamp


class HealthStatus(Enum):
    """Status of a tracked entity (one probe, or the overall verdict)."""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class AlertSeverity(Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AggregateSnapshot:
    """Result of one aggregation cycle."""
    per_probe: Dict[str, ProbeResult]
    overall_score: int
    overall_status: HealthStatus
    healthy_count: int
    total_count: int
    probe_statuses: Dict[str, HealthStatus] = field(default_factory=dict)
    duration_ms: Optional[int] = None
    cycle_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    timestamp: float = field(default_factory=time.time)

    @property
    def availability(self) -> float:
        """Healthy/total percentage; 100 for an empty cycle."""
        if self.total_count == 0:
            return 100.0
        return self.healthy_count / self.total_count * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "timestamp": iso_timestamp(self.timestamp),
            "overall_score": self.overall_score,
            "overall_status": self.overall_status.value,
            "healthy_count": self.healthy_count,
            "total_count": self.total_count,
            "availability": round(self.availability, 2),
            "duration_ms": self.duration_ms,
            "per_probe": {
                probe_id: {
                    **result.to_dict(),
                    "status": self.probe_statuses.get(probe_id, HealthStatus.UNKNOWN).value,
                }
                for probe_id, result in self.per_probe.items()
            },
        }


@dataclass(frozen=True)
class AlertEvent:
    """A status transition of one tracked entity."""
    probe_id: Optional[str]  # None = overall status
    previous_status: HealthStatus
    new_status: HealthStatus
    severity: AlertSeverity
    message: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    timestamp: float = field(default_factory=time.time)

    @property
    def is_overall(self) -> bool:
        return self.probe_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "probe_id": self.probe_id,
            "previous_status": self.previous_status.value,
            "new_status": self.new_status.value,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": iso_timestamp(self.timestamp),
        }
