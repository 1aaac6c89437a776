"""
Health aggregation module.

Provides:
- Aggregator: concurrent fan-out/fan-in over registered probes
- HealthScorer: the single scoring table
- AlertEmitter: per-entity transition alerts
- MetricsHistoryRing: bounded snapshot history
- HealthMonitor: the serialized pipeline and periodic loop
"""

from ecosystem_monitor.health.models import (
    HealthStatus,
    AlertSeverity,
    AggregateSnapshot,
    AlertEvent,
)
from ecosystem_monitor.health.scorer import (
    HealthScorer,
    ScoringPolicy,
    ResourceBand,
    DEFAULT_BANDS,
    score,
)
from ecosystem_monitor.health.aggregator import Aggregator
from ecosystem_monitor.health.alerts import AlertEmitter, severity_for
from ecosystem_monitor.health.history import MetricsHistoryRing
from ecosystem_monitor.health.monitor import (
    HealthMonitor,
    CycleInProgress,
    get_health_monitor,
    set_health_monitor,
)

__all__ = [
    # Models
    "HealthStatus",
    "AlertSeverity",
    "AggregateSnapshot",
    "AlertEvent",
    # Scoring
    "HealthScorer",
    "ScoringPolicy",
    "ResourceBand",
    "DEFAULT_BANDS",
    "score",
    # Pipeline
    "Aggregator",
    "AlertEmitter",
    "severity_for",
    "MetricsHistoryRing",
    "HealthMonitor",
    "CycleInProgress",
    "get_health_monitor",
    "set_health_monitor",
]
