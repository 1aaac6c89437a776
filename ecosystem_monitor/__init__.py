"""
Ecosystem Monitor - Health and Metrics Aggregation for the Control Room

Provides:
- Probes: HTTP, Prometheus, shell-metric and process-list checks
- Probe registry with validation at registration
- Concurrent aggregation with per-probe timeouts
- A single health scoring table (0-100 score, healthy/warning/critical)
- Transition-only alerting with WebSocket and webhook fan-out
- Bounded snapshot history for trend display
- FastAPI dashboard server
"""

__version__ = "1.0.0"

# Probes
from ecosystem_monitor.probes import (
    ProbeDefinition,
    ProbeKind,
    ProbeOutcome,
    ProbeResult,
    ScoringStyle,
    ProbeRegistry,
    RegistryValidationError,
    DuplicateProbeId,
    create_probe,
    get_probe_registry,
)

# Health pipeline
from ecosystem_monitor.health import (
    HealthStatus,
    AlertSeverity,
    AggregateSnapshot,
    AlertEvent,
    Aggregator,
    HealthScorer,
    AlertEmitter,
    MetricsHistoryRing,
    HealthMonitor,
    CycleInProgress,
    get_health_monitor,
)

# Configuration
from ecosystem_monitor.config import (
    MonitorConfig,
    ConfigLoadError,
    load_config,
    build_registry,
)

# Logging
from ecosystem_monitor.utils.logging_config import setup_logging

__all__ = [
    "__version__",
    # Probes
    "ProbeDefinition",
    "ProbeKind",
    "ProbeOutcome",
    "ProbeResult",
    "ScoringStyle",
    "ProbeRegistry",
    "RegistryValidationError",
    "DuplicateProbeId",
    "create_probe",
    "get_probe_registry",
    # Health
    "HealthStatus",
    "AlertSeverity",
    "AggregateSnapshot",
    "AlertEvent",
    "Aggregator",
    "HealthScorer",
    "AlertEmitter",
    "MetricsHistoryRing",
    "HealthMonitor",
    "CycleInProgress",
    "get_health_monitor",
    # Config
    "MonitorConfig",
    "ConfigLoadError",
    "load_config",
    "build_registry",
    # Logging
    "setup_logging",
]
