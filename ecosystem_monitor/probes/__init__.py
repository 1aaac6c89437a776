"""
Probe module for the ecosystem monitor.

Provides:
- Probe definitions and normalized results
- HTTP, Prometheus, shell-metric and process-list probes
- The probe registry
"""

from typing import Dict, Type

from ecosystem_monitor.probes.models import (
    ProbeDefinition,
    ProbeKind,
    ProbeOutcome,
    ProbeResult,
    ScoringStyle,
    DEFAULT_PENALTY,
)
from ecosystem_monitor.probes.base import (
    BaseProbe,
    CheckOutput,
    ProbeTimeout,
    ProbeTransportError,
    ProbeParseError,
)
from ecosystem_monitor.probes.http_probe import HttpProbe, PrometheusProbe
from ecosystem_monitor.probes.shell_probe import ShellMetricProbe, ProcessListProbe
from ecosystem_monitor.probes.registry import (
    ProbeRegistry,
    RegistryValidationError,
    DuplicateProbeId,
    validate_definition,
    get_probe_registry,
)

PROBE_TYPES: Dict[ProbeKind, Type[BaseProbe]] = {
    ProbeKind.HTTP: HttpProbe,
    ProbeKind.PROMETHEUS: PrometheusProbe,
    ProbeKind.SHELL_METRIC: ShellMetricProbe,
    ProbeKind.PROCESS_LIST: ProcessListProbe,
}


def create_probe(definition: ProbeDefinition) -> BaseProbe:
    """Create the probe implementation for a definition's kind."""
    return PROBE_TYPES[definition.kind](definition)


__all__ = [
    # Models
    "ProbeDefinition",
    "ProbeKind",
    "ProbeOutcome",
    "ProbeResult",
    "ScoringStyle",
    "DEFAULT_PENALTY",
    # Probes
    "BaseProbe",
    "CheckOutput",
    "HttpProbe",
    "PrometheusProbe",
    "ShellMetricProbe",
    "ProcessListProbe",
    "PROBE_TYPES",
    "create_probe",
    # Errors
    "ProbeTimeout",
    "ProbeTransportError",
    "ProbeParseError",
    "RegistryValidationError",
    "DuplicateProbeId",
    # Registry
    "ProbeRegistry",
    "validate_definition",
    "get_probe_registry",
]
