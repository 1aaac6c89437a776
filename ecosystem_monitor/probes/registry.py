"""
Probe Registry.

Owns the canonical, validated set of probe definitions. Pure in-memory
bookkeeping: readers get copies, so a cycle that snapshotted the registry is
never affected by a concurrent register/unregister.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional

from ecosystem_monitor.probes.models import ProbeDefinition, ProbeKind, ScoringStyle
from ecosystem_monitor.probes.parsers import PROMETHEUS_DERIVATIONS, SHELL_PARSERS

logger = logging.getLogger(__name__)


class RegistryValidationError(ValueError):
    """Raised when a probe definition is rejected at registration."""

    def __init__(self, message: str, probe_id: Optional[str] = None):
        super().__init__(message)
        self.probe_id = probe_id


class DuplicateProbeId(RegistryValidationError):
    """Raised when registering a probe whose id is already present."""


def _is_int(value: object) -> bool:
    # bool is an int subclass
    return isinstance(value, int) and not isinstance(value, bool)


def validate_definition(definition: ProbeDefinition) -> None:
    """
    Validate a probe definition.

    Raises:
        RegistryValidationError: if any field is out of range.
    """
    probe_id = getattr(definition, "id", None)

    if not isinstance(definition, ProbeDefinition):
        raise RegistryValidationError(
            f"Expected ProbeDefinition, got {type(definition).__name__}"
        )
    if not isinstance(definition.id, str) or not definition.id.strip():
        raise RegistryValidationError(f"Probe id must be a non-empty string (got {definition.id!r})")
    if not isinstance(definition.kind, ProbeKind):
        raise RegistryValidationError(f"Unknown probe kind: {definition.kind!r}", probe_id)
    if not isinstance(definition.scoring, ScoringStyle):
        raise RegistryValidationError(f"Unknown scoring style: {definition.scoring!r}", probe_id)
    if not isinstance(definition.target, str) or not definition.target.strip():
        raise RegistryValidationError(f"Probe '{probe_id}' has an empty target", probe_id)
    for name in ("timeout_ms", "interval_ms", "penalty"):
        if not _is_int(getattr(definition, name)):
            raise RegistryValidationError(
                f"Probe '{probe_id}' {name} must be an integer (got {getattr(definition, name)!r})",
                probe_id,
            )
    if definition.degraded_latency_ms is not None and not _is_int(definition.degraded_latency_ms):
        raise RegistryValidationError(
            f"Probe '{probe_id}' degraded_latency_ms must be an integer",
            probe_id,
        )
    for name in ("metric", "parser"):
        value = getattr(definition, name)
        if value is not None and not isinstance(value, str):
            raise RegistryValidationError(f"Probe '{probe_id}' {name} must be a string", probe_id)
    if not isinstance(definition.options, Mapping):
        raise RegistryValidationError(f"Probe '{probe_id}' options must be a mapping", probe_id)
    if definition.timeout_ms <= 0:
        raise RegistryValidationError(
            f"Probe '{probe_id}' timeout_ms must be > 0 (got {definition.timeout_ms})",
            probe_id,
        )
    if definition.interval_ms <= 0:
        raise RegistryValidationError(
            f"Probe '{probe_id}' interval_ms must be > 0 (got {definition.interval_ms})",
            probe_id,
        )
    if not 0 <= definition.penalty <= 100:
        raise RegistryValidationError(
            f"Probe '{probe_id}' penalty must be within 0..100 (got {definition.penalty})",
            probe_id,
        )
    if definition.degraded_latency_ms is not None and definition.degraded_latency_ms <= 0:
        raise RegistryValidationError(
            f"Probe '{probe_id}' degraded_latency_ms must be > 0",
            probe_id,
        )
    if definition.parser is not None and definition.parser not in SHELL_PARSERS:
        raise RegistryValidationError(
            f"Probe '{probe_id}' has unknown parser '{definition.parser}' "
            f"(expected one of: {', '.join(SHELL_PARSERS)})",
            probe_id,
        )
    if definition.kind == ProbeKind.PROMETHEUS:
        derive = definition.options.get("derive")
        if derive is None and not definition.options.get("metric_name"):
            raise RegistryValidationError(
                f"Prometheus probe '{probe_id}' needs options.metric_name or options.derive",
                probe_id,
            )
        if derive is not None and derive not in PROMETHEUS_DERIVATIONS:
            raise RegistryValidationError(
                f"Prometheus probe '{probe_id}' has unknown derivation '{derive}'",
                probe_id,
            )


class ProbeRegistry:
    """
    Registration-ordered set of probe definitions.

    Usage:
        registry = ProbeRegistry()
        registry.register(ProbeDefinition(id="api", kind=ProbeKind.HTTP, target=url))
        for definition in registry.list():
            ...
    """

    def __init__(self, definitions: Optional[Iterable[ProbeDefinition]] = None):
        # dicts keep insertion order, which is the registration order
        self._probes: Dict[str, ProbeDefinition] = {}
        if definitions:
            self.load(definitions)

    def register(self, definition: ProbeDefinition) -> ProbeDefinition:
        """Validate and add a probe definition."""
        validate_definition(definition)

        if definition.id in self._probes:
            raise DuplicateProbeId(
                f"Probe id already registered: {definition.id}",
                definition.id,
            )

        self._probes[definition.id] = definition
        logger.debug(f"[Registry] Registered {definition.kind.value} probe '{definition.id}'")
        return definition

    def unregister(self, probe_id: str) -> bool:
        """Remove a probe. Returns False if it was not registered."""
        removed = self._probes.pop(probe_id, None)
        if removed is not None:
            logger.debug(f"[Registry] Unregistered probe '{probe_id}'")
            return True
        return False

    def load(self, definitions: Iterable[ProbeDefinition]) -> int:
        """Register many definitions; stops at the first invalid one."""
        count = 0
        for definition in definitions:
            self.register(definition)
            count += 1
        return count

    def list(self) -> List[ProbeDefinition]:
        """Stable, registration-ordered copy of all definitions."""
        return list(self._probes.values())

    def snapshot(self) -> Dict[str, ProbeDefinition]:
        """Copy of the id -> definition map, taken at cycle start."""
        return dict(self._probes)

    def get(self, probe_id: str) -> Optional[ProbeDefinition]:
        return self._probes.get(probe_id)

    def clear(self) -> None:
        self._probes.clear()

    def min_interval_ms(self) -> Optional[int]:
        """Shortest configured interval, or None when empty."""
        if not self._probes:
            return None
        return min(p.interval_ms for p in self._probes.values())

    def __len__(self) -> int:
        return len(self._probes)

    def __contains__(self, probe_id: object) -> bool:
        return probe_id in self._probes


# ============================================================================
# Global Registry Instance
# ============================================================================

_registry: Optional[ProbeRegistry] = None


def get_probe_registry() -> ProbeRegistry:
    """Get the process-wide probe registry."""
    global _registry
    if _registry is None:
        _registry = ProbeRegistry()
    return _registry
