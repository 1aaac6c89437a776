"""
Health Scorer.

One documented scoring table instead of per-metric ad hoc scoring. Pure and
deterministic: the same results (and definitions) always give the same
score, with no I/O and no hidden state.

Scoring table:

    signal                                  condition               penalty
    --------------------------------------  ----------------------  -------
    resource, default bands (disk, memory)  value > 90              30
    resource, default bands                 80 < value <= 90        15
    resource "cpu"                          value > 90              20
    resource "cpu"                          75 < value <= 90        10
    resource "swap"                         value > 50              20
    resource without a numeric ok value     outcome != ok           probe penalty
    binary (service up/down)                outcome != ok           probe penalty

The score starts at 100 and is clamped to [0, 100].

    score >= 80         healthy
    50 <= score < 80    warning
    score < 50          critical
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from ecosystem_monitor.health.models import HealthStatus
from ecosystem_monitor.probes.models import (
    DEFAULT_PENALTY,
    ProbeDefinition,
    ProbeOutcome,
    ProbeResult,
    ScoringStyle,
)


@dataclass(frozen=True)
class ResourceBand:
    """Values strictly above `above` cost `penalty` and mark the probe `status`."""
    above: float
    penalty: int
    status: HealthStatus


DEFAULT_BANDS: Tuple[ResourceBand, ...] = (
    ResourceBand(above=90, penalty=30, status=HealthStatus.CRITICAL),
    ResourceBand(above=80, penalty=15, status=HealthStatus.WARNING),
)


@dataclass(frozen=True)
class ScoringPolicy:
    """Threshold table used by the scorer."""
    default_bands: Tuple[ResourceBand, ...] = DEFAULT_BANDS
    metric_bands: Dict[str, Tuple[ResourceBand, ...]] = field(
        default_factory=lambda: {
            "cpu": (
                ResourceBand(above=90, penalty=20, status=HealthStatus.CRITICAL),
                ResourceBand(above=75, penalty=10, status=HealthStatus.WARNING),
            ),
            "swap": (
                ResourceBand(above=50, penalty=20, status=HealthStatus.WARNING),
            ),
        }
    )
    default_penalty: int = DEFAULT_PENALTY
    healthy_threshold: int = 80
    warning_threshold: int = 50

    def bands_for(self, metric: Optional[str]) -> Tuple[ResourceBand, ...]:
        bands = self.metric_bands.get(metric) if metric else None
        # highest threshold first so the most severe band wins
        return tuple(sorted(bands or self.default_bands, key=lambda b: b.above, reverse=True))


def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


class HealthScorer:
    """
    Maps a cycle's probe results to (overall_score, overall_status).

    Results without a matching definition are scored as binary probes with
    the policy's default penalty.
    """

    def __init__(self, policy: Optional[ScoringPolicy] = None):
        self.policy = policy or ScoringPolicy()

    def _band(self, value: float, definition: ProbeDefinition) -> Optional[ResourceBand]:
        for band in self.policy.bands_for(definition.metric):
            if value > band.above:
                return band
        return None

    def _resource_value(
        self,
        result: ProbeResult,
        definition: Optional[ProbeDefinition],
    ) -> Optional[float]:
        if definition is None or definition.scoring != ScoringStyle.RESOURCE:
            return None
        if result.outcome != ProbeOutcome.OK:
            return None
        return _numeric(result.raw_value)

    def probe_penalty(
        self,
        result: ProbeResult,
        definition: Optional[ProbeDefinition] = None,
    ) -> int:
        """Points one probe result takes off the overall score."""
        value = self._resource_value(result, definition)
        if value is not None:
            band = self._band(value, definition)
            return band.penalty if band else 0

        if result.outcome == ProbeOutcome.OK:
            return 0
        return definition.penalty if definition is not None else self.policy.default_penalty

    def probe_status(
        self,
        result: ProbeResult,
        definition: Optional[ProbeDefinition] = None,
    ) -> HealthStatus:
        """Status of a single probe, tracked by the alert emitter."""
        if result.outcome in (ProbeOutcome.ERROR, ProbeOutcome.TIMEOUT):
            return HealthStatus.CRITICAL
        if result.outcome == ProbeOutcome.DEGRADED:
            return HealthStatus.WARNING

        value = self._resource_value(result, definition)
        if value is not None:
            band = self._band(value, definition)
            if band:
                return band.status
        return HealthStatus.HEALTHY

    def status_for_score(self, score: int) -> HealthStatus:
        if score >= self.policy.healthy_threshold:
            return HealthStatus.HEALTHY
        if score >= self.policy.warning_threshold:
            return HealthStatus.WARNING
        return HealthStatus.CRITICAL

    def score(
        self,
        per_probe: Mapping[str, ProbeResult],
        definitions: Optional[Mapping[str, ProbeDefinition]] = None,
    ) -> Tuple[int, HealthStatus]:
        """
        Compute the overall score and status.

        An empty result set scores 100/healthy.
        """
        definitions = definitions or {}
        score = 100

        for probe_id, result in per_probe.items():
            score -= self.probe_penalty(result, definitions.get(probe_id))
            score = max(0, min(100, score))

        return score, self.status_for_score(score)


_default_scorer = HealthScorer()


def score(
    per_probe: Mapping[str, ProbeResult],
    definitions: Optional[Mapping[str, ProbeDefinition]] = None,
) -> Tuple[int, HealthStatus]:
    """Score with the default policy."""
    return _default_scorer.score(per_probe, definitions)
