"""
Shared pytest fixtures for ecosystem monitor tests.

Scripted probes stand in for real targets: each cycle the probe factory reads
the current script entry for a probe id, so tests can flip a probe from ok to
timeout between cycles.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import pytest

from ecosystem_monitor.config import base_config
from ecosystem_monitor.health import monitor as monitor_module
from ecosystem_monitor.health.models import AggregateSnapshot, HealthStatus
from ecosystem_monitor.probes import registry as registry_module
from ecosystem_monitor.probes.base import BaseProbe, CheckOutput
from ecosystem_monitor.probes.models import (
    ProbeDefinition,
    ProbeKind,
    ProbeOutcome,
    ProbeResult,
    ScoringStyle,
)
from ecosystem_monitor.utils.logging_config import clear_context, set_cycle_id


# =============================================================================
# SCRIPTED PROBES
# =============================================================================

@dataclass
class Step:
    """What a scripted probe does on its next run."""
    outcome: ProbeOutcome = ProbeOutcome.OK
    raw_value: Any = None
    message: Optional[str] = None
    delay: float = 0.0
    error: Optional[Exception] = None


class ScriptedProbe(BaseProbe):
    """Probe whose behavior is read from a shared script dict."""

    def __init__(self, definition: ProbeDefinition, script: Dict[str, Step]):
        super().__init__(definition)
        self._script = script

    async def _check(self) -> CheckOutput:
        step = self._script.get(self.probe_id, Step())
        if step.delay:
            await asyncio.sleep(step.delay)
        if step.error is not None:
            raise step.error
        return CheckOutput(step.outcome, step.raw_value, step.message)


def make_definition(
    probe_id: str,
    kind: ProbeKind = ProbeKind.HTTP,
    target: str = "http://localhost:9/health",
    **kwargs: Any,
) -> ProbeDefinition:
    return ProbeDefinition(id=probe_id, kind=kind, target=target, **kwargs)


def resource_definition(probe_id: str, metric: Optional[str] = None, **kwargs: Any) -> ProbeDefinition:
    return make_definition(
        probe_id,
        kind=ProbeKind.SHELL_METRIC,
        target="echo 0",
        scoring=ScoringStyle.RESOURCE,
        metric=metric or probe_id,
        **kwargs,
    )


def make_result(probe_id: str, outcome: ProbeOutcome = ProbeOutcome.OK, raw_value: Any = None) -> ProbeResult:
    return ProbeResult(
        probe_id=probe_id,
        outcome=outcome,
        latency_ms=None if outcome == ProbeOutcome.TIMEOUT else 5,
        raw_value=raw_value,
    )


def make_snapshot(
    statuses: Dict[str, HealthStatus],
    overall: HealthStatus = HealthStatus.HEALTHY,
    score: int = 100,
) -> AggregateSnapshot:
    per_probe = {
        probe_id: make_result(
            probe_id,
            ProbeOutcome.OK if status == HealthStatus.HEALTHY else ProbeOutcome.ERROR,
        )
        for probe_id, status in statuses.items()
    }
    return AggregateSnapshot(
        per_probe=per_probe,
        overall_score=score,
        overall_status=overall,
        healthy_count=sum(1 for s in statuses.values() if s == HealthStatus.HEALTHY),
        total_count=len(statuses),
        probe_statuses=dict(statuses),
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_globals(monkeypatch):
    """Isolate process-wide singletons and env-driven config between tests."""
    for var in ("MONITOR_CONFIG", "MONITOR_PROBES", "MONITOR_CHECK_INTERVAL", "MONITOR_WEBHOOK_URLS"):
        monkeypatch.delenv(var, raising=False)

    base_config._config_instance = None
    registry_module._registry = None
    monitor_module._monitor = None
    yield
    base_config._config_instance = None
    registry_module._registry = None
    monitor_module._monitor = None
    set_cycle_id(None)
    clear_context()


@pytest.fixture
def script() -> Dict[str, Step]:
    """Mutable per-test probe script."""
    return {}


@pytest.fixture
def scripted_factory(script) -> Callable[[ProbeDefinition], BaseProbe]:
    return lambda definition: ScriptedProbe(definition, script)
