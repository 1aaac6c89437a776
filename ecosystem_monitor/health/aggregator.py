"""
Aggregator.

Runs one aggregation cycle: every registered probe is executed concurrently,
each bounded by its own timeout, and every result (successful or not) is
folded into exactly one AggregateSnapshot. A probe's failure is data, never a
cycle failure, so the cycle takes max(timeout) rather than sum(timeout).
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from ecosystem_monitor.health.models import AggregateSnapshot
from ecosystem_monitor.health.scorer import HealthScorer
from ecosystem_monitor.probes import BaseProbe, create_probe
from ecosystem_monitor.probes.models import ProbeDefinition, ProbeOutcome, ProbeResult
from ecosystem_monitor.probes.registry import ProbeRegistry
from ecosystem_monitor.utils.async_helpers import gather_settled
from ecosystem_monitor.utils.logging_config import log_duration

logger = logging.getLogger(__name__)


class Aggregator:
    """
    Fan-out/fan-in over the probe registry.

    Usage:
        aggregator = Aggregator(registry)
        snapshot = await aggregator.collect()
    """

    def __init__(
        self,
        registry: ProbeRegistry,
        scorer: Optional[HealthScorer] = None,
        probe_factory: Callable[[ProbeDefinition], BaseProbe] = create_probe,
    ):
        self.registry = registry
        self.scorer = scorer or HealthScorer()
        self._probe_factory = probe_factory

    @log_duration(logger, message="[Aggregator] Collected cycle")
    async def collect(self) -> AggregateSnapshot:
        """Run all probes once and build the snapshot."""
        # copy at cycle start: later register/unregister calls do not leak in
        definitions = self.registry.snapshot()
        start_time = time.perf_counter()

        if not definitions:
            logger.debug("[Aggregator] Registry is empty, producing vacuous snapshot")

        probes = [self._probe_factory(d) for d in definitions.values()]
        outcomes = await gather_settled([probe.run() for probe in probes])

        per_probe: Dict[str, ProbeResult] = {}
        for probe, outcome in zip(probes, outcomes):
            if isinstance(outcome, BaseException):
                # probes capture their own failures; this is a last resort
                logger.error(f"[Aggregator] Probe {probe.probe_id} raised: {outcome!r}")
                outcome = ProbeResult(
                    probe_id=probe.probe_id,
                    outcome=ProbeOutcome.ERROR,
                    error_message=f"{type(outcome).__name__}: {outcome}",
                )
            per_probe[probe.probe_id] = outcome

        overall_score, overall_status = self.scorer.score(per_probe, definitions)
        probe_statuses = {
            probe_id: self.scorer.probe_status(result, definitions.get(probe_id))
            for probe_id, result in per_probe.items()
        }
        healthy_count = sum(1 for r in per_probe.values() if r.outcome == ProbeOutcome.OK)

        snapshot = AggregateSnapshot(
            per_probe=per_probe,
            overall_score=overall_score,
            overall_status=overall_status,
            healthy_count=healthy_count,
            total_count=len(definitions),
            probe_statuses=probe_statuses,
            duration_ms=int(round((time.perf_counter() - start_time) * 1000)),
        )

        self._log_failures(snapshot)
        return snapshot

    def _log_failures(self, snapshot: AggregateSnapshot) -> None:
        failing: List[str] = [
            f"{probe_id}={result.outcome.value}"
            for probe_id, result in snapshot.per_probe.items()
            if result.outcome != ProbeOutcome.OK
        ]
        if failing:
            logger.info(f"[Aggregator] {len(failing)}/{snapshot.total_count} probes not ok: {', '.join(failing)}")
