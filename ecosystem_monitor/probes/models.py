"""
Probe data models.

A ProbeDefinition describes one check against one target. A ProbeResult is
the normalized outcome of executing it once.
"""

from __future__ import annotations

import copy
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


def iso_timestamp(ts: float) -> str:
    """Render an epoch timestamp as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class ProbeKind(Enum):
    """Kinds of targets a probe can check."""
    HTTP = "http"
    PROCESS_LIST = "process-list"
    SHELL_METRIC = "shell-metric"
    PROMETHEUS = "prometheus"


class ProbeOutcome(Enum):
    """Normalized outcome of a single probe execution."""
    OK = "ok"
    DEGRADED = "degraded"
    ERROR = "error"
    TIMEOUT = "timeout"


class ScoringStyle(Enum):
    """How the health scorer reads a probe's result."""
    BINARY = "binary"      # up/down: fixed penalty when not ok
    RESOURCE = "resource"  # percentage in raw_value, banded thresholds


DEFAULT_PENALTY = 25

# camelCase keys accepted from JSON/YAML probe records
_KEY_ALIASES = {
    "timeoutMs": "timeout_ms",
    "intervalMs": "interval_ms",
    "degradedLatencyMs": "degraded_latency_ms",
}


@dataclass(frozen=True)
class ProbeDefinition:
    """A single configured health/metric check."""
    id: str
    kind: ProbeKind
    target: str
    timeout_ms: int = 10000
    interval_ms: int = 30000

    # Scoring hints
    scoring: ScoringStyle = ScoringStyle.BINARY
    penalty: int = DEFAULT_PENALTY
    metric: Optional[str] = None

    # Kind-specific settings
    parser: Optional[str] = None
    degraded_latency_ms: Optional[int] = None
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Detach from the caller's dict; registered probes are read-only
        if isinstance(self.options, Mapping):
            object.__setattr__(self, "options", MappingProxyType(copy.deepcopy(dict(self.options))))

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        defaults: Optional[Dict[str, Any]] = None,
    ) -> "ProbeDefinition":
        """
        Build a definition from a config record.

        Raises:
            ValueError/TypeError/KeyError on malformed records, including
            missing or non-string ids and targets and non-finite numbers.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Probe record must be a mapping, got {type(data).__name__}")

        record = dict(defaults or {})
        for key, value in data.items():
            record[_KEY_ALIASES.get(key, key)] = value

        unknown = set(record) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown probe fields: {', '.join(sorted(unknown))}")

        for required in ("id", "kind", "target"):
            if required not in record:
                raise KeyError(f"Probe record missing '{required}'")

        for name in ("id", "target"):
            value = record[name]
            if not isinstance(value, str) or not value.strip():
                raise TypeError(f"Probe '{name}' must be a non-empty string, got {value!r}")

        degraded_latency = record.get("degraded_latency_ms")
        options = record.get("options") or {}
        if not isinstance(options, dict):
            raise TypeError("Probe 'options' must be a mapping")

        return cls(
            id=record["id"],
            kind=ProbeKind(record["kind"]),
            target=record["target"],
            timeout_ms=_as_int(record, "timeout_ms", 10000),
            interval_ms=_as_int(record, "interval_ms", 30000),
            scoring=ScoringStyle(record.get("scoring", ScoringStyle.BINARY.value)),
            penalty=_as_int(record, "penalty", DEFAULT_PENALTY),
            metric=record.get("metric"),
            parser=record.get("parser"),
            degraded_latency_ms=_as_int(record, "degraded_latency_ms") if degraded_latency is not None else None,
            options=options,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "target": self.target,
            "timeout_ms": self.timeout_ms,
            "interval_ms": self.interval_ms,
            "scoring": self.scoring.value,
            "penalty": self.penalty,
            "metric": self.metric,
            "parser": self.parser,
            "degraded_latency_ms": self.degraded_latency_ms,
            "options": copy.deepcopy(dict(self.options)),
        }


def _as_int(record: Dict[str, Any], name: str, default: Optional[int] = None) -> int:
    value = record.get(name, default)
    if isinstance(value, bool) or value is None:
        raise TypeError(f"Probe '{name}' must be a number, got {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"Probe '{name}' must be finite, got {value}")
    return int(value)

@dataclass(frozen=True)
class ProbeResult:
    """Result of one probe execution."""
    probe_id: str
    outcome: ProbeOutcome
    latency_ms: Optional[int] = None
    raw_value: Any = None
    error_message: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_ok(self) -> bool:
        return self.outcome == ProbeOutcome.OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "probe_id": self.probe_id,
            "timestamp": iso_timestamp(self.timestamp),
            "outcome": self.outcome.value,
            "latency_ms": self.latency_ms,
            "raw_value": self.raw_value,
            "error_message": self.error_message,
        }
