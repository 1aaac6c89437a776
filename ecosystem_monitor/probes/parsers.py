"""
Parsers for the raw output of probed systems.

Covers shell metric commands (`df -h`, `free -m`, `top -bn1`), process
manager listings (`pm2 jlist` or flat records) and the Prometheus text
exposition format. Every parser raises ProbeParseError on input it cannot
interpret.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ecosystem_monitor.probes.base import ProbeParseError

_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


def _finite(value: float, source: str) -> float:
    if not math.isfinite(value):
        raise ProbeParseError(f"non-finite value in {source}: {value}")
    return value


# ============================================================================
# Shell metric parsers
# ============================================================================

def parse_number(output: str) -> float:
    """First numeric token in the output."""
    text = output.strip()
    if not text:
        raise ProbeParseError("empty output")

    try:
        return _finite(float(text), "output")
    except ValueError:
        pass

    match = _NUMBER_RE.search(text)
    if not match:
        raise ProbeParseError(f"no number in output: {text[:80]!r}")
    return _finite(float(match.group(0)), "output")


def parse_disk_usage(output: str) -> float:
    """
    Use% of the last line of `df -h <mount>`.

    Example line: "/dev/sda1  80G  74G  6.0G  92% /"
    """
    lines = [line for line in output.strip().splitlines() if line.strip()]
    if not lines:
        raise ProbeParseError("empty df output")

    parts = lines[-1].split()
    for part in parts:
        if part.endswith("%"):
            try:
                return _finite(float(part.rstrip("%")), "df output")
            except ValueError:
                continue
    raise ProbeParseError(f"no usage percentage in df output: {lines[-1][:80]!r}")


def parse_memory_usage(output: str) -> float:
    """Used/total percentage from the `Mem:` line of `free -m`."""
    for line in output.splitlines():
        if line.startswith("Mem:"):
            parts = line.split()
            try:
                total = float(parts[1])
                used = float(parts[2])
            except (IndexError, ValueError) as e:
                raise ProbeParseError(f"malformed Mem line: {line[:80]!r}") from e
            if total <= 0:
                raise ProbeParseError("total memory reported as zero")
            return round(used / total * 100, 1)
    raise ProbeParseError("no Mem: line in free output")


def parse_cpu_usage(output: str) -> float:
    """
    CPU busy percentage.

    Accepts either a bare number (e.g. the `awk '{print $2}'` form) or a full
    `top -bn1` "%Cpu(s):" line, in which case 100 - idle is returned.
    """
    for line in output.splitlines():
        if "Cpu(s)" in line:
            idle = re.search(r"([\d.]+)\s*id", line)
            if idle:
                return round(100.0 - float(idle.group(1)), 1)
            break
    return parse_number(output)


SHELL_PARSERS: Dict[str, Callable[[str], float]] = {
    "number": parse_number,
    "df": parse_disk_usage,
    "free": parse_memory_usage,
    "cpu": parse_cpu_usage,
}


def get_shell_parser(name: Optional[str]) -> Callable[[str], float]:
    parser = SHELL_PARSERS.get(name or "number")
    if parser is None:
        raise ProbeParseError(f"unknown shell parser: {name}")
    return parser


# ============================================================================
# Process list parser
# ============================================================================

@dataclass
class ProcessInfo:
    """One process as reported by the process manager."""
    name: str
    status: str
    cpu: Optional[float] = None
    memory: Optional[float] = None
    uptime: Optional[float] = None

    @property
    def online(self) -> bool:
        return self.status == "online"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "cpu": self.cpu,
            "memory": self.memory,
            "uptime": self.uptime,
        }


def _process_from_record(record: Any) -> ProcessInfo:
    if not isinstance(record, dict):
        raise ProbeParseError(f"process record is not an object: {record!r}")

    if "pm2_env" in record:
        env = record.get("pm2_env") or {}
        monit = record.get("monit") or {}
        return ProcessInfo(
            name=str(record.get("name", env.get("name", "?"))),
            status=str(env.get("status", "unknown")),
            cpu=monit.get("cpu"),
            memory=monit.get("memory"),
            uptime=env.get("pm_uptime"),
        )

    if "status" not in record:
        raise ProbeParseError(f"process record has no status: {record!r}")

    return ProcessInfo(
        name=str(record.get("name", "?")),
        status=str(record["status"]),
        cpu=record.get("cpu"),
        memory=record.get("memory"),
        uptime=record.get("uptime"),
    )


def parse_process_list(output: str) -> List[ProcessInfo]:
    """Parse `pm2 jlist` output or a JSON list of flat process records."""
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise ProbeParseError(f"process list is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise ProbeParseError("process list must be a JSON array")

    return [_process_from_record(record) for record in data]


# ============================================================================
# Prometheus text format
# ============================================================================

_SAMPLE_RE = re.compile(
    r"^([a-zA-Z_:][a-zA-Z0-9_:]*)(?:\{([^}]*)\})?\s+(\S+)(?:\s+-?\d+)?$"
)
_LABEL_RE = re.compile(r'([a-zA-Z_][a-zA-Z0-9_]*)="((?:[^"\\]|\\.)*)"')


@dataclass
class MetricSample:
    """One sample line of a Prometheus exposition."""
    name: str
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


def parse_prometheus_metrics(text: str) -> List[MetricSample]:
    """
    Parse Prometheus text exposition into samples.

    Comments, blank lines and lines that do not match the sample grammar are
    skipped.
    """
    samples: List[MetricSample] = []

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        match = _SAMPLE_RE.match(line)
        if not match:
            continue

        name, labels_str, value_str = match.groups()
        try:
            value = float(value_str)
        except ValueError:
            continue

        labels = dict(_LABEL_RE.findall(labels_str)) if labels_str else {}
        samples.append(MetricSample(name=name, value=value, labels=labels))

    return samples


def find_metric(
    samples: List[MetricSample],
    name: str,
    labels: Optional[Dict[str, str]] = None,
) -> Optional[float]:
    """Value of the first sample matching name and all given labels."""
    for sample in samples:
        if sample.name != name:
            continue
        if labels and any(sample.labels.get(k) != v for k, v in labels.items()):
            continue
        return sample.value
    return None


def _require(value: Optional[float], name: str) -> float:
    if value is None:
        raise ProbeParseError(f"metric not found: {name}")
    return value


def derive_memory_percent(samples: List[MetricSample]) -> float:
    total = _require(find_metric(samples, "node_memory_MemTotal_bytes"), "node_memory_MemTotal_bytes")
    available = _require(
        find_metric(samples, "node_memory_MemAvailable_bytes"), "node_memory_MemAvailable_bytes"
    )
    if total <= 0:
        raise ProbeParseError("node_memory_MemTotal_bytes is zero")
    return round((total - available) / total * 100, 1)


def derive_swap_percent(samples: List[MetricSample]) -> float:
    total = _require(find_metric(samples, "node_memory_SwapTotal_bytes"), "node_memory_SwapTotal_bytes")
    free = _require(find_metric(samples, "node_memory_SwapFree_bytes"), "node_memory_SwapFree_bytes")
    if total <= 0:
        # no swap configured
        return 0.0
    return round((total - free) / total * 100, 1)


def derive_disk_percent(
    samples: List[MetricSample],
    mountpoints: Optional[List[str]] = None,
) -> float:
    for mountpoint in mountpoints or ["/", "/data"]:
        size = find_metric(samples, "node_filesystem_size_bytes", {"mountpoint": mountpoint})
        free = find_metric(samples, "node_filesystem_free_bytes", {"mountpoint": mountpoint})
        if size and free is not None:
            return round((size - free) / size * 100, 1)
    raise ProbeParseError("no node_filesystem_size_bytes/free_bytes for the requested mountpoints")


PROMETHEUS_DERIVATIONS: Dict[str, Callable[[List[MetricSample]], float]] = {
    "memory_percent": derive_memory_percent,
    "swap_percent": derive_swap_percent,
    "disk_percent": derive_disk_percent,
}
