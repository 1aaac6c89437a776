"""
HTTP probes: plain health endpoints and Prometheus metric endpoints.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Dict, List, Tuple

import aiohttp

from ecosystem_monitor.probes.base import (
    BaseProbe,
    CheckOutput,
    ProbeParseError,
    ProbeTransportError,
)
from ecosystem_monitor.probes.models import ProbeOutcome
from ecosystem_monitor.probes.parsers import (
    PROMETHEUS_DERIVATIONS,
    derive_disk_percent,
    find_metric,
    parse_prometheus_metrics,
)

logger = logging.getLogger(__name__)

USER_AGENT = "Ecosystem-Monitor/1.0"


class HttpProbe(BaseProbe):
    """
    Check an HTTP endpoint.

    Any answer counts as a response: status in [200, 400) is ok, anything
    else is degraded (the server is up but unhappy). Redirects are not
    followed unless `options.follow_redirects` is set, so 3xx counts as ok.
    """

    def _headers(self) -> Dict[str, str]:
        headers = {"User-Agent": USER_AGENT}
        headers.update(self.definition.options.get("headers") or {})
        return headers

    async def _request(self) -> Tuple[int, str]:
        """Issue the request and return (status, body)."""
        options = self.definition.options
        method = str(options.get("method", "GET")).upper()

        try:
            async with aiohttp.ClientSession(headers=self._headers()) as session:
                async with session.request(
                    method,
                    self.definition.target,
                    allow_redirects=bool(options.get("follow_redirects", False)),
                ) as response:
                    body = await response.text(errors="replace")
                    return response.status, body
        except aiohttp.InvalidURL as e:
            raise ProbeTransportError(f"invalid URL: {e}") from e
        except aiohttp.ClientError as e:
            raise ProbeTransportError(f"{type(e).__name__}: {e}") from e

    async def _check(self) -> CheckOutput:
        start_time = time.perf_counter()
        status, _ = await self._request()
        latency_ms = (time.perf_counter() - start_time) * 1000

        if not 200 <= status < 400:
            return CheckOutput(ProbeOutcome.DEGRADED, raw_value=status, message=f"HTTP {status}")

        slow_after = self.definition.degraded_latency_ms
        if slow_after is not None and latency_ms > slow_after:
            return CheckOutput(
                ProbeOutcome.DEGRADED,
                raw_value=status,
                message=f"slow response: {latency_ms:.0f}ms > {slow_after}ms",
            )

        return CheckOutput(ProbeOutcome.OK, raw_value=status)


class PrometheusProbe(HttpProbe):
    """
    Read one value from a Prometheus text endpoint (e.g. node-exporter).

    Options:
        metric_name: sample name to read
        labels: label filter for metric_name
        derive: one of memory_percent, swap_percent, disk_percent
        mountpoints: candidate mountpoints for disk_percent
    """

    async def _check(self) -> CheckOutput:
        status, body = await self._request()
        if not 200 <= status < 300:
            raise ProbeTransportError(f"metrics endpoint returned HTTP {status}")

        samples = parse_prometheus_metrics(body)
        if not samples:
            raise ProbeParseError("no samples in metrics response")

        value = self._select(samples)
        if not math.isfinite(value):
            raise ProbeParseError(f"non-finite metric value: {value}")
        return CheckOutput(ProbeOutcome.OK, raw_value=value)

    def _select(self, samples: List[Any]) -> float:
        options = self.definition.options
        derive = options.get("derive")

        if derive == "disk_percent":
            return derive_disk_percent(samples, options.get("mountpoints"))
        if derive:
            derivation = PROMETHEUS_DERIVATIONS.get(derive)
            if derivation is None:
                raise ProbeParseError(f"unknown derivation: {derive}")
            return derivation(samples)

        name = options.get("metric_name")
        if not name:
            raise ProbeParseError("prometheus probe needs options.metric_name or options.derive")

        value = find_metric(samples, name, options.get("labels"))
        if value is None:
            raise ProbeParseError(f"metric not found: {name}")
        return value
