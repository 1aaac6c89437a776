"""
Base probe.

Every probe kind implements `_check()`; `run()` wraps it with the probe's own
timeout and converts every failure into a ProbeResult, so a probe never
raises past its boundary.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from ecosystem_monitor.probes.models import (
    ProbeDefinition,
    ProbeOutcome,
    ProbeResult,
)
from ecosystem_monitor.utils.logging_config import LogContext

logger = logging.getLogger(__name__)

# Upper bound on reaping a killed command before giving up on its pipes
KILL_GRACE_SECONDS = 1.0


# ============================================================================
# Probe Errors (recorded as data, never propagated past run())
# ============================================================================

class ProbeTimeout(Exception):
    """No response within the probe's timeout."""


class ProbeTransportError(Exception):
    """DNS, connection or process-spawn failure."""


class ProbeParseError(Exception):
    """A response was received but could not be interpreted."""


@dataclass
class CheckOutput:
    """What a probe kind's check observed, before timing is attached."""
    outcome: ProbeOutcome
    raw_value: Any = None
    message: Optional[str] = None


class BaseProbe(ABC):
    """
    Abstract base class for probes.

    Subclasses perform the I/O in `_check()` and may raise ProbeTransportError
    or ProbeParseError; any other exception is also captured as an error.
    """

    def __init__(self, definition: ProbeDefinition):
        self.definition = definition

    @property
    def probe_id(self) -> str:
        return self.definition.id

    @abstractmethod
    async def _check(self) -> CheckOutput:
        """Perform the underlying check."""
        pass

    async def run(self) -> ProbeResult:
        """Execute the check, bounded by the probe's own timeout."""
        with LogContext(probe_id=self.probe_id, probe_kind=self.definition.kind.value):
            return await self._run_bounded()

    async def _run_bounded(self) -> ProbeResult:
        timeout = self.definition.timeout_seconds
        start_time = time.perf_counter()

        try:
            # wait_for cancels the check if the timer wins
            output = await asyncio.wait_for(self._check(), timeout=timeout)

        except asyncio.TimeoutError:
            logger.debug(f"[Probe] {self.probe_id} timed out after {timeout:.2f}s")
            return ProbeResult(
                probe_id=self.probe_id,
                outcome=ProbeOutcome.TIMEOUT,
                latency_ms=None,
                error_message=f"{ProbeTimeout.__name__}: no response within {self.definition.timeout_ms}ms",
            )

        except ProbeTimeout as e:
            return ProbeResult(
                probe_id=self.probe_id,
                outcome=ProbeOutcome.TIMEOUT,
                latency_ms=None,
                error_message=f"ProbeTimeout: {e}",
            )

        except (ProbeTransportError, ProbeParseError) as e:
            return self._error_result(start_time, f"{type(e).__name__}: {e}")

        except Exception as e:
            logger.debug(f"[Probe] {self.probe_id} failed: {e!r}")
            return self._error_result(
                start_time, f"{ProbeTransportError.__name__}: {type(e).__name__}: {e}"
            )

        return ProbeResult(
            probe_id=self.probe_id,
            outcome=output.outcome,
            latency_ms=self._elapsed_ms(start_time),
            raw_value=output.raw_value,
            error_message=output.message,
        )

    def _error_result(self, start_time: float, message: str) -> ProbeResult:
        return ProbeResult(
            probe_id=self.probe_id,
            outcome=ProbeOutcome.ERROR,
            latency_ms=self._elapsed_ms(start_time),
            error_message=message,
        )

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int(round((time.perf_counter() - start_time) * 1000))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.probe_id!r}, target={self.definition.target!r})"


async def run_command(command: str) -> str:
    """
    Run a shell command and return its stdout.

    The command runs in its own session. If the awaiting task is cancelled
    (e.g. by the probe timeout) the whole process group is killed, so pipeline
    members and background children cannot hold the pipes open.

    Raises:
        ProbeTransportError: spawn failure or non-zero exit status.
    """
    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        raise ProbeTransportError(f"failed to spawn command: {e}") from e

    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        _kill_process_group(proc)
        try:
            await asyncio.wait_for(proc.wait(), timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(f"[Probe] Command did not exit after kill: {command!r}")
        raise

    if proc.returncode != 0:
        detail = stderr.decode(errors="replace").strip()[:200]
        raise ProbeTransportError(
            f"command exited with status {proc.returncode}" + (f": {detail}" if detail else "")
        )

    return stdout.decode(errors="replace")


def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    # The shell may already be gone while its children still run
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
