"""
Command-backed probes: shell-exposed system metrics and process-manager
listings. Targets are shell commands, e.g. `df -h / | tail -n 1` or
`ssh -p 2222 root@vps "pm2 jlist"`.
"""

from __future__ import annotations

import logging

from ecosystem_monitor.probes.base import BaseProbe, CheckOutput, run_command
from ecosystem_monitor.probes.models import ProbeOutcome
from ecosystem_monitor.probes.parsers import get_shell_parser, parse_process_list

logger = logging.getLogger(__name__)


class ShellMetricProbe(BaseProbe):
    """Run a command and parse its output into one finite number."""

    async def _check(self) -> CheckOutput:
        parser = get_shell_parser(self.definition.parser)
        output = await run_command(self.definition.target)
        return CheckOutput(ProbeOutcome.OK, raw_value=parser(output))


class ProcessListProbe(BaseProbe):
    """
    Run a command that prints the process manager's list as JSON.

    ok when every process is online; degraded when any is not, or when the
    list is empty.
    """

    async def _check(self) -> CheckOutput:
        output = await run_command(self.definition.target)
        processes = parse_process_list(output)

        online = sum(1 for p in processes if p.online)
        total = len(processes)
        raw_value = {
            "online": online,
            "total": total,
            "processes": [p.to_dict() for p in processes],
        }

        if total == 0:
            return CheckOutput(ProbeOutcome.DEGRADED, raw_value, "no processes reported")

        if online < total:
            stopped = [p.name for p in processes if not p.online]
            return CheckOutput(
                ProbeOutcome.DEGRADED,
                raw_value,
                f"{total - online}/{total} processes not online: {', '.join(stopped)}",
            )

        return CheckOutput(ProbeOutcome.OK, raw_value)
